"""Pydantic models for the plan document (``export.json``).

Keys are camelCase in the document; models also accept field names,
so tests and callers can build plans directly in Python.

Usage:
    from data_migrator.plan.models import load_plan_document

    document = load_plan_document(Path("export.json"))
    for obj in document.objects:
        print(obj.query, obj.operation)
"""

import json
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from data_migrator.constants import (
    DEFAULT_API_VERSION,
    DEFAULT_BULK_API_V1_BATCH_SIZE,
    DEFAULT_BULK_API_VERSION,
    DEFAULT_BULK_THRESHOLD,
    DEFAULT_EXTERNAL_ID,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_REST_API_BATCH_SIZE,
)
from data_migrator.errors import InitializationError


class Operation(str, Enum):
    """What a task does to the target."""

    INSERT = "Insert"
    UPDATE = "Update"
    UPSERT = "Upsert"
    READONLY = "Readonly"
    DELETE = "Delete"

    @classmethod
    def parse(cls, value: "str | Operation") -> "Operation":
        """Case-insensitive lookup by value."""
        if isinstance(value, Operation):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise InitializationError(f"Unknown operation: {value}")


class _PlanModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ============================================================================
# Object Configuration
# ============================================================================


class MockField(_PlanModel):
    """Mock pattern for one field.

    ``excluded_regex``/``included_regex`` may end with ``--row`` to
    apply the rule to the whole row instead of the field value.
    """

    name: str
    pattern: str
    excluded_regex: str = Field(default="", alias="excludedRegex")
    included_regex: str = Field(default="", alias="includedRegex")


class FieldMappingItem(_PlanModel):
    """One rename: the target object, or a source field's target name."""

    target_object: str = Field(default="", alias="targetObject")
    source_field: str = Field(default="", alias="sourceField")
    target_field: str = Field(default="", alias="targetField")


class ObjectConfig(_PlanModel):
    """One entry of the plan's ``objects`` list."""

    query: str
    delete_query: str = Field(default="", alias="deleteQuery")
    operation: Operation = Operation.READONLY
    external_id: str = Field(default=DEFAULT_EXTERNAL_ID, alias="externalId")
    delete_old_data: bool = Field(default=False, alias="deleteOldData")
    update_with_mock_data: bool = Field(default=False, alias="updateWithMockData")
    mock_csv_data: bool = Field(default=False, alias="mockCSVData")
    mock_fields: list[MockField] = Field(default_factory=list, alias="mockFields")
    excluded: bool = False
    use_csv_values_mapping: bool = Field(default=False, alias="useCSVValuesMapping")
    all_records: bool = Field(default=True, alias="allRecords")
    use_field_mapping: bool = Field(default=False, alias="useFieldMapping")
    field_mapping: list[FieldMappingItem] = Field(default_factory=list, alias="fieldMapping")
    skip_records_comparison: bool = Field(default=False, alias="skipRecordsComparison")

    @field_validator("operation", mode="before")
    @classmethod
    def _parse_operation(cls, value):
        return Operation.parse(value)

    @field_validator("external_id", mode="before")
    @classmethod
    def _default_external_id(cls, value):
        return (value or "").strip() or DEFAULT_EXTERNAL_ID


# ============================================================================
# Plan Document
# ============================================================================


class PlanDocument(_PlanModel):
    """Complete plan: objects plus run-level settings."""

    objects: list[ObjectConfig] = Field(default_factory=list)
    polling_interval_ms: int = Field(
        default=DEFAULT_POLLING_INTERVAL_MS, alias="pollingIntervalMs"
    )
    polling_query_timeout_ms: int = Field(
        default=240000, alias="pollingQueryTimeoutMs"
    )
    bulk_threshold: int = Field(default=DEFAULT_BULK_THRESHOLD, alias="bulkThreshold")
    bulk_api_version: str = Field(
        default=DEFAULT_BULK_API_VERSION, alias="bulkApiVersion"
    )
    bulk_api_v1_batch_size: int = Field(
        default=DEFAULT_BULK_API_V1_BATCH_SIZE, alias="bulkApiV1BatchSize"
    )
    rest_api_batch_size: int = Field(
        default=DEFAULT_REST_API_BATCH_SIZE, alias="restApiBatchSize"
    )
    all_or_none: bool = Field(default=False, alias="allOrNone")
    prompt_on_update_error: bool = Field(default=True, alias="promptOnUpdateError")
    prompt_on_missing_parent_objects: bool = Field(
        default=True, alias="promptOnMissingParentObjects"
    )
    prompt_on_issues_in_csv_files: bool = Field(
        default=True, alias="promptOnIssuesInCSVFiles"
    )
    validate_csv_files_only: bool = Field(default=False, alias="validateCSVFilesOnly")
    api_version: str = Field(default=DEFAULT_API_VERSION, alias="apiVersion")
    create_target_csv_files: bool = Field(default=True, alias="createTargetCSVFiles")
    import_csv_files_as_is: bool = Field(default=False, alias="importCSVFilesAsIs")
    always_use_rest_api_to_update_records: bool = Field(
        default=False, alias="alwaysUseRestApiToUpdateRecords"
    )
    force_bulk_api: bool = Field(default=False, alias="forceBulkApi")
    simulation_mode: bool = Field(default=False, alias="simulationMode")

    @property
    def bulk_api_major_version(self) -> int:
        try:
            return int(float(self.bulk_api_version))
        except ValueError:
            return 2


def load_plan_document(path: Path) -> PlanDocument:
    """Load and validate a plan document.

    Args:
        path: Path to the JSON plan.

    Returns:
        Parsed ``PlanDocument``.

    Raises:
        FileNotFoundError: If the file does not exist.
        InitializationError: If the file is not valid JSON or does not
            match the plan schema.
    """
    if not path.exists():
        raise FileNotFoundError(f"Plan file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return PlanDocument.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise InitializationError(f"Invalid plan file {path.name}: {e}") from e
