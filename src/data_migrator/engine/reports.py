"""Structured report rows and their CSV output.

Two reports accumulate during a run and are written once, at a phase
boundary or when the run unwinds:

- ``CSVIssuesReport.csv``: problems found while validating source CSV files;
- ``MissingParentRecordsReport.csv``: lookups whose parent record could
  not be found in the target.
"""

import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from data_migrator.files.codec import write_csv

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class _ReportRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_csv_row(self) -> dict:
        return self.model_dump(by_alias=True)


class CsvIssueRow(_ReportRow):
    """One problem found in a source CSV file."""

    date: str = Field(default_factory=_now, alias="Date")
    child_sobject: str = Field(alias="Child sObject")
    child_field: str = Field(default="", alias="Child field")
    child_value: str | None = Field(default=None, alias="Child value")
    parent_sobject: str = Field(default="", alias="Parent sObject")
    parent_field: str = Field(default="", alias="Parent field")
    parent_value: str | None = Field(default=None, alias="Parent value")
    error: str = Field(alias="Error")


class MissingParentLookupRow(_ReportRow):
    """One child row whose lookup could not be resolved in the target."""

    date_update: str = Field(default_factory=_now, alias="Date update")
    child_record_id: str | None = Field(default=None, alias="Child record Id")
    child_external_id_field: str = Field(alias="Child ExternalId field")
    child_lookup_field: str = Field(alias="Child lookup field")
    child_lookup_object: str = Field(alias="Child lookup object")
    missing_parent_external_id_value: str | None = Field(
        default=None, alias="Missing parent ExternalId value"
    )
    parent_external_id_field: str = Field(alias="Parent ExternalId field")
    parent_lookup_object: str = Field(alias="Parent lookup object")


class ReportWriter:
    """Writes report rows as CSV files under a base directory."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path

    def save(
        self, file_name: str, rows: list[_ReportRow], always_create: bool = False
    ) -> Path | None:
        """Write ``rows`` to ``<base_path>/<file_name>``.

        Returns:
            The written path, or ``None`` when there was nothing to write.
        """
        if not rows and not always_create:
            return None
        path = self.base_path / file_name
        write_csv(path, [row.to_csv_row() for row in rows], always_create=True)
        logger.info(f"Report {file_name} written with {len(rows)} rows")
        return path
