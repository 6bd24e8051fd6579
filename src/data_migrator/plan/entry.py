"""Object Plan Entries.

An ``ObjectPlanEntry`` is the resolved form of one ``ObjectConfig``:
parsed query, normalised operation and business key, and (after the
describe step) the field descriptors and parent entries it depends on.

Entries are mutated only while the plan is built. Once the job is set
up they are shared read-only between the job and its tasks.
"""

import logging
from dataclasses import dataclass, field

from data_migrator.constants import (
    COMPLEX_FIELD_SEPARATOR,
    ID_FIELD,
    PERSON_ACCOUNT_FLAG,
    SPECIAL_OBJECTS,
)
from data_migrator.errors import InitializationError, MetadataError
from data_migrator.plan.fields import (
    FieldDescriptor,
    ObjectDescribe,
    complex_field_parts,
    is_complex_field,
)
from data_migrator.plan.mapping import FieldMapping
from data_migrator.plan.models import MockField, ObjectConfig, Operation
from data_migrator.plan.query import Query, QueryParseError, compose_where, distinct_fields, parse_query

logger = logging.getLogger(__name__)


def query_columns(field_name: str) -> list[str]:
    """Columns to select for a (possibly composite) field name."""
    if COMPLEX_FIELD_SEPARATOR in field_name or field_name.startswith("$$"):
        return complex_field_parts(field_name)
    return [field_name]


@dataclass
class ObjectPlanEntry:
    """One object of the plan, resolved against endpoint metadata.

    Example:
        entry = ObjectPlanEntry(ObjectConfig(query="SELECT Name FROM Account"))
        entry.setup()
        entry.query.fields
        # ['Id', 'Name']
    """

    config: ObjectConfig
    is_extra_object: bool = False

    name: str = ""
    query: Query | None = None
    delete_query: Query | None = None
    operation: Operation = Operation.READONLY
    external_id: str = ""
    original_external_id: str = ""
    delete_old_data: bool = False
    all_records: bool = True
    mapping: FieldMapping | None = None

    # Filled in by the job when tasks are ordered
    process_all_source: bool = False
    process_all_target: bool = False

    # Filled in by the describe step
    describe: ObjectDescribe | None = None
    fields: dict[str, FieldDescriptor] = field(default_factory=dict)
    reference_parents: dict[str, str] = field(default_factory=dict)
    dependencies: dict[str, "ObjectPlanEntry"] = field(default_factory=dict)
    child_objects: list[str] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup(self, person_accounts: bool = False) -> None:
        """Parse the query and normalise operation, key and field list.

        Args:
            person_accounts: Whether the source endpoint has person
                accounts enabled (affects the Contact delete query).

        Raises:
            InitializationError: If the query cannot be parsed.
        """
        try:
            self.query = parse_query(self.config.query)
        except QueryParseError as e:
            raise InitializationError(
                f"Malformed query '{self.config.query}': {e}"
            ) from e

        self.name = self.query.object_name
        self.operation = Operation.parse(self.config.operation)
        self.original_external_id = self.config.external_id
        self.external_id = self.config.external_id
        self.delete_old_data = self.config.delete_old_data
        self.all_records = self.config.all_records
        self.mapping = FieldMapping(
            self.name, self.config.field_mapping if self.config.use_field_mapping else []
        )

        if self.operation == Operation.INSERT:
            self.external_id = ID_FIELD

        if self.operation == Operation.DELETE:
            self.delete_old_data = True
            self.query.fields = [ID_FIELD]
        else:
            self.query.fields = distinct_fields(
                [ID_FIELD]
                + self.query.fields
                + query_columns(self.external_id)
                + query_columns(self.original_external_id)
            )

        if self.delete_old_data:
            self.delete_query = self._build_delete_query(person_accounts)

    def _build_delete_query(self, person_accounts: bool) -> Query:
        if self.config.delete_query:
            try:
                query = parse_query(self.config.delete_query)
            except QueryParseError as e:
                raise InitializationError(
                    f"Malformed delete query '{self.config.delete_query}': {e}"
                ) from e
        else:
            query = self.query.copy()
        query = query.copy(fields=[ID_FIELD])
        if self.name == "Contact" and person_accounts:
            query.where = compose_where(query.where, PERSON_ACCOUNT_FLAG, [False], "=")
        return query

    # ------------------------------------------------------------------
    # Describe
    # ------------------------------------------------------------------

    def apply_describe(self, describe: ObjectDescribe) -> None:
        """Validate query fields against ``describe`` and keep descriptors.

        Fields missing from the describe are dropped with a warning,
        except the business key which must exist.

        Raises:
            MetadataError: If the business key is not a field of the object.
        """
        self.describe = describe

        if not (self.is_extra_object or self.is_special_object):
            key_columns = set(query_columns(self.external_id))
            original_columns = set(query_columns(self.original_external_id)) - key_columns
            for name in list(self.query.fields):
                if is_complex_field(name) or describe.get_field(name):
                    continue
                if name in key_columns:
                    raise MetadataError(
                        f"External id field {name} does not exist in {self.name}",
                        object_name=self.name,
                        field_name=name,
                    )
                if name in original_columns:
                    # Insert replaced the declared key with Id
                    logger.warning(
                        f"External id field {self.name}.{name} does not exist; "
                        f"{self.external_id} is used"
                    )
                    self.original_external_id = self.external_id
                else:
                    logger.warning(
                        f"Field {self.name}.{name} does not exist and is removed from the query"
                    )
                self.query.fields.remove(name)

        self.fields = {}
        for name in self.query.fields:
            descriptor = describe.get_field(name)
            if descriptor is not None:
                self.fields[descriptor.name] = descriptor

    def add_query_fields(self, names: list[str]) -> None:
        self.query.fields = distinct_fields(self.query.fields + names)

    def add_dependency(self, field_name: str, parent: "ObjectPlanEntry") -> None:
        self.reference_parents[field_name] = parent.name
        self.dependencies[parent.name] = parent
        if self.name not in parent.child_objects and parent.name != self.name:
            parent.child_objects.append(self.name)

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def mock_fields(self) -> list[MockField]:
        return self.config.mock_fields if self.config.update_with_mock_data else []

    @property
    def use_values_mapping(self) -> bool:
        return self.config.use_csv_values_mapping

    @property
    def target_name(self) -> str:
        """Object name in the target, after field mapping."""
        return self.mapping.target_object if self.mapping else self.name

    @property
    def is_readonly_object(self) -> bool:
        return self.operation in (Operation.READONLY, Operation.DELETE)

    @property
    def is_special_object(self) -> bool:
        return self.name in SPECIAL_OBJECTS

    @property
    def is_limited_query(self) -> bool:
        return self.query is not None and self.query.is_limited

    @property
    def has_complex_external_id(self) -> bool:
        return is_complex_field(self.external_id)

    @property
    def has_autonumber_external_id(self) -> bool:
        if self.external_id == ID_FIELD:
            return True
        descriptor = self.fields.get(self.external_id)
        return bool(descriptor and descriptor.auto_number)

    @property
    def fields_to_update(self) -> list[FieldDescriptor]:
        """Writable query fields. Empty for Readonly entries."""
        if self.operation == Operation.READONLY or self.query is None:
            return []
        result = []
        for name in self.query.fields:
            descriptor = self.fields.get(name)
            if descriptor is None or descriptor.is_readonly or descriptor.name == ID_FIELD:
                continue
            result.append(descriptor)
        return result

    @property
    def reference_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields.values() if f.name in self.reference_parents]

    @property
    def parent_lookup_objects(self) -> list[str]:
        return list(dict.fromkeys(self.reference_parents.values()))

    @property
    def parent_master_detail_objects(self) -> list[str]:
        names = [
            self.reference_parents[f.name]
            for f in self.reference_fields
            if f.is_master_detail
        ]
        return list(dict.fromkeys(names))

    @property
    def has_parent_lookup_objects(self) -> bool:
        return bool(self.reference_parents)

    @property
    def has_child_lookup_objects(self) -> bool:
        return bool(self.child_objects)

    @property
    def is_object_without_relationships(self) -> bool:
        return not self.has_parent_lookup_objects and not self.has_child_lookup_objects
