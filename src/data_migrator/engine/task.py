"""Tasks: the per-object unit of work of a job.

A ``Task`` owns the source and target record sets of one Object Plan
Entry plus its field classification. Tasks never point at each other or
at the job: parents are referred to by object name and looked up in the
job's task table.
"""

from dataclasses import dataclass, field

from data_migrator.constants import (
    ID_FIELD,
    RECORD_TYPE_OBJECT,
    RECORD_TYPE_SOBJECT_FIELD,
)
from data_migrator.engine.records import RecordSet
from data_migrator.plan.entry import ObjectPlanEntry, query_columns
from data_migrator.plan.fields import FieldDescriptor, companion_field_name
from data_migrator.plan.mapping import FieldMapping
from data_migrator.plan.models import Operation
from data_migrator.plan.query import Query


def field_value(row: dict, name: str) -> str | None:
    """Value of a (possibly composite) field as text.

    Composite fields join their parts with ``;``. ``None`` when every
    part is empty.
    """
    columns = query_columns(name)
    if len(columns) == 1:
        value = row.get(columns[0])
        return None if value in (None, "") else str(value)
    values = [row.get(c) for c in columns]
    if all(v in (None, "") for v in values):
        return None
    return ";".join("" if v is None else str(v) for v in values)


@dataclass
class TaskField:
    """One field of a task, classified once the task order is final."""

    name: str
    descriptor: FieldDescriptor
    owner: str
    parent_object: str | None = None
    parent_external_id: str | None = None
    companion: str | None = None
    is_parent_task_before: bool = False

    @property
    def is_reference(self) -> bool:
        return self.parent_object is not None

    @property
    def is_self_reference(self) -> bool:
        return self.parent_object == self.owner

    @property
    def is_forward(self) -> bool:
        """Resolvable on the first commit pass."""
        return self.is_reference and self.is_parent_task_before

    @property
    def is_backward(self) -> bool:
        """Resolvable only after the parent has been committed."""
        return self.is_reference and not self.is_parent_task_before


@dataclass
class Task:
    """Runtime state of one object during a job."""

    entry: ObjectPlanEntry
    index: int = 0
    fields: list[TaskField] = field(default_factory=list)
    source: RecordSet = field(default_factory=RecordSet)
    target: RecordSet = field(default_factory=RecordSet)
    source_total: int = 0
    target_total: int = 0
    source_use_bulk_query: bool = False
    target_use_bulk_query: bool = False
    source_to_target: dict[str, dict] = field(default_factory=dict)
    filtered_value_cache: dict[str, set[str]] = field(default_factory=dict)
    processed: dict[str, int] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.entry.name

    @property
    def operation(self) -> Operation:
        return self.entry.operation

    @property
    def target_name(self) -> str:
        return self.entry.target_name

    @property
    def mapping(self) -> FieldMapping:
        return self.entry.mapping or FieldMapping(self.name)

    def __repr__(self) -> str:
        return f"Task({self.name}, index={self.index})"

    # ------------------------------------------------------------------
    # Field classification
    # ------------------------------------------------------------------

    def freeze(self, task_index: dict[str, int]) -> None:
        """Build task fields from the entry and the final task order."""
        self.fields = []
        for descriptor in self.entry.fields.values():
            task_field = TaskField(
                name=descriptor.name, descriptor=descriptor, owner=self.name
            )
            parent_name = self.entry.reference_parents.get(descriptor.name)
            if parent_name is not None:
                parent = self.entry.dependencies[parent_name]
                task_field.parent_object = parent_name
                task_field.parent_external_id = parent.external_id
                task_field.companion = companion_field_name(
                    descriptor.name, parent.external_id
                )
                task_field.is_parent_task_before = (
                    task_index[parent_name] < task_index[self.name]
                )
            self.fields.append(task_field)

    @property
    def reference_fields(self) -> list[TaskField]:
        return [f for f in self.fields if f.is_reference]

    @property
    def self_reference_fields(self) -> list[TaskField]:
        return [f for f in self.fields if f.is_reference and f.is_self_reference]

    @property
    def update_field_names(self) -> set[str]:
        return {f.name for f in self.entry.fields_to_update}

    @property
    def simple_update_fields(self) -> list[str]:
        return [
            f.name
            for f in self.entry.fields_to_update
            if f.name not in self.entry.reference_parents
        ]

    @property
    def forward_update_fields(self) -> list[TaskField]:
        names = self.update_field_names
        return [f for f in self.fields if f.is_forward and f.name in names]

    @property
    def backward_update_fields(self) -> list[TaskField]:
        names = self.update_field_names
        return [f for f in self.fields if f.is_backward and f.name in names]

    # ------------------------------------------------------------------
    # Business keys
    # ------------------------------------------------------------------

    def record_key(self, row: dict) -> str | None:
        """Business-key value of a row of this object.

        RecordType rows are keyed ``<SobjectType>;<DeveloperName>``
        because developer names repeat across object types.
        """
        value = field_value(row, self.entry.external_id)
        if value is None:
            return None
        if self.name == RECORD_TYPE_OBJECT and self.entry.external_id != ID_FIELD:
            return f"{row.get(RECORD_TYPE_SOBJECT_FIELD)};{value}"
        return value

    def lookup_key(self, task_field: TaskField, row: dict) -> str | None:
        """Key to look ``row``'s parent up in the parent's ExtIdMap."""
        value = field_value(row, task_field.companion) if task_field.companion else None
        if value is None:
            return None
        if task_field.parent_object == RECORD_TYPE_OBJECT and task_field.parent_external_id != ID_FIELD:
            return f"{self.name};{value}"
        return value

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def query_fields(self) -> list[str]:
        return list(self.entry.query.fields)

    def create_query(self, fields: list[str] | None = None, remove_limits: bool = False) -> Query:
        query = self.entry.query.copy()
        if fields is not None:
            query.fields = list(fields)
        if remove_limits:
            query = query.without_limits()
        return query

    def create_count_query(self) -> Query:
        return self.entry.query.to_count()

    def create_target_query(self, query: Query) -> Query:
        """``query`` translated to the target's object and field names."""
        return self.mapping.to_target_query(query)

    def create_delete_query(self) -> Query:
        if self.entry.delete_query is not None:
            return self.entry.delete_query.copy()
        return self.entry.query.copy(fields=[ID_FIELD])
