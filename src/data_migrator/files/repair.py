"""Validation and repair of source CSV files.

Source CSV files are often exported by hand and miss columns the job
needs. Before retrieval the job:

1. validates each file (empty file, missing update columns);
2. adds a missing ``Id`` column with placeholder ids, clearing the
   lookup columns of child files that pointed at the old ids;
3. fills a missing lookup column from its business-key companion
   (``Account.Name`` -> ``AccountId``) or the companion from the lookup.

Problems that cannot be repaired become ``CsvIssueRow``s.
"""

import logging
from typing import TYPE_CHECKING

from data_migrator.constants import ID_FIELD
from data_migrator.engine.reports import CsvIssueRow
from data_migrator.engine.task import Task, TaskField
from data_migrator.files.value_mapping import ValueMapping, apply_value_mapping
from data_migrator.plan.entry import query_columns

if TYPE_CHECKING:
    from data_migrator.endpoints.files import FileEndpoint

logger = logging.getLogger(__name__)

EMPTY_FILE_ERROR = "csv file is empty"
MISSING_COLUMN_ERROR = "columns missing"
MISSING_PARENT_ERROR = "parent record is missing"


async def validate_csv_file(task: Task, endpoint: "FileEndpoint") -> list[CsvIssueRow]:
    """Report an empty file or missing update columns for one task."""
    if task.entry.is_extra_object:
        return []

    path = endpoint.file_path(task.name)
    rows = await endpoint.cache.read(path)
    if not rows:
        return [CsvIssueRow(child_sobject=task.name, error=EMPTY_FILE_ERROR)]

    columns = endpoint.cache.columns(path)
    issues: list[CsvIssueRow] = []
    for task_field in task.fields:
        if task_field.name not in task.update_field_names or task_field.name in columns:
            continue
        if task_field.is_reference and all(
            c in columns for c in query_columns(task_field.companion)
        ):
            continue
        issues.append(
            CsvIssueRow(
                child_sobject=task.name,
                child_field=task_field.name,
                error=MISSING_COLUMN_ERROR,
            )
        )
    return issues


async def apply_file_value_mapping(
    task: Task, endpoint: "FileEndpoint", mapping: ValueMapping
) -> None:
    if not task.entry.use_values_mapping or not mapping:
        return
    path = endpoint.file_path(task.name)
    rows = await endpoint.cache.read(path)
    changed = apply_value_mapping(rows, task.name, mapping)
    if changed:
        logger.info(f"{task.name}: {changed} values replaced from the value mapping")
        endpoint.cache.mark_dirty(path)


async def add_missing_id_column(
    task: Task, endpoint: "FileEndpoint", task_table: dict[str, Task]
) -> None:
    """Give every row of a file without an ``Id`` column a placeholder id.

    Lookups in child files that pointed at this object are cleared so
    they are rebuilt from their business-key companions.
    """
    path = endpoint.file_path(task.name)
    rows = await endpoint.cache.read(path)
    if not rows or ID_FIELD in endpoint.cache.columns(path):
        return

    for row in rows:
        row[ID_FIELD] = endpoint.cache.next_id()
    endpoint.cache.mark_dirty(path)
    logger.info(f"{task.name}: added missing {ID_FIELD} column")

    for child_name in task.entry.child_objects:
        child = task_table.get(child_name)
        if child is None:
            continue
        child_path = endpoint.file_path(child.name)
        child_rows = await endpoint.cache.read(child_path)
        child_columns = endpoint.cache.columns(child_path)
        for child_field in child.reference_fields:
            if child_field.parent_object != task.name:
                continue
            if not all(c in child_columns for c in query_columns(child_field.companion)):
                continue
            for row in child_rows:
                row[child_field.name] = None
            endpoint.cache.mark_dirty(child_path)


async def repair_lookup_columns(
    task: Task, endpoint: "FileEndpoint", task_table: dict[str, Task]
) -> list[CsvIssueRow]:
    """Fill lookup and companion columns of one task's file."""
    path = endpoint.file_path(task.name)
    rows = await endpoint.cache.read(path)
    if not rows:
        return []

    columns = endpoint.cache.columns(path)
    issues: list[CsvIssueRow] = []
    changed = False

    for task_field in task.reference_fields:
        parent = task_table[task_field.parent_object]
        parent_rows = await endpoint.cache.read(endpoint.file_path(parent.name))
        companion_columns = query_columns(task_field.companion)

        if all(c in columns for c in companion_columns):
            changed |= _fill_lookup_from_companion(task, task_field, parent, rows, parent_rows, issues)
        elif task_field.name in columns:
            changed |= _fill_companion_from_lookup(task, task_field, parent, rows, parent_rows, issues)

    if changed:
        endpoint.cache.mark_dirty(path)
    return issues


def _fill_lookup_from_companion(
    task: Task,
    task_field: TaskField,
    parent: Task,
    rows: list[dict],
    parent_rows: list[dict],
    issues: list[CsvIssueRow],
) -> bool:
    parent_by_key = {}
    for parent_row in parent_rows:
        key = parent.record_key(parent_row)
        if key is not None:
            parent_by_key[key] = parent_row

    changed = False
    for row in rows:
        if row.get(task_field.name) not in (None, ""):
            continue
        key = task.lookup_key(task_field, row)
        if key is None:
            continue
        parent_row = parent_by_key.get(key)
        if parent_row is not None:
            row[task_field.name] = parent_row.get(ID_FIELD)
            changed = True
            continue
        row.setdefault(task_field.name, None)
        issues.append(
            CsvIssueRow(
                child_sobject=task.name,
                child_field=task_field.companion,
                child_value=key,
                parent_sobject=parent.name,
                parent_field=parent.entry.external_id,
                error=MISSING_PARENT_ERROR,
            )
        )
    return changed


def _fill_companion_from_lookup(
    task: Task,
    task_field: TaskField,
    parent: Task,
    rows: list[dict],
    parent_rows: list[dict],
    issues: list[CsvIssueRow],
) -> bool:
    parent_by_id = {str(r.get(ID_FIELD)): r for r in parent_rows if r.get(ID_FIELD)}
    companion_columns = query_columns(task_field.companion)
    parent_columns = query_columns(parent.entry.external_id)

    changed = False
    for row in rows:
        value = row.get(task_field.name)
        if value in (None, ""):
            continue
        parent_row = parent_by_id.get(str(value))
        if parent_row is None:
            issues.append(
                CsvIssueRow(
                    child_sobject=task.name,
                    child_field=task_field.name,
                    child_value=str(value),
                    parent_sobject=parent.name,
                    parent_field=ID_FIELD,
                    error=MISSING_PARENT_ERROR,
                )
            )
            continue
        for child_column, parent_column in zip(companion_columns, parent_columns):
            row[child_column] = parent_row.get(parent_column)
        changed = True
    return changed
