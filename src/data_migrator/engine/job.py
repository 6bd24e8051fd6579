"""Job: ordering, retrieval, remapping and commit of a whole plan.

A ``Job`` owns one ``Task`` per Object Plan Entry and runs the phases of
a migration in order:

1. ``process_csv_files``: validate and repair a CSV source.
2. ``delete_old_records``: delete target rows of flagged objects.
3. ``count_records``: size each object and pick bulk queries.
4. ``retrieve_records``: two-pass source retrieval, then the target.
5. ``update_records``: forward commit with remapped references, then
   a backward update for references to later (or the same) objects.

Tasks never point at each other; every cross-task lookup goes through
``task_by_name``.

Usage:
    entries = await build_plan(document, source, target)
    job = Job(document, source, target, base_path, prompt=StaticPrompt(True))
    job.setup(entries)
    await job.run()
"""

import asyncio
import logging
from pathlib import Path

from data_migrator.api.base import EngineOptions, ProgressInfo
from data_migrator.api.factory import EngineType, resolve_engine_type
from data_migrator.config.models import RunSettings
from data_migrator.constants import (
    CSV_ISSUES_REPORT_FILENAME,
    DEFAULT_BULK_API_V2_BATCH_SIZE,
    ERRORS_FIELD,
    ID_FIELD,
    MASTER_DETAIL_ORDER_ITERATIONS,
    MISSING_PARENT_REPORT_FILENAME,
    PERSON_ACCOUNT_FLAG,
    PERSON_ACCOUNT_OBJECTS,
    QUERY_BULK_API_THRESHOLD,
    RECORD_TYPE_OBJECT,
    SOURCE_BACKWARD_PASSES,
    TARGET_DIRECTORY_NAME,
    TEMP_ID_FIELD,
    VALUE_MAPPING_FILENAME,
)
from data_migrator.endpoints.base import DataEndpoint
from data_migrator.engine.mock import MockGenerator, MockState
from data_migrator.engine.prompts import ConsolePrompt, Prompt, abort_with_prompt
from data_migrator.engine.records import RecordSet, record_id
from data_migrator.engine.reports import CsvIssueRow, MissingParentLookupRow, ReportWriter
from data_migrator.engine.task import Task, TaskField, field_value
from data_migrator.errors import CommitError, MigrationError, SuccessExit, UserAbortError
from data_migrator.files.cache import CsvCache
from data_migrator.files.codec import canonical_row, write_csv
from data_migrator.files.repair import (
    add_missing_id_column,
    apply_file_value_mapping,
    repair_lookup_columns,
    validate_csv_file,
)
from data_migrator.files.value_mapping import ValueMapping, load_value_mapping
from data_migrator.plan.entry import ObjectPlanEntry, query_columns
from data_migrator.plan.models import Operation, PlanDocument
from data_migrator.plan.query import Query, create_field_in_queries

logger = logging.getLogger(__name__)


def order_tasks(tasks: list[Task]) -> list[Task]:
    """Execution order of tasks given in declared order.

    RecordType goes first. Every other task is placed before the first
    task that looks it up, then master-detail parents are moved in front
    of their children (bounded number of passes).

    Example:
        >>> [t.name for t in order_tasks(tasks)]
        ['RecordType', 'Account', 'Contact']
    """
    ordered: list[Task] = []
    for task in tasks:
        if task.name == RECORD_TYPE_OBJECT:
            ordered.insert(0, task)
            continue
        position = next(
            (
                i
                for i, other in enumerate(ordered)
                if task.name in other.entry.parent_lookup_objects
            ),
            None,
        )
        if position is None:
            ordered.append(task)
        else:
            ordered.insert(position, task)

    for _ in range(MASTER_DETAIL_ORDER_ITERATIONS):
        moved = False
        for left in list(ordered):
            for parent_name in left.entry.parent_master_detail_objects:
                if parent_name == left.name:
                    continue
                left_index = ordered.index(left)
                right_index = next(
                    (i for i, t in enumerate(ordered) if t.name == parent_name), None
                )
                if right_index is not None and right_index > left_index:
                    ordered.insert(left_index, ordered.pop(right_index))
                    moved = True
        if not moved:
            break

    record_types = [t for t in ordered if t.name == RECORD_TYPE_OBJECT]
    return record_types + [t for t in ordered if t.name != RECORD_TYPE_OBJECT]


class Job:
    """One migration run over a plan.

    Args:
        document: Plan document with run settings.
        source: Endpoint rows are read from.
        target: Endpoint rows are written to.
        base_path: Directory of the plan; reports are written here.
        prompt: Confirmation prompt; defaults to the console.
        cache: CSV cache shared with file endpoints.
        settings: migrate.toml run settings.
        mock_seed: Seed for mock data, for reproducible runs.
    """

    def __init__(
        self,
        document: PlanDocument,
        source: DataEndpoint,
        target: DataEndpoint,
        base_path: Path,
        prompt: Prompt | None = None,
        cache: CsvCache | None = None,
        settings: RunSettings | None = None,
        mock_seed: int | None = None,
    ) -> None:
        self.document = document
        self.source = source
        self.target = target
        self.base_path = base_path
        self.prompt = prompt or ConsolePrompt()
        self.settings = settings or RunSettings()
        self.csv_cache = cache or getattr(source, "cache", None) or CsvCache()
        self.reports = ReportWriter(base_path)
        self.mock_seed = mock_seed

        self.tasks: list[Task] = []
        self.query_tasks: list[Task] = []
        self.delete_tasks: list[Task] = []
        self.task_by_name: dict[str, Task] = {}
        self.value_mapping: ValueMapping = {}
        self.csv_issues: list[CsvIssueRow] = []
        self.missing_parent_lookups: list[MissingParentLookupRow] = []

        self.current_phase: str | None = None
        self.current_object: str | None = None
        self._missing_parent_prompted = False
        self._batch_error_lock = asyncio.Lock()
        self._batch_error_aborted = False
        self._semaphore = asyncio.Semaphore(max(1, self.settings.max_parallel_requests))

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup(self, entries: list[ObjectPlanEntry]) -> None:
        """Create tasks and compute execution, query and delete orders."""
        self.tasks = order_tasks([Task(entry) for entry in entries])
        self.task_by_name = {task.name: task for task in self.tasks}

        for task in self.tasks:
            entry = task.entry
            entry.process_all_source = (
                entry.all_records
                or entry.is_special_object
                or entry.is_object_without_relationships
            )
            entry.process_all_target = (
                entry.process_all_source
                or entry.has_complex_external_id
                or entry.has_autonumber_external_id
            )

        first = [t for t in self.tasks if t.entry.all_records or t.entry.is_limited_query]
        self.query_tasks = first + [t for t in self.tasks if t not in first]
        self.delete_tasks = list(reversed(self.tasks))

        task_index = {task.name: i for i, task in enumerate(self.tasks)}
        for task in self.tasks:
            task.index = task_index[task.name]
            task.freeze(task_index)

        logger.info(f"Execution order: {', '.join(t.name for t in self.tasks)}")
        logger.info(f"Query order: {', '.join(t.name for t in self.query_tasks)}")
        logger.info(f"Delete order: {', '.join(t.name for t in self.delete_tasks)}")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run every phase.

        Raises:
            MigrationError: With ``phase`` and ``object_name`` set to
                where the run stopped. Cache and reports are flushed first.
            SuccessExit: After a validate-only CSV pass.
        """
        phases = [
            ("csv", self.process_csv_files),
            ("delete", self.delete_old_records),
            ("count", self.count_records),
            ("retrieve", self.retrieve_records),
            ("update", self.update_records),
        ]
        for phase, step in phases:
            self.current_phase = phase
            self.current_object = None
            try:
                await step()
            except MigrationError as e:
                if e.phase is None:
                    e.phase = phase
                if e.object_name is None:
                    e.object_name = self.current_object
                await self.flush()
                raise
        self.current_object = None
        await self.flush()

    async def flush(self) -> None:
        """Write dirty CSV files and buffered reports."""
        await self.csv_cache.flush()
        self.reports.save(MISSING_PARENT_REPORT_FILENAME, self.missing_parent_lookups)

    # ------------------------------------------------------------------
    # CSV source processing
    # ------------------------------------------------------------------

    async def process_csv_files(self) -> None:
        """Validate, repair and report on a CSV source."""
        if self.source.kind != "file" or self.document.import_csv_files_as_is:
            return

        logger.info("Processing source CSV files")
        self.value_mapping = load_value_mapping(self.source.directory / VALUE_MAPPING_FILENAME)

        issues: list[CsvIssueRow] = []
        for task in self.tasks:
            self.current_object = task.name
            issues.extend(await validate_csv_file(task, self.source))
        for task in self.tasks:
            self.current_object = task.name
            await apply_file_value_mapping(task, self.source, self.value_mapping)
        for task in self.tasks:
            self.current_object = task.name
            await add_missing_id_column(task, self.source, self.task_by_name)
        for task in self.tasks:
            self.current_object = task.name
            issues.extend(await repair_lookup_columns(task, self.source, self.task_by_name))
        self.current_object = None

        self.csv_issues.extend(issues)
        await self.csv_cache.flush()
        self.reports.save(CSV_ISSUES_REPORT_FILENAME, self.csv_issues, always_create=True)

        if issues:
            logger.warning(f"{len(issues)} issues found in source CSV files")
            await abort_with_prompt(
                self.prompt,
                f"{len(issues)} issues were found in the source CSV files "
                f"(see {CSV_ISSUES_REPORT_FILENAME}).",
                self.document.prompt_on_issues_in_csv_files,
                self.flush,
            )
        else:
            logger.info("No issues found in source CSV files")

        if self.document.validate_csv_files_only:
            raise SuccessExit("Source CSV files validated")

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_old_records(self) -> None:
        """Delete target rows of objects flagged ``delete_old_data``."""
        if self.target.kind == "file":
            return

        for task in self.delete_tasks:
            if not task.entry.delete_old_data or task.operation == Operation.READONLY:
                continue
            self.current_object = task.name
            rows = await self.target.query(task.create_target_query(task.create_delete_query()))
            records = [{ID_FIELD: r[ID_FIELD]} for r in rows if r.get(ID_FIELD) not in (None, "")]
            if not records:
                logger.info(f"{task.name}: no target records to delete")
                continue
            results = await self._execute(task, records, Operation.DELETE)
            failed = sum(1 for r in results if r.get(ERRORS_FIELD))
            task.processed["deleted"] = len(results) - failed
            logger.info(f"{task.name}: {len(results) - failed} target records deleted")

    # ------------------------------------------------------------------
    # Count
    # ------------------------------------------------------------------

    async def count_records(self) -> None:
        """Count source and target rows and choose bulk queries."""
        for task in self.tasks:
            self.current_object = task.name
            limit = task.entry.query.limit

            if self.source.kind != "file" and task.operation != Operation.DELETE:
                total = await self.source.count(task.create_count_query())
                task.source_total = min(total, limit) if limit else total
                task.source_use_bulk_query = (
                    self.source.supports_bulk and task.source_total > QUERY_BULK_API_THRESHOLD
                )

            if self.target.kind != "file" and task.operation not in (
                Operation.INSERT,
                Operation.DELETE,
            ):
                total = await self.target.count(
                    task.create_target_query(task.create_count_query())
                )
                task.target_total = min(total, limit) if limit else total
                task.target_use_bulk_query = (
                    self.target.supports_bulk and task.target_total > QUERY_BULK_API_THRESHOLD
                )

            logger.info(
                f"{task.name}: {task.source_total} source and "
                f"{task.target_total} target records"
            )

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    async def retrieve_records(self) -> None:
        """Fetch source rows in two passes, then matching target rows."""
        logger.info("Retrieving source records (forward pass)")
        for task in self.query_tasks:
            if task.operation == Operation.DELETE:
                continue
            self.current_object = task.name
            added = await self._retrieve_source_forward(task)
            logger.info(f"{task.name}: {added} source records retrieved")

        if self.source.kind != "file":
            for i in range(SOURCE_BACKWARD_PASSES):
                logger.info(f"Retrieving source records (backward pass {i + 1})")
                for task in reversed(self.query_tasks):
                    if task.operation == Operation.DELETE or task.entry.process_all_source:
                        continue
                    self.current_object = task.name
                    added = await self._retrieve_source_backward(task)
                    if added:
                        logger.info(f"{task.name}: {added} more source records retrieved")

            for i in range(SOURCE_BACKWARD_PASSES):
                logger.info(f"Retrieving referenced parent records (pass {i + 1})")
                for task in self.query_tasks:
                    if task.operation == Operation.DELETE or task.entry.process_all_source:
                        continue
                    if not task.entry.has_child_lookup_objects:
                        continue
                    self.current_object = task.name
                    added = await self._retrieve_source_referenced(task)
                    if added:
                        logger.info(f"{task.name}: {added} referenced records retrieved")

        self.current_object = None
        self._patch_companions("source")

        if self.target.kind != "file":
            logger.info("Retrieving target records")
            for task in self.query_tasks:
                if task.operation in (Operation.INSERT, Operation.DELETE):
                    continue
                self.current_object = task.name
                await self._retrieve_target(task)
            self.current_object = None
            self._patch_companions("target")

        for task in self.tasks:
            self._link_source_to_target(task)

        for task in self.tasks:
            logger.info(
                f"{task.name}: fetched {len(task.source)} source and "
                f"{len(task.target)} target records"
            )

    async def _retrieve_source_forward(self, task: Task) -> int:
        if self.source.kind == "file" or task.entry.process_all_source:
            added = await self._fetch(task, [task.create_query()])
        else:
            queries: list[Query] = []
            if task.entry.is_limited_query:
                queries.append(task.create_query())
            for task_field in task.reference_fields:
                if task_field.is_self_reference or not task_field.is_parent_task_before:
                    continue
                queries.extend(self._parent_in_queries(task, task_field))
            added = await self._fetch(task, queries)

        if self.source.kind != "file":
            added += await self._retrieve_self_references(task)
        return added

    async def _retrieve_source_backward(self, task: Task) -> int:
        queries: list[Query] = []
        for task_field in task.reference_fields:
            if task_field.is_self_reference or task_field.is_parent_task_before:
                continue
            queries.extend(self._parent_in_queries(task, task_field))
        added = await self._fetch(task, queries)
        return added + await self._retrieve_self_references(task)

    async def _retrieve_source_referenced(self, task: Task) -> int:
        """Fetch rows of ``task`` referenced by already fetched child rows."""
        values: list[str] = []
        for child_name in task.entry.child_objects:
            child = self.task_by_name.get(child_name)
            if child is None:
                continue
            for task_field in child.reference_fields:
                if task_field.parent_object != task.name:
                    continue
                values.extend(self._missing_values(child.source, task_field.name, task.source))
        queries = self._in_queries(task, ID_FIELD, values)
        return await self._fetch(task, queries)

    async def _retrieve_self_references(self, task: Task) -> int:
        total = 0
        while task.self_reference_fields:
            values: list[str] = []
            for task_field in task.self_reference_fields:
                values.extend(self._missing_values(task.source, task_field.name, task.source))
            queries = self._in_queries(task, ID_FIELD, values)
            if not queries:
                break
            added = await self._fetch(task, queries)
            total += added
            if not added:
                break
        return total

    def _parent_in_queries(self, task: Task, task_field: TaskField) -> list[Query]:
        """``<fk> IN (parent source ids)`` queries for one reference."""
        parent = self.task_by_name[task_field.parent_object]
        if parent.name == RECORD_TYPE_OBJECT:
            return []
        if parent.entry.all_records and not parent.entry.is_limited_query:
            return []
        return self._in_queries(task, task_field.name, parent.source.ids())

    def _in_queries(self, task: Task, field_name: str, values: list[str]) -> list[Query]:
        """IN queries for values not already queried on this field."""
        seen = task.filtered_value_cache.setdefault(field_name, set())
        new_values = [v for v in dict.fromkeys(values) if v not in seen]
        seen.update(new_values)
        return create_field_in_queries(task.query_fields, field_name, task.name, new_values)

    @staticmethod
    def _missing_values(rows: RecordSet, field_name: str, lookup: RecordSet) -> list[str]:
        values = []
        for row in rows.main:
            value = row.get(field_name)
            if value in (None, "") or str(value) in lookup.by_id:
                continue
            values.append(str(value))
        return values

    async def _fetch(self, task: Task, queries: list[Query]) -> int:
        rows = await self._query_many(self.source, queries, task.source_use_bulk_query)
        return task.source.add_records(rows, task.record_key)

    async def _query_many(
        self, endpoint: DataEndpoint, queries: list[Query], use_bulk: bool
    ) -> list[dict]:
        """Run queries concurrently and concatenate their rows."""
        if not queries:
            return []

        async def run(query: Query) -> list[dict]:
            async with self._semaphore:
                return await endpoint.query(query, use_bulk)

        results = await asyncio.gather(*(run(query) for query in queries))
        return [row for rows in results for row in rows]

    async def _retrieve_target(self, task: Task) -> None:
        if task.entry.process_all_target:
            queries = [task.create_query()]
        else:
            keys = [self._bare_key(task, key) for key in task.source.ext_id_map]
            queries = create_field_in_queries(
                task.query_fields, task.entry.external_id, task.name, keys
            )
        queries = [task.create_target_query(query) for query in queries]
        rows = await self._query_many(self.target, queries, task.target_use_bulk_query)
        task.target.add_records([task.mapping.to_source_row(r) for r in rows], task.record_key)

    @staticmethod
    def _bare_key(task: Task, key: str) -> str:
        """Strip the object type prefix of RecordType keys."""
        if task.name == RECORD_TYPE_OBJECT and task.entry.external_id != ID_FIELD:
            return key.split(";", 1)[-1]
        return key

    def _patch_companions(self, side: str) -> None:
        """Fill missing business-key companion columns from parent rows.

        Every ExtIdMap of that side is rebuilt afterwards.
        """
        for task in self.tasks:
            records: RecordSet = getattr(task, side)
            for task_field in task.reference_fields:
                parent_records: RecordSet = getattr(self.task_by_name[task_field.parent_object], side)
                companion_columns = query_columns(task_field.companion)
                parent_columns = query_columns(task_field.parent_external_id)
                for row in records.main:
                    if field_value(row, task_field.companion) is not None:
                        continue
                    value = row.get(task_field.name)
                    if value in (None, ""):
                        continue
                    parent_row = parent_records.by_id.get(str(value))
                    if parent_row is None:
                        continue
                    for column, parent_column in zip(companion_columns, parent_columns):
                        row[column] = parent_row.get(parent_column)
        for task in self.tasks:
            getattr(task, side).rebuild_ext_id_map(task.record_key)

    @staticmethod
    def _link_source_to_target(task: Task) -> None:
        task.source_to_target = {}
        for key, source_id in task.source.ext_id_map.items():
            target_id = task.target.ext_id_map.get(key)
            if target_id is not None:
                task.source_to_target[source_id] = task.target.by_id[target_id]

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_records(self) -> None:
        """Commit every writable task: forward step, then backward step."""
        if self.target.kind == "file":
            await self._write_target_files()
            return

        if self.document.simulation_mode:
            logger.warning("Simulation mode: nothing is written to the target")
        logger.info("Updating target (forward step)")
        for task in self.tasks:
            if task.entry.is_readonly_object:
                continue
            self.current_object = task.name
            await self._update_forward(task)

        logger.info("Updating target (backward step)")
        for task in self.tasks:
            if task.entry.is_readonly_object or not task.backward_update_fields:
                continue
            self.current_object = task.name
            await self._update_backward(task)
        self.current_object = None

        for task in self.tasks:
            if task.processed:
                summary = ", ".join(f"{k} {v}" for k, v in task.processed.items())
                logger.info(f"{task.name}: {summary}")

    async def _update_forward(self, task: Task) -> None:
        mock = MockGenerator(task.entry.mock_fields, MockState(seed=self.mock_seed))
        inserts: list[tuple[dict, dict]] = []
        updates: list[tuple[dict, dict]] = []
        skipped = 0
        unchanged = 0

        for source_row in task.source.main:
            if self._is_person_contact(task, source_row):
                continue
            payload = {
                name: source_row.get(name)
                for name in task.simple_update_fields
                if name in source_row
            }
            payload.update(await self._remap(task, source_row, task.forward_update_fields))
            mock.apply(payload, source_row)

            target_row = task.source_to_target.get(record_id(source_row))
            if task.operation == Operation.INSERT or (
                task.operation == Operation.UPSERT and target_row is None
            ):
                payload.pop(ID_FIELD, None)
                payload[TEMP_ID_FIELD] = record_id(source_row)
                inserts.append((payload, source_row))
            elif target_row is not None:
                if not self._is_changed(task, payload, target_row):
                    unchanged += 1
                    continue
                payload[ID_FIELD] = target_row[ID_FIELD]
                updates.append((payload, source_row))
            else:
                skipped += 1

        if skipped:
            logger.info(f"{task.name}: {skipped} source records have no target record to update")
        if unchanged:
            logger.info(f"{task.name}: {unchanged} target records are already up to date")

        inserted: list[dict] = []
        for batch in self._split_person_accounts(task, inserts):
            results = await self._execute(task, batch, Operation.INSERT)
            self._apply_insert_results(task, results)
            inserted.extend(results)
        self._save_target_file(task, Operation.INSERT, inserted)

        updated: list[dict] = []
        for batch in self._split_person_accounts(task, updates):
            results = await self._execute(task, batch, Operation.UPDATE)
            self._apply_update_results(task, results)
            updated.extend(results)
        self._save_target_file(task, Operation.UPDATE, updated)

    async def _update_backward(self, task: Task) -> None:
        fields = task.backward_update_fields
        updates: list[dict] = []
        for source_row in task.source.main:
            target_row = task.source_to_target.get(record_id(source_row))
            if target_row is None:
                continue
            remapped = await self._remap(task, source_row, fields)
            if remapped and self._is_changed(task, remapped, target_row):
                updates.append({ID_FIELD: target_row[ID_FIELD], **remapped})

        if not updates:
            return
        results = await self._execute(task, updates, Operation.UPDATE)
        self._apply_update_results(task, results)

    @staticmethod
    def _is_changed(task: Task, payload: dict, target_row: dict) -> bool:
        """Whether committing ``payload`` would change ``target_row``."""
        if task.entry.config.skip_records_comparison:
            return True
        fields = [name for name in payload if name not in (ID_FIELD, TEMP_ID_FIELD)]
        return canonical_row(payload, fields) != canonical_row(target_row, fields)

    async def _remap(self, task: Task, source_row: dict, fields: list[TaskField]) -> dict:
        """Target values of reference fields for one source row.

        A reference whose parent cannot be found is left out of the
        result and reported; an empty reference becomes ``None``.
        """
        payload: dict = {}
        for task_field in fields:
            value = source_row.get(task_field.name)
            key = task.lookup_key(task_field, source_row)
            if value in (None, "") and key is None:
                if task_field.name in source_row:
                    payload[task_field.name] = None
                continue

            target_id = self._resolve_parent(task_field, value, key)
            if target_id is not None:
                payload[task_field.name] = target_id
            else:
                await self._missing_parent(task, task_field, source_row, key)
        return payload

    def _resolve_parent(self, task_field: TaskField, value, key: str | None):
        parent = self.task_by_name[task_field.parent_object]
        source_ids = [str(value)] if value not in (None, "") else []
        if task_field.parent_external_id == ID_FIELD and key is not None:
            source_ids.append(key)
        for source_id in source_ids:
            target_row = parent.source_to_target.get(source_id)
            if target_row is not None and target_row.get(ID_FIELD) not in (None, ""):
                return target_row[ID_FIELD]
        if task_field.parent_external_id == ID_FIELD:
            # Source and target ids are unrelated; only linked rows resolve.
            return None
        if key is not None:
            target_id = parent.target.ext_id_map.get(key)
            if target_id is not None:
                return parent.target.by_id[target_id].get(ID_FIELD)
        return None

    async def _missing_parent(
        self, task: Task, task_field: TaskField, source_row: dict, key: str | None
    ) -> None:
        if task.name in PERSON_ACCOUNT_OBJECTS and source_row.get(PERSON_ACCOUNT_FLAG):
            return

        parent = self.task_by_name[task_field.parent_object]
        self.missing_parent_lookups.append(
            MissingParentLookupRow(
                child_record_id=record_id(source_row),
                child_external_id_field=task_field.companion or "",
                child_lookup_field=task_field.name,
                child_lookup_object=task.name,
                missing_parent_external_id_value=key,
                parent_external_id_field=parent.entry.external_id,
                parent_lookup_object=parent.name,
            )
        )

        message = (
            f"{task.name}.{task_field.name}: parent {parent.name} record "
            f"'{key or source_row.get(task_field.name)}' was not found"
        )
        if self._missing_parent_prompted:
            logger.warning(message)
            return
        self._missing_parent_prompted = True
        logger.warning(f"{message} (see {MISSING_PARENT_REPORT_FILENAME})")
        await abort_with_prompt(
            self.prompt,
            f"Missing parent records were found ({message}).",
            self.document.prompt_on_missing_parent_objects,
            self.flush,
        )

    @staticmethod
    def _is_person_contact(task: Task, source_row: dict) -> bool:
        return task.name == "Contact" and bool(source_row.get(PERSON_ACCOUNT_FLAG))

    @staticmethod
    def _split_person_accounts(task: Task, pairs: list[tuple[dict, dict]]) -> list[list[dict]]:
        """Payload batches; business and person Accounts are committed apart."""
        if task.name != "Account" or not any(PERSON_ACCOUNT_FLAG in s for _, s in pairs):
            return [[p for p, _ in pairs]] if pairs else []
        business = [p for p, s in pairs if not s.get(PERSON_ACCOUNT_FLAG)]
        person = [p for p, s in pairs if s.get(PERSON_ACCOUNT_FLAG)]
        return [batch for batch in (business, person) if batch]

    def _apply_insert_results(self, task: Task, results: list[dict]) -> None:
        failed = 0
        key_columns = query_columns(task.entry.external_id)
        for row in results:
            source_id = row.get(TEMP_ID_FIELD)
            if row.get(ERRORS_FIELD):
                failed += 1
                logger.warning(f"{task.name}: insert of {source_id} failed: {row[ERRORS_FIELD]}")
                continue
            target_row = {k: v for k, v in row.items() if k not in (ERRORS_FIELD, TEMP_ID_FIELD)}
            source_row = task.source.by_id.get(source_id) or {}
            for column in key_columns:
                if column != ID_FIELD and column not in target_row:
                    target_row[column] = source_row.get(column)
            task.target.add_records([target_row], task.record_key)
            if source_id is not None:
                task.source_to_target[source_id] = target_row
        self._count(task, "inserted", len(results) - failed)
        self._count(task, "failed", failed)

    def _apply_update_results(self, task: Task, results: list[dict]) -> None:
        failed = 0
        for row in results:
            if row.get(ERRORS_FIELD):
                failed += 1
                logger.warning(f"{task.name}: update of {row.get(ID_FIELD)} failed: {row[ERRORS_FIELD]}")
                continue
            changes = {k: v for k, v in row.items() if k not in (ERRORS_FIELD, TEMP_ID_FIELD)}
            existing = task.target.by_id.get(str(row.get(ID_FIELD))) or {}
            task.target.replace_or_append({**existing, **changes}, task.record_key)
        self._count(task, "updated", len(results) - failed)
        self._count(task, "failed", failed)

    @staticmethod
    def _count(task: Task, name: str, amount: int) -> None:
        if amount:
            task.processed[name] = task.processed.get(name, 0) + amount

    # ------------------------------------------------------------------
    # Engines
    # ------------------------------------------------------------------

    async def _execute(self, task: Task, records: list[dict], operation: Operation) -> list[dict]:
        """Commit rows through the engine chosen for their count.

        Rows go out under the target's field names and come back under
        the source's.
        """
        engine_type = resolve_engine_type(len(records), self.document, self.target.supports_bulk)
        engine = self.target.create_engine(
            engine_type, task.target_name, self._engine_options(engine_type)
        )
        logger.info(
            f"{task.name}: {operation.value} {len(records)} records "
            f"using {engine.get_engine_name()}"
        )
        results = await engine.execute_crud(
            [task.mapping.to_target_row(record) for record in records],
            operation,
            on_progress=self._on_progress,
            on_batch_error=self._on_batch_error,
        )
        return [task.mapping.to_source_row(row) for row in results]

    def _engine_options(self, engine_type: EngineType) -> EngineOptions:
        batch_size = {
            EngineType.DIRECT: self.document.rest_api_batch_size,
            EngineType.BULK_V1: self.document.bulk_api_v1_batch_size,
            EngineType.BULK_V2: DEFAULT_BULK_API_V2_BATCH_SIZE,
        }[engine_type]
        return EngineOptions(
            batch_size=batch_size,
            polling_interval_ms=self.document.polling_interval_ms,
            poll_timeout_ms=self.settings.poll_timeout_ms,
            max_parallel_batches=self.settings.max_parallel_requests,
            all_or_none=self.document.all_or_none,
            simulation_mode=self.document.simulation_mode,
        )

    @staticmethod
    def _on_progress(info: ProgressInfo) -> None:
        logger.debug(
            f"{info.object_name} [{info.engine_name}] {info.state.value} "
            f"{info.message or ''} processed={info.records_processed} failed={info.records_failed}"
        )

    async def _on_batch_error(self, error: CommitError, chunk: list[dict]) -> bool:
        """Ask whether to go on after a rejected batch.

        Parallel batches wait for one answer at a time; once the operator
        has answered no, later failures abort without asking again.
        """
        logger.error(f"{error.object_name}: batch of {len(chunk)} records failed: {error}")
        if not self.document.prompt_on_update_error:
            return False
        async with self._batch_error_lock:
            if not self._batch_error_aborted:
                if self.prompt.confirm(f"{error} Continue the job?"):
                    return True
                self._batch_error_aborted = True
                await self.flush()
        raise UserAbortError(f"Aborted by user after a failed batch: {error}", error.object_name)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def _write_target_files(self) -> None:
        for task in self.tasks:
            if task.operation == Operation.DELETE or task.entry.is_extra_object:
                continue
            self.current_object = task.name
            mock_fields = task.entry.config.mock_fields if task.entry.config.mock_csv_data else []
            mock = MockGenerator(mock_fields, MockState(seed=self.mock_seed))
            rows = [
                task.mapping.to_target_row(mock.apply(dict(row), row)) for row in task.source.main
            ]
            fields = [task.mapping.target_field(name) for name in task.query_fields]
            await self.target.write_records(task.target_name, rows, fields)
            self._count(task, "written", len(rows))
        self.current_object = None

    def _save_target_file(self, task: Task, operation: Operation, results: list[dict]) -> None:
        if not self.document.create_target_csv_files or not results:
            return
        path = (
            self.base_path
            / TARGET_DIRECTORY_NAME
            / f"{task.name}_{operation.value.lower()}_target.csv"
        )
        rows = [{k: v for k, v in row.items() if k != TEMP_ID_FIELD} for row in results]
        write_csv(path, rows)
