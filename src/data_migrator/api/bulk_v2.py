"""Bulk API 2.0 ingest engine.

One batch is one ingest job:

1. ``POST  /jobs/ingest``                    create the job (state Open)
2. ``PUT   /jobs/ingest/<id>/batches``       upload CSV (UploadStart)
3. ``PATCH /jobs/ingest/<id>``               ``{"state": "UploadComplete"}``
4. ``GET   /jobs/ingest/<id>``               poll until JobComplete/Failed/Aborted
5. ``GET   /jobs/ingest/<id>/successfulResults/`` and ``failedResults/``

Result files are not in upload order; rows are matched back to the
input by their uploaded CSV values.
"""

import asyncio
import logging
import time
from collections import defaultdict, deque

import httpx

from data_migrator.api.base import ApiEngineBase, EngineOptions, JobState, ProgressCallback
from data_migrator.api.rest import payload_fields
from data_migrator.constants import BULK_V2_ENGINE_NAME, ERRORS_FIELD, ID_FIELD
from data_migrator.files.codec import csv_text_to_rows, format_value, rows_to_csv_text
from data_migrator.plan.models import Operation

logger = logging.getLogger(__name__)

BULK_V2_NULL_VALUE = "#N/A"
_TERMINAL_STATES = {state.value for state in JobState if state.is_terminal}


class BulkApiV2Engine(ApiEngineBase):
    """High-throughput engine using Bulk API 2.0 ingest jobs."""

    engine_name = BULK_V2_ENGINE_NAME

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_version: str,
        object_name: str,
        options: EngineOptions | None = None,
    ) -> None:
        super().__init__(object_name, options)
        self._client = client
        self._path = f"/services/data/v{api_version}/jobs/ingest"

    async def execute_batch(
        self, chunk: list[dict], on_progress: ProgressCallback | None = None
    ) -> list[dict]:
        operation = self.operation
        columns, records = self._prepare(chunk, operation)
        null_value = "" if operation == Operation.INSERT else BULK_V2_NULL_VALUE

        try:
            response = await self._client.post(
                self._path,
                json={
                    "object": self.object_name,
                    "operation": operation.value.lower(),
                    "contentType": "CSV",
                    "lineEnding": "LF",
                },
            )
            response.raise_for_status()
            job_id = response.json()["id"]
            self._report(on_progress, JobState.OPEN, batch_id=job_id)

            self._report(on_progress, JobState.UPLOAD_START, batch_id=job_id)
            response = await self._client.put(
                f"{self._path}/{job_id}/batches",
                content=rows_to_csv_text(records, columns, null_value),
                headers={"Content-Type": "text/csv"},
            )
            response.raise_for_status()

            response = await self._client.patch(
                f"{self._path}/{job_id}", json={"state": "UploadComplete"}
            )
            response.raise_for_status()
            self._report(on_progress, JobState.UPLOAD_COMPLETE, batch_id=job_id)

            info = await self._wait_for_job(job_id, on_progress)

            successful = await self._get_results(job_id, "successfulResults")
            failed = await self._get_results(job_id, "failedResults")
        except httpx.HTTPStatusError as e:
            raise self._commit_error(
                f"Bulk job for {self.object_name} failed: "
                f"{e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise self._commit_error(f"Bulk job for {self.object_name} failed: {e}") from e

        if info.get("state") != JobState.JOB_COMPLETE.value:
            raise self._commit_error(
                f"Bulk job {job_id} for {self.object_name} ended as "
                f"{info.get('state')}: {info.get('errorMessage', '')}"
            )

        self._apply_results(chunk, records, columns, null_value, successful, failed)
        return chunk

    def _prepare(self, chunk: list[dict], operation: Operation) -> tuple[list[str], list[dict]]:
        records = []
        for row in chunk:
            if operation == Operation.DELETE:
                record = {ID_FIELD: row.get(ID_FIELD)}
            else:
                record = payload_fields(row)
                if operation == Operation.INSERT:
                    record.pop(ID_FIELD, None)
            records.append(record)
        columns = list(dict.fromkeys(key for record in records for key in record))
        return columns, records

    async def _wait_for_job(self, job_id: str, on_progress: ProgressCallback | None) -> dict:
        started = time.monotonic()
        timeout = self.options.poll_timeout_ms / 1000
        while True:
            response = await self._client.get(f"{self._path}/{job_id}")
            response.raise_for_status()
            info = response.json()
            state = info.get("state")
            if state in _TERMINAL_STATES:
                return info
            self._report(
                on_progress,
                JobState.IN_PROGRESS,
                batch_id=job_id,
                records_processed=int(info.get("numberRecordsProcessed") or 0),
                records_failed=int(info.get("numberRecordsFailed") or 0),
            )
            if time.monotonic() - started > timeout:
                raise self._commit_error(
                    f"Bulk job {job_id} for {self.object_name} timed out in state {state}"
                )
            await asyncio.sleep(self.options.polling_interval_ms / 1000)

    async def _get_results(self, job_id: str, kind: str) -> list[dict]:
        response = await self._client.get(f"{self._path}/{job_id}/{kind}/")
        response.raise_for_status()
        if not response.text.strip():
            return []
        return csv_text_to_rows(response.text, parse_values=False)

    def _apply_results(
        self,
        chunk: list[dict],
        records: list[dict],
        columns: list[str],
        null_value: str,
        successful: list[dict],
        failed: list[dict],
    ) -> None:
        pending: dict[tuple, deque[int]] = defaultdict(deque)
        for index, record in enumerate(records):
            key = tuple(format_value(record.get(c), null_value) for c in columns)
            pending[key].append(index)

        def match(result: dict) -> int | None:
            key = tuple(result.get(c) or "" for c in columns)
            queue = pending.get(key)
            return queue.popleft() if queue else None

        for result in successful:
            index = match(result)
            if index is None:
                continue
            chunk[index][ERRORS_FIELD] = None
            if self.operation == Operation.INSERT and self.options.update_record_id:
                chunk[index][ID_FIELD] = result.get("sf__Id")

        for result in failed:
            index = match(result)
            if index is not None:
                chunk[index][ERRORS_FIELD] = result.get("sf__Error") or "Unknown error"

        for indexes in pending.values():
            for index in indexes:
                chunk[index][ERRORS_FIELD] = "Record was not processed"
