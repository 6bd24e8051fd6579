"""Bulk API 1.0 engine.

The job is created once (``create_job``), each chunk is uploaded as a
CSV batch and polled until it leaves the Queued/InProgress states, and
the job is closed after the last batch. Batch result files list one row
per uploaded row, in upload order.
"""

import asyncio
import logging
import time

import httpx

from data_migrator.api.base import ApiEngineBase, ApiJob, EngineOptions, JobState, ProgressCallback
from data_migrator.api.rest import payload_fields
from data_migrator.constants import BULK_V1_ENGINE_NAME, ERRORS_FIELD, ID_FIELD
from data_migrator.files.codec import csv_text_to_rows, rows_to_csv_text
from data_migrator.plan.models import Operation

logger = logging.getLogger(__name__)

BULK_V1_NULL_VALUE = "#N/A"
_BATCH_DONE_STATES = ("Completed", "Failed", "Not Processed")


class BulkApiV1Engine(ApiEngineBase):
    """High-throughput engine using Bulk API 1.0 jobs and batches."""

    engine_name = BULK_V1_ENGINE_NAME

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_version: str,
        access_token: str,
        object_name: str,
        options: EngineOptions | None = None,
    ) -> None:
        super().__init__(object_name, options)
        self._client = client
        self._path = f"/services/async/{api_version}/job"
        self._headers = {"X-SFDC-Session": access_token}

    async def _open_job(self, operation: Operation) -> str:
        try:
            response = await self._client.post(
                self._path,
                json={
                    "operation": operation.value.lower(),
                    "object": self.object_name,
                    "contentType": "CSV",
                },
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise self._commit_error(
                f"Could not create bulk job for {self.object_name}: {e}"
            ) from e
        return response.json()["id"]

    async def _close_job(self, job: ApiJob) -> None:
        try:
            response = await self._client.post(
                f"{self._path}/{job.job_id}",
                json={"state": "Closed"},
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Could not close bulk job {job.job_id}: {e}")
            return
        job.state = JobState.CLOSED

    async def execute_batch(
        self, chunk: list[dict], on_progress: ProgressCallback | None = None
    ) -> list[dict]:
        operation = self.operation
        job_id = self._job.job_id

        records = []
        for row in chunk:
            if operation == Operation.DELETE:
                records.append({ID_FIELD: row.get(ID_FIELD)})
                continue
            record = payload_fields(row)
            if operation == Operation.INSERT:
                record.pop(ID_FIELD, None)
            records.append(record)

        try:
            self._report(on_progress, JobState.UPLOAD_START)
            response = await self._client.post(
                f"{self._path}/{job_id}/batch",
                content=rows_to_csv_text(records, null_value=BULK_V1_NULL_VALUE),
                headers={**self._headers, "Content-Type": "text/csv"},
            )
            response.raise_for_status()
            batch_id = response.json()["id"]
            self._report(on_progress, JobState.UPLOAD_COMPLETE, batch_id=batch_id)

            info = await self._wait_for_batch(job_id, batch_id, on_progress)
            if info.get("state") != "Completed":
                raise self._commit_error(
                    f"Bulk batch {batch_id} for {self.object_name} ended as "
                    f"{info.get('state')}: {info.get('stateMessage', '')}"
                )

            response = await self._client.get(
                f"{self._path}/{job_id}/batch/{batch_id}/result",
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._commit_error(
                f"Bulk batch for {self.object_name} failed: "
                f"{e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise self._commit_error(f"Bulk batch for {self.object_name} failed: {e}") from e

        results = csv_text_to_rows(response.text, parse_values=False)
        for row, result in zip(chunk, results):
            success = (result.get("Success") or "").lower() == "true"
            row[ERRORS_FIELD] = None if success else (result.get("Error") or "Unknown error")
            if success and operation == Operation.INSERT and self.options.update_record_id:
                row[ID_FIELD] = result.get("Id")
        return chunk

    async def _wait_for_batch(
        self, job_id: str, batch_id: str, on_progress: ProgressCallback | None
    ) -> dict:
        started = time.monotonic()
        timeout = self.options.poll_timeout_ms / 1000
        while True:
            response = await self._client.get(
                f"{self._path}/{job_id}/batch/{batch_id}", headers=self._headers
            )
            response.raise_for_status()
            info = response.json()
            if info.get("state") in _BATCH_DONE_STATES:
                return info
            self._report(
                on_progress,
                JobState.IN_PROGRESS,
                batch_id=batch_id,
                records_processed=int(info.get("numberRecordsProcessed") or 0),
                records_failed=int(info.get("numberRecordsFailed") or 0),
            )
            if time.monotonic() - started > timeout:
                raise self._commit_error(
                    f"Bulk batch {batch_id} for {self.object_name} timed out"
                )
            await asyncio.sleep(self.options.polling_interval_ms / 1000)
