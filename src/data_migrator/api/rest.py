"""REST engine: composite sObject collection requests.

Each batch is one request of at most 200 rows:

- insert: ``POST   /services/data/v<ver>/composite/sobjects``
- update: ``PATCH  /services/data/v<ver>/composite/sobjects``
- delete: ``DELETE /services/data/v<ver>/composite/sobjects?ids=...``

The response is a list of per-row results in request order.
"""

import logging

import httpx

from data_migrator.api.base import ApiEngineBase, EngineOptions, JobState, ProgressCallback
from data_migrator.constants import ERRORS_FIELD, ID_FIELD, REST_ENGINE_NAME
from data_migrator.plan.models import Operation

logger = logging.getLogger(__name__)

MAX_REST_BATCH_SIZE = 200


def _row_error(result: dict) -> str | None:
    if result.get("success"):
        return None
    messages = [
        f"{e.get('statusCode', '')}: {e.get('message', '')}".strip(": ")
        for e in result.get("errors") or []
    ]
    return "; ".join(messages) or "Unknown error"


def payload_fields(row: dict) -> dict:
    """Row without bookkeeping columns."""
    return {k: v for k, v in row.items() if k != ERRORS_FIELD and not k.startswith("___")}


class RestApiEngine(ApiEngineBase):
    """Low-latency engine for small row counts."""

    engine_name = REST_ENGINE_NAME

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_version: str,
        object_name: str,
        options: EngineOptions | None = None,
    ) -> None:
        super().__init__(object_name, options)
        self.options.batch_size = min(self.options.batch_size, MAX_REST_BATCH_SIZE)
        self._client = client
        self._path = f"/services/data/v{api_version}/composite/sobjects"

    async def execute_batch(
        self, chunk: list[dict], on_progress: ProgressCallback | None = None
    ) -> list[dict]:
        operation = self.operation
        self._report(on_progress, JobState.IN_PROGRESS, message=f"{len(chunk)} records")

        try:
            if operation == Operation.DELETE:
                response = await self._client.delete(
                    self._path,
                    params={
                        "ids": ",".join(str(row[ID_FIELD]) for row in chunk),
                        "allOrNone": str(self.options.all_or_none).lower(),
                    },
                )
            else:
                records = []
                for row in chunk:
                    record = payload_fields(row)
                    if operation == Operation.INSERT:
                        record.pop(ID_FIELD, None)
                    record["attributes"] = {"type": self.object_name}
                    records.append(record)
                body = {"allOrNone": self.options.all_or_none, "records": records}
                method = "POST" if operation == Operation.INSERT else "PATCH"
                response = await self._client.request(method, self._path, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._commit_error(
                f"{operation.value} of {self.object_name} failed: "
                f"{e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise self._commit_error(
                f"{operation.value} of {self.object_name} failed: {e}"
            ) from e

        results = response.json()
        failed = 0
        for row, result in zip(chunk, results):
            error = _row_error(result)
            row[ERRORS_FIELD] = error
            if error:
                failed += 1
            elif operation == Operation.INSERT and self.options.update_record_id:
                row[ID_FIELD] = result.get("id")

        self._report(
            on_progress,
            JobState.IN_PROGRESS,
            records_processed=len(chunk),
            records_failed=failed,
        )
        return chunk
