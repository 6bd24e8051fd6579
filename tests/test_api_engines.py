"""Tests for commit engines and engine selection.

HTTP engines run against ``httpx.MockTransport`` handlers that play the
remote API; the SQL engine runs against an ``AsyncMock`` client.
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from data_migrator.api.base import ApiEngineBase, EngineOptions, JobState
from data_migrator.api.bulk_v1 import BulkApiV1Engine
from data_migrator.api.bulk_v2 import BulkApiV2Engine
from data_migrator.api.factory import EngineType, resolve_engine_type
from data_migrator.api.rest import MAX_REST_BATCH_SIZE, RestApiEngine
from data_migrator.api.sql import SqlApiEngine
from data_migrator.constants import SIMULATED_ID_LENGTH
from data_migrator.errors import CommitError
from data_migrator.plan.models import Operation, PlanDocument

INSTANCE_URL = "https://example.my.salesforce.com"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=INSTANCE_URL)


# ============================================================================
# Test Group 1: engine selection
# ============================================================================


class TestResolveEngineType:
    """Engine choice depends on volume and run settings only."""

    def test_small_volume_is_direct(self) -> None:
        """Row counts at or below the threshold use the direct engine."""
        assert resolve_engine_type(50, PlanDocument(), supports_bulk=True) == EngineType.DIRECT
        assert resolve_engine_type(200, PlanDocument(), supports_bulk=True) == EngineType.DIRECT

    def test_large_volume_is_bulk_v2(self) -> None:
        """Above the threshold the bulk engine is used."""
        assert resolve_engine_type(500, PlanDocument(), supports_bulk=True) == EngineType.BULK_V2

    def test_bulk_v1_by_version(self) -> None:
        """bulkApiVersion 1.0 selects the V1 engine."""
        document = PlanDocument(bulkApiVersion="1.0")
        assert resolve_engine_type(500, document, supports_bulk=True) == EngineType.BULK_V1

    def test_always_rest_override(self) -> None:
        """The REST override keeps large volumes on the direct engine."""
        document = PlanDocument(alwaysUseRestApiToUpdateRecords=True)
        assert resolve_engine_type(500, document, supports_bulk=True) == EngineType.DIRECT

    def test_no_bulk_support(self) -> None:
        """Endpoints without bulk engines always get the direct one."""
        document = PlanDocument(forceBulkApi=True)
        assert resolve_engine_type(5000, document, supports_bulk=False) == EngineType.DIRECT

    def test_force_bulk(self) -> None:
        """Forcing bulk ignores the volume."""
        assert (
            resolve_engine_type(1, PlanDocument(), supports_bulk=True, force_bulk=True)
            == EngineType.BULK_V2
        )


# ============================================================================
# Test Group 2: shared batch execution
# ============================================================================


class RecordingEngine(ApiEngineBase):
    """Engine whose batches fail for rows flagged ``fail``."""

    engine_name = "Recording"

    def __init__(self, options: EngineOptions | None = None) -> None:
        super().__init__("Account", options)
        self.batches: list[list[dict]] = []

    async def execute_batch(self, chunk, on_progress=None):
        self.batches.append(chunk)
        if any(row.get("fail") for row in chunk):
            raise self._commit_error("batch rejected")
        for row in chunk:
            row["Errors"] = None
        return chunk


class TestApiEngineBase:
    """Chunking, stop-on-failure and batch error callbacks."""

    @pytest.mark.asyncio
    async def test_create_job_chunks_rows(self) -> None:
        """Rows are split by batch size and the job is opened."""
        engine = RecordingEngine(EngineOptions(batch_size=2))
        job = await engine.create_job([{"n": i} for i in range(5)], Operation.INSERT)
        assert [len(chunk) for chunk in job.chunks] == [2, 2, 1]
        assert job.job_id
        assert job.state == JobState.OPEN
        assert job.record_count == 5

    def test_operation_requires_job(self) -> None:
        """The operation is only known once a job exists."""
        with pytest.raises(RuntimeError):
            RecordingEngine().operation

    @pytest.mark.asyncio
    async def test_empty_input_does_nothing(self) -> None:
        """No rows means no job."""
        engine = RecordingEngine()
        assert await engine.execute_crud([], Operation.INSERT) == []
        assert engine.batches == []

    @pytest.mark.asyncio
    async def test_failure_stops_remaining_batches(self) -> None:
        """After a rejected batch no further batch starts."""
        engine = RecordingEngine(EngineOptions(batch_size=1))
        states = []
        rows = [{"fail": True}, {"n": 2}, {"n": 3}]

        with pytest.raises(CommitError):
            await engine.execute_crud(rows, Operation.INSERT, on_progress=lambda i: states.append(i.state))

        assert len(engine.batches) == 1
        assert states[-1] == JobState.FAILED

    @pytest.mark.asyncio
    async def test_batch_error_callback_continues(self) -> None:
        """A callback answering True marks the batch failed and goes on."""
        engine = RecordingEngine(EngineOptions(batch_size=1))
        on_batch_error = AsyncMock(return_value=True)

        rows = await engine.execute_crud(
            [{"fail": True}, {"n": 2}], Operation.UPDATE, on_batch_error=on_batch_error
        )

        assert rows[0]["Errors"] == "batch rejected"
        assert rows[1]["Errors"] is None
        on_batch_error.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_batch_error_callback_declines(self) -> None:
        """A callback answering False lets the error propagate."""
        engine = RecordingEngine()
        with pytest.raises(CommitError) as exc_info:
            await engine.execute_crud(
                [{"fail": True}], Operation.INSERT, on_batch_error=AsyncMock(return_value=False)
            )
        assert exc_info.value.engine_name == "Recording"
        assert exc_info.value.operation == "Insert"

    @pytest.mark.asyncio
    async def test_simulation_runs_no_batch(self) -> None:
        """Simulated inserts get generated ids and nothing is sent."""
        engine = RecordingEngine(EngineOptions(simulation_mode=True))
        states = []

        rows = await engine.execute_crud(
            [{"Name": "Acme"}, {"Id": "X1", "Name": "Beta"}],
            Operation.INSERT,
            on_progress=lambda i: states.append(i.state),
        )

        assert engine.batches == []
        assert len(rows[0]["Id"]) == SIMULATED_ID_LENGTH
        assert rows[1]["Id"] == "X1"
        assert [row["Errors"] for row in rows] == [None, None]
        assert states == [JobState.JOB_COMPLETE]


# ============================================================================
# Test Group 3: REST engine
# ============================================================================


class TestRestApiEngine:
    """Composite sObject collection requests."""

    @pytest.mark.asyncio
    async def test_insert_results_per_row(self) -> None:
        """Successful rows get their id, failed rows an error message."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json=[
                    {"id": "001A", "success": True, "errors": []},
                    {
                        "success": False,
                        "errors": [{"statusCode": "REQUIRED_FIELD_MISSING", "message": "Name"}],
                    },
                ],
            )

        async with _client(handler) as client:
            engine = RestApiEngine(client, "58.0", "Account")
            rows = await engine.execute_crud(
                [{"Name": "Acme", "___Id": "s1"}, {"___Id": "s2"}], Operation.INSERT
            )

        (request,) = requests
        assert request.method == "POST"
        assert request.url.path == "/services/data/v58.0/composite/sobjects"
        body = json.loads(request.content)
        assert body["allOrNone"] is False
        assert body["records"][0] == {"Name": "Acme", "attributes": {"type": "Account"}}

        assert rows[0]["Id"] == "001A"
        assert rows[0]["Errors"] is None
        assert rows[1]["Errors"] == "REQUIRED_FIELD_MISSING: Name"

    @pytest.mark.asyncio
    async def test_batch_size_capped(self) -> None:
        """Batches never exceed 200 rows."""
        sizes = []

        def handler(request: httpx.Request) -> httpx.Response:
            records = json.loads(request.content)["records"]
            sizes.append(len(records))
            return httpx.Response(200, json=[{"id": "x", "success": True}] * len(records))

        async with _client(handler) as client:
            engine = RestApiEngine(client, "58.0", "Contact", EngineOptions(batch_size=500))
            assert engine.options.batch_size == MAX_REST_BATCH_SIZE
            await engine.execute_crud([{"Id": str(i)} for i in range(450)], Operation.UPDATE)

        assert sorted(sizes) == [50, 200, 200]

    @pytest.mark.asyncio
    async def test_delete_sends_ids(self) -> None:
        """Deletes pass the ids as a query parameter."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[{"id": "1", "success": True}, {"id": "2", "success": True}])

        async with _client(handler) as client:
            engine = RestApiEngine(client, "58.0", "Contact")
            await engine.execute_crud([{"Id": "1"}, {"Id": "2"}], Operation.DELETE)

        assert requests[0].method == "DELETE"
        assert requests[0].url.params["ids"] == "1,2"

    @pytest.mark.asyncio
    async def test_http_error_rejects_batch(self) -> None:
        """A non-2xx response is a CommitError for the whole batch."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="server down")

        async with _client(handler) as client:
            engine = RestApiEngine(client, "58.0", "Account")
            with pytest.raises(CommitError) as exc_info:
                await engine.execute_crud([{"Name": "Acme"}], Operation.INSERT)

        assert "500" in str(exc_info.value)
        assert exc_info.value.object_name == "Account"


# ============================================================================
# Test Group 4: Bulk API 2.0 engine
# ============================================================================

INGEST_PATH = "/services/data/v58.0/jobs/ingest"


def _bulk_v2_handler(final_state: str, successful: str = "", failed: str = ""):
    polls = {"count": 0}
    uploads = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path == INGEST_PATH:
            return httpx.Response(200, json={"id": "750J", "state": "Open"})
        if request.method == "PUT" and path == f"{INGEST_PATH}/750J/batches":
            uploads.append(request.content.decode())
            return httpx.Response(201)
        if request.method == "PATCH" and path == f"{INGEST_PATH}/750J":
            return httpx.Response(200, json={"state": "UploadComplete"})
        if request.method == "GET" and path == f"{INGEST_PATH}/750J":
            polls["count"] += 1
            state = "InProgress" if polls["count"] == 1 else final_state
            return httpx.Response(200, json={"state": state, "errorMessage": "InvalidBatch"})
        if path.endswith("/successfulResults/"):
            return httpx.Response(200, text=successful)
        if path.endswith("/failedResults/"):
            return httpx.Response(200, text=failed)
        return httpx.Response(404)

    return handler, uploads, polls


class TestBulkApiV2Engine:
    """Ingest job lifecycle and result matching."""

    @pytest.mark.asyncio
    async def test_results_matched_by_values(self) -> None:
        """Out-of-order result rows are matched back to their input rows."""
        handler, uploads, polls = _bulk_v2_handler(
            "JobComplete",
            successful="sf__Id,sf__Created,Name\n001B,true,Beta\n001A,true,Acme\n",
            failed='sf__Id,sf__Error,Name\n,REQUIRED_FIELD_MISSING:Name,""\n',
        )
        states = []
        async with _client(handler) as client:
            engine = BulkApiV2Engine(
                client, "58.0", "Account", EngineOptions(polling_interval_ms=0)
            )
            rows = await engine.execute_crud(
                [
                    {"Name": "Acme", "___Id": "s1"},
                    {"Name": "Beta", "___Id": "s2"},
                    {"Name": None, "___Id": "s3"},
                ],
                Operation.INSERT,
                on_progress=lambda info: states.append(info.state),
            )

        assert uploads[0].startswith("Name\nAcme\nBeta\n")
        assert polls["count"] == 2
        assert [row.get("Id") for row in rows] == ["001A", "001B", None]
        assert rows[0]["Errors"] is None
        assert rows[2]["Errors"] == "REQUIRED_FIELD_MISSING:Name"
        assert states[:3] == [JobState.OPEN, JobState.UPLOAD_START, JobState.UPLOAD_COMPLETE]
        assert states[-1] == JobState.JOB_COMPLETE

    @pytest.mark.asyncio
    async def test_failed_job_raises(self) -> None:
        """A job ending in Failed rejects the batch."""
        handler, _, _ = _bulk_v2_handler("Failed")
        async with _client(handler) as client:
            engine = BulkApiV2Engine(
                client, "58.0", "Account", EngineOptions(polling_interval_ms=0)
            )
            with pytest.raises(CommitError) as exc_info:
                await engine.execute_crud([{"Name": "Acme"}], Operation.INSERT)

        assert "Failed" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unmatched_rows_flagged(self) -> None:
        """Rows missing from both result files are marked unprocessed."""
        handler, _, _ = _bulk_v2_handler("JobComplete", successful="sf__Id,sf__Created,Name\n")
        async with _client(handler) as client:
            engine = BulkApiV2Engine(
                client, "58.0", "Account", EngineOptions(polling_interval_ms=0)
            )
            rows = await engine.execute_crud([{"Name": "Acme"}], Operation.INSERT)

        assert rows[0]["Errors"] == "Record was not processed"


# ============================================================================
# Test Group 5: Bulk API 1.0 engine
# ============================================================================

JOB_PATH = "/services/async/58.0/job"


class TestBulkApiV1Engine:
    """Job, batches and positional results."""

    @pytest.mark.asyncio
    async def test_insert_job_lifecycle(self) -> None:
        """The job is opened once, batches polled and the job closed."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            seen.append((request.method, path))
            assert request.headers["X-SFDC-Session"] == "token"
            if request.method == "POST" and path == JOB_PATH:
                return httpx.Response(200, json={"id": "750V"})
            if request.method == "POST" and path == f"{JOB_PATH}/750V/batch":
                return httpx.Response(200, json={"id": "751B", "state": "Queued"})
            if request.method == "GET" and path == f"{JOB_PATH}/750V/batch/751B":
                return httpx.Response(200, json={"state": "Completed"})
            if request.method == "GET" and path == f"{JOB_PATH}/750V/batch/751B/result":
                return httpx.Response(
                    200,
                    text='"Id","Success","Created","Error"\n'
                    '"001A","true","true",""\n'
                    '"","false","false","DUPLICATE_VALUE"\n',
                )
            if request.method == "POST" and path == f"{JOB_PATH}/750V":
                return httpx.Response(200, json={"state": "Closed"})
            return httpx.Response(404)

        async with _client(handler) as client:
            engine = BulkApiV1Engine(
                client, "58.0", "token", "Account", EngineOptions(polling_interval_ms=0)
            )
            rows = await engine.execute_crud(
                [{"Name": "Acme"}, {"Name": "Acme"}], Operation.INSERT
            )

        assert rows[0]["Id"] == "001A"
        assert rows[0]["Errors"] is None
        assert rows[1]["Errors"] == "DUPLICATE_VALUE"
        assert seen[0] == ("POST", JOB_PATH)
        assert seen[-1] == ("POST", f"{JOB_PATH}/750V")


# ============================================================================
# Test Group 6: SQL engine
# ============================================================================


class TestSqlApiEngine:
    """Row-by-row commits through a DatabaseClient."""

    @pytest.mark.asyncio
    async def test_insert_maps_primary_key(self) -> None:
        """New primary keys come back as Id."""
        client = AsyncMock()
        client.insert = AsyncMock(return_value={"pk": "N1", "Name": "Acme"})
        engine = SqlApiEngine(client, "account", id_column="pk")

        rows = await engine.execute_crud([{"Name": "Acme", "___Id": "s1"}], Operation.INSERT)

        client.insert.assert_awaited_once_with("account", {"Name": "Acme"}, id_column="pk")
        assert rows[0]["Id"] == "N1"
        assert rows[0]["Errors"] is None

    @pytest.mark.asyncio
    async def test_row_errors_do_not_fail_batch(self) -> None:
        """A failing statement marks only its row."""

        async def update(table, data, id_value, id_column="id"):
            if id_value == "2":
                raise ValueError("constraint violated")
            return {id_column: id_value, **data}

        client = AsyncMock()
        client.update = AsyncMock(side_effect=update)
        engine = SqlApiEngine(client, "account")

        rows = await engine.execute_crud(
            [{"Id": "1", "Name": "A"}, {"Id": "2", "Name": "B"}], Operation.UPDATE
        )

        assert rows[0]["Errors"] is None
        assert rows[1]["Errors"] == "ValueError: constraint violated"
        client.update.assert_any_await("account", {"Name": "A"}, "1", id_column="id")

    @pytest.mark.asyncio
    async def test_delete_failure_rejects_batch(self) -> None:
        """A failed delete is a CommitError."""
        client = AsyncMock()
        client.delete = AsyncMock(side_effect=RuntimeError("locked"))
        engine = SqlApiEngine(client, "account")

        with pytest.raises(CommitError):
            await engine.execute_crud([{"Id": "1"}], Operation.DELETE)

    @pytest.mark.asyncio
    async def test_simulation_leaves_database_untouched(self) -> None:
        """No statement is run in simulation mode."""
        client = AsyncMock()
        engine = SqlApiEngine(client, "account", options=EngineOptions(simulation_mode=True))

        rows = await engine.execute_crud([{"Id": "1", "Name": "A"}], Operation.UPDATE)

        assert rows == [{"Id": "1", "Name": "A", "Errors": None}]
        client.update.assert_not_awaited()
        client.insert.assert_not_awaited()
