"""API engine contract and shared chunked-batch execution.

Every engine commits rows of one object with one operation. A job is
created by chunking the rows, then executed batch by batch. Each batch
returns the input rows, mutated in place: ``Errors`` holds ``None`` or a
failure message, and inserts receive their new ``Id``.

Usage:
    from data_migrator.api.base import EngineOptions

    engine = endpoint.create_engine(EngineType.DIRECT, "Account", EngineOptions())
    rows = await engine.execute_crud(rows, Operation.INSERT, on_progress=print)
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from pydantic import BaseModel

from data_migrator.constants import (
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_REST_API_BATCH_SIZE,
    ERRORS_FIELD,
    ID_FIELD,
    POLL_TIMEOUT_MS,
    SIMULATED_ID_LENGTH,
)
from data_migrator.errors import CommitError
from data_migrator.plan.models import Operation

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Job state and progress
# ------------------------------------------------------------------


class JobState(str, Enum):
    """States of one engine job.

    Undefined -> Open -> UploadStart -> UploadComplete -> InProgress
    -> Closed/JobComplete, or Failed/Aborted from any phase.
    """

    UNDEFINED = "Undefined"
    OPEN = "Open"
    UPLOAD_START = "UploadStart"
    UPLOAD_COMPLETE = "UploadComplete"
    IN_PROGRESS = "InProgress"
    CLOSED = "Closed"
    JOB_COMPLETE = "JobComplete"
    ABORTED = "Aborted"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.JOB_COMPLETE, JobState.ABORTED, JobState.FAILED)


@dataclass
class ProgressInfo:
    """Status passed to ``on_progress`` at each phase boundary."""

    state: JobState
    engine_name: str
    object_name: str
    operation: Operation
    job_id: str = ""
    batch_id: str = ""
    records_processed: int = 0
    records_failed: int = 0
    message: str = ""


@dataclass
class ApiJob:
    """A created job: its id, operation and pending chunks."""

    job_id: str
    operation: Operation
    chunks: list[list[dict]] = field(default_factory=list)
    state: JobState = JobState.UNDEFINED

    @property
    def record_count(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)


class EngineOptions(BaseModel):
    """Per-commit engine configuration supplied by the job."""

    batch_size: int = DEFAULT_REST_API_BATCH_SIZE
    polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS
    poll_timeout_ms: int = POLL_TIMEOUT_MS
    max_parallel_batches: int = 1
    all_or_none: bool = False
    update_record_id: bool = True
    simulation_mode: bool = False


ProgressCallback = Callable[[ProgressInfo], None]
BatchErrorCallback = Callable[[CommitError, list[dict]], Awaitable[bool]]


# ------------------------------------------------------------------
# Engine protocol
# ------------------------------------------------------------------


class ApiEngine(Protocol):
    """Interface implemented by every commit engine."""

    def get_engine_name(self) -> str:
        """Human-readable engine name, e.g. ``"REST API"``."""
        ...

    async def create_job(self, records: list[dict], operation: Operation) -> ApiJob:
        """Chunk ``records`` by batch size and obtain a job id.

        No I/O is performed beyond what is needed for the job id.
        """
        ...

    async def execute_job(
        self,
        job: ApiJob,
        on_progress: ProgressCallback | None = None,
        on_batch_error: BatchErrorCallback | None = None,
    ) -> list[dict]:
        """Run every chunk and return result rows in input order."""
        ...

    async def execute_batch(
        self, chunk: list[dict], on_progress: ProgressCallback | None = None
    ) -> list[dict]:
        """Commit one chunk.

        Raises:
            CommitError: If the whole chunk was rejected.
        """
        ...

    async def execute_crud(
        self,
        records: list[dict],
        operation: Operation,
        on_progress: ProgressCallback | None = None,
        on_batch_error: BatchErrorCallback | None = None,
    ) -> list[dict]:
        """``create_job`` followed by ``execute_job``."""
        ...


# ------------------------------------------------------------------
# Shared implementation
# ------------------------------------------------------------------


class ApiEngineBase:
    """Chunking, bounded parallel batch execution and progress reporting.

    Subclasses implement ``execute_batch`` and may override
    ``_open_job``/``_close_job`` when the remote side has a job object.
    """

    engine_name = ""

    def __init__(self, object_name: str, options: EngineOptions | None = None) -> None:
        self.object_name = object_name
        self.options = options or EngineOptions()
        self._job: ApiJob | None = None

    def get_engine_name(self) -> str:
        return self.engine_name

    @property
    def operation(self) -> Operation:
        if self._job is None:
            raise RuntimeError("No job has been created")
        return self._job.operation

    async def create_job(self, records: list[dict], operation: Operation) -> ApiJob:
        size = max(1, self.options.batch_size)
        chunks = [records[i:i + size] for i in range(0, len(records), size)]
        self._job = ApiJob(job_id="", operation=operation, chunks=chunks)
        self._job.job_id = await self._open_job(operation)
        self._job.state = JobState.OPEN
        return self._job

    async def execute_job(
        self,
        job: ApiJob,
        on_progress: ProgressCallback | None = None,
        on_batch_error: BatchErrorCallback | None = None,
    ) -> list[dict]:
        self._job = job
        semaphore = asyncio.Semaphore(max(1, self.options.max_parallel_batches))
        stop = asyncio.Event()

        async def run(chunk: list[dict]) -> list[dict]:
            async with semaphore:
                if stop.is_set():
                    return []
                try:
                    try:
                        return await self.execute_batch(chunk, on_progress)
                    except CommitError as e:
                        if on_batch_error is not None and await on_batch_error(e, chunk):
                            for row in chunk:
                                row[ERRORS_FIELD] = str(e)
                            return chunk
                        raise
                except Exception:
                    stop.set()
                    raise

        results = await asyncio.gather(
            *(run(chunk) for chunk in job.chunks), return_exceptions=True
        )

        try:
            await self._close_job(job)
        finally:
            failures = [r for r in results if isinstance(r, BaseException)]
            if failures:
                job.state = JobState.FAILED
                self._report(on_progress, JobState.FAILED, message=str(failures[0]))
                raise failures[0]

        rows = [row for chunk in results for row in chunk]
        failed = sum(1 for row in rows if row.get(ERRORS_FIELD))
        job.state = JobState.JOB_COMPLETE
        self._report(
            on_progress,
            JobState.JOB_COMPLETE,
            records_processed=len(rows),
            records_failed=failed,
        )
        return rows

    async def execute_crud(
        self,
        records: list[dict],
        operation: Operation,
        on_progress: ProgressCallback | None = None,
        on_batch_error: BatchErrorCallback | None = None,
    ) -> list[dict]:
        if not records:
            return []
        if self.options.simulation_mode:
            return self._simulate(records, operation, on_progress)
        job = await self.create_job(records, operation)
        return await self.execute_job(job, on_progress, on_batch_error)

    def _simulate(
        self,
        records: list[dict],
        operation: Operation,
        on_progress: ProgressCallback | None,
    ) -> list[dict]:
        """Result rows as if every row succeeded; nothing is sent."""
        self._job = ApiJob(job_id="", operation=operation, chunks=[records])
        for row in records:
            row[ERRORS_FIELD] = None
            if operation == Operation.INSERT and not row.get(ID_FIELD):
                row[ID_FIELD] = uuid.uuid4().hex[:SIMULATED_ID_LENGTH]
        self._job.state = JobState.JOB_COMPLETE
        self._report(
            on_progress,
            JobState.JOB_COMPLETE,
            records_processed=len(records),
            message="simulation",
        )
        return records

    async def execute_batch(
        self, chunk: list[dict], on_progress: ProgressCallback | None = None
    ) -> list[dict]:
        raise NotImplementedError

    async def _open_job(self, operation: Operation) -> str:
        return uuid.uuid4().hex

    async def _close_job(self, job: ApiJob) -> None:
        return None

    def _report(
        self,
        on_progress: ProgressCallback | None,
        state: JobState,
        **kwargs,
    ) -> None:
        if on_progress is None:
            return
        on_progress(
            ProgressInfo(
                state=state,
                engine_name=self.engine_name,
                object_name=self.object_name,
                operation=self._job.operation if self._job else Operation.READONLY,
                job_id=self._job.job_id if self._job else "",
                **kwargs,
            )
        )

    def _commit_error(self, message: str) -> CommitError:
        return CommitError(
            message,
            object_name=self.object_name,
            operation=self.operation.value,
            engine_name=self.engine_name,
        )
