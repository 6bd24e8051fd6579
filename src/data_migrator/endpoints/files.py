"""CSV directory endpoint.

Each object lives in ``<directory>/<Object>.csv``; ``User`` and
``Group`` share ``UserAndGroup.csv``. Reads go through the job's shared
``CsvCache``. A directory has no metadata of its own, so ``describe``
always answers ``NotFound`` and the other side's describe is used.
"""

import asyncio
import logging
from pathlib import Path

from data_migrator.api.base import ApiEngine, EngineOptions
from data_migrator.api.factory import EngineType
from data_migrator.constants import (
    CSV_FILE_EXTENSION,
    CSV_FILE_SOURCE,
    GROUP_OBJECT,
    TEMP_ID_FIELD,
    USER_AND_GROUP_FILENAME,
    USER_OBJECT,
)
from data_migrator.files.cache import CsvCache
from data_migrator.files.codec import write_csv
from data_migrator.plan.fields import DescribeResult, NotFound
from data_migrator.plan.query import Query

logger = logging.getLogger(__name__)


class FileEndpoint:
    """Endpoint backed by a directory of CSV files.

    Args:
        directory: Directory holding ``<Object>.csv`` files.
        cache: Shared cache; a private one is created when omitted.
        name: Name used in messages.
    """

    kind = "file"
    supports_bulk = False
    is_person_account_enabled = False

    def __init__(
        self,
        directory: Path,
        cache: CsvCache | None = None,
        name: str = CSV_FILE_SOURCE,
    ) -> None:
        self.directory = directory
        self.cache = cache or CsvCache()
        self.name = name

    def file_path(self, object_name: str) -> Path:
        if object_name in (USER_OBJECT, GROUP_OBJECT):
            object_name = USER_AND_GROUP_FILENAME
        return self.directory / f"{object_name}{CSV_FILE_EXTENSION}"

    async def describe(self, object_name: str) -> DescribeResult:
        return NotFound(object_name)

    async def query(self, query: Query, use_bulk: bool = False) -> list[dict]:
        """Rows of the object's file, filtered by the IN condition only.

        Free-text WHERE clauses cannot be evaluated against CSV rows and
        are ignored; LIMIT/OFFSET are applied.
        """
        rows = await self.cache.read(self.file_path(query.object_name))

        if query.in_field:
            wanted = {str(v) for v in query.in_values}
            rows = [r for r in rows if r.get(query.in_field) is not None and str(r.get(query.in_field)) in wanted]

        start = query.offset or 0
        end = start + query.limit if query.limit else None
        return [dict(row) for row in rows[start:end]]

    async def count(self, query: Query) -> int:
        return len(await self.query(query.without_limits()))

    def create_engine(
        self, engine_type: EngineType, object_name: str, options: EngineOptions
    ) -> ApiEngine:
        raise NotImplementedError("CSV directories are written with write_records()")

    async def write_records(
        self, object_name: str, rows: list[dict], columns: list[str] | None = None
    ) -> Path:
        """Write rows as the object's CSV file in this directory."""
        path = self.file_path(object_name)
        clean = [{k: v for k, v in row.items() if k != TEMP_ID_FIELD} for row in rows]
        if columns is not None:
            columns = [c for c in columns if c != TEMP_ID_FIELD]
        await asyncio.to_thread(write_csv, path, clean, columns)
        logger.info(f"{object_name}: {len(clean)} records written to {path}")
        return path

    async def close(self) -> None:
        return None
