"""SQL engine: row-by-row commits through a ``DatabaseClient``.

Used when the target is a relational database. Each row is its own
statement, so a constraint violation fails that row only.
"""

import logging

from data_migrator.adapters.base import DatabaseClient
from data_migrator.api.base import ApiEngineBase, EngineOptions, JobState, ProgressCallback
from data_migrator.api.rest import payload_fields
from data_migrator.constants import ERRORS_FIELD, ID_FIELD, SQL_ENGINE_NAME
from data_migrator.plan.models import Operation

logger = logging.getLogger(__name__)


class SqlApiEngine(ApiEngineBase):
    """Direct engine for database targets.

    ``Id`` in the rows is translated to the table's primary key column.
    """

    engine_name = SQL_ENGINE_NAME

    def __init__(
        self,
        client: DatabaseClient,
        object_name: str,
        id_column: str = "id",
        options: EngineOptions | None = None,
    ) -> None:
        super().__init__(object_name, options)
        self._client = client
        self._id_column = id_column

    async def execute_batch(
        self, chunk: list[dict], on_progress: ProgressCallback | None = None
    ) -> list[dict]:
        operation = self.operation
        self._report(on_progress, JobState.IN_PROGRESS, message=f"{len(chunk)} records")

        if operation == Operation.DELETE:
            ids = [row[ID_FIELD] for row in chunk]
            try:
                await self._client.delete(self.object_name, ids, id_column=self._id_column)
            except Exception as e:
                raise self._commit_error(f"Delete from {self.object_name} failed: {e}") from e
            for row in chunk:
                row[ERRORS_FIELD] = None
            return chunk

        failed = 0
        for row in chunk:
            data = self._to_columns(payload_fields(row))
            try:
                if operation == Operation.INSERT:
                    data.pop(self._id_column, None)
                    created = await self._client.insert(
                        self.object_name, data, id_column=self._id_column
                    )
                    if self.options.update_record_id:
                        row[ID_FIELD] = created.get(self._id_column)
                else:
                    id_value = data.pop(self._id_column)
                    await self._client.update(
                        self.object_name, data, id_value, id_column=self._id_column
                    )
                row[ERRORS_FIELD] = None
            except Exception as e:
                failed += 1
                row[ERRORS_FIELD] = f"{type(e).__name__}: {e}"
                logger.debug(f"{operation.value} of {self.object_name} row failed: {e}")

        self._report(
            on_progress,
            JobState.IN_PROGRESS,
            records_processed=len(chunk),
            records_failed=failed,
        )
        return chunk

    def _to_columns(self, row: dict) -> dict:
        data = {k: v for k, v in row.items() if "." not in k}
        if ID_FIELD in data and self._id_column != ID_FIELD:
            data[self._id_column] = data.pop(ID_FIELD)
        return data
