"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol used by the database endpoint
and the SQL commit engine. All methods are ``async def``.

Usage:
    from data_migrator.adapters.base import DatabaseClient

    async def copy_rows(client: DatabaseClient) -> None:
        rows = await client.select("Account", ["id", "Name"], in_filter=("id", ids))
        await client.insert("Account", {"Name": "Acme"}, id_column="id")
        await client.close()
"""

from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface the database endpoint depends on.

    Column and table names are passed unquoted; implementations quote
    them. Values are always bound as parameters.
    """

    async def select(
        self,
        table: str,
        columns: list[str],
        in_filter: tuple[str, list[Any]] | None = None,
        where: str | None = None,
        order_by: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        aliases: dict[str, str] | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Column names to select.
            in_filter: Optional ``(column, values)`` pair, rendered as
                ``column = ANY(:values)``.
            where: Optional raw SQL condition, ANDed with ``in_filter``.
            order_by: Optional raw ORDER BY expression.
            limit: Optional row limit.
            offset: Optional row offset.
            aliases: Optional mapping of column name to result key
                (e.g. ``{"id": "Id"}``).

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Example:
            rows = await client.select(
                "Contact",
                ["id", "LastName", "AccountId"],
                in_filter=("AccountId", ["1", "2"]),
            )
        """
        ...

    async def count(
        self,
        table: str,
        in_filter: tuple[str, list[Any]] | None = None,
        where: str | None = None,
    ) -> int:
        """Count rows matching the filters."""
        ...

    async def insert(self, table: str, data: dict, id_column: str = "id") -> dict:
        """Insert row into table and return the created row.

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def update(
        self, table: str, data: dict, id_value: Any, id_column: str = "id"
    ) -> dict:
        """Update the row with the given primary key and return it.

        Raises:
            ValueError: If no row has that key.
        """
        ...

    async def delete(self, table: str, id_values: list[Any], id_column: str = "id") -> int:
        """Delete rows by primary key and return the number deleted."""
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
