"""Data endpoint protocol.

An endpoint is one side of a migration: a live API-backed store, a
relational database or a directory of CSV files. The job only talks to
endpoints through this protocol.

Usage:
    from data_migrator.endpoints.base import DataEndpoint

    async def fetch(endpoint: DataEndpoint) -> list[dict]:
        result = await endpoint.describe("Account")
        rows = await endpoint.query(parse_query("SELECT Id, Name FROM Account"))
        await endpoint.close()
        return rows
"""

from typing import Literal, Protocol

from data_migrator.api.base import ApiEngine, EngineOptions
from data_migrator.api.factory import EngineType
from data_migrator.plan.fields import DescribeResult
from data_migrator.plan.query import Query

EndpointKind = Literal["live", "database", "file"]


class DataEndpoint(Protocol):
    """Interface every endpoint implements.

    Attributes:
        kind: ``"live"``, ``"database"`` or ``"file"``.
        name: Profile name, for messages.
        supports_bulk: Whether bulk engines are available.
        is_person_account_enabled: Whether Account/Contact rows may be
            person accounts.
    """

    kind: EndpointKind
    name: str
    supports_bulk: bool
    is_person_account_enabled: bool

    async def describe(self, object_name: str) -> DescribeResult:
        """Describe an object; ``NotFound`` when it does not exist."""
        ...

    async def query(self, query: Query, use_bulk: bool = False) -> list[dict]:
        """Run a query and return flat rows.

        Reference paths (``Account.Name``) appear as dotted keys.

        Raises:
            QueryError: If the endpoint rejects the query.
        """
        ...

    async def count(self, query: Query) -> int:
        """Number of rows ``query`` would return, ignoring limits."""
        ...

    def create_engine(
        self, engine_type: EngineType, object_name: str, options: EngineOptions
    ) -> ApiEngine:
        """Commit engine for one object.

        Raises:
            NotImplementedError: If the endpoint cannot be written to
                through engines (file directories).
        """
        ...

    async def close(self) -> None:
        """Release connections."""
        ...
