"""Live API-backed endpoint.

Talks to a remote record store over its REST API with an
``httpx.AsyncClient``:

- queries: ``GET /services/data/v<ver>/query?q=...``, following
  ``nextRecordsUrl`` until ``done``;
- bulk queries: Bulk API 2.0 query jobs, polled and read in CSV pages;
- describe: ``GET /services/data/v<ver>/sobjects/<name>/describe``.

Nested relationship objects in query results are flattened to dotted
keys (``{"Account": {"Name": "Acme"}}`` becomes ``{"Account.Name":
"Acme"}``).

Usage:
    endpoint = LiveEndpoint("prod", "https://example.my.salesforce.com", token)
    await endpoint.open()
    rows = await endpoint.query(parse_query("SELECT Id, Name FROM Account"))
    await endpoint.close()
"""

import asyncio
import logging
import time

import httpx

from data_migrator.api.base import ApiEngine, EngineOptions
from data_migrator.api.bulk_v1 import BulkApiV1Engine
from data_migrator.api.bulk_v2 import BulkApiV2Engine
from data_migrator.api.factory import EngineType
from data_migrator.api.rest import RestApiEngine
from data_migrator.constants import (
    DEFAULT_API_VERSION,
    DEFAULT_POLLING_INTERVAL_MS,
    PERSON_ACCOUNT_FLAG,
    POLL_TIMEOUT_MS,
)
from data_migrator.errors import MetadataError, QueryError
from data_migrator.files.codec import csv_text_to_rows
from data_migrator.plan.fields import (
    DescribeResult,
    FieldDescriptor,
    Found,
    NotFound,
    ObjectDescribe,
)
from data_migrator.plan.query import Query, shorten_query

logger = logging.getLogger(__name__)


def flatten_record(record: dict, prefix: str = "") -> dict:
    """Flatten nested relationship objects into dotted keys.

    ``attributes`` entries are dropped at every level.

    Example:
        >>> flatten_record({"attributes": {}, "Id": "1", "Account": {"Name": "Acme"}})
        {'Id': '1', 'Account.Name': 'Acme'}
    """
    flat: dict = {}
    for key, value in record.items():
        if key == "attributes":
            continue
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_record(value, f"{name}."))
        else:
            flat[name] = value
    return flat


def field_descriptor_from_describe(object_name: str, data: dict) -> FieldDescriptor:
    """Map one entry of a describe ``fields`` list to a ``FieldDescriptor``."""
    reference_to = data.get("referenceTo") or []
    return FieldDescriptor(
        name=data["name"],
        object_name=object_name,
        type=data.get("type", "string"),
        label=data.get("label", ""),
        updateable=bool(data.get("updateable", False)),
        creatable=bool(data.get("createable", False)),
        calculated=bool(data.get("calculated", False)),
        auto_number=bool(data.get("autoNumber", False)),
        custom=bool(data.get("custom", False)),
        cascade_delete=bool(data.get("cascadeDelete", False)),
        is_reference=data.get("type") == "reference" and bool(reference_to),
        referenced_object_type=reference_to[0] if reference_to else "",
    )


class LiveEndpoint:
    """Endpoint backed by a remote record store's REST API.

    Args:
        name: Profile name, for messages.
        instance_url: Base URL of the instance.
        access_token: Bearer token.
        api_version: REST API version, e.g. ``"58.0"``.
        client: Optional preconfigured client (tests pass one built on
            ``httpx.MockTransport``).
        polling_interval_ms: Interval between bulk query status checks.
        poll_timeout_ms: Give up on a bulk query job after this long.
    """

    kind = "live"
    supports_bulk = True

    def __init__(
        self,
        name: str,
        instance_url: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        client: httpx.AsyncClient | None = None,
        polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS,
        poll_timeout_ms: int = POLL_TIMEOUT_MS,
    ) -> None:
        self.name = name
        self.instance_url = instance_url.rstrip("/")
        self.api_version = api_version
        self.polling_interval_ms = polling_interval_ms
        self.poll_timeout_ms = poll_timeout_ms
        self.is_person_account_enabled = False
        self._access_token = access_token
        self._client = client or httpx.AsyncClient(
            base_url=self.instance_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=httpx.Timeout(120.0),
        )
        self._data_path = f"/services/data/v{api_version}"

    async def open(self) -> None:
        """Detect instance features needed before planning."""
        self.is_person_account_enabled = await self._detect_person_accounts()
        if self.is_person_account_enabled:
            logger.info(f"{self.name}: person accounts are enabled")

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Describe
    # ------------------------------------------------------------------

    async def describe(self, object_name: str) -> DescribeResult:
        """Describe one object.

        Raises:
            MetadataError: If the request fails for any reason other than
                an unknown object.
        """
        try:
            response = await self._client.get(
                f"{self._data_path}/sobjects/{object_name}/describe"
            )
            if response.status_code == 404:
                return NotFound(object_name)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise MetadataError(
                f"Describe of {object_name} failed on {self.name}: "
                f"{e.response.status_code} {e.response.text}",
                object_name=object_name,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise MetadataError(
                f"Describe of {object_name} failed on {self.name}: {e}",
                object_name=object_name,
            ) from e
        fields = {
            item["name"]: field_descriptor_from_describe(object_name, item)
            for item in data.get("fields", [])
        }
        return Found(
            ObjectDescribe(
                name=data.get("name", object_name),
                label=data.get("label", ""),
                createable=bool(data.get("createable", True)),
                updateable=bool(data.get("updateable", True)),
                deletable=bool(data.get("deletable", True)),
                fields=fields,
            )
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(self, query: Query, use_bulk: bool = False) -> list[dict]:
        text = query.compose()
        logger.debug(f"{self.name}: {shorten_query(text)}")
        try:
            if use_bulk:
                return await self._bulk_query(text)
            return await self._rest_query(text)
        except httpx.HTTPStatusError as e:
            raise QueryError(
                f"Query failed on {self.name}: {e.response.status_code} {e.response.text}",
                object_name=query.object_name,
                query=text,
            ) from e
        except httpx.HTTPError as e:
            raise QueryError(
                f"Query failed on {self.name}: {e}",
                object_name=query.object_name,
                query=text,
            ) from e

    async def count(self, query: Query) -> int:
        count_query = query.to_count() if not query.count_only else query
        text = count_query.compose()
        try:
            response = await self._client.get(f"{self._data_path}/query", params={"q": text})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise QueryError(
                f"Count failed on {self.name}: {e}",
                object_name=query.object_name,
                query=text,
            ) from e
        data = response.json()
        records = data.get("records") or []
        if records and "CNT" in records[0]:
            return int(records[0]["CNT"])
        return int(data.get("totalSize", 0))

    async def _rest_query(self, text: str) -> list[dict]:
        response = await self._client.get(f"{self._data_path}/query", params={"q": text})
        response.raise_for_status()
        data = response.json()
        rows = [flatten_record(r) for r in data.get("records", [])]

        while not data.get("done", True) and data.get("nextRecordsUrl"):
            response = await self._client.get(data["nextRecordsUrl"])
            response.raise_for_status()
            data = response.json()
            rows.extend(flatten_record(r) for r in data.get("records", []))

        return rows

    async def _bulk_query(self, text: str) -> list[dict]:
        path = f"{self._data_path}/jobs/query"
        response = await self._client.post(
            path, json={"operation": "query", "query": text}
        )
        response.raise_for_status()
        job_id = response.json()["id"]

        deadline = time.monotonic() + self.poll_timeout_ms / 1000
        while True:
            response = await self._client.get(f"{path}/{job_id}")
            response.raise_for_status()
            state = response.json().get("state")
            if state == "JobComplete":
                break
            if state in ("Failed", "Aborted"):
                message = response.json().get("errorMessage", state)
                raise httpx.HTTPError(f"Bulk query job {job_id} {state}: {message}")
            if time.monotonic() > deadline:
                raise httpx.HTTPError(f"Bulk query job {job_id} timed out")
            await asyncio.sleep(self.polling_interval_ms / 1000)

        rows: list[dict] = []
        params: dict[str, str] = {}
        while True:
            response = await self._client.get(f"{path}/{job_id}/results", params=params)
            response.raise_for_status()
            rows.extend(csv_text_to_rows(response.text))
            locator = response.headers.get("Sforce-Locator")
            if not locator or locator == "null":
                break
            params = {"locator": locator}
        return rows

    async def _detect_person_accounts(self) -> bool:
        text = f"SELECT {PERSON_ACCOUNT_FLAG} FROM Account LIMIT 1"
        try:
            response = await self._client.get(f"{self._data_path}/query", params={"q": text})
        except httpx.HTTPError as e:
            logger.debug(f"{self.name}: person account check failed: {e}")
            return False
        return response.status_code == 200

    # ------------------------------------------------------------------
    # Engines
    # ------------------------------------------------------------------

    def create_engine(
        self, engine_type: EngineType, object_name: str, options: EngineOptions
    ) -> ApiEngine:
        if engine_type == EngineType.BULK_V1:
            return BulkApiV1Engine(
                self._client, self.api_version, self._access_token, object_name, options
            )
        if engine_type == EngineType.BULK_V2:
            return BulkApiV2Engine(self._client, self.api_version, object_name, options)
        return RestApiEngine(self._client, self.api_version, object_name, options)
