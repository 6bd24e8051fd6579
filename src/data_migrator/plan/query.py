"""Structured SELECT queries.

Plan documents carry queries as text. They are parsed once into a
``Query`` so the job can swap field lists, drop limits, project to a
count, or rebuild the filter as ``<field> IN (...)`` chunks without
string surgery.

Usage:
    from data_migrator.plan.query import parse_query, create_field_in_queries

    query = parse_query("SELECT Id, Name FROM Account WHERE Type = 'Customer'")
    query.compose()
    # "SELECT Id, Name FROM Account WHERE Type = 'Customer'"

    chunks = create_field_in_queries(["Id", "Name"], "Id", "Account", ids)
"""

import re
from dataclasses import dataclass, field, replace

from data_migrator.constants import (
    ID_FIELD,
    MAX_WHERE_CLAUSE_LENGTH,
    SHORT_QUERY_STRING_MAXLENGTH,
)


class QueryParseError(ValueError):
    """Raised when query text is not a supported SELECT statement."""

    pass


_QUERY_PATTERN = re.compile(
    r"^\s*SELECT\s+(?P<fields>.+?)\s+FROM\s+(?P<object>\w+)"
    r"(?:\s+WHERE\s+(?P<where>.+?))?"
    r"(?:\s+ORDER\s+BY\s+(?P<order_by>.+?))?"
    r"(?:\s+LIMIT\s+(?P<limit>\d+))?"
    r"(?:\s+OFFSET\s+(?P<offset>\d+))?"
    r"\s*$",
    re.IGNORECASE | re.DOTALL,
)


def _quote(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("\\", "\\\\").replace("'", "\\'") + "'"


def distinct_fields(fields: list[str]) -> list[str]:
    """Remove duplicate field names, keeping first occurrence order.

    Comparison is case-insensitive because both remote stores and
    plan authors are inconsistent about field name casing.
    """
    seen: set[str] = set()
    result: list[str] = []
    for name in fields:
        key = name.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(name.strip())
    return result


@dataclass
class Query:
    """A parsed ``SELECT`` statement.

    ``in_field``/``in_values`` hold a structured ``IN`` condition so that
    endpoints which bind parameters (the database endpoint) never need
    to parse it back out of text.
    """

    object_name: str
    fields: list[str] = field(default_factory=list)
    where: str | None = None
    order_by: str | None = None
    limit: int | None = None
    offset: int | None = None
    in_field: str | None = None
    in_values: list[str] = field(default_factory=list)
    count_only: bool = False

    @property
    def is_limited(self) -> bool:
        """True when the query selects a subset of the object's rows."""
        return bool(self.where) or bool(self.limit)

    def copy(self, **changes) -> "Query":
        """Return a copy with the given attributes replaced."""
        changes.setdefault("fields", list(self.fields))
        changes.setdefault("in_values", list(self.in_values))
        return replace(self, **changes)

    def without_limits(self) -> "Query":
        return self.copy(order_by=None, limit=None, offset=None)

    def to_count(self) -> "Query":
        """Project to ``COUNT(Id)`` keeping the filter."""
        return self.copy(
            fields=[ID_FIELD],
            count_only=True,
            order_by=None,
            limit=None,
            offset=None,
        )

    def compose(self) -> str:
        """Render the query as text."""
        if self.count_only:
            select = f"SELECT COUNT({ID_FIELD}) CNT"
        else:
            select = "SELECT " + ", ".join(self.fields)

        parts = [f"{select} FROM {self.object_name}"]

        conditions: list[str] = []
        if self.where:
            conditions.append(self.where)
        if self.in_field:
            values = ", ".join(_quote(v) for v in self.in_values)
            conditions.append(f"{self.in_field} IN ({values})")
        if len(conditions) > 1:
            parts.append("WHERE " + " AND ".join(f"({c})" for c in conditions))
        elif conditions:
            parts.append("WHERE " + conditions[0])

        if self.order_by:
            parts.append(f"ORDER BY {self.order_by}")
        if self.limit:
            parts.append(f"LIMIT {self.limit}")
        if self.offset:
            parts.append(f"OFFSET {self.offset}")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.compose()


def parse_query(text: str) -> Query:
    """Parse a ``SELECT ... FROM ...`` statement.

    Args:
        text: Query text with optional WHERE, ORDER BY, LIMIT and OFFSET
            clauses, in that order.

    Returns:
        Parsed ``Query`` with distinct fields.

    Raises:
        QueryParseError: If the text is not a SELECT statement or has
            an empty field list.

    Example:
        >>> q = parse_query("SELECT Id, Name FROM Account LIMIT 10")
        >>> q.object_name, q.fields, q.limit
        ('Account', ['Id', 'Name'], 10)
    """
    if not text or not text.strip():
        raise QueryParseError("Query is empty")

    match = _QUERY_PATTERN.match(text)
    if not match:
        raise QueryParseError(f"Unsupported query: {text}")

    fields = distinct_fields(match.group("fields").split(","))
    if not fields:
        raise QueryParseError(f"Query has no fields: {text}")

    limit = match.group("limit")
    offset = match.group("offset")
    return Query(
        object_name=match.group("object"),
        fields=fields,
        where=(match.group("where") or "").strip() or None,
        order_by=(match.group("order_by") or "").strip() or None,
        limit=int(limit) if limit else None,
        offset=int(offset) if offset else None,
    )


def compose_where(
    where: str | None, field_name: str, values: list, operator: str = "IN"
) -> str:
    """AND a ``<field> <operator> (...)`` condition onto an existing filter.

    Example:
        >>> compose_where("Active = true", "Type", ["A", "B"])
        "(Active = true) AND (Type IN ('A', 'B'))"
    """
    if operator.upper() in ("IN", "NOT IN"):
        condition = f"{field_name} {operator} ({', '.join(_quote(v) for v in values)})"
    else:
        condition = f"{field_name} {operator} {_quote(values[0])}"
    if not where:
        return condition
    return f"({where}) AND ({condition})"


def create_field_in_queries(
    fields: list[str],
    field_name: str,
    object_name: str,
    values: list[str],
    max_where_length: int = MAX_WHERE_CLAUSE_LENGTH,
) -> list[Query]:
    """Split ``values`` into ``<field_name> IN (...)`` queries.

    Chunks are bounded by the serialized length of the filter, not by
    the number of values: each value costs its length plus four
    characters for quotes and separator.

    Args:
        fields: Fields to select.
        field_name: The field the IN condition applies to.
        object_name: Object to query.
        values: Values to match; duplicates and empty values are dropped.
        max_where_length: Length budget per chunk.

    Returns:
        One ``Query`` per chunk, each carrying ``in_field=field_name``.
        Empty list when there are no values.
    """
    queries: list[Query] = []
    chunk: list[str] = []
    length = 0

    for value in dict.fromkeys(v for v in values if v not in (None, "")):
        value = str(value)
        cost = len(value) + 4
        if chunk and length + cost > max_where_length:
            queries.append(_in_query(fields, field_name, object_name, chunk))
            chunk, length = [], 0
        chunk.append(value)
        length += cost

    if chunk:
        queries.append(_in_query(fields, field_name, object_name, chunk))

    return queries


def _in_query(
    fields: list[str], field_name: str, object_name: str, values: list[str]
) -> Query:
    return Query(
        object_name=object_name,
        fields=list(fields),
        in_field=field_name,
        in_values=list(values),
    )


def shorten_query(text: str, max_length: int = SHORT_QUERY_STRING_MAXLENGTH) -> str:
    """Shorten a query for logging.

    The select list and the filter are each cut to ``max_length``
    characters around ``FROM <object>``.

    Example:
        >>> shorten_query("SELECT Id FROM Account", 250)
        'SELECT Id FROM Account'
    """
    match = re.search(r"\sFROM\s+\w+", text, re.IGNORECASE)
    if not match:
        return text if len(text) <= max_length else text[:max_length] + "..."
    head, middle, tail = text[: match.start()], match.group(0), text[match.end():]
    if len(head) > max_length:
        head = head[:max_length] + "..."
    if len(tail) > max_length:
        tail = tail[:max_length] + "..."
    return head + middle + tail
