"""PostgreSQL table introspection via information_schema.

Builds an ``ObjectDescribe`` for one table so a database can take part
in plan building like any other endpoint:

- columns become fields; the primary key is exposed as ``Id`` and is
  read-only;
- foreign keys become references to the referenced table, and
  ``ON DELETE CASCADE`` marks them master-detail;
- ``nextval(...)`` defaults and identity columns are auto-numbers.

Uses psycopg (v3) for PostgreSQL connections.
"""

import psycopg
from psycopg import Connection

from data_migrator.constants import ID_FIELD
from data_migrator.plan.fields import FieldDescriptor, ObjectDescribe


def sync_database_url(database_url: str) -> str:
    """Strip a SQLAlchemy driver suffix so psycopg accepts the URL.

    Example:
        >>> sync_database_url("postgresql+asyncpg://u@h/db")
        'postgresql://u@h/db'
    """
    scheme, sep, rest = database_url.partition("://")
    if "+" in scheme:
        scheme = scheme.split("+", 1)[0]
    if scheme == "postgres":
        scheme = "postgresql"
    return f"{scheme}{sep}{rest}"


class TableIntrospector:
    """Describes PostgreSQL tables.

    Usage:
        with TableIntrospector(database_url) as introspector:
            describe, pk_column = introspector.describe_table("Contact")
    """

    def __init__(self, database_url: str, schema_name: str = "public"):
        self._database_url = sync_database_url(database_url)
        self._schema_name = schema_name
        self._conn: Connection | None = None

    def __enter__(self) -> "TableIntrospector":
        url = self._database_url
        if "connect_timeout" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}connect_timeout=10"

        self._conn = psycopg.connect(url)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def describe_table(self, table_name: str) -> tuple[ObjectDescribe, str] | None:
        """Describe one table.

        Returns:
            ``(describe, primary_key_column)``, or ``None`` when the table
            does not exist.
        """
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use with statement.")

        columns = self._get_columns(table_name)
        if not columns:
            return None

        primary_key = "id"
        references: dict[str, tuple[str, str | None]] = {}
        for ctype, column, ref_table, delete_rule in self._get_constraints(table_name):
            if ctype == "PRIMARY KEY":
                primary_key = column
            elif ctype == "FOREIGN KEY" and ref_table:
                references[column] = (ref_table, delete_rule)

        fields: dict[str, FieldDescriptor] = {}
        for column, data_type, default, is_identity in columns:
            auto_number = is_identity == "YES" or (
                default is not None and default.startswith("nextval(")
            )
            ref_table, delete_rule = references.get(column, ("", None))
            descriptor = FieldDescriptor(
                name=ID_FIELD if column == primary_key else column,
                object_name=table_name,
                type="id" if column == primary_key else self._field_type(data_type, ref_table),
                label=column,
                creatable=column != primary_key,
                updateable=column != primary_key,
                auto_number=auto_number and column != primary_key,
                cascade_delete=delete_rule == "CASCADE",
                is_reference=bool(ref_table),
                referenced_object_type=ref_table,
            )
            fields[descriptor.name] = descriptor

        return ObjectDescribe(name=table_name, label=table_name, fields=fields), primary_key

    def _get_columns(self, table_name: str) -> list[tuple[str, str, str | None, str]]:
        """Get columns for a table."""
        query = """
            SELECT
                column_name,
                data_type,
                column_default,
                is_identity
            FROM information_schema.columns
            WHERE table_schema = %s
              AND table_name = %s
            ORDER BY ordinal_position
        """
        with self._conn.cursor() as cur:
            cur.execute(query, (self._schema_name, table_name))
            return [tuple(row) for row in cur.fetchall()]

    def _get_constraints(self, table_name: str) -> list[tuple[str, str, str | None, str | None]]:
        """Get primary and foreign key columns for a table."""
        query = """
            SELECT
                tc.constraint_type,
                kcu.column_name,
                ccu.table_name AS references_table,
                rc.delete_rule
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            LEFT JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.constraint_type = 'FOREIGN KEY'
            LEFT JOIN information_schema.referential_constraints rc
                ON tc.constraint_name = rc.constraint_name
            WHERE tc.table_schema = %s
              AND tc.table_name = %s
              AND tc.constraint_type IN ('PRIMARY KEY', 'FOREIGN KEY')
            ORDER BY tc.constraint_name, kcu.ordinal_position
        """
        with self._conn.cursor() as cur:
            cur.execute(query, (self._schema_name, table_name))
            return [tuple(row) for row in cur.fetchall()]

    def _field_type(self, data_type: str, ref_table: str) -> str:
        """Normalize PostgreSQL data type names."""
        if ref_table:
            return "reference"
        type_map = {
            "character varying": "string",
            "character": "string",
            "text": "string",
            "timestamp with time zone": "datetime",
            "timestamp without time zone": "datetime",
            "integer": "int",
            "bigint": "int",
            "numeric": "double",
            "double precision": "double",
            "boolean": "boolean",
        }
        return type_map.get(data_type.lower(), data_type.lower())
