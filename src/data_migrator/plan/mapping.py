"""Source-to-target object and field renaming.

An object may be stored under another name in the target, and some of
its fields under other names. The job works in source names throughout:
queries and payloads are translated to target names on the way out,
target rows are translated back on the way in.

Reference paths follow their reference field: when ``AccountId`` maps
to ``CompanyId``, ``Account.Name`` maps to ``Company.Name``.

Usage:
    mapping = FieldMapping("Account", [FieldMappingItem(target_object="Company"),
                                       FieldMappingItem(source_field="Name",
                                                        target_field="Title")])
    mapping.to_target_row({"Id": "1", "Name": "Acme"})
    # {'Id': '1', 'Title': 'Acme'}
"""

import re

from data_migrator.constants import (
    COMPLEX_FIELD_PREFIX,
    COMPLEX_FIELD_SEPARATOR,
    ID_FIELD,
    REFERENCE_PATH_SEPARATOR,
)
from data_migrator.plan.fields import relationship_name
from data_migrator.plan.models import FieldMappingItem
from data_migrator.plan.query import Query

# Quoted literals are matched first so their contents are never renamed.
_WHERE_TOKEN = re.compile(r"'(?:[^'\\]|\\.)*'|[A-Za-z_][\w.]*")


def _rename(name: str, fields: dict[str, str], relationships: dict[str, str]) -> str:
    if name.startswith(COMPLEX_FIELD_PREFIX) or COMPLEX_FIELD_SEPARATOR in name:
        prefix = COMPLEX_FIELD_PREFIX if name.startswith(COMPLEX_FIELD_PREFIX) else ""
        parts = name[len(prefix):].split(COMPLEX_FIELD_SEPARATOR)
        return prefix + COMPLEX_FIELD_SEPARATOR.join(
            _rename(part.strip(), fields, relationships) for part in parts
        )
    if name in fields:
        return fields[name]
    if REFERENCE_PATH_SEPARATOR in name:
        head, rest = name.split(REFERENCE_PATH_SEPARATOR, 1)
        if head in relationships:
            return f"{relationships[head]}{REFERENCE_PATH_SEPARATOR}{rest}"
    return name


class FieldMapping:
    """Renames of one object between source and target.

    Args:
        source_object: Object name on the source side.
        items: Mapping entries; an entry with ``target_object`` renames the
            object, one with ``source_field``/``target_field`` renames a
            field. ``Id`` is never renamed.
    """

    def __init__(self, source_object: str, items: list[FieldMappingItem] | None = None) -> None:
        self.source_object = source_object
        self.target_object = source_object
        self.source_to_target: dict[str, str] = {}
        for item in items or []:
            if item.target_object:
                self.target_object = item.target_object
            if item.source_field and item.target_field and item.source_field != ID_FIELD:
                self.source_to_target[item.source_field] = item.target_field
        self.target_to_source = {v: k for k, v in self.source_to_target.items()}

        self._relationships_to_target = {
            relationship_name(source): relationship_name(target)
            for source, target in self.source_to_target.items()
        }
        self._relationships_to_source = {
            v: k for k, v in self._relationships_to_target.items()
        }

    @property
    def has_changes(self) -> bool:
        return bool(self.source_to_target) or self.target_object != self.source_object

    def target_field(self, name: str) -> str:
        return _rename(name, self.source_to_target, self._relationships_to_target)

    def source_field(self, name: str) -> str:
        return _rename(name, self.target_to_source, self._relationships_to_source)

    def to_target_row(self, row: dict) -> dict:
        if not self.source_to_target:
            return row
        return {self.target_field(k): v for k, v in row.items()}

    def to_source_row(self, row: dict) -> dict:
        if not self.source_to_target:
            return row
        return {self.source_field(k): v for k, v in row.items()}

    def to_target_query(self, query: Query) -> Query:
        """Same query against the target object and field names."""
        if not self.has_changes:
            return query
        return query.copy(
            object_name=self.target_object,
            fields=[self.target_field(f) for f in query.fields],
            where=self._map_text(query.where),
            order_by=self._map_text(query.order_by),
            in_field=self.target_field(query.in_field) if query.in_field else None,
        )

    def _map_text(self, text: str | None) -> str | None:
        """Rename field tokens of a filter or sort clause."""
        if not text or not self.source_to_target:
            return text

        def replace(match: re.Match) -> str:
            token = match.group(0)
            if token.startswith("'"):
                return token
            return self.target_field(token)

        return _WHERE_TOKEN.sub(replace, text)
