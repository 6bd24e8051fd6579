"""Record sets: the rows of one object on one side of a migration.

A ``RecordSet`` keeps three views of the same rows:

- ``main``: rows in arrival order;
- ``by_id``: identifier to row;
- ``ext_id_map``: business-key value to identifier.

Rows are deduplicated by identifier on arrival, so chunked query results
can be merged in any order.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from data_migrator.constants import ERRORS_FIELD, ID_FIELD, TEMP_ID_FIELD

KeyFunction = Callable[[dict], str | None]


def record_id(row: dict) -> str | None:
    """Identifier of a row, falling back to its temporary id."""
    value = row.get(ID_FIELD)
    if value in (None, ""):
        value = row.get(TEMP_ID_FIELD)
    return None if value in (None, "") else str(value)


@dataclass
class RecordSet:
    """Rows of one object fetched from (or written to) one endpoint."""

    main: list[dict] = field(default_factory=list)
    by_id: dict[str, dict] = field(default_factory=dict)
    ext_id_map: dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.main)

    def add_records(self, rows: list[dict], key_fn: KeyFunction) -> int:
        """Merge rows, keeping the first arrival of each identifier.

        Rows without an identifier get a random temporary one.

        Returns:
            Number of rows that were new.
        """
        added = 0
        for row in rows:
            rid = record_id(row)
            if rid is None:
                rid = f"{TEMP_ID_FIELD}{uuid.uuid4().hex}"
                row[TEMP_ID_FIELD] = rid
            if rid in self.by_id:
                continue
            self.by_id[rid] = row
            self.main.append(row)
            added += 1
            key = key_fn(row)
            if key is not None and not row.get(ERRORS_FIELD):
                self.ext_id_map[key] = rid
        return added

    def rebuild_ext_id_map(self, key_fn: KeyFunction) -> None:
        """Recompute ``ext_id_map`` from ``main``; failed rows are skipped."""
        self.ext_id_map = {}
        for row in self.main:
            if row.get(ERRORS_FIELD):
                continue
            key = key_fn(row)
            if key is not None:
                self.ext_id_map[key] = record_id(row)

    def replace_or_append(self, row: dict, key_fn: KeyFunction) -> None:
        """Store ``row``, replacing the row with the same identifier."""
        rid = record_id(row)
        existing = self.by_id.get(rid)
        if existing is None:
            self.add_records([row], key_fn)
            return
        existing.clear()
        existing.update(row)
        key = key_fn(existing)
        if key is not None and not existing.get(ERRORS_FIELD):
            self.ext_id_map[key] = rid

    def ids(self) -> list[str]:
        """Real identifiers (temporary ids excluded)."""
        return [rid for rid in self.by_id if not rid.startswith(TEMP_ID_FIELD)]
