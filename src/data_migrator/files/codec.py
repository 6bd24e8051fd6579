"""CSV reading and writing for record rows.

Rows are plain dicts. On read, empty cells become ``None`` and
``true``/``false`` become booleans; on write, ``None`` becomes an empty
cell. The same text form is used to decide whether a target row already
holds the values about to be written (``canonical_row``).
"""

import csv
import io
from pathlib import Path


def _parse_value(value: str | None):
    if value is None or value == "":
        return None
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


def format_value(value, null_value: str = "") -> str:
    """Text form of a cell value."""
    if value is None:
        return null_value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def canonical_row(row: dict, fields: list[str]) -> tuple[str, ...]:
    """Canonical, hashable form of ``row`` over an explicit field list.

    Example:
        >>> canonical_row({"Name": "Acme", "Active": True}, ["Active", "Name"])
        ('true', 'Acme')
    """
    return tuple(format_value(row.get(name)) for name in fields)


def csv_text_to_rows(text: str, parse_values: bool = True) -> list[dict]:
    """Parse CSV text with a header row into dicts."""
    if text.startswith("\ufeff"):
        text = text[1:]
    reader = csv.DictReader(io.StringIO(text))
    if not parse_values:
        return [dict(row) for row in reader]
    return [{k: _parse_value(v) for k, v in row.items()} for row in reader]


def rows_to_csv_text(
    rows: list[dict], columns: list[str] | None = None, null_value: str = ""
) -> str:
    """Serialize rows to CSV text with a header row.

    Args:
        rows: Rows to write.
        columns: Column order; defaults to the union of row keys in
            first-seen order.
        null_value: Text written for ``None`` cells (bulk updates use
            ``#N/A`` to clear a field).
    """
    if columns is None:
        columns = list(dict.fromkeys(key for row in rows for key in row))
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([format_value(row.get(c), null_value) for c in columns])
    return buffer.getvalue()


def read_csv(path: Path, max_rows: int | None = None) -> list[dict]:
    """Read a CSV file into rows. A missing file reads as no rows."""
    if not path.exists():
        return []
    with open(path, encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        rows: list[dict] = []
        for row in reader:
            rows.append({k.strip() if k else k: _parse_value(v) for k, v in row.items()})
            if max_rows is not None and len(rows) >= max_rows:
                break
        return rows


def read_csv_header(path: Path) -> list[str]:
    """Column names of a CSV file, or an empty list if it is empty."""
    if not path.exists():
        return []
    with open(path, encoding="utf-8-sig", newline="") as f:
        reader = csv.reader(f)
        return next(reader, [])


def write_csv(
    path: Path,
    rows: list[dict],
    columns: list[str] | None = None,
    always_create: bool = True,
) -> None:
    """Write rows to ``path``, creating parent directories.

    Nothing is written for an empty row list unless ``always_create``.
    """
    if not rows and not always_create:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(rows_to_csv_text(rows, columns), encoding="utf-8")
