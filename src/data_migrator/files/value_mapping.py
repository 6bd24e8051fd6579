"""Per-field value substitution from ``ValueMapping.csv``.

The file has the columns ``ObjectName,FieldName,RawValue,Value``. Each
row replaces ``RawValue`` with ``Value`` in one field of one object's
source rows.
"""

import logging
from pathlib import Path

from data_migrator.files.codec import format_value, read_csv

logger = logging.getLogger(__name__)

ValueMapping = dict[tuple[str, str], dict[str, object]]


def load_value_mapping(path: Path) -> ValueMapping:
    """Read a value mapping file; a missing file is an empty mapping."""
    mapping: ValueMapping = {}
    for row in read_csv(path):
        object_name = (row.get("ObjectName") or "").strip()
        field_name = (row.get("FieldName") or "").strip()
        if not object_name or not field_name:
            continue
        key = format_value(row.get("RawValue"))
        mapping.setdefault((object_name, field_name), {})[key] = row.get("Value")
    if mapping:
        logger.info(f"Loaded value mapping for {len(mapping)} fields from {path.name}")
    return mapping


def apply_value_mapping(rows: list[dict], object_name: str, mapping: ValueMapping) -> int:
    """Substitute mapped values in ``rows`` in place.

    Returns:
        Number of cells changed.
    """
    changed = 0
    for (mapped_object, field_name), values in mapping.items():
        if mapped_object != object_name:
            continue
        for row in rows:
            if field_name not in row:
                continue
            key = format_value(row[field_name])
            if key in values:
                row[field_name] = values[key]
                changed += 1
    return changed
