"""Engine selection.

Bulk engines pay a fixed cost per job but scale; the direct engine
(REST or SQL) is faster for small sets. Selection depends only on the
row count and run settings, never on the object.

Usage:
    engine_type = resolve_engine_type(len(rows), document, endpoint.supports_bulk)
    engine = endpoint.create_engine(engine_type, "Account", options)
"""

from enum import Enum

from data_migrator.plan.models import PlanDocument


class EngineType(str, Enum):
    DIRECT = "direct"
    BULK_V1 = "bulk_v1"
    BULK_V2 = "bulk_v2"


def resolve_engine_type(
    amount: int,
    settings: PlanDocument,
    supports_bulk: bool,
    force_bulk: bool | None = None,
) -> EngineType:
    """Pick the engine for committing ``amount`` rows.

    Args:
        amount: Number of rows to commit.
        settings: Run settings (threshold, bulk version, REST override).
        supports_bulk: Whether the target endpoint has bulk engines.
        force_bulk: Use bulk regardless of volume; defaults to
            ``settings.force_bulk_api``.

    Returns:
        ``BULK_V2``/``BULK_V1`` by ``settings.bulk_api_version`` when bulk
        applies, ``DIRECT`` otherwise.

    Example:
        >>> resolve_engine_type(500, PlanDocument(), supports_bulk=True)
        <EngineType.BULK_V2: 'bulk_v2'>
    """
    if force_bulk is None:
        force_bulk = settings.force_bulk_api

    bulk = EngineType.BULK_V2 if settings.bulk_api_major_version >= 2 else EngineType.BULK_V1

    if not supports_bulk:
        return EngineType.DIRECT
    if force_bulk:
        return bulk
    if amount > settings.bulk_threshold and not settings.always_use_rest_api_to_update_records:
        return bulk
    return EngineType.DIRECT
