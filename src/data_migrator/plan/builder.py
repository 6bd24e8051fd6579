"""Build Object Plan Entries from a plan document.

``build_plan`` turns the plan's object list into described entries with
resolved dependencies:

1. Drop excluded objects (Readonly objects are always kept).
2. Set up each entry (parse query, normalise key and operation).
3. Describe each entry on every non-file endpoint.
4. For every writable reference field, resolve the parent entry or
   synthesize a Readonly "all records" stand-in, and add the parent's
   business key to the child query as a companion column.

Usage:
    from data_migrator.plan.builder import build_plan

    entries = await build_plan(document, source_endpoint, target_endpoint)
"""

import logging
from typing import TYPE_CHECKING

from data_migrator.constants import (
    DEFAULT_EXTERNAL_ID,
    GROUP_OBJECT,
    ID_FIELD,
    NOT_SUPPORTED_OBJECTS,
    RECORD_TYPE_DEVELOPER_NAME,
    RECORD_TYPE_ID_FIELD,
    RECORD_TYPE_OBJECT,
    RECORD_TYPE_SOBJECT_FIELD,
    USER_OBJECT,
)
from data_migrator.errors import InitializationError, MetadataError
from data_migrator.plan.entry import ObjectPlanEntry, query_columns
from data_migrator.plan.fields import NotFound, ObjectDescribe, companion_field_name
from data_migrator.plan.mapping import FieldMapping
from data_migrator.plan.models import ObjectConfig, Operation, PlanDocument
from data_migrator.plan.query import compose_where

if TYPE_CHECKING:
    from data_migrator.endpoints.base import DataEndpoint

logger = logging.getLogger(__name__)


async def build_plan(
    document: PlanDocument,
    source: "DataEndpoint",
    target: "DataEndpoint",
) -> list[ObjectPlanEntry]:
    """Create, describe and link the plan's entries.

    Args:
        document: Parsed plan document.
        source: Endpoint records are read from.
        target: Endpoint records are written to.

    Returns:
        Entries in declared order followed by synthesized stand-ins.

    Raises:
        InitializationError: If no objects remain after exclusion, or
            both endpoints are file directories.
        MetadataError: If an object or business key does not exist.
    """
    configs = [
        config
        for config in document.objects
        if not config.excluded or config.operation == Operation.READONLY
    ]
    if not configs:
        raise InitializationError("The plan has no objects to process")

    if source.kind == "file" and target.kind == "file":
        raise InitializationError("Source and target cannot both be CSV directories")

    person_accounts = source.is_person_account_enabled

    entries: list[ObjectPlanEntry] = []
    names: set[str] = set()
    for config in configs:
        entry = ObjectPlanEntry(config)
        entry.setup(person_accounts=person_accounts)
        if entry.name in NOT_SUPPORTED_OBJECTS:
            logger.warning(f"Object {entry.name} is not supported and is skipped")
            continue
        if entry.name in names:
            logger.warning(f"Object {entry.name} is declared twice; the first entry is used")
            continue
        names.add(entry.name)
        entries.append(entry)

    if not entries:
        raise InitializationError("The plan has no objects to process")

    for entry in entries:
        await describe_entry(entry, source, target)

    by_name = {entry.name: entry for entry in entries}

    for entry in reversed(list(entries)):
        for descriptor in entry.fields_to_update:
            if not descriptor.is_reference or not descriptor.referenced_object_type:
                continue

            parent_name = descriptor.referenced_object_type
            if parent_name == GROUP_OBJECT:
                parent_name = USER_OBJECT

            parent = by_name.get(parent_name)
            if parent is None:
                parent = create_stand_in(parent_name, entries)
                parent.setup(person_accounts=person_accounts)
                await describe_entry(parent, source, target)
                logger.info(f"Added Readonly object {parent_name} referenced by {entry.name}")
                entries.append(parent)
                by_name[parent_name] = parent

            entry.add_dependency(descriptor.name, parent)

            companion = companion_field_name(descriptor.name, parent.external_id)
            entry.add_query_fields(query_columns(companion))
            if parent.original_external_id != parent.external_id:
                original = companion_field_name(descriptor.name, parent.original_external_id)
                entry.add_query_fields(query_columns(original))

    return entries


def create_stand_in(object_name: str, entries: list[ObjectPlanEntry]) -> ObjectPlanEntry:
    """Synthesize a Readonly entry for a parent missing from the plan.

    RecordType stand-ins are keyed by developer name and restricted to
    the object types that actually carry a record type field.
    """
    if object_name == RECORD_TYPE_OBJECT:
        object_types = sorted(
            e.name for e in entries if RECORD_TYPE_ID_FIELD in e.query.fields
        )
        where = compose_where(None, RECORD_TYPE_SOBJECT_FIELD, object_types)
        query = (
            f"SELECT {ID_FIELD}, {RECORD_TYPE_DEVELOPER_NAME}, {RECORD_TYPE_SOBJECT_FIELD} "
            f"FROM {object_name} WHERE {where} ORDER BY {RECORD_TYPE_SOBJECT_FIELD}"
        )
        external_id = RECORD_TYPE_DEVELOPER_NAME
    else:
        external_id = DEFAULT_EXTERNAL_ID
        query = f"SELECT {ID_FIELD}, {external_id} FROM {object_name}"

    config = ObjectConfig(
        query=query,
        operation=Operation.READONLY,
        external_id=external_id,
        all_records=True,
    )
    return ObjectPlanEntry(config, is_extra_object=True)


async def describe_entry(
    entry: ObjectPlanEntry,
    source: "DataEndpoint",
    target: "DataEndpoint",
) -> None:
    """Describe ``entry`` on both endpoints and apply the result.

    The target is described under the entry's mapped object name. A file
    endpoint has no metadata of its own; the other side's describe is
    used for both.

    Raises:
        MetadataError: If a non-file endpoint does not know the object.
    """
    describes = {}
    for side, endpoint in (("source", source), ("target", target)):
        if endpoint.kind == "file":
            continue
        object_name = entry.name if side == "source" else entry.target_name
        result = await endpoint.describe(object_name)
        if isinstance(result, NotFound):
            raise MetadataError(
                f"Object {object_name} does not exist in the {side} ({endpoint.name})",
                object_name=entry.name,
            )
        describes[side] = result.describe

    target_describe = describes.get("target")
    source_describe = describes.get("source")
    if source_describe is None:
        source_describe = source_view(target_describe, entry.mapping)
    entry.apply_describe(source_describe)

    if target_describe is None or "source" not in describes:
        return
    for descriptor in entry.fields_to_update:
        target_field = entry.mapping.target_field(descriptor.name)
        if target_describe.get_field(target_field) is None:
            logger.warning(
                f"Field {entry.target_name}.{target_field} does not exist in the target "
                f"and {entry.name}.{descriptor.name} is removed from the query"
            )
            entry.query.fields.remove(descriptor.name)
            entry.fields.pop(descriptor.name, None)


def source_view(describe: ObjectDescribe, mapping: FieldMapping | None) -> ObjectDescribe:
    """A target describe with object and field names mapped back to the source."""
    if mapping is None or not mapping.has_changes:
        return describe
    fields = {}
    for name, descriptor in describe.fields.items():
        source_name = mapping.source_field(name)
        fields[source_name] = descriptor.model_copy(
            update={"name": source_name, "object_name": mapping.source_object}
        )
    return describe.model_copy(update={"name": mapping.source_object, "fields": fields})
