"""Field descriptors and describe results.

A ``FieldDescriptor`` is what an endpoint reports about one field of an
object: its type, whether it can be written, and which object it
references. Plan building and remapping only rely on the derived
predicates defined here.

Describe calls return ``Found`` or ``NotFound`` instead of raising, so
callers decide whether an absent object is fatal.

Usage:
    from data_migrator.plan.fields import FieldDescriptor, Found, NotFound

    result = await endpoint.describe("Contact")
    if isinstance(result, NotFound):
        ...
    account_id = result.describe.fields["AccountId"]
    account_id.is_master_detail
"""

from dataclasses import dataclass

from pydantic import BaseModel, Field

from data_migrator.constants import (
    COMPLEX_FIELD_PREFIX,
    COMPLEX_FIELD_SEPARATOR,
    REFERENCE_PATH_SEPARATOR,
)


# ============================================================================
# Field name helpers
# ============================================================================


def is_complex_field(name: str) -> bool:
    """True for reference paths (``Account.Name``) and composite keys."""
    return (
        REFERENCE_PATH_SEPARATOR in name
        or COMPLEX_FIELD_SEPARATOR in name
        or name.startswith(COMPLEX_FIELD_PREFIX)
    )


def complex_field_parts(name: str) -> list[str]:
    """Split a composite key into its parts.

    Example:
        >>> complex_field_parts("$$Name;Phone")
        ['Name', 'Phone']
    """
    if name.startswith(COMPLEX_FIELD_PREFIX):
        name = name[len(COMPLEX_FIELD_PREFIX):]
    return [p.strip() for p in name.split(COMPLEX_FIELD_SEPARATOR) if p.strip()]


def relationship_name(field_name: str, custom: bool | None = None) -> str:
    """Name of the relationship a reference field is traversed through.

    Custom references swap the ``__c`` suffix for ``__r`` (and the
    person-account ``__pc`` for ``__pr``); standard ones drop a
    trailing ``Id``.

    Example:
        >>> relationship_name("AccountId")
        'Account'
        >>> relationship_name("Parent_Account__c")
        'Parent_Account__r'
    """
    if custom is None:
        custom = field_name.endswith(("__c", "__pc"))
    if custom:
        if field_name.endswith("__pc"):
            return field_name[: -len("__pc")] + "__pr"
        if field_name.endswith("__c"):
            return field_name[: -len("__c")] + "__r"
        return field_name
    if field_name.endswith("Id") and len(field_name) > 2:
        return field_name[:-2]
    return field_name


def companion_field_name(field_name: str, parent_external_id: str) -> str:
    """Column that carries the parent's business key for a reference.

    Composite parent keys are expanded so every part is traversed.

    Example:
        >>> companion_field_name("AccountId", "Name")
        'Account.Name'
        >>> companion_field_name("AccountId", "Name;Phone")
        'Account.Name;Account.Phone'
    """
    rel = relationship_name(field_name)
    if COMPLEX_FIELD_SEPARATOR in parent_external_id or parent_external_id.startswith(
        COMPLEX_FIELD_PREFIX
    ):
        return COMPLEX_FIELD_SEPARATOR.join(
            f"{rel}{REFERENCE_PATH_SEPARATOR}{part}"
            for part in complex_field_parts(parent_external_id)
        )
    return f"{rel}{REFERENCE_PATH_SEPARATOR}{parent_external_id}"


# ============================================================================
# Describe Models
# ============================================================================


class FieldDescriptor(BaseModel):
    """Metadata for one field of one object."""

    name: str
    object_name: str = ""
    type: str = "string"
    label: str = ""
    updateable: bool = True
    creatable: bool = True
    calculated: bool = False
    auto_number: bool = False
    custom: bool = False
    cascade_delete: bool = False
    is_reference: bool = False
    referenced_object_type: str = ""

    @property
    def is_readonly(self) -> bool:
        return not (self.creatable and not self.calculated and not self.auto_number)

    @property
    def is_master_detail(self) -> bool:
        """Child cannot exist without the parent."""
        return self.is_reference and (not self.updateable or self.cascade_delete)

    @property
    def is_simple(self) -> bool:
        return not self.is_reference

    @property
    def is_self_reference(self) -> bool:
        return self.is_reference and self.referenced_object_type == self.object_name

    @property
    def relationship_name(self) -> str:
        return relationship_name(self.name, self.custom)


class ObjectDescribe(BaseModel):
    """Describe of one object: its fields keyed by name."""

    name: str
    label: str = ""
    createable: bool = True
    updateable: bool = True
    deletable: bool = True
    fields: dict[str, FieldDescriptor] = Field(default_factory=dict)

    def get_field(self, name: str) -> FieldDescriptor | None:
        """Case-insensitive field lookup."""
        if name in self.fields:
            return self.fields[name]
        lowered = name.lower()
        for key, descriptor in self.fields.items():
            if key.lower() == lowered:
                return descriptor
        return None


@dataclass(frozen=True)
class Found:
    """Describe succeeded."""

    describe: ObjectDescribe


@dataclass(frozen=True)
class NotFound:
    """The endpoint has no such object."""

    object_name: str


DescribeResult = Found | NotFound
