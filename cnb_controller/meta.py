"""Object metadata and condition models shared by all resources."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cnb_controller.types import ConditionStatus


class ResourceModel(BaseModel):
    """Base for resource models; fields serialize as camelCase."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class OwnerReference(ResourceModel):
    """Reference from a dependent resource to the resource that owns it."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False


class ObjectMeta(ResourceModel):
    """Identity and bookkeeping fields of a stored resource.

    Attributes:
        namespace: Namespace the resource lives in.
        name: Resource name, unique within the namespace.
        uid: Store-assigned unique identifier.
        generation: Spec version, bumped by the store on every spec change.
        resource_version: Write version used for conditional updates.
        owner_references: Resources owning this one.
    """

    namespace: str = Field(min_length=1)
    name: str = Field(min_length=1)
    uid: str = ""
    generation: int = 0
    resource_version: int = 0
    owner_references: list[OwnerReference] = Field(default_factory=list)


class Condition(ResourceModel):
    """A typed, tri-state status condition."""

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None

    def is_true(self) -> bool:
        """Check if the condition status is True."""
        return self.status == ConditionStatus.TRUE

    def is_false(self) -> bool:
        """Check if the condition status is False."""
        return self.status == ConditionStatus.FALSE


def get_condition(conditions: list[Condition], condition_type: str) -> Condition | None:
    """Find a condition by type.

    Args:
        conditions: Conditions to search.
        condition_type: Type to look for.

    Returns:
        The matching condition, or None.
    """
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def new_controller_ref(
    metadata: ObjectMeta, api_version: str, kind: str
) -> OwnerReference:
    """Build a controller owner reference pointing at a resource.

    Args:
        metadata: Metadata of the owning resource.
        api_version: API version of the owner.
        kind: Kind of the owner.

    Returns:
        OwnerReference with controller and block_owner_deletion set.
    """
    return OwnerReference(
        api_version=api_version,
        kind=kind,
        name=metadata.name,
        uid=metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


__all__ = [
    "Condition",
    "ObjectMeta",
    "OwnerReference",
    "ResourceModel",
    "get_condition",
    "new_controller_ref",
]
