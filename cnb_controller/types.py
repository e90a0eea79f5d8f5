"""Shared type definitions for cnb_controller.

This module contains dataclasses, enums, and type aliases shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

# Condition type reported by the build executor
CONDITION_SUCCEEDED = "Succeeded"


class ConditionStatus(str, Enum):
    """Tri-state value of a resource condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class BuildPhase(str, Enum):
    """Phase of a CNBBuild, derived from its Knative build on each pass."""

    PENDING = "pending"
    CREATED = "created"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ResourceKey(NamedTuple):
    """Namespace/name identity of a resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def split_key(key: str) -> ResourceKey:
    """Split a "namespace/name" key into its parts.

    Args:
        key: Resource key.

    Returns:
        ResourceKey tuple.

    Raises:
        ValueError: If the key does not have exactly two non-empty parts.
    """
    parts = key.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"unexpected key format: {key!r}")
    return ResourceKey(parts[0], parts[1])


@dataclass
class BuildpackMetadata:
    """A buildpack entry decoded from the lifecycle image label."""

    id: str
    version: str
    layers: dict[str, Any] = field(default_factory=dict)


@dataclass
class BuiltImage:
    """Metadata of a built image, read from the registry."""

    sha: str
    completed_at: datetime
    buildpack_metadata: list[BuildpackMetadata] = field(default_factory=list)


__all__ = [
    "CONDITION_SUCCEEDED",
    "BuildPhase",
    "BuildpackMetadata",
    "BuiltImage",
    "ConditionStatus",
    "ResourceKey",
    "split_key",
]
