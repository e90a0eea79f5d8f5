"""CNBBuild resource module.

This module handles:
- The CNBBuild resource schema (spec and status)
- ORM persistence and the CNBBuild store
- Loading CNBBuild manifests from YAML/JSON files
"""

from cnb_controller.builds.schema import (
    CNBBuild,
    CNBBuildpackMetadata,
    CNBBuildSpec,
    CNBBuildStatus,
)

__all__ = ["CNBBuild", "CNBBuildSpec", "CNBBuildStatus", "CNBBuildpackMetadata"]
