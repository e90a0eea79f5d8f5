"""Registry access module.

This module handles:
- Image reference parsing
- Credential resolution through keychains
- Read-only access to remote images
- Retrieval of built image metadata

Access via cnb_controller.registry.image, cnb_controller.registry.metadata, etc.
"""

from cnb_controller.registry.errors import (
    KeychainError,
    MalformedMetadataError,
    RegistryAccessError,
)

__all__ = ["KeychainError", "MalformedMetadataError", "RegistryAccessError"]
