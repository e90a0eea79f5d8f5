"""Build metadata retrieval.

Once a build succeeds, the controller reads the built image back from the
registry to learn its digest, when it was built, and which buildpacks
contributed to it. The buildpacks come from the JSON document the
lifecycle writes into the image's metadata label.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from cnb_controller.registry.errors import MalformedMetadataError
from cnb_controller.registry.image import RemoteImageFactory, ServiceAccountImageRef
from cnb_controller.types import BuildpackMetadata, BuiltImage

if TYPE_CHECKING:
    from cnb_controller.builds.schema import CNBBuild

logger = logging.getLogger(__name__)

# Label the lifecycle writes app image metadata into
METADATA_LABEL = "io.buildpacks.lifecycle.metadata"


class _LifecycleBuildpack(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Older lifecycles write the id under "key"
    id: str = Field(validation_alias=AliasChoices("key", "id"))
    version: str = ""
    layers: dict[str, Any] = Field(default_factory=dict)


class _LifecycleMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    buildpacks: list[_LifecycleBuildpack] = Field(default_factory=list)


def decode_buildpack_metadata(
    repo_name: str, label: str | None
) -> list[BuildpackMetadata]:
    """Decode the lifecycle metadata label into buildpack entries.

    Args:
        repo_name: Image the label was read from, for diagnostics.
        label: Raw label value, or None if the image has no such label.

    Returns:
        Buildpack entries in label order.

    Raises:
        MalformedMetadataError: If the label is missing or cannot be decoded.
    """
    if not label:
        raise MalformedMetadataError(repo_name, f"label {METADATA_LABEL} not found")
    try:
        metadata = _LifecycleMetadata.model_validate_json(label)
    except ValidationError as e:
        raise MalformedMetadataError(repo_name, str(e)) from e

    return [
        BuildpackMetadata(id=bp.id, version=bp.version, layers=bp.layers)
        for bp in metadata.buildpacks
    ]


class MetadataRetriever(Protocol):
    """Retrieves metadata of the image a CNBBuild produced."""

    def get_built_image(self, build: CNBBuild) -> BuiltImage: ...


class RegistryMetadataRetriever:
    """MetadataRetriever reading built images from their registry."""

    def __init__(self, image_factory: RemoteImageFactory) -> None:
        """Initialize the retriever.

        Args:
            image_factory: Opens remote images with the build's credentials.
        """
        self.image_factory = image_factory

    def get_built_image(self, build: CNBBuild) -> BuiltImage:
        """Read digest, build time and buildpacks of a build's image.

        Args:
            build: CNBBuild whose target image to inspect.

        Returns:
            BuiltImage with sha, completion time and buildpack metadata.

        Raises:
            RegistryAccessError: If the image cannot be opened or read.
            MalformedMetadataError: If the metadata label is missing or
                malformed.
        """
        image_ref = ServiceAccountImageRef(
            repo_name=build.spec.image,
            namespace=build.metadata.namespace,
            service_account=build.spec.service_account,
        )
        image = self.image_factory.new_remote(image_ref)

        buildpacks = decode_buildpack_metadata(
            image_ref.repo_name, image.label(METADATA_LABEL)
        )
        built = BuiltImage(
            sha=image.digest(),
            completed_at=image.created_at(),
            buildpack_metadata=buildpacks,
        )
        logger.info(
            "Retrieved metadata for %s: %s (%d buildpacks)",
            image_ref.repo_name,
            built.sha,
            len(buildpacks),
        )
        return built


__all__ = [
    "METADATA_LABEL",
    "MetadataRetriever",
    "RegistryMetadataRetriever",
    "decode_buildpack_metadata",
]
