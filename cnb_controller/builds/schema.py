"""Pydantic models for the CNBBuild resource.

A CNBBuild describes a desired image build: a git source, a builder image,
and the target image name. Its status mirrors the Knative build executing
it, plus the image digest and buildpacks read from the registry.
"""

from pydantic import Field

from cnb_controller.meta import Condition, ObjectMeta, ResourceModel, get_condition

API_VERSION = "build.pivotal.io/v1alpha1"
KIND = "CNBBuild"


class CNBBuildSpec(ResourceModel):
    """Desired state of a CNBBuild.

    Attributes:
        image: Target image name the build pushes to.
        service_account: Service account whose credentials the build uses.
        git_url: Source repository URL.
        git_revision: Revision to build.
        builder: Builder image reference.
    """

    image: str = Field(min_length=1)
    service_account: str = ""
    git_url: str = ""
    git_revision: str = ""
    builder: str = ""


class CNBBuildpackMetadata(ResourceModel):
    """A buildpack that contributed to the built image."""

    id: str
    version: str


class CNBBuildStatus(ResourceModel):
    """Observed state of a CNBBuild."""

    conditions: list[Condition] = Field(default_factory=list)
    observed_generation: int = 0
    sha: str = ""
    build_metadata: list[CNBBuildpackMetadata] = Field(default_factory=list)

    def get_condition(self, condition_type: str) -> Condition | None:
        """Return the condition of the given type, if present."""
        return get_condition(self.conditions, condition_type)


class CNBBuild(ResourceModel):
    """The CNBBuild resource."""

    api_version: str = API_VERSION
    kind: str = KIND
    metadata: ObjectMeta
    spec: CNBBuildSpec
    status: CNBBuildStatus = Field(default_factory=CNBBuildStatus)


__all__ = [
    "API_VERSION",
    "KIND",
    "CNBBuild",
    "CNBBuildSpec",
    "CNBBuildStatus",
    "CNBBuildpackMetadata",
]
