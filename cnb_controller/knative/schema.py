"""Pydantic models for the Knative Build resource.

Only the subset of the Knative build API the controller produces and
reads is modelled: service account, git source, template instantiation,
and the status conditions reported by the executor.
"""

from pydantic import Field

from cnb_controller.meta import Condition, ObjectMeta, ResourceModel, get_condition

API_VERSION = "build.knative.dev/v1alpha1"
KIND = "Build"


class GitSourceSpec(ResourceModel):
    """Git repository and revision to build from."""

    url: str
    revision: str = ""


class SourceSpec(ResourceModel):
    """Build source."""

    git: GitSourceSpec | None = None


class ArgumentSpec(ResourceModel):
    """A named template argument."""

    name: str
    value: str


class TemplateInstantiationSpec(ResourceModel):
    """Reference to a build template plus its arguments."""

    name: str
    arguments: list[ArgumentSpec] = Field(default_factory=list)


class BuildSpec(ResourceModel):
    """Desired state of a Knative build."""

    service_account_name: str = ""
    source: SourceSpec | None = None
    template: TemplateInstantiationSpec | None = None


class BuildStatus(ResourceModel):
    """Observed state of a Knative build, written by the executor."""

    conditions: list[Condition] = Field(default_factory=list)

    def get_condition(self, condition_type: str) -> Condition | None:
        """Return the condition of the given type, if present."""
        return get_condition(self.conditions, condition_type)


class KnativeBuild(ResourceModel):
    """The Knative Build resource."""

    api_version: str = API_VERSION
    kind: str = KIND
    metadata: ObjectMeta
    spec: BuildSpec = Field(default_factory=BuildSpec)
    status: BuildStatus = Field(default_factory=BuildStatus)


__all__ = [
    "API_VERSION",
    "KIND",
    "ArgumentSpec",
    "BuildSpec",
    "BuildStatus",
    "GitSourceSpec",
    "KnativeBuild",
    "SourceSpec",
    "TemplateInstantiationSpec",
]
