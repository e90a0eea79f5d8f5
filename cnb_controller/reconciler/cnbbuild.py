"""CNBBuild reconciler.

This module provides the reconcile loop body for CNBBuild resources:
- Create the Knative build executing a CNBBuild, once
- Mirror the Knative build's conditions onto the CNBBuild
- Harvest image digest and buildpacks once the build has succeeded
- Track the generation the controller has processed

The phase of a CNBBuild is not stored; it is derived on every pass from
the Knative build's Succeeded condition. A Knative build is never updated
after creation, so edits to a CNBBuild spec do not reach a running build.
"""

from __future__ import annotations

import logging

from cnb_controller.builds.schema import (
    API_VERSION,
    KIND,
    CNBBuild,
    CNBBuildpackMetadata,
)
from cnb_controller.builds.store import CNBBuildStore
from cnb_controller.errors import ResourceNotFoundError
from cnb_controller.knative.schema import (
    ArgumentSpec,
    BuildSpec,
    GitSourceSpec,
    KnativeBuild,
    SourceSpec,
    TemplateInstantiationSpec,
)
from cnb_controller.knative.store import KnativeBuildStore
from cnb_controller.meta import ObjectMeta, new_controller_ref
from cnb_controller.registry.metadata import MetadataRetriever
from cnb_controller.types import CONDITION_SUCCEEDED, BuildPhase, split_key

logger = logging.getLogger(__name__)

# Knative build template that runs the buildpacks lifecycle
DEFAULT_BUILD_TEMPLATE = "buildpacks-cnb"


def build_phase(knative_build: KnativeBuild | None) -> BuildPhase:
    """Derive the phase of a CNBBuild from its Knative build.

    Args:
        knative_build: The Knative build, or None if not yet created.

    Returns:
        BuildPhase for the pair.
    """
    if knative_build is None:
        return BuildPhase.PENDING
    succeeded = knative_build.status.get_condition(CONDITION_SUCCEEDED)
    if succeeded is None:
        return BuildPhase.CREATED
    if succeeded.is_true():
        return BuildPhase.SUCCEEDED
    if succeeded.is_false():
        return BuildPhase.FAILED
    return BuildPhase.CREATED


def new_knative_build(
    build: CNBBuild, template: str = DEFAULT_BUILD_TEMPLATE
) -> KnativeBuild:
    """Construct the Knative build that executes a CNBBuild.

    The result depends only on the CNBBuild's identity and spec.

    Args:
        build: The owning CNBBuild.
        template: Name of the build template to instantiate.

    Returns:
        KnativeBuild to create, owned by the CNBBuild.
    """
    return KnativeBuild(
        metadata=ObjectMeta(
            namespace=build.metadata.namespace,
            name=build.metadata.name,
            owner_references=[new_controller_ref(build.metadata, API_VERSION, KIND)],
        ),
        spec=BuildSpec(
            service_account_name=build.spec.service_account,
            source=SourceSpec(
                git=GitSourceSpec(
                    url=build.spec.git_url,
                    revision=build.spec.git_revision,
                )
            ),
            template=TemplateInstantiationSpec(
                name=template,
                arguments=[
                    ArgumentSpec(name="IMAGE", value=build.spec.image),
                    ArgumentSpec(name="BUILDER_IMAGE", value=build.spec.builder),
                ],
            ),
        ),
    )


class Reconciler:
    """Reconciles CNBBuild resources with their Knative builds.

    The reconciler holds no state of its own beyond its collaborators and
    may be invoked repeatedly, including concurrently for different keys.
    """

    def __init__(
        self,
        cnb_builds: CNBBuildStore,
        knative_builds: KnativeBuildStore,
        metadata_retriever: MetadataRetriever,
        build_template: str = DEFAULT_BUILD_TEMPLATE,
    ) -> None:
        """Initialize the reconciler.

        Args:
            cnb_builds: Store of CNBBuild resources.
            knative_builds: Store of Knative Build resources.
            metadata_retriever: Reads built image metadata from the registry.
            build_template: Knative build template for created builds.
        """
        self.cnb_builds = cnb_builds
        self.knative_builds = knative_builds
        self.metadata_retriever = metadata_retriever
        self.build_template = build_template

    def reconcile(self, key: str) -> None:
        """Bring the CNBBuild with the given key up to date.

        Args:
            key: Resource key in "namespace/name" form.

        Raises:
            StoreError: If reading or writing either store fails,
                including ConflictError on a stale status write.
            RegistryAccessError: If the built image cannot be read.
            MalformedMetadataError: If the built image's metadata is invalid.
        """
        try:
            namespace, name = split_key(key)
        except ValueError:
            # Retrying will not fix the key
            logger.error("Invalid resource key: %s", key)
            return

        try:
            build = self.cnb_builds.get(namespace, name)
        except ResourceNotFoundError:
            logger.debug("CNBBuild %s no longer exists", key)
            return

        knative_build = self._get_or_create_knative_build(build)
        phase = build_phase(knative_build)
        logger.debug("CNBBuild %s is %s", key, phase.value)

        desired = build.model_copy(deep=True)
        desired.status.conditions = [
            c.model_copy() for c in knative_build.status.conditions
        ]

        if phase == BuildPhase.SUCCEEDED and not desired.status.build_metadata:
            try:
                built_image = self.metadata_retriever.get_built_image(build)
            except Exception as e:
                logger.warning("Retrieving image for CNBBuild %s failed: %s", key, e)
                # Conditions stay visible while metadata retrieval is retried
                self._update_status(build, desired)
                raise

            desired.status.sha = built_image.sha
            desired.status.build_metadata = [
                CNBBuildpackMetadata(id=bp.id, version=bp.version)
                for bp in built_image.buildpack_metadata
            ]
            logger.info("Recorded image %s for CNBBuild %s", built_image.sha, key)

        desired.status.observed_generation = build.metadata.generation
        self._update_status(build, desired)

    def _get_or_create_knative_build(self, build: CNBBuild) -> KnativeBuild:
        namespace, name = build.metadata.namespace, build.metadata.name
        try:
            return self.knative_builds.get(namespace, name)
        except ResourceNotFoundError:
            pass

        knative_build = self.knative_builds.create(
            new_knative_build(build, template=self.build_template)
        )
        logger.info("Created Knative build %s/%s", namespace, name)
        return knative_build

    def _update_status(self, current: CNBBuild, desired: CNBBuild) -> None:
        if current.status == desired.status:
            return
        self.cnb_builds.update_status(desired)


__all__ = [
    "DEFAULT_BUILD_TEMPLATE",
    "Reconciler",
    "build_phase",
    "new_knative_build",
]
