"""Knative Build resource store.

The reconciler only ever gets and creates Knative builds. Status updates
come from the build executor, which is external; update_status exists for
that side and for tests.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from cnb_controller.builds.models import CNBBuildRecord
from cnb_controller.db import get_session
from cnb_controller.errors import (
    AlreadyExistsError,
    ConflictError,
    ResourceNotFoundError,
)
from cnb_controller.knative.models import KnativeBuildRecord
from cnb_controller.knative.schema import KIND, BuildSpec, BuildStatus, KnativeBuild
from cnb_controller.meta import Condition, ObjectMeta, OwnerReference

logger = logging.getLogger(__name__)


def record_to_knative_build(record: KnativeBuildRecord) -> KnativeBuild:
    """Convert a KnativeBuildRecord ORM model to a KnativeBuild resource.

    Args:
        record: KnativeBuildRecord ORM instance.

    Returns:
        KnativeBuild resource, detached from the session.
    """
    return KnativeBuild(
        metadata=ObjectMeta(
            namespace=record.namespace,
            name=record.name,
            uid=record.uid,
            generation=record.generation,
            resource_version=record.resource_version,
            owner_references=[
                OwnerReference.model_validate(o) for o in record.owner_references or []
            ],
        ),
        spec=BuildSpec.model_validate(record.spec or {}),
        status=BuildStatus(
            conditions=[Condition.model_validate(c) for c in record.conditions or []],
        ),
    )


class KnativeBuildStore:
    """Store of Knative Build resources backed by SQLAlchemy."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory for the sessions each call runs in.
        """
        self._session_factory = session_factory

    @staticmethod
    def _get_record(
        session: Session, namespace: str, name: str
    ) -> KnativeBuildRecord | None:
        stmt = select(KnativeBuildRecord).where(
            KnativeBuildRecord.namespace == namespace,
            KnativeBuildRecord.name == name,
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _find_controller(
        session: Session, namespace: str, owner_references: list[OwnerReference]
    ) -> CNBBuildRecord | None:
        for ref in owner_references:
            if not ref.controller:
                continue
            stmt = select(CNBBuildRecord).where(
                CNBBuildRecord.uid == ref.uid,
                CNBBuildRecord.namespace == namespace,
            )
            return session.execute(stmt).scalar_one_or_none()
        return None

    def get(self, namespace: str, name: str) -> KnativeBuild:
        """Get a Knative build by key.

        Args:
            namespace: Resource namespace.
            name: Resource name.

        Returns:
            KnativeBuild resource.

        Raises:
            ResourceNotFoundError: If no such build exists.
        """
        with get_session(self._session_factory) as session:
            record = self._get_record(session, namespace, name)
            if record is None:
                raise ResourceNotFoundError(KIND, namespace, name)
            return record_to_knative_build(record)

    def list(self, namespace: str | None = None) -> list[KnativeBuild]:
        """List Knative builds, optionally restricted to one namespace."""
        stmt = select(KnativeBuildRecord)
        if namespace is not None:
            stmt = stmt.where(KnativeBuildRecord.namespace == namespace)
        stmt = stmt.order_by(KnativeBuildRecord.namespace, KnativeBuildRecord.name)

        with get_session(self._session_factory) as session:
            return [
                record_to_knative_build(r) for r in session.execute(stmt).scalars()
            ]

    def create(self, build: KnativeBuild) -> KnativeBuild:
        """Create a Knative build.

        A controller owner reference links the build to its owning CNBBuild
        so that deleting the owner removes the build as well.

        Args:
            build: Resource to create.

        Returns:
            The stored KnativeBuild.

        Raises:
            AlreadyExistsError: If a build with the same key exists.
        """
        namespace, name = build.metadata.namespace, build.metadata.name
        try:
            with get_session(self._session_factory) as session:
                if self._get_record(session, namespace, name) is not None:
                    raise AlreadyExistsError(KIND, namespace, name)

                owner = self._find_controller(
                    session, namespace, build.metadata.owner_references
                )
                record = KnativeBuildRecord(
                    uid=str(uuid.uuid4()),
                    namespace=namespace,
                    name=name,
                    generation=1,
                    owner=owner,
                    owner_references=[
                        o.model_dump(mode="json")
                        for o in build.metadata.owner_references
                    ],
                    spec=build.spec.model_dump(mode="json", exclude_none=True),
                    conditions=[],
                )
                session.add(record)
                session.flush()
                logger.debug("Created Knative build %s/%s", namespace, name)
                return record_to_knative_build(record)
        except IntegrityError as e:
            raise AlreadyExistsError(KIND, namespace, name) from e

    def update_status(self, build: KnativeBuild) -> KnativeBuild:
        """Replace the status conditions of a Knative build.

        Args:
            build: Resource carrying the new status and the resource
                version it was read at.

        Returns:
            The stored KnativeBuild.

        Raises:
            ResourceNotFoundError: If the build does not exist.
            ConflictError: If the resource version is stale.
        """
        namespace, name = build.metadata.namespace, build.metadata.name
        version = build.metadata.resource_version
        try:
            with get_session(self._session_factory) as session:
                record = self._get_record(session, namespace, name)
                if record is None:
                    raise ResourceNotFoundError(KIND, namespace, name)
                if record.resource_version != version:
                    raise ConflictError(KIND, namespace, name, version)

                record.conditions = [
                    c.model_dump(mode="json") for c in build.status.conditions
                ]
                session.flush()
                return record_to_knative_build(record)
        except StaleDataError as e:
            raise ConflictError(KIND, namespace, name, version) from e


__all__ = ["KnativeBuildStore", "record_to_knative_build"]
