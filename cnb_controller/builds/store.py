"""CNBBuild resource store.

This module provides the store the reconciler reads CNBBuilds from and
writes their status to. Each call runs in its own short transaction, the
way each call to an API server is its own request:
- get/list: read resources by key or namespace
- create: insert a new resource, assigning uid and generation
- update: replace the spec, bumping generation when it changes
- update_status: full replace of status, conditional on resource_version
- delete: remove a resource along with the Knative builds it owns

Writes are conditional on the caller's resource_version; a stale version
raises ConflictError, which callers treat as retryable.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from cnb_controller.builds.models import CNBBuildRecord
from cnb_controller.builds.schema import (
    KIND,
    CNBBuild,
    CNBBuildpackMetadata,
    CNBBuildSpec,
    CNBBuildStatus,
)
from cnb_controller.db import get_session
from cnb_controller.errors import (
    AlreadyExistsError,
    ConflictError,
    ResourceNotFoundError,
)
from cnb_controller.knative import models as knative_models  # noqa: F401
from cnb_controller.meta import Condition, ObjectMeta

logger = logging.getLogger(__name__)


def record_to_cnbbuild(record: CNBBuildRecord) -> CNBBuild:
    """Convert a CNBBuildRecord ORM model to a CNBBuild resource.

    Args:
        record: CNBBuildRecord ORM instance.

    Returns:
        CNBBuild resource, detached from the session.
    """
    return CNBBuild(
        metadata=ObjectMeta(
            namespace=record.namespace,
            name=record.name,
            uid=record.uid,
            generation=record.generation,
            resource_version=record.resource_version,
        ),
        spec=CNBBuildSpec(
            image=record.image,
            service_account=record.service_account,
            git_url=record.git_url,
            git_revision=record.git_revision,
            builder=record.builder,
        ),
        status=CNBBuildStatus(
            conditions=[Condition.model_validate(c) for c in record.conditions or []],
            observed_generation=record.observed_generation,
            sha=record.sha,
            build_metadata=[
                CNBBuildpackMetadata.model_validate(m)
                for m in record.build_metadata or []
            ],
        ),
    )


def _spec_changed(record: CNBBuildRecord, spec: CNBBuildSpec) -> bool:
    return (
        record.image,
        record.service_account,
        record.git_url,
        record.git_revision,
        record.builder,
    ) != (
        spec.image,
        spec.service_account,
        spec.git_url,
        spec.git_revision,
        spec.builder,
    )


def _apply_spec(record: CNBBuildRecord, spec: CNBBuildSpec) -> None:
    record.image = spec.image
    record.service_account = spec.service_account
    record.git_url = spec.git_url
    record.git_revision = spec.git_revision
    record.builder = spec.builder


def _apply_status(record: CNBBuildRecord, status: CNBBuildStatus) -> None:
    # New list objects so the JSON columns are flagged as modified
    record.conditions = [c.model_dump(mode="json") for c in status.conditions]
    record.observed_generation = status.observed_generation
    record.sha = status.sha
    record.build_metadata = [m.model_dump(mode="json") for m in status.build_metadata]


class CNBBuildStore:
    """Store of CNBBuild resources backed by SQLAlchemy."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory for the sessions each call runs in.
        """
        self._session_factory = session_factory

    @staticmethod
    def _get_record(
        session: Session, namespace: str, name: str
    ) -> CNBBuildRecord | None:
        stmt = select(CNBBuildRecord).where(
            CNBBuildRecord.namespace == namespace,
            CNBBuildRecord.name == name,
        )
        return session.execute(stmt).scalar_one_or_none()

    def _get_record_or_raise(
        self, session: Session, namespace: str, name: str
    ) -> CNBBuildRecord:
        record = self._get_record(session, namespace, name)
        if record is None:
            raise ResourceNotFoundError(KIND, namespace, name)
        return record

    def get(self, namespace: str, name: str) -> CNBBuild:
        """Get a CNBBuild by key.

        Args:
            namespace: Resource namespace.
            name: Resource name.

        Returns:
            CNBBuild resource.

        Raises:
            ResourceNotFoundError: If no such CNBBuild exists.
        """
        with get_session(self._session_factory) as session:
            record = self._get_record_or_raise(session, namespace, name)
            return record_to_cnbbuild(record)

    def list(self, namespace: str | None = None) -> list[CNBBuild]:
        """List CNBBuilds, optionally restricted to one namespace.

        Args:
            namespace: Namespace filter.

        Returns:
            CNBBuild resources ordered by namespace and name.
        """
        stmt = select(CNBBuildRecord)
        if namespace is not None:
            stmt = stmt.where(CNBBuildRecord.namespace == namespace)
        stmt = stmt.order_by(CNBBuildRecord.namespace, CNBBuildRecord.name)

        with get_session(self._session_factory) as session:
            return [record_to_cnbbuild(r) for r in session.execute(stmt).scalars()]

    def create(self, build: CNBBuild) -> CNBBuild:
        """Create a CNBBuild.

        The store assigns uid, generation 1 and the initial resource version.
        Any status on the given resource is ignored.

        Args:
            build: Resource to create.

        Returns:
            The stored CNBBuild.

        Raises:
            AlreadyExistsError: If a CNBBuild with the same key exists.
        """
        namespace, name = build.metadata.namespace, build.metadata.name
        try:
            with get_session(self._session_factory) as session:
                if self._get_record(session, namespace, name) is not None:
                    raise AlreadyExistsError(KIND, namespace, name)

                record = CNBBuildRecord(
                    uid=str(uuid.uuid4()),
                    namespace=namespace,
                    name=name,
                    generation=1,
                    conditions=[],
                    observed_generation=0,
                    sha="",
                    build_metadata=[],
                )
                _apply_spec(record, build.spec)
                session.add(record)
                session.flush()
                logger.debug("Created CNBBuild %s/%s", namespace, name)
                return record_to_cnbbuild(record)
        except IntegrityError as e:
            raise AlreadyExistsError(KIND, namespace, name) from e

    def update(self, build: CNBBuild) -> CNBBuild:
        """Replace the spec of a CNBBuild.

        Args:
            build: Resource carrying the new spec and the resource version
                it was read at.

        Returns:
            The stored CNBBuild.

        Raises:
            ResourceNotFoundError: If the CNBBuild does not exist.
            ConflictError: If the resource version is stale.
        """
        namespace, name = build.metadata.namespace, build.metadata.name
        version = build.metadata.resource_version
        try:
            with get_session(self._session_factory) as session:
                record = self._get_record_or_raise(session, namespace, name)
                if record.resource_version != version:
                    raise ConflictError(KIND, namespace, name, version)

                if _spec_changed(record, build.spec):
                    _apply_spec(record, build.spec)
                    record.generation += 1
                    session.flush()
                return record_to_cnbbuild(record)
        except StaleDataError as e:
            raise ConflictError(KIND, namespace, name, version) from e

    def update_status(self, build: CNBBuild) -> CNBBuild:
        """Replace the status of a CNBBuild.

        Conditions, observed generation, sha and build metadata are all
        overwritten with the values on the given resource.

        Args:
            build: Resource carrying the new status and the resource
                version it was read at.

        Returns:
            The stored CNBBuild.

        Raises:
            ResourceNotFoundError: If the CNBBuild does not exist.
            ConflictError: If the resource version is stale.
        """
        namespace, name = build.metadata.namespace, build.metadata.name
        version = build.metadata.resource_version
        try:
            with get_session(self._session_factory) as session:
                record = self._get_record_or_raise(session, namespace, name)
                if record.resource_version != version:
                    raise ConflictError(KIND, namespace, name, version)

                _apply_status(record, build.status)
                session.flush()
                return record_to_cnbbuild(record)
        except StaleDataError as e:
            raise ConflictError(KIND, namespace, name, version) from e

    def delete(self, namespace: str, name: str) -> None:
        """Delete a CNBBuild and the Knative builds it owns.

        Args:
            namespace: Resource namespace.
            name: Resource name.

        Raises:
            ResourceNotFoundError: If the CNBBuild does not exist.
        """
        with get_session(self._session_factory) as session:
            record = self._get_record_or_raise(session, namespace, name)
            session.delete(record)
        logger.debug("Deleted CNBBuild %s/%s", namespace, name)


__all__ = ["CNBBuildStore", "record_to_cnbbuild"]
