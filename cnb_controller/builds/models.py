"""CNBBuild ORM model.

This module defines the CNBBuildRecord model backing the CNBBuild store.
Spec fields are flat columns; status lists are JSON columns.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cnb_controller.db import Base

if TYPE_CHECKING:
    from cnb_controller.knative.models import KnativeBuildRecord


class CNBBuildRecord(Base):
    """ORM model for CNBBuild resources.

    Attributes:
        id: Primary key.
        uid: Store-assigned unique identifier referenced by owner references.
        namespace: Resource namespace.
        name: Resource name, unique within the namespace.
        generation: Spec version, bumped on every spec change.
        resource_version: Optimistic concurrency counter, bumped on every write.
        image: Target image name.
        service_account: Service account name.
        git_url: Source repository URL.
        git_revision: Source revision.
        builder: Builder image reference.
        conditions: JSON list of status conditions.
        observed_generation: Last generation processed by the reconciler.
        sha: Built image digest.
        build_metadata: JSON list of buildpack id/version entries.
        created_at: Creation timestamp.
    """

    __tablename__ = "cnb_builds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)

    # Identity
    namespace: Mapped[str] = mapped_column(String(253), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(253), nullable=False)

    # Versioning
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    resource_version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Spec
    image: Mapped[str] = mapped_column(String(500), nullable=False)
    service_account: Mapped[str] = mapped_column(
        String(253), nullable=False, default=""
    )
    git_url: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    git_revision: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    builder: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # Status
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    observed_generation: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    sha: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    build_metadata: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    # Owned Knative builds are removed with their owner
    knative_builds: Mapped[list["KnativeBuildRecord"]] = relationship(
        "KnativeBuildRecord", back_populates="owner", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("namespace", "name", name="uq_cnb_builds_namespace_name"),
    )
    __mapper_args__ = {"version_id_col": resource_version}

    def __repr__(self) -> str:
        """Return string representation of CNBBuildRecord."""
        return (
            f"<CNBBuildRecord(namespace='{self.namespace}', name='{self.name}', "
            f"generation={self.generation}, resource_version={self.resource_version})>"
        )


__all__ = ["CNBBuildRecord"]
