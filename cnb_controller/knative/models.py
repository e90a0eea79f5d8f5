"""Knative Build ORM model.

The spec is stored as a JSON document since the controller never queries
into it; it is written once on create and read back verbatim.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cnb_controller.db import Base

if TYPE_CHECKING:
    from cnb_controller.builds.models import CNBBuildRecord


class KnativeBuildRecord(Base):
    """ORM model for Knative Build resources.

    Attributes:
        id: Primary key.
        uid: Store-assigned unique identifier.
        namespace: Resource namespace.
        name: Resource name, unique within the namespace.
        generation: Spec version.
        resource_version: Optimistic concurrency counter.
        owner_id: Foreign key to the controlling CNBBuild, if any.
        owner_references: JSON list of owner references.
        spec: JSON build spec.
        conditions: JSON list of status conditions.
        created_at: Creation timestamp.
    """

    __tablename__ = "knative_builds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)

    namespace: Mapped[str] = mapped_column(String(253), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(253), nullable=False)

    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    resource_version: Mapped[int] = mapped_column(Integer, nullable=False)

    owner_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("cnb_builds.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    owner_references: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    spec: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    owner: Mapped[Optional["CNBBuildRecord"]] = relationship(
        "CNBBuildRecord", back_populates="knative_builds"
    )

    __table_args__ = (
        UniqueConstraint("namespace", "name", name="uq_knative_builds_namespace_name"),
    )
    __mapper_args__ = {"version_id_col": resource_version}

    def __repr__(self) -> str:
        """Return string representation of KnativeBuildRecord."""
        return (
            f"<KnativeBuildRecord(namespace='{self.namespace}', name='{self.name}', "
            f"resource_version={self.resource_version})>"
        )


__all__ = ["KnativeBuildRecord"]
