# clientdesk/models/deliverable.py
# Modelos del workflow: DeliverableVersion (append-only por lineage) y RevisionRequest
from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import NamedTuple, Optional

from sqlalchemy import (
    String, Integer, Text, ForeignKey, DateTime, Enum as SAEnum,
    UniqueConstraint, CheckConstraint, Index, func, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clientdesk.db.base import Base


class Lineage(NamedTuple):
    """Un slot de deliverable: (compra, feature). No es una fila; agrupa versiones."""
    purchase_id: int
    feature_name: str


class DeliverableStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"


class RevisionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def _status_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [e.value for e in cls],  # persiste "pending", no "PENDING"
        native_enum=False,
        validate_strings=True,
        create_constraint=True,
        length=32,
    )


class DeliverableVersion(Base):
    __tablename__ = "deliverables"

    id: Mapped[int] = mapped_column(primary_key=True)

    # llave del lineage
    purchase_id: Mapped[int] = mapped_column(ForeignKey("purchases.id", ondelete="CASCADE"), index=True)
    feature_name: Mapped[str] = mapped_column(String(160))

    version_number: Mapped[int] = mapped_column(Integer)

    # exactamente uno de los dos (ver ck_deliverables_content_xor)
    file_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    deliverable_link: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    status: Mapped[DeliverableStatus] = mapped_column(
        _status_enum(DeliverableStatus, "deliverable_status"),
        default=DeliverableStatus.PENDING,
        nullable=False,
    )

    uploaded_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    uploader = relationship("User", foreign_keys=[uploaded_by], lazy="joined")
    revision_requests: Mapped[list["RevisionRequest"]] = relationship(
        "RevisionRequest", back_populates="deliverable", order_by="RevisionRequest.id"
    )

    __table_args__ = (
        # sin colisiones aun con escritores concurrentes
        UniqueConstraint("purchase_id", "feature_name", "version_number", name="uq_deliverable_lineage_version"),
        CheckConstraint(
            "(file_path IS NULL) <> (deliverable_link IS NULL)",
            name="content_xor",
        ),
        Index("ix_deliverables_lineage_status", "purchase_id", "feature_name", "status"),
    )

    @property
    def lineage(self) -> Lineage:
        return Lineage(self.purchase_id, self.feature_name)

    @property
    def uploaded_by_name(self) -> Optional[str]:
        return self.uploader.full_name if self.uploader else None


class RevisionRequest(Base):
    __tablename__ = "revision_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    deliverable_id: Mapped[int] = mapped_column(ForeignKey("deliverables.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    request_reason: Mapped[str] = mapped_column(Text)
    admin_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[RevisionStatus] = mapped_column(
        _status_enum(RevisionStatus, "revision_status"),
        default=RevisionStatus.PENDING,
        nullable=False,
    )

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    deliverable: Mapped["DeliverableVersion"] = relationship("DeliverableVersion", back_populates="revision_requests")
    requester = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        # a lo sumo una solicitud abierta por versión
        Index(
            "uq_revision_requests_one_pending",
            "deliverable_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )
