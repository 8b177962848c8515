# clientdesk/models/audit.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from sqlalchemy import (
    Integer, String, Enum as SAEnum, DateTime, ForeignKey, JSON, Index, func
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from clientdesk.db.base import Base


class DeliverableAction(str, Enum):
    UPLOAD = "upload"
    APPROVE = "approve"
    REQUEST_REVISION = "request_revision"
    EDIT_REVISION = "edit_revision"
    RESOLVE_REVISION = "resolve_revision"
    REVISION_STATUS = "revision_status"
    FEATURE_STATUS = "feature_status"


class DeliverableAuditLog(Base):
    __tablename__ = "deliverable_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    purchase_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False
    )
    feature_name: Mapped[str] = mapped_column(String(160), nullable=False)

    deliverable_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("deliverables.id", ondelete="SET NULL"), nullable=True
    )
    revision_request_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("revision_requests.id", ondelete="SET NULL"), nullable=True
    )

    action: Mapped[DeliverableAction] = mapped_column(
        SAEnum(
            DeliverableAction,
            name="deliverableaction",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],  # persiste los values ("approve")
            native_enum=False,
            validate_strings=True,
            length=32,
        ),
        nullable=False,
    )

    # Usuario que originó la acción (None para procesos del sistema)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # status previo/nuevo, version_number, solicitudes cerradas, etc.
    details: Mapped[Dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index(
            "ix_deliverable_audit_logs_lineage_created",
            "purchase_id", "feature_name", "created_at",
        ),
        Index("ix_deliverable_audit_logs_action", "action"),
    )
