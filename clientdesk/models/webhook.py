# clientdesk/models/webhook.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from clientdesk.db.base import Base


class WebhookEndpoint(Base):
    """Destino del servicio de notificaciones (email/Slack/etc. viven del otro lado)."""
    __tablename__ = "webhook_endpoints"

    id: Mapped[int] = mapped_column(primary_key=True)

    url: Mapped[str] = mapped_column(String(512), nullable=False)

    # Secreto para firmar (HMAC) los webhooks
    secret: Mapped[str] = mapped_column(String(255), nullable=False)

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=true(), default=True)

    # Filtro simple de eventos como CSV (ej. "deliverable.uploaded,revision.requested")
    event_filter: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
