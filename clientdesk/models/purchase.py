# clientdesk/models/purchase.py
# Directorio de compras/features: la llave (purchase_id, feature_name) de cada lineage
from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, ForeignKey, DateTime, Enum as SAEnum, UniqueConstraint, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clientdesk.db.base import Base


class FeatureStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Purchase(Base):
    __tablename__ = "purchases"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    package_name: Mapped[str] = mapped_column(String(160))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    features: Mapped[list["PurchaseFeature"]] = relationship(
        "PurchaseFeature", back_populates="purchase", cascade="all, delete-orphan",
        order_by="PurchaseFeature.feature_name",
    )


class PurchaseFeature(Base):
    """
    Una fila por feature comprada. Reemplaza el JSON embebido en la compra:
    el status de la feature tiene su propio ciclo de vida, independiente del
    status de los deliverables, pero la fila es el ancla del lineage.
    """
    __tablename__ = "purchase_features"

    id: Mapped[int] = mapped_column(primary_key=True)
    purchase_id: Mapped[int] = mapped_column(ForeignKey("purchases.id", ondelete="CASCADE"), index=True)
    feature_name: Mapped[str] = mapped_column(String(160))

    feature_status: Mapped[FeatureStatus] = mapped_column(
        SAEnum(
            FeatureStatus,
            name="feature_status",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
            native_enum=False,
            validate_strings=True,
            create_constraint=True,
            length=32,
        ),
        default=FeatureStatus.PENDING,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    purchase: Mapped["Purchase"] = relationship("Purchase", back_populates="features")

    __table_args__ = (
        UniqueConstraint("purchase_id", "feature_name", name="uq_purchase_feature"),
    )
