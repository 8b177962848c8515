# clientdesk/services/directory_service.py
# Directorio de compras: dueños, features compradas y su status
from __future__ import annotations

import logging
from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from clientdesk.models.auth import User
from clientdesk.models.deliverable import Lineage
from clientdesk.models.purchase import Purchase, PurchaseFeature, FeatureStatus
from clientdesk.services.errors import Forbidden, InvalidContent, InvalidTransition, NotFound

logger = logging.getLogger(__name__)


def register_purchase(
    db: Session,
    *,
    client_id: int,
    package_name: str,
    features: Iterable[str],
) -> Purchase:
    """
    Crea la compra con sus features (todas en pending). No hace commit.
    """
    names: List[str] = []
    for raw in features:
        name = (raw or "").strip()
        if not name:
            raise InvalidContent("Feature name cannot be empty")
        if name not in names:
            names.append(name)

    client = db.get(User, client_id)
    if not client:
        raise NotFound("Client not found")

    purchase = Purchase(client_id=client_id, package_name=package_name)
    purchase.features = [PurchaseFeature(feature_name=n, feature_status=FeatureStatus.PENDING) for n in names]
    db.add(purchase)
    db.flush()
    return purchase


def get_purchase(db: Session, purchase_id: int) -> Purchase:
    purchase = db.get(Purchase, purchase_id)
    if not purchase:
        raise NotFound("Purchase not found")
    return purchase


def require_lineage(db: Session, lineage: Lineage, *, lock: bool = False) -> PurchaseFeature:
    """
    La feature debe existir en la compra. lock=True toma el lock de fila
    (SELECT ... FOR UPDATE) que serializa a los escritores del lineage.
    En SQLite el FOR UPDATE se ignora.
    """
    stmt = select(PurchaseFeature).where(
        PurchaseFeature.purchase_id == lineage.purchase_id,
        PurchaseFeature.feature_name == lineage.feature_name,
    )
    if lock:
        stmt = stmt.with_for_update()
    feature = db.scalar(stmt)
    if not feature:
        if db.get(Purchase, lineage.purchase_id) is None:
            raise NotFound("Purchase not found")
        raise NotFound(f"Feature {lineage.feature_name!r} not found in this purchase")
    return feature


def require_client_access(db: Session, purchase_id: int, user: User) -> Purchase:
    """
    Admin ve todo; un cliente solo sus compras.
    """
    purchase = get_purchase(db, purchase_id)
    if user.is_admin:
        return purchase
    if purchase.client_id != user.id:
        raise Forbidden("Access denied to this purchase")
    return purchase


def require_owner(db: Session, purchase_id: int, user_id: int) -> Purchase:
    """
    Acciones de cliente (aprobar, pedir revisión): solo el dueño de la compra.
    """
    purchase = get_purchase(db, purchase_id)
    if purchase.client_id != user_id:
        raise Forbidden("Only the purchase owner can review its deliverables")
    return purchase


def list_features(db: Session, purchase_id: int) -> List[PurchaseFeature]:
    get_purchase(db, purchase_id)
    return list(
        db.scalars(
            select(PurchaseFeature)
            .where(PurchaseFeature.purchase_id == purchase_id)
            .order_by(PurchaseFeature.feature_name.asc())
        )
    )


# Reglas de transición del status de la feature (independiente del deliverable)
_FEATURE_TRANSITIONS: dict[FeatureStatus, frozenset[FeatureStatus]] = {
    FeatureStatus.PENDING: frozenset({FeatureStatus.IN_PROGRESS, FeatureStatus.CANCELLED}),
    FeatureStatus.IN_PROGRESS: frozenset({FeatureStatus.COMPLETED, FeatureStatus.CANCELLED, FeatureStatus.PENDING}),
    FeatureStatus.COMPLETED: frozenset({FeatureStatus.IN_PROGRESS}),
    FeatureStatus.CANCELLED: frozenset(),
}


def can_transition_feature(src: FeatureStatus, dst: FeatureStatus) -> bool:
    return FeatureStatus(dst) in _FEATURE_TRANSITIONS[FeatureStatus(src)]


def transition_feature_status(db: Session, feature: PurchaseFeature, dst: FeatureStatus) -> PurchaseFeature:
    src = FeatureStatus(feature.feature_status)
    dst = FeatureStatus(dst)
    if not can_transition_feature(src, dst):
        raise InvalidTransition(f"Invalid feature transition {src.value} → {dst.value}")
    feature.feature_status = dst
    db.add(feature)
    db.flush()
    logger.info(
        "Feature status purchase=%s feature=%s %s -> %s",
        feature.purchase_id, feature.feature_name, src.value, dst.value,
    )
    return feature
