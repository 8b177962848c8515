# clientdesk/services/query_service.py
# Vistas de lectura para los dashboards de admin y cliente
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session, aliased, selectinload

from clientdesk.models.deliverable import (
    DeliverableVersion, DeliverableStatus, Lineage, RevisionRequest, RevisionStatus,
)
from clientdesk.services import ledger_service as ledger


def latest_per_lineage(
    db: Session,
    *,
    purchase_id: Optional[int] = None,
    status: Optional[DeliverableStatus] = None,
) -> List[DeliverableVersion]:
    """
    Una fila por lineage: su última versión. Con status, solo los lineages
    cuya última versión tiene ese status.
    """
    if status is not None:
        return ledger.list_latest_by_status(db, status, purchase_id=purchase_id)

    stmt = select(DeliverableVersion).where(ledger.latest_clause())
    if purchase_id is not None:
        stmt = stmt.where(DeliverableVersion.purchase_id == purchase_id)
    return list(db.scalars(ledger.order_latest(stmt, purchase_id)).unique())


def versions_for_purchase(db: Session, purchase_id: int) -> List[DeliverableVersion]:
    """Todas las versiones de una compra (vista completa del admin)."""
    return list(
        db.scalars(
            select(DeliverableVersion)
            .where(DeliverableVersion.purchase_id == purchase_id)
            .order_by(DeliverableVersion.feature_name.asc(), DeliverableVersion.version_number.desc())
        ).unique()
    )


def lineage_history(db: Session, lineage: Lineage) -> List[Dict[str, Any]]:
    """
    Historial del lineage (más nueva primero), cada versión con la solicitud
    de revisión más reciente que se abrió contra ella (si hubo).
    """
    versions = db.scalars(
        select(DeliverableVersion)
        .where(
            DeliverableVersion.purchase_id == lineage.purchase_id,
            DeliverableVersion.feature_name == lineage.feature_name,
        )
        .options(selectinload(DeliverableVersion.revision_requests))
        .order_by(DeliverableVersion.version_number.desc())
    ).unique()

    out: List[Dict[str, Any]] = []
    for v in versions:
        rr = v.revision_requests[-1] if v.revision_requests else None
        out.append(
            {
                "version": v,
                "client_revision_comment": rr.request_reason if rr else None,
                "revision_requested_at": rr.requested_at if rr else None,
                "revision_request_status": RevisionStatus(rr.status) if rr else None,
                "admin_response": rr.admin_response if rr else None,
            }
        )
    return out


def revision_requests_overview(
    db: Session,
    *,
    status: Optional[RevisionStatus] = None,
    user_id: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Cada solicitud junto al estado actual de su lineage: última versión,
    su status y el total de versiones.
    """
    latest_v = aliased(DeliverableVersion)
    counts = (
        select(
            DeliverableVersion.purchase_id.label("purchase_id"),
            DeliverableVersion.feature_name.label("feature_name"),
            func.count(DeliverableVersion.id).label("total_versions"),
            func.max(DeliverableVersion.version_number).label("latest_version_number"),
        )
        .group_by(DeliverableVersion.purchase_id, DeliverableVersion.feature_name)
        .subquery()
    )

    stmt = (
        select(RevisionRequest, counts.c.total_versions, latest_v)
        .join(DeliverableVersion, RevisionRequest.deliverable_id == DeliverableVersion.id)
        .join(
            counts,
            (counts.c.purchase_id == DeliverableVersion.purchase_id)
            & (counts.c.feature_name == DeliverableVersion.feature_name),
        )
        .join(
            latest_v,
            (latest_v.purchase_id == counts.c.purchase_id)
            & (latest_v.feature_name == counts.c.feature_name)
            & (latest_v.version_number == counts.c.latest_version_number),
        )
        .options(selectinload(RevisionRequest.deliverable))
        .order_by(RevisionRequest.requested_at.desc(), RevisionRequest.id.desc())
    )
    if status is not None:
        stmt = stmt.where(RevisionRequest.status == RevisionStatus(status))
    if user_id is not None:
        stmt = stmt.where(RevisionRequest.user_id == user_id)

    out: List[Dict[str, Any]] = []
    for req, total, latest in db.execute(stmt).unique():
        out.append(
            {
                "request": req,
                "deliverable": req.deliverable,
                "latest": latest,
                "total_versions": int(total),
            }
        )
    return out
