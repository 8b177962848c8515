# clientdesk/services/audit_service.py

from __future__ import annotations
from typing import Optional, Dict, Any, Union
from fastapi import Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from clientdesk.models.audit import DeliverableAuditLog, DeliverableAction
from clientdesk.models.deliverable import Lineage


def _client_meta(request: Optional[Request]) -> Dict[str, Any]:
    if not request:
        return {}
    meta: Dict[str, Any] = {}
    if request.client:
        meta["ip"] = request.client.host
    ua = request.headers.get("user-agent")
    if ua:
        meta["user_agent"] = ua
    return meta


def audit_action(
    db: Session,
    *,
    lineage: Lineage,
    action: Union[DeliverableAction, str],
    user_id: Optional[int],
    deliverable_id: Optional[int] = None,
    revision_request_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> DeliverableAuditLog:
    """
    Registra una acción del workflow sobre un lineage. No hace commit:
    el log se guarda (o se descarta) junto con la transición que describe.
    """
    if isinstance(action, str):
        action = DeliverableAction(action.lower())

    payload = dict(details or {})
    payload.update(_client_meta(request))

    log = DeliverableAuditLog(
        purchase_id=lineage.purchase_id,
        feature_name=lineage.feature_name,
        deliverable_id=deliverable_id,
        revision_request_id=revision_request_id,
        action=action,
        user_id=user_id,
        details=payload,
    )
    db.add(log)
    return log


def list_for_lineage(db: Session, lineage: Lineage) -> list[DeliverableAuditLog]:
    return list(
        db.scalars(
            select(DeliverableAuditLog)
            .where(
                DeliverableAuditLog.purchase_id == lineage.purchase_id,
                DeliverableAuditLog.feature_name == lineage.feature_name,
            )
            .order_by(DeliverableAuditLog.id.asc())
        )
    )
