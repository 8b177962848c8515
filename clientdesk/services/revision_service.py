# clientdesk/services/revision_service.py
# Revision Tracker: ciclo de vida de las solicitudes de revisión
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clientdesk.models.deliverable import (
    DeliverableVersion, DeliverableStatus, Lineage, RevisionRequest, RevisionStatus,
)
from clientdesk.services import ledger_service as ledger
from clientdesk.services.errors import (
    DuplicateOpenRequest, Forbidden, InvalidContent, InvalidTransition,
    NotEditable, NotFound, NotPending, OptimisticConflict,
)

logger = logging.getLogger(__name__)


_TRANSITIONS: dict[RevisionStatus, frozenset[RevisionStatus]] = {
    RevisionStatus.PENDING: frozenset({RevisionStatus.IN_PROGRESS, RevisionStatus.COMPLETED}),
    RevisionStatus.IN_PROGRESS: frozenset({RevisionStatus.IN_PROGRESS, RevisionStatus.COMPLETED}),
    RevisionStatus.COMPLETED: frozenset(),
}


def can_transition(src: RevisionStatus, dst: RevisionStatus) -> bool:
    return RevisionStatus(dst) in _TRANSITIONS[RevisionStatus(src)]


def _clean_reason(reason: Optional[str]) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise InvalidContent("Request reason cannot be empty")
    return cleaned


def get_request(db: Session, request_id: int) -> RevisionRequest:
    req = db.get(RevisionRequest, request_id)
    if not req:
        raise NotFound("Revision request not found")
    return req


def find_open_for_version(db: Session, version_id: int) -> Optional[RevisionRequest]:
    return db.scalar(
        select(RevisionRequest).where(
            RevisionRequest.deliverable_id == version_id,
            RevisionRequest.status == RevisionStatus.PENDING,
        )
    )


# -----------------------------
# Abrir / editar
# -----------------------------
def open_request(
    db: Session,
    *,
    version: DeliverableVersion,
    requester_id: int,
    reason: str,
    latest: Optional[DeliverableVersion] = None,
) -> RevisionRequest:
    """
    Abre una solicitud contra `version` y la pasa a revision_requested.
    Orden de chequeos:
      1) ya hay una pendiente contra la última versión → DuplicateOpenRequest
      2) la versión no está pending → NotPending
      3) la versión ya no es la última → OptimisticConflict
    No hace commit.
    """
    reason = _clean_reason(reason)
    if latest is None:
        latest = ledger.latest(db, version.lineage)

    if find_open_for_version(db, latest.id) is not None:
        raise DuplicateOpenRequest()
    if DeliverableStatus(version.status) != DeliverableStatus.PENDING:
        raise NotPending("Can only request revision for pending deliverables")
    if latest.id != version.id:
        raise OptimisticConflict("A newer version of this deliverable exists")

    try:
        ledger.transition_status(db, version, DeliverableStatus.REVISION_REQUESTED)
    except OptimisticConflict:
        # otro escritor ganó: si fue otra solicitud, lo reportamos como duplicado
        if find_open_for_version(db, version.id) is not None:
            raise DuplicateOpenRequest()
        raise

    req = RevisionRequest(
        deliverable_id=version.id,
        user_id=requester_id,
        request_reason=reason,
        status=RevisionStatus.PENDING,
    )
    try:
        with db.begin_nested():
            db.add(req)
            db.flush()
    except IntegrityError:
        raise DuplicateOpenRequest()

    logger.info(
        "Revision request %s opened on deliverable=%s (purchase=%s feature=%s v%s)",
        req.id, version.id, version.purchase_id, version.feature_name, version.version_number,
    )
    return req


def edit_request(db: Session, *, request_id: int, requester_id: int, reason: str) -> RevisionRequest:
    """
    Solo el autor, y solo mientras la solicitud siga pending.
    """
    req = get_request(db, request_id)
    if req.user_id != requester_id:
        raise Forbidden("Only the requester can edit this revision request")
    if RevisionStatus(req.status) != RevisionStatus.PENDING:
        raise NotEditable()
    req.request_reason = _clean_reason(reason)
    db.add(req)
    db.flush()
    return req


# -----------------------------
# Resolver / status admin
# -----------------------------
def resolve(
    db: Session,
    requests: Iterable[RevisionRequest],
    *,
    admin_response: Optional[str] = None,
) -> List[RevisionRequest]:
    """
    Marca como completed cada solicitud no completada. Si hay admin_response
    se guarda en cada una.
    """
    resolved: List[RevisionRequest] = []
    for req in requests:
        if RevisionStatus(req.status) == RevisionStatus.COMPLETED:
            continue
        req.status = RevisionStatus.COMPLETED
        if admin_response:
            req.admin_response = admin_response
        db.add(req)
        resolved.append(req)
    if resolved:
        db.flush()
    return resolved


def complete_pending_for_lineage(
    db: Session,
    lineage: Lineage,
    *,
    before_version: Optional[int] = None,
    admin_response: Optional[str] = None,
) -> List[RevisionRequest]:
    """
    Cierra las solicitudes pending del lineage (opcionalmente solo las de
    versiones anteriores a `before_version`).
    """
    stmt = (
        select(RevisionRequest)
        .join(DeliverableVersion, RevisionRequest.deliverable_id == DeliverableVersion.id)
        .where(
            DeliverableVersion.purchase_id == lineage.purchase_id,
            DeliverableVersion.feature_name == lineage.feature_name,
            RevisionRequest.status == RevisionStatus.PENDING,
        )
        .order_by(RevisionRequest.id.asc())
    )
    if before_version is not None:
        stmt = stmt.where(DeliverableVersion.version_number < before_version)
    return resolve(db, list(db.scalars(stmt)), admin_response=admin_response)


def set_status(
    db: Session,
    *,
    request_id: int,
    status: RevisionStatus,
    admin_response: Optional[str] = None,
) -> RevisionRequest:
    """
    Cambio manual del admin: pending → in_progress|completed, in_progress → completed.
    Una solicitud completed ya no se toca.
    """
    req = get_request(db, request_id)
    src = RevisionStatus(req.status)
    dst = RevisionStatus(status)
    if src == RevisionStatus.COMPLETED:
        raise NotEditable("Revision request is already completed")
    if not can_transition(src, dst):
        raise InvalidTransition(f"Invalid transition {src.value} → {dst.value}")

    req.status = dst
    if admin_response is not None:
        req.admin_response = admin_response.strip() or None
    db.add(req)
    db.flush()
    logger.info("Revision request %s %s -> %s", req.id, src.value, dst.value)
    return req


# -----------------------------
# Listados
# -----------------------------
def list_open(
    db: Session,
    *,
    lineage: Optional[Lineage] = None,
    purchase_id: Optional[int] = None,
) -> List[RevisionRequest]:
    """Solicitudes pending de un lineage, de una compra o de todo el sistema."""
    stmt = (
        select(RevisionRequest)
        .join(DeliverableVersion, RevisionRequest.deliverable_id == DeliverableVersion.id)
        .where(RevisionRequest.status == RevisionStatus.PENDING)
        .order_by(RevisionRequest.requested_at.desc(), RevisionRequest.id.desc())
    )
    if lineage is not None:
        stmt = stmt.where(
            DeliverableVersion.purchase_id == lineage.purchase_id,
            DeliverableVersion.feature_name == lineage.feature_name,
        )
    if purchase_id is not None:
        stmt = stmt.where(DeliverableVersion.purchase_id == purchase_id)
    return list(db.scalars(stmt))


def list_for_requester(db: Session, user_id: int) -> List[RevisionRequest]:
    return list(
        db.scalars(
            select(RevisionRequest)
            .where(RevisionRequest.user_id == user_id)
            .order_by(RevisionRequest.requested_at.desc(), RevisionRequest.id.desc())
        )
    )


def list_all(db: Session, *, status: Optional[RevisionStatus] = None) -> List[RevisionRequest]:
    stmt = select(RevisionRequest).order_by(RevisionRequest.requested_at.desc(), RevisionRequest.id.desc())
    if status is not None:
        stmt = stmt.where(RevisionRequest.status == RevisionStatus(status))
    return list(db.scalars(stmt))
