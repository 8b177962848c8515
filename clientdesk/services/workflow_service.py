# clientdesk/services/workflow_service.py
# Workflow Coordinator: cada acción de admin/cliente como una unidad atómica.
# Nada aquí hace commit; el endpoint hace commit o rollback de todo junto.
from __future__ import annotations

import logging
from typing import List, NamedTuple, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from clientdesk.models.audit import DeliverableAction
from clientdesk.models.deliverable import (
    DeliverableVersion, DeliverableStatus, Lineage, RevisionRequest, RevisionStatus,
)
from clientdesk.models.purchase import FeatureStatus, PurchaseFeature
from clientdesk.services import directory_service as directory
from clientdesk.services import ledger_service as ledger
from clientdesk.services import revision_service as tracker
from clientdesk.services.audit_service import audit_action
from clientdesk.services.errors import InvalidContent, NotEditable, NotFound, NotPending, OptimisticConflict
from clientdesk.services.ledger_service import DeliverableContent

logger = logging.getLogger(__name__)


class UploadOutcome(NamedTuple):
    version: DeliverableVersion
    completed_requests: List[RevisionRequest]


def _lock_lineage(db: Session, lineage: Lineage) -> PurchaseFeature:
    # serializa a los escritores del lineage (FOR UPDATE sobre la fila de la feature)
    return directory.require_lineage(db, lineage, lock=True)


# -----------------------------
# Admin: subir versiones
# -----------------------------
def submit_initial_deliverable(
    db: Session,
    *,
    lineage: Lineage,
    content: DeliverableContent,
    uploaded_by: int,
    notes: Optional[str] = None,
    request: Optional[Request] = None,
) -> DeliverableVersion:
    """
    Primera versión de un lineage vacío. Si ya existe alguna versión,
    OptimisticConflict: el admin debe responder como revisión.
    """
    _lock_lineage(db, lineage)
    if ledger.latest_or_none(db, lineage) is not None:
        raise OptimisticConflict("This feature already has a deliverable; upload a new version instead")

    version = ledger.append_version(
        db, lineage=lineage, content=content, uploaded_by=uploaded_by,
        notes=notes, expected_version=1,
    )
    audit_action(
        db, lineage=lineage, action=DeliverableAction.UPLOAD, user_id=uploaded_by,
        deliverable_id=version.id,
        details={"version_number": version.version_number, "initial": True},
        request=request,
    )
    logger.info(
        "Initial deliverable uploaded purchase=%s feature=%s id=%s",
        lineage.purchase_id, lineage.feature_name, version.id,
    )
    return version


def _respond(
    db: Session,
    *,
    lineage: Lineage,
    content: DeliverableContent,
    uploaded_by: int,
    admin_notes: Optional[str],
    request: Optional[Request],
) -> UploadOutcome:
    _lock_lineage(db, lineage)
    previous = ledger.latest_or_none(db, lineage)
    if previous is None:
        raise NotFound("No deliverable to revise for this feature; upload the initial version first")

    version = ledger.append_version(
        db, lineage=lineage, content=content, uploaded_by=uploaded_by,
        notes=admin_notes, expected_version=previous.version_number + 1,
    )
    completed = tracker.complete_pending_for_lineage(
        db, lineage, before_version=version.version_number, admin_response=admin_notes,
    )
    audit_action(
        db, lineage=lineage, action=DeliverableAction.UPLOAD, user_id=uploaded_by,
        deliverable_id=version.id,
        details={
            "version_number": version.version_number,
            "previous_status": DeliverableStatus(previous.status).value,
            "completed_requests": [r.id for r in completed],
        },
        request=request,
    )
    logger.info(
        "Revision v%s uploaded purchase=%s feature=%s (closed %s request(s))",
        version.version_number, lineage.purchase_id, lineage.feature_name, len(completed),
    )
    return UploadOutcome(version, completed)


def respond_to_revision(
    db: Session,
    *,
    lineage: Lineage,
    content: DeliverableContent,
    uploaded_by: int,
    admin_notes: Optional[str] = None,
    request: Optional[Request] = None,
) -> DeliverableVersion:
    """
    Nueva versión sobre un lineage existente. Cierra (completed) las solicitudes
    pendientes contra versiones anteriores; admin_notes queda como admin_response.
    """
    return _respond(
        db, lineage=lineage, content=content, uploaded_by=uploaded_by,
        admin_notes=admin_notes, request=request,
    ).version


def upload(
    db: Session,
    *,
    lineage: Lineage,
    content: DeliverableContent,
    uploaded_by: int,
    admin_notes: Optional[str] = None,
    request: Optional[Request] = None,
) -> UploadOutcome:
    """
    Endpoint único de subida: inicial si el lineage está vacío, respuesta a revisión si no.
    """
    ledger.validate_content(content)
    _lock_lineage(db, lineage)
    if ledger.latest_or_none(db, lineage) is None:
        version = submit_initial_deliverable(
            db, lineage=lineage, content=content, uploaded_by=uploaded_by,
            notes=admin_notes, request=request,
        )
        return UploadOutcome(version, [])
    return _respond(
        db, lineage=lineage, content=content, uploaded_by=uploaded_by,
        admin_notes=admin_notes, request=request,
    )


# -----------------------------
# Cliente: aprobar / pedir revisión
# -----------------------------
def _target_version(
    db: Session, lineage: Lineage, expected_version_id: Optional[int]
) -> tuple[DeliverableVersion, DeliverableVersion]:
    latest = ledger.latest(db, lineage)
    if expected_version_id is None:
        return latest, latest
    target = ledger.get_version(db, expected_version_id)
    if target.lineage != lineage:
        raise NotFound("Deliverable not found in this feature")
    return target, latest


def approve(
    db: Session,
    *,
    lineage: Lineage,
    approver_id: int,
    expected_version_id: Optional[int] = None,
    request: Optional[Request] = None,
) -> DeliverableVersion:
    """
    Aprueba la última versión del lineage (debe estar pending). Si se envía
    expected_version_id y ya no es la última, OptimisticConflict.
    Cierra cualquier solicitud pendiente que haya quedado en el lineage.
    """
    directory.require_owner(db, lineage.purchase_id, approver_id)
    _lock_lineage(db, lineage)
    target, latest = _target_version(db, lineage, expected_version_id)

    if DeliverableStatus(target.status) != DeliverableStatus.PENDING:
        raise NotPending("Can only approve pending deliverables")
    if target.id != latest.id:
        raise OptimisticConflict("A newer version of this deliverable exists")

    ledger.transition_status(db, target, DeliverableStatus.APPROVED)
    stray = tracker.complete_pending_for_lineage(db, lineage)
    audit_action(
        db, lineage=lineage, action=DeliverableAction.APPROVE, user_id=approver_id,
        deliverable_id=target.id,
        details={"version_number": target.version_number, "completed_requests": [r.id for r in stray]},
        request=request,
    )
    logger.info(
        "Deliverable %s approved (purchase=%s feature=%s v%s)",
        target.id, lineage.purchase_id, lineage.feature_name, target.version_number,
    )
    return target


def request_revision(
    db: Session,
    *,
    lineage: Lineage,
    requester_id: int,
    reason: str,
    expected_version_id: Optional[int] = None,
    request: Optional[Request] = None,
) -> RevisionRequest:
    """
    Abre una solicitud de revisión contra la última versión (o contra
    expected_version_id, que debe seguir siendo la última).
    """
    directory.require_owner(db, lineage.purchase_id, requester_id)
    _lock_lineage(db, lineage)
    target, latest = _target_version(db, lineage, expected_version_id)

    req = tracker.open_request(db, version=target, requester_id=requester_id, reason=reason, latest=latest)
    audit_action(
        db, lineage=lineage, action=DeliverableAction.REQUEST_REVISION, user_id=requester_id,
        deliverable_id=target.id, revision_request_id=req.id,
        details={"version_number": target.version_number},
        request=request,
    )
    return req


def edit_revision_request(
    db: Session,
    *,
    request_id: int,
    requester_id: int,
    reason: str,
    request: Optional[Request] = None,
) -> RevisionRequest:
    req = tracker.edit_request(db, request_id=request_id, requester_id=requester_id, reason=reason)
    audit_action(
        db, lineage=req.deliverable.lineage, action=DeliverableAction.EDIT_REVISION,
        user_id=requester_id, deliverable_id=req.deliverable_id, revision_request_id=req.id,
        request=request,
    )
    return req


# -----------------------------
# Admin: solicitudes
# -----------------------------
def respond_with_notes(
    db: Session,
    *,
    request_id: int,
    admin_id: int,
    response: str,
    request: Optional[Request] = None,
) -> RevisionRequest:
    """
    Respuesta del admin sin subir archivo: la solicitud queda completed y
    la versión sigue en revision_requested.
    """
    response = (response or "").strip()
    if not response:
        raise InvalidContent("Admin response cannot be empty")

    req = tracker.get_request(db, request_id)
    lineage = req.deliverable.lineage
    _lock_lineage(db, lineage)
    # el status se relee con el lock tomado: una subida concurrente pudo cerrarla
    db.refresh(req)
    if RevisionStatus(req.status) == RevisionStatus.COMPLETED:
        raise NotEditable("Revision request is already completed")
    tracker.resolve(db, [req], admin_response=response)
    audit_action(
        db, lineage=lineage, action=DeliverableAction.RESOLVE_REVISION, user_id=admin_id,
        deliverable_id=req.deliverable_id, revision_request_id=req.id,
        details={"notes_only": True},
        request=request,
    )
    logger.info("Revision request %s resolved with notes by user=%s", req.id, admin_id)
    return req


def set_revision_status(
    db: Session,
    *,
    request_id: int,
    admin_id: int,
    status: RevisionStatus,
    admin_response: Optional[str] = None,
    request: Optional[Request] = None,
) -> RevisionRequest:
    before = RevisionStatus(tracker.get_request(db, request_id).status)
    req = tracker.set_status(db, request_id=request_id, status=status, admin_response=admin_response)
    audit_action(
        db, lineage=req.deliverable.lineage, action=DeliverableAction.REVISION_STATUS, user_id=admin_id,
        deliverable_id=req.deliverable_id, revision_request_id=req.id,
        details={"from": before.value, "to": RevisionStatus(req.status).value},
        request=request,
    )
    return req


def set_feature_status(
    db: Session,
    *,
    lineage: Lineage,
    admin_id: int,
    status: FeatureStatus,
    request: Optional[Request] = None,
) -> PurchaseFeature:
    feature = _lock_lineage(db, lineage)
    before = FeatureStatus(feature.feature_status)
    directory.transition_feature_status(db, feature, status)
    audit_action(
        db, lineage=lineage, action=DeliverableAction.FEATURE_STATUS, user_id=admin_id,
        details={"from": before.value, "to": FeatureStatus(feature.feature_status).value},
        request=request,
    )
    return feature
