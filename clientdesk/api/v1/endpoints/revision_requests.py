# clientdesk/api/v1/endpoints/revision_requests.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from clientdesk.api.deps.errors import workflow_http_error
from clientdesk.db.session import get_db
from clientdesk.deps.auth import get_current_user, require_admin
from clientdesk.models.auth import User
from clientdesk.models.deliverable import RevisionRequest, RevisionStatus
from clientdesk.schemas.deliverable import (
    AdminResponseIn, RevisionRequestDetailOut, RevisionRequestOut,
    RevisionRequestOverviewOut, RevisionRequestUpdate, RevisionStatusUpdate,
)
from clientdesk.services import query_service as views
from clientdesk.services import revision_service as tracker
from clientdesk.services import webhook_service as webhooks
from clientdesk.services import workflow_service as workflow
from clientdesk.services.errors import Forbidden, WorkflowError

router = APIRouter()


def _detail(req: RevisionRequest) -> Dict[str, Any]:
    d = req.deliverable
    return {
        **RevisionRequestOut.model_validate(req).model_dump(),
        "purchase_id": d.purchase_id,
        "feature_name": d.feature_name,
        "version_number": d.version_number,
        "deliverable_status": d.status,
        "file_path": d.file_path,
        "deliverable_link": d.deliverable_link,
    }


def _overview(rows: List[Dict[str, Any]]) -> List[RevisionRequestOverviewOut]:
    out: List[RevisionRequestOverviewOut] = []
    for row in rows:
        latest = row["latest"]
        out.append(
            RevisionRequestOverviewOut(
                **_detail(row["request"]),
                latest_version_id=latest.id,
                latest_version_number=latest.version_number,
                latest_status=latest.status,
                total_versions=row["total_versions"],
            )
        )
    return out


def _notify_completed(db: Session, background_tasks: BackgroundTasks, req: RevisionRequest) -> None:
    if RevisionStatus(req.status) != RevisionStatus.COMPLETED:
        return
    endpoints = webhooks.get_endpoints(db)
    if endpoints:
        background_tasks.add_task(
            webhooks.emit_event_async,
            endpoints,
            webhooks.REVISION_COMPLETED,
            RevisionRequestOut.model_validate(req).model_dump(mode="json"),
        )


# ============================================================================ #
# Cliente
# ============================================================================ #
@router.get("/", response_model=List[RevisionRequestOverviewOut])
def my_revision_requests(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Solicitudes del usuario actual, con el estado vigente de cada lineage."""
    return _overview(views.revision_requests_overview(db, user_id=user.id))


@router.get("/admin/all", response_model=List[RevisionRequestOverviewOut])
def all_revision_requests(
    status: Optional[RevisionStatus] = Query(None),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return _overview(views.revision_requests_overview(db, status=status))


@router.get("/{request_id}", response_model=RevisionRequestDetailOut)
def get_revision_request(
    request_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        req = tracker.get_request(db, request_id)
        if not user.is_admin and req.user_id != user.id:
            raise Forbidden("Access denied to this revision request")
    except WorkflowError as e:
        raise workflow_http_error(e)
    return _detail(req)


@router.put("/{request_id}", response_model=RevisionRequestDetailOut)
def edit_revision_request(
    request_id: int,
    payload: RevisionRequestUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        req = workflow.edit_revision_request(
            db, request_id=request_id, requester_id=user.id,
            reason=payload.request_reason, request=request,
        )
        db.commit()
        db.refresh(req)
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)
    return _detail(req)


# ============================================================================ #
# Admin
# ============================================================================ #
@router.put("/admin/{request_id}/status", response_model=RevisionRequestDetailOut)
def update_revision_status(
    request_id: int,
    payload: RevisionStatusUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        req = workflow.set_revision_status(
            db, request_id=request_id, admin_id=admin.id, status=payload.status,
            admin_response=payload.admin_response, request=request,
        )
        db.commit()
        db.refresh(req)
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)
    _notify_completed(db, background_tasks, req)
    return _detail(req)


@router.post("/admin/{request_id}/respond", response_model=RevisionRequestDetailOut)
def respond_to_revision_request(
    request_id: int,
    payload: AdminResponseIn,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """
    Respuesta solo con notas (sin nueva versión): la solicitud queda completed.
    """
    try:
        req = workflow.respond_with_notes(
            db, request_id=request_id, admin_id=admin.id,
            response=payload.admin_response, request=request,
        )
        db.commit()
        db.refresh(req)
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)
    _notify_completed(db, background_tasks, req)
    return _detail(req)
