# =============================================================================
# Deliverables Endpoints (subida admin, dashboards, aprobar / pedir revisión)
# clientdesk/api/v1/endpoints/deliverables.py
# =============================================================================
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from clientdesk.api.deps.errors import workflow_http_error
from clientdesk.db.session import get_db
from clientdesk.deps.auth import get_current_user, require_admin
from clientdesk.models.auth import User
from clientdesk.models.deliverable import DeliverableStatus, DeliverableVersion, Lineage
from clientdesk.schemas.deliverable import (
    ApproveIn, DeliverableHistoryOut, DeliverableLinkUpload, DeliverableOut,
    DeliverableRevisionUpload, RevisionRequestCreate, RevisionRequestOut,
)
from clientdesk.services import directory_service as directory
from clientdesk.services import ledger_service as ledger
from clientdesk.services import query_service as views
from clientdesk.services import webhook_service as webhooks
from clientdesk.services import workflow_service as workflow
from clientdesk.services.blob_store import store_deliverable_file
from clientdesk.services.errors import InvalidContent, WorkflowError
from clientdesk.services.ledger_service import DeliverableContent
from clientdesk.utils.idempotency import maybe_replay_idempotent, remember_idempotent_success, scoped_key
from clientdesk.utils.payload_guard import enforce_upload_size
from clientdesk.utils.ratelimit import check_write_rate_limit

router = APIRouter()

_UPLOAD_FIELDS = ("purchase_id", "feature_name", "external_link", "admin_notes")


# =======================
# Helpers
# =======================
def _out(version: DeliverableVersion) -> Dict[str, Any]:
    return DeliverableOut.model_validate(version).model_dump(mode="json")


def _history_out(rows: List[Dict[str, Any]]) -> List[DeliverableHistoryOut]:
    out: List[DeliverableHistoryOut] = []
    for row in rows:
        base = DeliverableOut.model_validate(row["version"]).model_dump()
        out.append(
            DeliverableHistoryOut(
                **base,
                client_revision_comment=row["client_revision_comment"],
                revision_requested_at=row["revision_requested_at"],
                revision_request_status=row["revision_request_status"],
                admin_response=row["admin_response"],
            )
        )
    return out


def _notify(db: Session, background_tasks: BackgroundTasks, event: str, data: Dict[str, Any]) -> None:
    # endpoints se resuelven ahora; la entrega corre después de responder
    endpoints = webhooks.get_endpoints(db)
    if endpoints:
        background_tasks.add_task(webhooks.emit_event_async, endpoints, event, data)


async def _read_upload(request: Request, model: type[BaseModel]) -> Tuple[BaseModel, Optional[UploadFile], Any]:
    """
    Acepta multipart/form-data (file + campos) o JSON (solo link).
    Devuelve (payload, archivo | None, form para cerrar | None).
    """
    ctype = (request.headers.get("content-type") or "").lower()
    upload_file: Optional[UploadFile] = None
    form = None
    if ctype.startswith("multipart/form-data"):
        form = await request.form()
        raw: Dict[str, Any] = {k: form.get(k) for k in _UPLOAD_FIELDS if isinstance(form.get(k), str)}
        f = form.get("file")
        if isinstance(f, UploadFile) and f.filename:
            upload_file = f
    else:
        try:
            raw = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(raw, dict):
            raise HTTPException(status_code=400, detail="JSON body must be an object")

    cleaned = {k: v for k, v in raw.items() if not (isinstance(v, str) and not v.strip())}
    try:
        payload = model.model_validate(cleaned)
    except ValidationError as e:
        raise RequestValidationError(e.errors())
    if upload_file is not None:
        enforce_upload_size(upload_file.file, upload_file.size)
    return payload, upload_file, form


def _store_if_file(upload_file: Optional[UploadFile], payload: Any, lineage: Lineage) -> Optional[str]:
    if upload_file is None:
        return None
    if payload.external_link:
        raise InvalidContent("Provide either a file or an external_link, not both")
    return store_deliverable_file(
        upload_file.file,
        filename=upload_file.filename,
        content_type=upload_file.content_type,
        lineage=lineage,
    )


def _upload_sync(
    db: Session,
    request: Request,
    background_tasks: BackgroundTasks,
    admin: User,
    payload: DeliverableLinkUpload,
    upload_file: Optional[UploadFile],
    idem_key: Optional[str],
) -> JSONResponse:
    lineage = Lineage(payload.purchase_id, payload.feature_name.strip())
    try:
        # el lineage debe existir antes de escribir el blob
        directory.require_lineage(db, lineage)
        file_ref = _store_if_file(upload_file, payload, lineage)
        outcome = workflow.upload(
            db,
            lineage=lineage,
            content=DeliverableContent(file_path=file_ref, external_link=payload.external_link),
            uploaded_by=admin.id,
            admin_notes=payload.admin_notes,
            request=request,
        )
        db.commit()
        db.refresh(outcome.version)
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)

    body = _out(outcome.version)
    _notify(db, background_tasks, webhooks.DELIVERABLE_UPLOADED, body)
    for req in outcome.completed_requests:
        _notify(
            db, background_tasks, webhooks.REVISION_COMPLETED,
            {"revision_request_id": req.id, "deliverable_id": req.deliverable_id, "resolved_by_version": outcome.version.id},
        )

    resp = JSONResponse(content=body, status_code=201)
    remember_idempotent_success(idem_key, resp)
    return resp


# ============================================================================ #
# Admin
# ============================================================================ #
@router.post("/admin/upload", response_model=DeliverableOut, status_code=201)
async def upload_deliverable(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """
    Sube un deliverable (archivo multipart o link JSON):
      - lineage vacío → versión 1
      - lineage con versiones → nueva versión; cierra solicitudes pendientes
    Idempotency-Key: reintentos con la misma key reciben la misma respuesta.
    """
    idem_key = scoped_key(admin.id, request.headers.get("Idempotency-Key"))
    replay = maybe_replay_idempotent(idem_key)
    if replay:
        return replay

    payload, upload_file, form = await _read_upload(request, DeliverableLinkUpload)
    try:
        check_write_rate_limit(user_id=admin.id, purchase_id=payload.purchase_id)
        return await run_in_threadpool(
            _upload_sync, db, request, background_tasks, admin, payload, upload_file, idem_key
        )
    finally:
        if form is not None:
            await form.close()


def _revise_sync(
    db: Session,
    request: Request,
    background_tasks: BackgroundTasks,
    admin: User,
    deliverable_id: int,
    payload: DeliverableRevisionUpload,
    upload_file: Optional[UploadFile],
    idem_key: Optional[str],
) -> JSONResponse:
    try:
        current = ledger.get_version(db, deliverable_id)
        lineage = current.lineage
        file_ref = _store_if_file(upload_file, payload, lineage)
        outcome = workflow.upload(
            db,
            lineage=lineage,
            content=DeliverableContent(file_path=file_ref, external_link=payload.external_link),
            uploaded_by=admin.id,
            admin_notes=payload.admin_notes,
            request=request,
        )
        db.commit()
        db.refresh(outcome.version)
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)

    body = _out(outcome.version)
    _notify(db, background_tasks, webhooks.DELIVERABLE_UPLOADED, body)
    for req in outcome.completed_requests:
        _notify(
            db, background_tasks, webhooks.REVISION_COMPLETED,
            {"revision_request_id": req.id, "deliverable_id": req.deliverable_id, "resolved_by_version": outcome.version.id},
        )

    resp = JSONResponse(content=body, status_code=200)
    remember_idempotent_success(idem_key, resp)
    return resp


@router.put("/admin/{deliverable_id}", response_model=DeliverableOut)
async def revise_deliverable(
    deliverable_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """
    Nueva versión en el lineage del deliverable indicado (nunca lo sobreescribe).
    Idempotency-Key igual que en /admin/upload.
    """
    idem_key = scoped_key(admin.id, request.headers.get("Idempotency-Key"))
    replay = maybe_replay_idempotent(idem_key)
    if replay:
        return replay

    payload, upload_file, form = await _read_upload(request, DeliverableRevisionUpload)
    try:
        return await run_in_threadpool(
            _revise_sync, db, request, background_tasks, admin, deliverable_id, payload, upload_file, idem_key
        )
    finally:
        if form is not None:
            await form.close()


@router.get("/admin/all", response_model=List[DeliverableOut])
def admin_list_latest(
    status: Optional[DeliverableStatus] = Query(None),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return views.latest_per_lineage(db, status=status)


@router.get("/admin/pending", response_model=List[DeliverableOut])
def admin_list_pending(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return views.latest_per_lineage(db, status=DeliverableStatus.PENDING)


@router.get("/admin/{purchase_id}", response_model=List[DeliverableOut])
def admin_purchase_versions(
    purchase_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        directory.get_purchase(db, purchase_id)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return views.versions_for_purchase(db, purchase_id)


@router.get("/admin/{purchase_id}/latest", response_model=List[DeliverableOut])
def admin_purchase_latest(
    purchase_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        directory.get_purchase(db, purchase_id)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return views.latest_per_lineage(db, purchase_id=purchase_id)


@router.get("/admin/{purchase_id}/{feature_name}/history", response_model=List[DeliverableHistoryOut])
def admin_lineage_history(
    purchase_id: int,
    feature_name: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    lineage = Lineage(purchase_id, feature_name)
    try:
        directory.require_lineage(db, lineage)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return _history_out(views.lineage_history(db, lineage))


# ============================================================================ #
# Cliente
# ============================================================================ #
@router.get("/purchases/{purchase_id}", response_model=List[DeliverableOut])
def client_purchase_latest(
    purchase_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        directory.require_client_access(db, purchase_id, user)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return views.latest_per_lineage(db, purchase_id=purchase_id)


@router.get("/purchases/{purchase_id}/{feature_name}/history", response_model=List[DeliverableHistoryOut])
def client_lineage_history(
    purchase_id: int,
    feature_name: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lineage = Lineage(purchase_id, feature_name)
    try:
        directory.require_client_access(db, purchase_id, user)
        directory.require_lineage(db, lineage)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return _history_out(views.lineage_history(db, lineage))


def _approve(
    db: Session,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User,
    lineage: Lineage,
    expected_version_id: Optional[int],
) -> DeliverableOut:
    try:
        version = workflow.approve(
            db, lineage=lineage, approver_id=user.id,
            expected_version_id=expected_version_id, request=request,
        )
        db.commit()
        db.refresh(version)
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)

    out = DeliverableOut.model_validate(version)
    _notify(db, background_tasks, webhooks.DELIVERABLE_APPROVED, out.model_dump(mode="json"))
    return out


def _request_revision(
    db: Session,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User,
    lineage: Lineage,
    payload: RevisionRequestCreate,
    expected_version_id: Optional[int],
) -> RevisionRequestOut:
    check_write_rate_limit(user_id=user.id, purchase_id=lineage.purchase_id)
    try:
        req = workflow.request_revision(
            db, lineage=lineage, requester_id=user.id, reason=payload.request_reason,
            expected_version_id=expected_version_id, request=request,
        )
        db.commit()
        db.refresh(req)
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)

    out = RevisionRequestOut.model_validate(req)
    _notify(
        db, background_tasks, webhooks.REVISION_REQUESTED,
        {**out.model_dump(mode="json"), "purchase_id": lineage.purchase_id, "feature_name": lineage.feature_name},
    )
    return out


@router.put("/purchases/{purchase_id}/{feature_name}/approve", response_model=DeliverableOut)
def approve_latest(
    purchase_id: int,
    feature_name: str,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: Optional[ApproveIn] = Body(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    expected = payload.expected_version_id if payload else None
    return _approve(db, request, background_tasks, user, Lineage(purchase_id, feature_name), expected)


@router.post(
    "/purchases/{purchase_id}/{feature_name}/request-revision",
    response_model=RevisionRequestOut,
    status_code=201,
)
def request_revision_latest(
    purchase_id: int,
    feature_name: str,
    payload: RevisionRequestCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    lineage = Lineage(purchase_id, feature_name)
    return _request_revision(db, request, background_tasks, user, lineage, payload, payload.expected_version_id)


@router.get("/{deliverable_id}", response_model=DeliverableOut)
def get_deliverable(
    deliverable_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        version = ledger.get_version(db, deliverable_id)
        directory.require_client_access(db, version.purchase_id, user)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return version


@router.put("/{deliverable_id}/approve", response_model=DeliverableOut)
def approve_deliverable(
    deliverable_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Aprueba la versión indicada; si ya no es la última del lineage → 409.
    """
    try:
        version = ledger.get_version(db, deliverable_id)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return _approve(db, request, background_tasks, user, version.lineage, deliverable_id)


@router.post("/{deliverable_id}/request-revision", response_model=RevisionRequestOut, status_code=201)
def request_revision_for_deliverable(
    deliverable_id: int,
    payload: RevisionRequestCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        version = ledger.get_version(db, deliverable_id)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return _request_revision(db, request, background_tasks, user, version.lineage, payload, deliverable_id)
