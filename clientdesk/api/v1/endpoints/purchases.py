# clientdesk/api/v1/endpoints/purchases.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from clientdesk.api.deps.errors import workflow_http_error
from clientdesk.db.session import get_db
from clientdesk.deps.auth import get_current_user, require_admin
from clientdesk.models.auth import User
from clientdesk.models.deliverable import Lineage
from clientdesk.schemas.deliverable import FeatureOut, FeatureStatusUpdate
from clientdesk.services import directory_service as directory
from clientdesk.services import workflow_service as workflow
from clientdesk.services.errors import WorkflowError

router = APIRouter()


@router.get("/{purchase_id}/features", response_model=List[FeatureOut])
def list_purchase_features(
    purchase_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        directory.require_client_access(db, purchase_id, user)
        return directory.list_features(db, purchase_id)
    except WorkflowError as e:
        raise workflow_http_error(e)


@router.patch("/admin/{purchase_id}/features/{feature_name}/status", response_model=FeatureOut)
def update_feature_status(
    purchase_id: int,
    feature_name: str,
    payload: FeatureStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """
    Status de la feature (pending/in_progress/completed/cancelled).
    No afecta el status de los deliverables del lineage.
    """
    try:
        feature = workflow.set_feature_status(
            db, lineage=Lineage(purchase_id, feature_name), admin_id=admin.id,
            status=payload.status, request=request,
        )
        db.commit()
        db.refresh(feature)
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)
    return feature
