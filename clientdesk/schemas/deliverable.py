# clientdesk/schemas/deliverable.py
# Pydantic: requests/responses para deliverables, solicitudes de revisión y features
from __future__ import annotations
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

from clientdesk.models.deliverable import DeliverableStatus, RevisionStatus
from clientdesk.models.purchase import FeatureStatus


# ---------- Deliverable ----------
class DeliverableLinkUpload(BaseModel):
    """Subida JSON (solo link). El archivo va por multipart."""
    purchase_id: int
    feature_name: str = Field(..., min_length=1, max_length=160)
    external_link: Optional[str] = Field(None, max_length=2048)
    admin_notes: Optional[str] = None


class DeliverableRevisionUpload(BaseModel):
    """PUT /admin/{id}: nueva versión sobre el lineage del deliverable."""
    external_link: Optional[str] = Field(None, max_length=2048)
    admin_notes: Optional[str] = None


class DeliverableOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    purchase_id: int
    feature_name: str
    version_number: int
    file_path: Optional[str] = None
    deliverable_link: Optional[str] = None
    status: DeliverableStatus
    uploaded_by: Optional[int] = None
    uploaded_by_name: Optional[str] = None
    admin_notes: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeliverableHistoryOut(DeliverableOut):
    client_revision_comment: Optional[str] = None
    revision_requested_at: Optional[datetime] = None
    revision_request_status: Optional[RevisionStatus] = None
    admin_response: Optional[str] = None


class ApproveIn(BaseModel):
    # id de la versión que el cliente estaba viendo (opcional, para detectar carreras)
    expected_version_id: Optional[int] = None


# ---------- RevisionRequest ----------
class RevisionRequestCreate(BaseModel):
    request_reason: str = Field(..., max_length=5000)
    expected_version_id: Optional[int] = None


class RevisionRequestUpdate(BaseModel):
    request_reason: str = Field(..., max_length=5000)


class RevisionStatusUpdate(BaseModel):
    status: RevisionStatus
    admin_response: Optional[str] = None


class AdminResponseIn(BaseModel):
    admin_response: str = Field(..., max_length=5000)


class RevisionRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    deliverable_id: int
    user_id: int
    request_reason: str
    admin_response: Optional[str] = None
    status: RevisionStatus
    requested_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RevisionRequestDetailOut(RevisionRequestOut):
    purchase_id: int
    feature_name: str
    version_number: int
    deliverable_status: DeliverableStatus
    file_path: Optional[str] = None
    deliverable_link: Optional[str] = None


class RevisionRequestOverviewOut(RevisionRequestDetailOut):
    latest_version_id: int
    latest_version_number: int
    latest_status: DeliverableStatus
    total_versions: int


# ---------- Purchase features ----------
class FeatureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    purchase_id: int
    feature_name: str
    feature_status: FeatureStatus
    updated_at: Optional[datetime] = None


class FeatureStatusUpdate(BaseModel):
    status: FeatureStatus
