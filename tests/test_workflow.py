# tests/test_workflow.py
import pytest
from sqlalchemy import select, update

from clientdesk.models.audit import DeliverableAuditLog, DeliverableAction
from clientdesk.models.deliverable import DeliverableStatus, Lineage, RevisionRequest, RevisionStatus
from clientdesk.models.purchase import FeatureStatus
from clientdesk.services import ledger_service as ledger
from clientdesk.services import revision_service as tracker
from clientdesk.services import workflow_service as workflow
from clientdesk.services.audit_service import list_for_lineage
from clientdesk.services.errors import (
    DuplicateOpenRequest, Forbidden, InvalidContent, InvalidTransition,
    NotEditable, NotFound, NotPending, OptimisticConflict,
)
from clientdesk.services.ledger_service import DeliverableContent


def _link(n: int) -> DeliverableContent:
    return DeliverableContent(external_link=f"https://example.com/logo-v{n}")


def _submit(db, lineage, admin, n=1):
    v = workflow.submit_initial_deliverable(db, lineage=lineage, content=_link(n), uploaded_by=admin.id)
    db.commit()
    return v


def test_full_happy_path(db, lineage, admin, client_user):
    v1 = _submit(db, lineage, admin)
    req = workflow.request_revision(db, lineage=lineage, requester_id=client_user.id, reason="Bigger icon")
    db.commit()

    v2 = workflow.respond_to_revision(
        db, lineage=lineage, content=_link(2), uploaded_by=admin.id, admin_notes="Icon enlarged",
    )
    db.commit()

    db.refresh(v1)
    db.refresh(req)
    assert v2.version_number == 2
    assert v2.status == DeliverableStatus.PENDING
    assert v1.status == DeliverableStatus.REVISION_REQUESTED
    assert req.status == RevisionStatus.COMPLETED
    assert req.admin_response == "Icon enlarged"

    approved = workflow.approve(db, lineage=lineage, approver_id=client_user.id)
    db.commit()
    assert approved.id == v2.id
    assert approved.status == DeliverableStatus.APPROVED

    actions = [log.action for log in list_for_lineage(db, lineage)]
    assert actions == [
        DeliverableAction.UPLOAD,
        DeliverableAction.REQUEST_REVISION,
        DeliverableAction.UPLOAD,
        DeliverableAction.APPROVE,
    ]


def test_submit_initial_on_non_empty_lineage_is_conflict(db, lineage, admin):
    _submit(db, lineage, admin)
    with pytest.raises(OptimisticConflict):
        workflow.submit_initial_deliverable(db, lineage=lineage, content=_link(2), uploaded_by=admin.id)


def test_respond_to_empty_lineage_is_not_found(db, lineage, admin):
    with pytest.raises(NotFound):
        workflow.respond_to_revision(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)


def test_unknown_feature_is_not_found(db, purchase, admin):
    with pytest.raises(NotFound):
        workflow.submit_initial_deliverable(
            db, lineage=Lineage(purchase.id, "Not Purchased"), content=_link(1), uploaded_by=admin.id,
        )


def test_upload_dispatches_on_lineage_state(db, lineage, admin):
    first = workflow.upload(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)
    db.commit()
    second = workflow.upload(db, lineage=lineage, content=_link(2), uploaded_by=admin.id)
    db.commit()
    assert (first.version.version_number, second.version.version_number) == (1, 2)
    assert first.completed_requests == [] and second.completed_requests == []


def test_upload_with_invalid_content_leaves_no_trace(db, lineage, admin):
    with pytest.raises(InvalidContent):
        workflow.upload(db, lineage=lineage, content=DeliverableContent(external_link="nope"), uploaded_by=admin.id)
    db.rollback()
    assert ledger.history(db, lineage) == []
    assert db.scalars(select(DeliverableAuditLog)).all() == []


def test_new_version_on_pending_lineage_is_allowed(db, lineage, admin):
    # sin solicitud previa: el admin puede corregir antes de que el cliente revise
    _submit(db, lineage, admin)
    v2 = workflow.respond_to_revision(db, lineage=lineage, content=_link(2), uploaded_by=admin.id)
    db.commit()
    assert v2.version_number == 2
    assert ledger.latest(db, lineage).id == v2.id


def test_approve_requires_owner(db, lineage, admin, other_client):
    _submit(db, lineage, admin)
    with pytest.raises(Forbidden):
        workflow.approve(db, lineage=lineage, approver_id=other_client.id)
    with pytest.raises(Forbidden):
        workflow.approve(db, lineage=lineage, approver_id=admin.id)


def test_approve_twice_is_not_pending(db, lineage, admin, client_user):
    _submit(db, lineage, admin)
    workflow.approve(db, lineage=lineage, approver_id=client_user.id)
    db.commit()
    with pytest.raises(NotPending):
        workflow.approve(db, lineage=lineage, approver_id=client_user.id)


def test_approve_stale_version_is_conflict(db, lineage, admin, client_user):
    v1 = _submit(db, lineage, admin)
    workflow.respond_to_revision(db, lineage=lineage, content=_link(2), uploaded_by=admin.id)
    db.commit()
    with pytest.raises(OptimisticConflict):
        workflow.approve(db, lineage=lineage, approver_id=client_user.id, expected_version_id=v1.id)
    db.rollback()
    db.refresh(v1)
    assert v1.status == DeliverableStatus.PENDING


def test_approve_with_empty_lineage_is_not_found(db, lineage, client_user):
    with pytest.raises(NotFound):
        workflow.approve(db, lineage=lineage, approver_id=client_user.id)


def test_approve_and_request_revision_are_mutually_exclusive(db, lineage, admin, client_user):
    v1 = _submit(db, lineage, admin)
    workflow.approve(db, lineage=lineage, approver_id=client_user.id, expected_version_id=v1.id)
    db.commit()
    with pytest.raises(NotPending):
        workflow.request_revision(
            db, lineage=lineage, requester_id=client_user.id, reason="wait", expected_version_id=v1.id,
        )
    db.rollback()
    db.refresh(v1)
    assert v1.status == DeliverableStatus.APPROVED
    assert tracker.list_open(db) == []


def test_double_click_request_revision(db, lineage, admin, client_user):
    v1 = _submit(db, lineage, admin)
    workflow.request_revision(db, lineage=lineage, requester_id=client_user.id, reason="r", expected_version_id=v1.id)
    db.commit()
    with pytest.raises(DuplicateOpenRequest):
        workflow.request_revision(
            db, lineage=lineage, requester_id=client_user.id, reason="r", expected_version_id=v1.id,
        )
    db.rollback()
    assert len(tracker.list_open(db)) == 1


def test_request_revision_by_non_owner_is_forbidden(db, lineage, admin, other_client):
    _submit(db, lineage, admin)
    with pytest.raises(Forbidden):
        workflow.request_revision(db, lineage=lineage, requester_id=other_client.id, reason="r")


def test_respond_with_notes_keeps_version_revision_requested(db, lineage, admin, client_user):
    v1 = _submit(db, lineage, admin)
    req = workflow.request_revision(db, lineage=lineage, requester_id=client_user.id, reason="Why serif?")
    db.commit()

    workflow.respond_with_notes(db, request_id=req.id, admin_id=admin.id, response="Brand book requires it")
    db.commit()
    db.refresh(v1)
    assert req.status == RevisionStatus.COMPLETED
    assert req.admin_response == "Brand book requires it"
    assert v1.status == DeliverableStatus.REVISION_REQUESTED

    with pytest.raises(NotEditable):
        workflow.respond_with_notes(db, request_id=req.id, admin_id=admin.id, response="again")


def test_respond_with_blank_notes_is_invalid(db, lineage, admin, client_user):
    _submit(db, lineage, admin)
    req = workflow.request_revision(db, lineage=lineage, requester_id=client_user.id, reason="r")
    db.commit()
    with pytest.raises(InvalidContent):
        workflow.respond_with_notes(db, request_id=req.id, admin_id=admin.id, response="   ")


def test_set_revision_status_is_audited(db, lineage, admin, client_user):
    _submit(db, lineage, admin)
    req = workflow.request_revision(db, lineage=lineage, requester_id=client_user.id, reason="r")
    db.commit()
    workflow.set_revision_status(db, request_id=req.id, admin_id=admin.id, status=RevisionStatus.IN_PROGRESS)
    db.commit()
    last = list_for_lineage(db, lineage)[-1]
    assert last.action == DeliverableAction.REVISION_STATUS
    assert last.details == {"from": "pending", "to": "in_progress"}


def test_feature_status_is_independent_from_deliverables(db, lineage, admin, client_user):
    v1 = _submit(db, lineage, admin)
    feature = workflow.set_feature_status(db, lineage=lineage, admin_id=admin.id, status=FeatureStatus.IN_PROGRESS)
    db.commit()
    assert feature.feature_status == FeatureStatus.IN_PROGRESS
    db.refresh(v1)
    assert v1.status == DeliverableStatus.PENDING

    workflow.set_feature_status(db, lineage=lineage, admin_id=admin.id, status=FeatureStatus.CANCELLED)
    db.commit()
    with pytest.raises(InvalidTransition):
        workflow.set_feature_status(db, lineage=lineage, admin_id=admin.id, status=FeatureStatus.PENDING)


def test_respond_with_notes_rereads_status_under_lock(db, lineage, admin, client_user):
    _submit(db, lineage, admin)
    req = workflow.request_revision(db, lineage=lineage, requester_id=client_user.id, reason="r")
    db.commit()
    assert req.status == RevisionStatus.PENDING

    # otra transacción la cerró; el objeto en la sesión sigue viéndola pending
    db.execute(
        update(RevisionRequest)
        .where(RevisionRequest.id == req.id)
        .values(status=RevisionStatus.COMPLETED, admin_response="v2 uploaded")
        .execution_options(synchronize_session=False)
    )
    assert req.status == RevisionStatus.PENDING

    with pytest.raises(NotEditable):
        workflow.respond_with_notes(db, request_id=req.id, admin_id=admin.id, response="late notes")
    db.refresh(req)
    assert req.admin_response == "v2 uploaded"
