# tests/test_revision_requests.py
import pytest
from sqlalchemy.exc import IntegrityError

from clientdesk.models.deliverable import DeliverableStatus, Lineage, RevisionRequest, RevisionStatus
from clientdesk.services import ledger_service as ledger
from clientdesk.services import revision_service as tracker
from clientdesk.services.errors import (
    DuplicateOpenRequest, Forbidden, InvalidContent, InvalidTransition,
    NotEditable, NotPending, OptimisticConflict,
)
from clientdesk.services.ledger_service import DeliverableContent


@pytest.fixture
def v1(db, lineage, admin):
    v = ledger.append_version(
        db, lineage=lineage, content=DeliverableContent(external_link="https://example.com/v1"),
        uploaded_by=admin.id,
    )
    db.commit()
    return v


def test_open_moves_version_to_revision_requested(db, v1, client_user):
    req = tracker.open_request(db, version=v1, requester_id=client_user.id, reason="  Make the blue darker  ")
    db.commit()
    assert req.status == RevisionStatus.PENDING
    assert req.request_reason == "Make the blue darker"
    db.refresh(v1)
    assert v1.status == DeliverableStatus.REVISION_REQUESTED


def test_second_open_is_duplicate(db, v1, client_user):
    tracker.open_request(db, version=v1, requester_id=client_user.id, reason="first")
    db.commit()
    with pytest.raises(DuplicateOpenRequest):
        tracker.open_request(db, version=v1, requester_id=client_user.id, reason="second")
    db.rollback()
    assert len(tracker.list_open(db)) == 1


def test_partial_index_allows_only_one_pending(db, v1, client_user):
    db.add(RevisionRequest(deliverable_id=v1.id, user_id=client_user.id, request_reason="a"))
    db.commit()
    db.add(RevisionRequest(deliverable_id=v1.id, user_id=client_user.id, request_reason="b"))
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()

    # una completed más una pending sí conviven
    done = RevisionRequest(
        deliverable_id=v1.id, user_id=client_user.id, request_reason="old", status=RevisionStatus.COMPLETED
    )
    db.add(done)
    db.commit()


def test_open_against_non_pending_version(db, v1, client_user):
    ledger.transition_status(db, v1, DeliverableStatus.APPROVED)
    db.commit()
    with pytest.raises(NotPending):
        tracker.open_request(db, version=v1, requester_id=client_user.id, reason="late")


def test_open_against_superseded_version_is_conflict(db, v1, lineage, admin, client_user):
    ledger.append_version(
        db, lineage=lineage, content=DeliverableContent(external_link="https://example.com/v2"),
        uploaded_by=admin.id,
    )
    db.commit()
    with pytest.raises(OptimisticConflict):
        tracker.open_request(db, version=v1, requester_id=client_user.id, reason="stale view")


@pytest.mark.parametrize("reason", ["", "   ", None])
def test_blank_reason_is_invalid(db, v1, client_user, reason):
    with pytest.raises(InvalidContent):
        tracker.open_request(db, version=v1, requester_id=client_user.id, reason=reason)
    db.refresh(v1)
    assert v1.status == DeliverableStatus.PENDING


def test_edit_only_by_owner_and_while_pending(db, v1, client_user, other_client):
    req = tracker.open_request(db, version=v1, requester_id=client_user.id, reason="first")
    db.commit()

    with pytest.raises(Forbidden):
        tracker.edit_request(db, request_id=req.id, requester_id=other_client.id, reason="hijack")

    tracker.edit_request(db, request_id=req.id, requester_id=client_user.id, reason="clearer reason")
    db.commit()
    assert req.request_reason == "clearer reason"

    tracker.resolve(db, [req], admin_response="done")
    db.commit()
    with pytest.raises(NotEditable):
        tracker.edit_request(db, request_id=req.id, requester_id=client_user.id, reason="too late")


def test_set_status_transitions(db, v1, client_user):
    req = tracker.open_request(db, version=v1, requester_id=client_user.id, reason="fix kerning")
    db.commit()

    tracker.set_status(db, request_id=req.id, status=RevisionStatus.IN_PROGRESS, admin_response="On it")
    db.commit()
    assert req.status == RevisionStatus.IN_PROGRESS
    assert req.admin_response == "On it"

    with pytest.raises(InvalidTransition):
        tracker.set_status(db, request_id=req.id, status=RevisionStatus.PENDING)

    tracker.set_status(db, request_id=req.id, status=RevisionStatus.COMPLETED)
    db.commit()

    with pytest.raises(NotEditable):
        tracker.set_status(db, request_id=req.id, status=RevisionStatus.IN_PROGRESS)


def test_complete_pending_for_lineage_respects_before_version(db, v1, lineage, admin, client_user):
    req = tracker.open_request(db, version=v1, requester_id=client_user.id, reason="r1")
    v2 = ledger.append_version(
        db, lineage=lineage, content=DeliverableContent(external_link="https://example.com/v2"),
        uploaded_by=admin.id,
    )
    db.commit()

    assert tracker.complete_pending_for_lineage(db, lineage, before_version=1) == []
    done = tracker.complete_pending_for_lineage(
        db, lineage, before_version=v2.version_number, admin_response="Updated the palette",
    )
    db.commit()
    assert [r.id for r in done] == [req.id]
    assert req.status == RevisionStatus.COMPLETED
    assert req.admin_response == "Updated the palette"


def test_listings(db, v1, client_user, other_client):
    req = tracker.open_request(db, version=v1, requester_id=client_user.id, reason="r")
    db.commit()
    assert [r.id for r in tracker.list_for_requester(db, client_user.id)] == [req.id]
    assert tracker.list_for_requester(db, other_client.id) == []
    assert [r.id for r in tracker.list_all(db, status=RevisionStatus.PENDING)] == [req.id]
    assert tracker.list_all(db, status=RevisionStatus.COMPLETED) == []
    assert [r.id for r in tracker.list_open(db, purchase_id=v1.purchase_id)] == [req.id]


def test_list_open_by_lineage_excludes_sibling_features(db, v1, lineage, purchase, admin, client_user):
    guide = Lineage(purchase.id, "Brand Guidelines")
    g1 = ledger.append_version(
        db, lineage=guide, content=DeliverableContent(external_link="https://example.com/g1"),
        uploaded_by=admin.id,
    )
    db.commit()
    logo_req = tracker.open_request(db, version=v1, requester_id=client_user.id, reason="logo")
    guide_req = tracker.open_request(db, version=g1, requester_id=client_user.id, reason="guide")
    db.commit()

    assert [r.id for r in tracker.list_open(db, lineage=lineage)] == [logo_req.id]
    assert [r.id for r in tracker.list_open(db, lineage=guide)] == [guide_req.id]
    assert {r.id for r in tracker.list_open(db, purchase_id=purchase.id)} == {logo_req.id, guide_req.id}
    assert tracker.list_open(db, lineage=Lineage(purchase.id, "Landing Page")) == []
