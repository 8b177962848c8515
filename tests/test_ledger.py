# tests/test_ledger.py
import logging

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from clientdesk.models.deliverable import DeliverableVersion, DeliverableStatus, Lineage
from clientdesk.services import ledger_service as ledger
from clientdesk.services.errors import InvalidContent, NotFound, NotPending, OptimisticConflict
from clientdesk.services.ledger_service import DeliverableContent


def _link(n: int) -> DeliverableContent:
    return DeliverableContent(external_link=f"https://drive.example.com/logo-v{n}")


def test_first_version_is_one_and_pending(db, lineage, admin):
    v = ledger.append_version(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)
    db.commit()
    assert v.version_number == 1
    assert v.status == DeliverableStatus.PENDING
    assert v.uploaded_by_name == "Studio Admin"


def test_version_numbers_are_contiguous(db, lineage, admin):
    for n in range(1, 5):
        ledger.append_version(db, lineage=lineage, content=_link(n), uploaded_by=admin.id)
    db.commit()
    numbers = sorted(v.version_number for v in ledger.history(db, lineage))
    assert numbers == [1, 2, 3, 4]


def test_lineages_are_independent(db, purchase, admin):
    a = Lineage(purchase.id, "Logo Design")
    b = Lineage(purchase.id, "Brand Guidelines")
    ledger.append_version(db, lineage=a, content=_link(1), uploaded_by=admin.id)
    ledger.append_version(db, lineage=a, content=_link(2), uploaded_by=admin.id)
    vb = ledger.append_version(db, lineage=b, content=_link(1), uploaded_by=admin.id)
    db.commit()
    assert vb.version_number == 1
    assert ledger.latest(db, a).version_number == 2


def test_append_does_not_touch_previous_versions(db, lineage, admin):
    v1 = ledger.append_version(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)
    db.commit()
    ledger.transition_status(db, v1, DeliverableStatus.REVISION_REQUESTED)
    db.commit()

    ledger.append_version(db, lineage=lineage, content=_link(2), uploaded_by=admin.id)
    db.commit()
    db.refresh(v1)
    assert v1.status == DeliverableStatus.REVISION_REQUESTED
    assert v1.deliverable_link == "https://drive.example.com/logo-v1"


@pytest.mark.parametrize(
    "content",
    [
        DeliverableContent(),
        DeliverableContent(file_path="   ", external_link=""),
        DeliverableContent(file_path="deliverables/1/a.png", external_link="https://example.com/a"),
        DeliverableContent(external_link="not a url"),
        DeliverableContent(external_link="ftp://example.com/file"),
    ],
)
def test_invalid_content_is_rejected_without_insert(db, lineage, admin, content):
    with pytest.raises(InvalidContent):
        ledger.append_version(db, lineage=lineage, content=content, uploaded_by=admin.id)
    assert db.scalar(select(func.count(DeliverableVersion.id))) == 0


def test_link_round_trips_unchanged(db, lineage, admin):
    link = "https://www.figma.com/file/AbC123/Logo?node-id=1%3A2"
    ledger.append_version(db, lineage=lineage, content=DeliverableContent(external_link=link), uploaded_by=admin.id)
    db.commit()
    assert ledger.latest(db, lineage).deliverable_link == link


def test_expected_version_mismatch_is_conflict(db, lineage, admin):
    ledger.append_version(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)
    db.commit()
    with pytest.raises(OptimisticConflict):
        ledger.append_version(db, lineage=lineage, content=_link(2), uploaded_by=admin.id, expected_version=1)


def test_collision_on_version_number_is_retried(db, lineage, admin, monkeypatch, caplog):
    """
    Simula a un escritor concurrente: la primera lectura del máximo está vieja
    y el INSERT choca con el unique; el segundo intento toma el número siguiente.
    """
    ledger.append_version(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)
    ledger.append_version(db, lineage=lineage, content=_link(2), uploaded_by=admin.id)
    db.commit()

    real_next = ledger._next_version_number
    calls = {"n": 0}

    def stale_then_real(session, lin):
        calls["n"] += 1
        if calls["n"] == 1:
            return 2  # lectura vieja: v2 ya existe
        return real_next(session, lin)

    monkeypatch.setattr(ledger, "_next_version_number", stale_then_real)
    with caplog.at_level(logging.WARNING, logger="clientdesk.services.ledger_service"):
        v = ledger.append_version(db, lineage=lineage, content=_link(3), uploaded_by=admin.id)
    db.commit()

    assert v.version_number == 3
    assert calls["n"] == 2
    assert "Version collision" in caplog.text
    assert [x.version_number for x in ledger.history(db, lineage)] == [3, 2, 1]


def test_collision_retries_are_bounded(db, lineage, admin, monkeypatch):
    ledger.append_version(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)
    db.commit()
    monkeypatch.setattr(ledger, "_next_version_number", lambda session, lin: 1)
    with pytest.raises(OptimisticConflict):
        ledger.append_version(db, lineage=lineage, content=_link(2), uploaded_by=admin.id)


def test_unique_constraint_backs_the_numbering(db, lineage, admin):
    ledger.append_version(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)
    db.commit()
    db.add(
        DeliverableVersion(
            purchase_id=lineage.purchase_id, feature_name=lineage.feature_name,
            version_number=1, deliverable_link="https://example.com/dup",
        )
    )
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_history_newest_first_and_latest(db, lineage, admin):
    for n in range(1, 4):
        ledger.append_version(db, lineage=lineage, content=_link(n), uploaded_by=admin.id)
    db.commit()
    hist = ledger.history(db, lineage)
    assert [v.version_number for v in hist] == [3, 2, 1]
    assert ledger.latest(db, lineage).id == hist[0].id


def test_latest_on_empty_lineage_is_not_found(db, lineage):
    with pytest.raises(NotFound):
        ledger.latest(db, lineage)
    assert ledger.history(db, lineage) == []


def test_transition_only_from_pending(db, lineage, admin):
    v = ledger.append_version(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)
    db.commit()
    ledger.transition_status(db, v, DeliverableStatus.APPROVED)
    db.commit()
    assert v.status == DeliverableStatus.APPROVED
    with pytest.raises(NotPending):
        ledger.transition_status(db, v, DeliverableStatus.REVISION_REQUESTED)


def test_transition_on_superseded_version_is_conflict(db, lineage, admin):
    v1 = ledger.append_version(db, lineage=lineage, content=_link(1), uploaded_by=admin.id)
    ledger.append_version(db, lineage=lineage, content=_link(2), uploaded_by=admin.id)
    db.commit()
    with pytest.raises(OptimisticConflict):
        ledger.transition_status(db, v1, DeliverableStatus.APPROVED)
    db.rollback()
    db.refresh(v1)
    assert v1.status == DeliverableStatus.PENDING


def test_list_latest_by_status_never_returns_superseded(db, purchase, admin):
    logo = Lineage(purchase.id, "Logo Design")
    guide = Lineage(purchase.id, "Brand Guidelines")

    # logo: v1 revision_requested, v2 pending
    v1 = ledger.append_version(db, lineage=logo, content=_link(1), uploaded_by=admin.id)
    db.commit()
    ledger.transition_status(db, v1, DeliverableStatus.REVISION_REQUESTED)
    ledger.append_version(db, lineage=logo, content=_link(2), uploaded_by=admin.id)
    # guide: v1 approved
    g1 = ledger.append_version(db, lineage=guide, content=_link(1), uploaded_by=admin.id)
    db.commit()
    ledger.transition_status(db, g1, DeliverableStatus.APPROVED)
    db.commit()

    pending = ledger.list_latest_by_status(db, DeliverableStatus.PENDING)
    assert [(v.feature_name, v.version_number) for v in pending] == [("Logo Design", 2)]

    # v1 está en revision_requested pero ya no es la última
    assert ledger.list_latest_by_status(db, DeliverableStatus.REVISION_REQUESTED) == []

    approved = ledger.list_latest_by_status(db, DeliverableStatus.APPROVED, purchase_id=purchase.id)
    assert [v.id for v in approved] == [g1.id]


@pytest.mark.parametrize("link", [" https://example.com/x ", "https://example.com/x\n"])
def test_padded_link_is_rejected_not_rewritten(db, lineage, admin, link):
    with pytest.raises(InvalidContent):
        ledger.append_version(db, lineage=lineage, content=DeliverableContent(external_link=link), uploaded_by=admin.id)
    assert ledger.latest_or_none(db, lineage) is None
