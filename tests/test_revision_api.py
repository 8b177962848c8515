# tests/test_revision_api.py
import pytest

from clientdesk.core.settings import settings

DELIV = f"{settings.API_V1_STR}/deliverables"
REQS = f"{settings.API_V1_STR}/revision-requests"


@pytest.fixture
def open_request(client, auth, admin, client_user, purchase):
    v1 = client.post(
        f"{DELIV}/admin/upload",
        json={"purchase_id": purchase.id, "feature_name": "Logo Design", "external_link": "https://example.com/v1"},
        headers=auth(admin),
    ).json()
    r = client.post(
        f"{DELIV}/{v1['id']}/request-revision",
        json={"request_reason": "Center the wordmark"},
        headers=auth(client_user),
    )
    assert r.status_code == 201, r.text
    return r.json()


def test_client_lists_own_requests(client, auth, client_user, other_client, open_request):
    mine = client.get(f"{REQS}/", headers=auth(client_user)).json()
    assert [r["id"] for r in mine] == [open_request["id"]]
    assert mine[0]["feature_name"] == "Logo Design"
    assert mine[0]["latest_status"] == "revision_requested"
    assert mine[0]["total_versions"] == 1

    assert client.get(f"{REQS}/", headers=auth(other_client)).json() == []


def test_get_request_detail_access(client, auth, admin, client_user, other_client, open_request):
    url = f"{REQS}/{open_request['id']}"
    r = client.get(url, headers=auth(client_user))
    assert r.status_code == 200
    assert r.json()["deliverable_status"] == "revision_requested"
    assert r.json()["version_number"] == 1
    assert client.get(url, headers=auth(admin)).status_code == 200
    assert client.get(url, headers=auth(other_client)).status_code == 403
    assert client.get(f"{REQS}/424242", headers=auth(admin)).status_code == 404


def test_client_edits_pending_request(client, auth, client_user, other_client, open_request):
    url = f"{REQS}/{open_request['id']}"
    r = client.put(url, json={"request_reason": "Center it and add padding"}, headers=auth(client_user))
    assert r.status_code == 200
    assert r.json()["request_reason"] == "Center it and add padding"

    r = client.put(url, json={"request_reason": "mine now"}, headers=auth(other_client))
    assert r.status_code == 403


def test_admin_status_flow(client, auth, admin, client_user, open_request):
    url = f"{REQS}/admin/{open_request['id']}/status"
    r = client.put(url, json={"status": "in_progress", "admin_response": "Working on it"}, headers=auth(admin))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "in_progress"
    assert r.json()["admin_response"] == "Working on it"

    # ya no es editable por el cliente
    r = client.put(f"{REQS}/{open_request['id']}", json={"request_reason": "x"}, headers=auth(client_user))
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "not_editable"

    assert client.put(url, json={"status": "completed"}, headers=auth(admin)).status_code == 200
    r = client.put(url, json={"status": "in_progress"}, headers=auth(admin))
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "not_editable"

    assert client.put(url, json={"status": "in_progress"}, headers=auth(client_user)).status_code == 403


def test_admin_status_rejects_unknown_value(client, auth, admin, open_request):
    r = client.put(f"{REQS}/admin/{open_request['id']}/status", json={"status": "archived"}, headers=auth(admin))
    assert r.status_code == 422


def test_admin_respond_with_notes(client, auth, admin, client_user, open_request):
    r = client.post(
        f"{REQS}/admin/{open_request['id']}/respond",
        json={"admin_response": "Centered per guidelines; no new file needed"},
        headers=auth(admin),
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "completed"
    assert body["deliverable_status"] == "revision_requested"

    again = client.post(
        f"{REQS}/admin/{open_request['id']}/respond",
        json={"admin_response": "again"},
        headers=auth(admin),
    )
    assert again.status_code == 400


def test_admin_lists_all_with_status_filter(client, auth, admin, client_user, open_request):
    rows = client.get(f"{REQS}/admin/all", headers=auth(admin)).json()
    assert [r["id"] for r in rows] == [open_request["id"]]
    assert client.get(f"{REQS}/admin/all", params={"status": "completed"}, headers=auth(admin)).json() == []
    assert client.get(f"{REQS}/admin/all", headers=auth(client_user)).status_code == 403
