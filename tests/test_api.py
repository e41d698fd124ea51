"""
HTTP-level tests through the Flask test client: authentication, the
response envelope, status codes and the end-to-end referral flow.
"""

import io

import pytest

from mailtrack.api.auth import generate_token
from mailtrack.models import Direction, Role

from conftest import PASSWORD, TEST_SECRET


@pytest.fixture
def services(api_services):
    """Build the organisation inside the application's own service graph."""
    return api_services


def mail_payload(org, reference="API-001", **overrides):
    payload = {
        "referenceNumber": reference,
        "mailDate": "2024-05-02",
        "subject": "Budget forecast",
        "direction": "incoming",
        "fromDepartmentId": org.finance.id,
    }
    payload.update(overrides)
    return payload


# ── Service info ─────────────────────────────────────────────────────

def test_index_and_health(client):
    assert client.get("/").get_json()["service"] == "MailTrack API"
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "healthy", "checks": {"database": True}}


def test_unknown_endpoint(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.get_json() == {"success": False, "message": "Endpoint not found"}


# ── Authentication ───────────────────────────────────────────────────

def test_login_and_me(client, org):
    resp = client.post("/api/auth/login", json={"username": "budget.head", "password": PASSWORD})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["data"]["user"]["role"] == "head"
    assert body["data"]["user"]["sectionId"] == org.budget.id

    token = body["data"]["token"]
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.get_json()["data"]["id"] == org.budget_head.id


def test_login_wrong_password(client, org):
    resp = client.post("/api/auth/login", json={"username": "budget.head", "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Invalid credentials"


def test_login_validation(client, org):
    resp = client.post("/api/auth/login", json={"username": "ab"})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["success"] is False
    assert len(body["errors"]) == 2


def test_missing_token(client):
    resp = client.get("/api/mails")
    assert resp.status_code == 401
    assert resp.get_json() == {"success": False, "message": "Access token required"}


@pytest.mark.parametrize("header", [
    "Bearer not-a-jwt",
    "Token abc",
    "Bearer",
])
def test_invalid_token(client, header):
    resp = client.get("/api/mails", headers={"Authorization": header})
    assert resp.status_code == 401
    assert resp.get_json()["success"] is False


def test_expired_token(client, org):
    token = generate_token(org.admin, TEST_SECRET, expiry_hours=-1)
    resp = client.get("/api/mails", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Invalid or expired token"


def test_token_signed_with_other_secret(client, org):
    token = generate_token(org.admin, "some-other-secret")
    resp = client.get("/api/mails", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_token_of_deleted_user(client, org, auth_header, services):
    header = auth_header(org.payroll_head)
    services.directory.delete_user(org.admin, org.payroll_head.id)
    resp = client.get("/api/mails", headers=header)
    assert resp.status_code == 401


# ── Mails ────────────────────────────────────────────────────────────

def test_create_and_list_mail(client, org, auth_header):
    resp = client.post("/api/mails", json=mail_payload(org), headers=auth_header(org.finance_manager))
    assert resp.status_code == 201
    created = resp.get_json()["data"]
    assert created["referenceNumber"] == "API-001"
    assert created["fromDepartment"] == {"name": "Finance"}
    assert created["uploader"]["id"] == org.finance_manager.id
    assert created["attachments"] == []

    listing = client.get("/api/mails?page=1&limit=5", headers=auth_header(org.finance_manager)).get_json()
    assert listing["meta"] == {"page": 1, "limit": 5, "total": 1, "totalPages": 1}
    assert [m["id"] for m in listing["data"]] == [created["id"]]

    other = client.get("/api/mails", headers=auth_header(org.legal_manager)).get_json()
    assert other["data"] == []
    assert other["meta"]["total"] == 0


def test_uploader_comes_from_token(client, org, auth_header):
    payload = mail_payload(org, uploaderId=org.admin.id)
    resp = client.post("/api/mails", json=payload, headers=auth_header(org.finance_manager))
    assert resp.get_json()["data"]["uploader"]["id"] == org.finance_manager.id


def test_foreign_mail_is_404(client, org, auth_header, make_mail):
    mail = make_mail(Direction.INCOMING, org.finance)
    resp = client.get(f"/api/mails/{mail.id}", headers=auth_header(org.legal_manager))
    assert resp.status_code == 404
    assert resp.get_json() == {"success": False, "message": "Mail not found"}

    ok = client.get(f"/api/mails/{mail.id}", headers=auth_header(org.finance_manager))
    assert ok.status_code == 200


def test_create_mail_validation_errors(client, org, auth_header):
    resp = client.post("/api/mails", json={"subject": "", "direction": "sideways"},
                       headers=auth_header(org.admin))
    assert resp.status_code == 400
    errors = resp.get_json()["errors"]
    fields = {e.split(":")[0] for e in errors}
    assert {"referenceNumber", "mailDate", "subject", "direction"} <= fields


def test_create_mail_direction_mismatch(client, org, auth_header):
    payload = mail_payload(org, toDepartmentId=org.legal.id)
    resp = client.post("/api/mails", json=payload, headers=auth_header(org.admin))
    assert resp.status_code == 400


def test_head_cannot_post_mail(client, org, auth_header):
    resp = client.post("/api/mails", json=mail_payload(org), headers=auth_header(org.budget_head))
    assert resp.status_code == 403
    assert resp.get_json()["success"] is False


def test_duplicate_reference_number(client, org, auth_header):
    client.post("/api/mails", json=mail_payload(org), headers=auth_header(org.admin))
    resp = client.post("/api/mails", json=mail_payload(org), headers=auth_header(org.admin))
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Reference number already exists"


def test_multipart_upload(client, org, auth_header):
    data = mail_payload(org)
    data["attachments"] = [
        (io.BytesIO(b"%PDF-1.4 first"), "first.pdf"),
        (io.BytesIO(b"\x89PNG second"), "second.png"),
    ]
    resp = client.post("/api/mails", data=data, content_type="multipart/form-data",
                       headers=auth_header(org.finance_manager))
    assert resp.status_code == 201
    mail = resp.get_json()["data"]
    assert sorted(a["originalFilename"] for a in mail["attachments"]) == ["first.pdf", "second.png"]

    listed = client.get(f"/api/attachments/mail/{mail['id']}", headers=auth_header(org.admin))
    assert len(listed.get_json()["data"]) == 2


def test_multipart_rejects_disallowed_type(client, org, auth_header, api_services):
    data = mail_payload(org)
    data["attachments"] = [
        (io.BytesIO(b"%PDF-1.4"), "fine.pdf"),
        (io.BytesIO(b"MZ"), "tool.exe"),
    ]
    resp = client.post("/api/mails", data=data, content_type="multipart/form-data",
                       headers=auth_header(org.admin))
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "File type not allowed"
    assert api_services.mail.list_mails(org.admin).total == 0
    root = api_services.blob_store.root
    assert not root.exists() or list(root.iterdir()) == []


def test_search(client, org, auth_header, make_mail):
    make_mail(Direction.INCOMING, org.finance, subject="Budget 2025")
    make_mail(Direction.OUTGOING, org.finance, subject="Budget reply")
    make_mail(Direction.INCOMING, org.finance, subject="Unrelated")

    resp = client.get("/api/mails/search?subject=budget&direction=INCOMING&dateFrom=",
                      headers=auth_header(org.finance_manager))
    assert resp.status_code == 200
    body = resp.get_json()
    assert [m["subject"] for m in body["data"]] == ["Budget 2025"]
    assert body["meta"]["total"] == 1


def test_search_rejects_bad_dates(client, org, auth_header):
    resp = client.get("/api/mails/search?dateFrom=2024-05-01&dateTo=2024-01-01",
                      headers=auth_header(org.admin))
    assert resp.status_code == 400
    resp = client.get("/api/mails/search?dateFrom=yesterday", headers=auth_header(org.admin))
    assert resp.status_code == 400


# ── Referrals and comments ───────────────────────────────────────────

def test_referral_flow(client, org, auth_header, make_mail):
    mail = make_mail(Direction.INCOMING, org.finance)
    manager, head = auth_header(org.finance_manager), auth_header(org.budget_head)

    resp = client.post("/api/referrals", json={"mailId": mail.id, "sectionId": org.budget.id},
                       headers=manager)
    assert resp.status_code == 201
    referral = resp.get_json()["data"]
    assert referral["status"] == "Pending"

    dup = client.post("/api/referrals", json={"mailId": mail.id, "sectionId": org.budget.id},
                      headers=manager)
    assert dup.status_code == 400
    assert dup.get_json()["success"] is False

    queue = client.get(f"/api/referrals/section/{org.budget.id}", headers=head).get_json()
    assert queue["meta"]["total"] == 1
    assert queue["data"][0]["commentCount"] == 0

    viewed = client.get(f"/api/referrals/{referral['id']}", headers=head).get_json()["data"]
    assert viewed["status"] == "Viewed"

    added = client.post(f"/api/referrals/{referral['id']}/comments", json={"text": "Working on it"},
                        headers=head)
    assert added.status_code == 201
    assert added.get_json()["data"]["user"]["fullName"] == org.budget_head.full_name

    done = client.put(f"/api/referrals/{referral['id']}/status", json={"status": "Completed"},
                      headers=head)
    assert done.get_json()["data"]["status"] == "Completed"

    closed = client.post(f"/api/referrals/{referral['id']}/comments", json={"text": "Late"},
                         headers=head)
    assert closed.status_code == 400

    back = client.put(f"/api/referrals/{referral['id']}/status", json={"status": "Pending"},
                      headers=manager)
    assert back.status_code == 400

    thread = client.get(f"/api/referrals/{referral['id']}/comments", headers=manager).get_json()
    assert [c["text"] for c in thread["data"]] == ["Working on it"]

    mail_refs = client.get(f"/api/mails/{mail.id}/referrals", headers=head).get_json()
    assert [r["id"] for r in mail_refs["data"]] == [referral["id"]]


def test_foreign_referral_is_403(client, org, auth_header, make_mail, services):
    mail = make_mail(Direction.INCOMING, org.finance)
    referral = services.workflow.create_referral(org.admin, mail.id, org.budget.id)

    resp = client.get(f"/api/referrals/{referral.id}", headers=auth_header(org.payroll_head))
    assert resp.status_code == 403
    assert resp.get_json()["message"] == "Access denied to this referral"

    resp = client.get(f"/api/referrals/section/{org.budget.id}", headers=auth_header(org.payroll_head))
    assert resp.status_code == 403

    resp = client.delete(f"/api/referrals/{referral.id}", headers=auth_header(org.budget_head))
    assert resp.status_code == 403


def test_foreign_manager_is_refused_on_referral_endpoints(client, org, auth_header, make_mail, services):
    mail = make_mail(Direction.INCOMING, org.finance, subject="Finance only")
    referral = services.workflow.create_referral(org.admin, mail.id, org.budget.id)
    legal = auth_header(org.legal_manager)

    resp = client.get(f"/api/referrals/{referral.id}", headers=legal)
    assert resp.status_code == 403
    assert "Finance only" not in resp.get_data(as_text=True)

    resp = client.put(f"/api/referrals/{referral.id}/status", json={"status": "Completed"},
                      headers=legal)
    assert resp.status_code == 403
    assert client.get(f"/api/referrals/{referral.id}/comments", headers=legal).status_code == 403
    assert client.post(f"/api/referrals/{referral.id}/comments", json={"text": "x"},
                       headers=legal).status_code == 403

    queue = client.get(f"/api/referrals/section/{org.budget.id}", headers=legal).get_json()
    assert queue["meta"]["total"] == 0
    assert services.workflow.get_referral(org.admin, referral.id).status.value == "Pending"


def test_invalid_status_value(client, org, auth_header, make_mail, services):
    mail = make_mail()
    referral = services.workflow.create_referral(org.admin, mail.id, org.budget.id)
    resp = client.put(f"/api/referrals/{referral.id}/status", json={"status": "Archived"},
                      headers=auth_header(org.admin))
    assert resp.status_code == 400
    assert resp.get_json()["errors"]

    resp = client.get(f"/api/referrals/section/{org.budget.id}?status=Archived",
                      headers=auth_header(org.admin))
    assert resp.status_code == 400


def test_delete_referral(client, org, auth_header, make_mail, services):
    mail = make_mail()
    referral = services.workflow.create_referral(org.admin, mail.id, org.budget.id)
    services.workflow.add_comment(org.budget_head, referral.id, "note")

    resp = client.delete(f"/api/referrals/{referral.id}", headers=auth_header(org.finance_manager))
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "message": "Referral deleted successfully", "data": None}
    assert client.get(f"/api/referrals/{referral.id}", headers=auth_header(org.admin)).status_code == 404


def test_body_must_be_json(client, org, auth_header):
    resp = client.post("/api/referrals", data="mailId=1", headers=auth_header(org.admin),
                       content_type="application/x-www-form-urlencoded")
    assert resp.status_code == 400


# ── Administration ───────────────────────────────────────────────────

def test_admin_reference_data(client, org, auth_header):
    admin = auth_header(org.admin)

    resp = client.post("/api/admin/departments", json={"name": "Operations"}, headers=admin)
    assert resp.status_code == 201
    ops = resp.get_json()["data"]

    dup = client.post("/api/admin/departments", json={"name": "Operations"}, headers=admin)
    assert dup.status_code == 400
    assert dup.get_json()["message"] == "Department name already exists"

    section = client.post("/api/admin/sections", json={"name": "Logistics", "departmentId": ops["id"]},
                          headers=admin)
    assert section.status_code == 201

    names = [d["name"] for d in client.get("/api/admin/departments", headers=admin).get_json()["data"]]
    assert names == ["Finance", "Legal", "Operations"]

    ops_sections = client.get(f"/api/admin/departments/{ops['id']}/sections", headers=admin).get_json()
    assert [s["name"] for s in ops_sections["data"]] == ["Logistics"]

    renamed = client.put(f"/api/admin/departments/{ops['id']}", json={"name": "Operations Unit"},
                         headers=admin)
    assert renamed.get_json()["data"]["name"] == "Operations Unit"


def test_reference_data_is_read_only_for_others(client, org, auth_header):
    manager = auth_header(org.finance_manager)
    assert client.get("/api/admin/sections", headers=manager).status_code == 200
    resp = client.post("/api/admin/departments", json={"name": "Shadow"}, headers=manager)
    assert resp.status_code == 403
    assert client.get("/api/admin/users", headers=auth_header(org.budget_head)).status_code == 403


def test_admin_user_management(client, org, auth_header):
    admin = auth_header(org.admin)
    resp = client.post("/api/admin/users", json={
        "username": "new.head", "password": PASSWORD, "fullName": "New Head",
        "role": "head", "sectionId": org.payroll.id,
    }, headers=admin)
    assert resp.status_code == 201
    user = resp.get_json()["data"]
    assert "passwordHash" not in user and "password_hash" not in user

    bad = client.post("/api/admin/users", json={
        "username": "odd.head", "password": PASSWORD, "fullName": "Odd Head",
        "role": "head", "departmentId": org.finance.id,
    }, headers=admin)
    assert bad.status_code == 400

    dup = client.post("/api/admin/users", json={
        "username": "new.head", "password": PASSWORD, "fullName": "Again",
        "role": "head", "sectionId": org.payroll.id,
    }, headers=admin)
    assert dup.get_json()["message"] == "Username already exists"

    assert client.delete(f"/api/admin/users/{user['id']}", headers=admin).status_code == 200
    assert client.delete(f"/api/admin/users/{org.admin.id}", headers=admin).status_code == 400


def login(client, username, password):
    return client.post("/api/auth/login", json={"username": username, "password": password})


def test_admin_updates_user(client, org, auth_header, services):
    admin = auth_header(org.admin)
    created = services.directory.create_user(org.admin, "moving.head", PASSWORD, "Moving Head",
                                             Role.HEAD, section_id=org.payroll.id)

    resp = client.put(f"/api/admin/users/{created.id}", json={
        "username": "moving.manager", "fullName": "Now Manager",
        "role": "manager", "departmentId": org.legal.id,
    }, headers=admin)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["message"] == "User updated successfully"
    assert body["data"]["role"] == "manager"
    assert body["data"]["departmentId"] == org.legal.id
    assert body["data"]["sectionId"] is None

    # no password given: the old one still works
    assert login(client, "moving.head", PASSWORD).status_code == 401
    resp = login(client, "moving.manager", PASSWORD)
    assert resp.status_code == 200
    assert resp.get_json()["data"]["user"]["role"] == "manager"

    resp = client.put(f"/api/admin/users/{created.id}", json={
        "username": "moving.manager", "fullName": "Now Manager", "password": "fresh-pass",
        "role": "manager", "departmentId": org.legal.id,
    }, headers=admin)
    assert resp.status_code == 200
    assert login(client, "moving.manager", PASSWORD).status_code == 401
    assert login(client, "moving.manager", "fresh-pass").status_code == 200


def test_update_user_rejections(client, org, auth_header):
    admin = auth_header(org.admin)
    payload = {"username": "budget.head", "fullName": "Budget Head",
               "role": "head", "sectionId": org.budget.id}

    clash = client.put(f"/api/admin/users/{org.budget_head.id}",
                       json=dict(payload, username="payroll.head"), headers=admin)
    assert clash.status_code == 400
    assert clash.get_json()["message"] == "Username already exists"

    odd = client.put(f"/api/admin/users/{org.budget_head.id}",
                     json=dict(payload, departmentId=org.finance.id), headers=admin)
    assert odd.status_code == 400

    short = client.put(f"/api/admin/users/{org.budget_head.id}",
                       json=dict(payload, password="abc"), headers=admin)
    assert short.status_code == 400

    missing = client.put("/api/admin/users/no-such-user", json=payload, headers=admin)
    assert missing.status_code == 404
    assert missing.get_json()["message"] == "User not found"

    denied = client.put(f"/api/admin/users/{org.budget_head.id}", json=payload,
                        headers=auth_header(org.finance_manager))
    assert denied.status_code == 403

    # nothing above changed the account
    assert login(client, "budget.head", PASSWORD).get_json()["data"]["user"]["sectionId"] == org.budget.id
