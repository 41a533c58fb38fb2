from datetime import datetime, timedelta, timezone

import pytest

from wohub.models.models import Attachment, Notification, Role, TimeEntry, UserRole, WorkOrderStatus


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_register_login_and_me(client):
    r = client.post(
        "/auth/register",
        json={"email": "Boss@Example.com", "password": "longpassword", "name": "Boss", "role": "manager"},
    )
    assert r.status_code == 200

    # the first manager is approved on signup; later sign-ups wait
    r = client.post("/auth/login", json={"email": "boss@example.com", "password": "longpassword"})
    assert r.status_code == 200
    token = r.json()["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["email"] == "boss@example.com"
    assert me["role"] == "manager" and me["approved"] is True

    r = client.post("/auth/login", json={"email": "boss@example.com", "password": "wrong-password"})
    assert r.status_code == 401


def test_duplicate_registration_conflicts(client):
    payload = {"email": "c@example.com", "password": "longpassword", "name": "C", "role": "client"}
    assert client.post("/auth/register", json=payload).status_code == 200
    assert client.post("/auth/register", json=payload).status_code == 409


def test_unapproved_user_is_forbidden(client, make_user, auth_headers):
    user = make_user(Role.CLIENT, approved=False)
    r = client.get("/work-orders", headers=auth_headers(user))
    assert r.status_code == 403
    assert r.json()["detail"] == "Account pending approval"


def test_missing_token_is_unauthorized(client):
    assert client.get("/work-orders").status_code == 401


def test_manager_approves_pending_user(client, make_user, auth_headers):
    manager = make_user(Role.MANAGER)
    pending = make_user(Role.EMPLOYEE, approved=False)

    listed = client.get("/users/pending", headers=auth_headers(manager)).json()
    assert [u["id"] for u in listed] == [str(pending.id)]

    r = client.post(f"/users/{pending.id}/approve", headers=auth_headers(manager))
    assert r.status_code == 200 and r.json()["approved"] is True
    assert client.get("/work-orders", headers=auth_headers(pending)).status_code == 200

    employees = client.get("/users/employees", headers=auth_headers(manager)).json()
    assert str(pending.id) in [u["id"] for u in employees]


def test_manager_creates_preapproved_account(client, db, make_user, auth_headers):
    manager = make_user(Role.MANAGER)
    payload = {"email": "Rui@Example.com", "password": "longpassword", "name": "Rui Costa", "role": "employee"}

    r = client.post("/users", json=payload, headers=auth_headers(manager))
    assert r.status_code == 201
    body = r.json()
    assert body["email"] == "rui@example.com"
    assert body["role"] == "employee" and body["approved"] is True
    assert db.query(UserRole).filter(UserRole.role == Role.EMPLOYEE).one().approved_by == manager.id

    # usable straight away
    r = client.post("/auth/login", json={"email": "rui@example.com", "password": "longpassword"})
    token = r.json()["access_token"]
    assert client.get("/work-orders", headers={"Authorization": f"Bearer {token}"}).status_code == 200

    assert client.post("/users", json=payload, headers=auth_headers(manager)).status_code == 409
    r = client.post("/users", json={**payload, "email": "m2@example.com", "role": "manager"}, headers=auth_headers(manager))
    assert r.status_code == 422


def test_only_managers_create_accounts(client, make_user, auth_headers):
    worker = make_user(Role.EMPLOYEE)
    payload = {"email": "x@example.com", "password": "longpassword", "name": "X", "role": "client"}
    assert client.post("/users", json=payload, headers=auth_headers(worker)).status_code == 403


def test_manager_edits_profile_and_role(client, make_user, auth_headers):
    manager = make_user(Role.MANAGER)
    user = make_user(Role.CLIENT, name="Old Name")

    r = client.put(
        f"/users/{user.id}",
        json={"name": "Padaria Central", "phone": "912345678", "role": "employee"},
        headers=auth_headers(manager),
    )
    assert r.status_code == 200
    body = r.json()
    assert body["name"] == "Padaria Central" and body["phone"] == "912345678"
    assert body["role"] == "employee"
    assert body["company_name"] == "ACME"

    r = client.put(f"/users/{manager.id}", json={"role": "client"}, headers=auth_headers(manager))
    assert r.status_code == 400
    r = client.put(f"/users/{user.id}", json={"role": "admin"}, headers=auth_headers(manager))
    assert r.status_code == 422


def test_client_request_flow(client, make_user, auth_headers, db):
    manager = make_user(Role.MANAGER)
    customer = make_user(Role.CLIENT)

    r = client.post("/equipments", json={"name": "Caldeira Vulcano"}, headers=auth_headers(customer))
    assert r.status_code == 201
    equipment_id = r.json()["id"]

    r = client.post(
        "/work-orders",
        json={"title": "Sem água quente", "priority": "high", "equipment_ids": [equipment_id]},
        headers=auth_headers(customer),
    )
    assert r.status_code == 201
    wo = r.json()
    assert wo["status"] == "awaiting_approval"
    assert wo["reference"].startswith("OT-")

    types = {n.type for n in db.query(Notification).all()}
    assert {"work_order_created_notify_managers", "work_order_request_received"} <= types

    r = client.post(f"/work-orders/{wo['id']}/approve", json={"scheduled_date": "2024-05-02"}, headers=auth_headers(manager))
    assert r.status_code == 200
    assert r.json()["status"] == "pending"
    assert r.json()["scheduled_date"] == "2024-05-02"

    detail = client.get(f"/work-orders/{wo['id']}", headers=auth_headers(customer)).json()
    assert detail["equipments"][0]["name"] == "Caldeira Vulcano"

    r = client.post(f"/work-orders/{wo['id']}/approve", json={}, headers=auth_headers(manager))
    assert r.status_code == 400


def test_employee_cannot_create_or_manage(client, make_user, make_work_order, auth_headers):
    worker = make_user(Role.EMPLOYEE)
    wo = make_work_order(workers=[worker])
    assert client.post("/work-orders", json={"title": "x"}, headers=auth_headers(worker)).status_code == 403
    assert client.delete(f"/work-orders/{wo.id}", headers=auth_headers(worker)).status_code == 403


def test_work_session_lifecycle(client, db, make_user, make_work_order, auth_headers, signature_b64):
    manager = make_user(Role.MANAGER)
    worker = make_user(Role.EMPLOYEE, name="Ana")
    customer = make_user(Role.CLIENT)
    wo = make_work_order(client=customer)
    h = auth_headers(worker)

    # not assigned yet
    assert client.post(f"/time-entries/work-orders/{wo.id}/start", headers=h).status_code == 403

    r = client.post(f"/work-orders/{wo.id}/assignments", json={"user_id": str(worker.id)}, headers=auth_headers(manager))
    assert r.status_code == 201 and r.json()["name"] == "Ana"

    r = client.post(f"/time-entries/work-orders/{wo.id}/start", headers=h)
    assert r.status_code == 201
    assert client.post(f"/time-entries/work-orders/{wo.id}/start", headers=h).status_code == 409
    assert client.get(f"/work-orders/{wo.id}", headers=h).json()["status"] == "in_progress"
    assert len(client.get("/time-entries/active", headers=h).json()) == 1

    r = client.post(
        f"/time-entries/work-orders/{wo.id}/pause",
        json={"reason": "falta_material", "missing_material": "Bomba"},
        headers=h,
    )
    assert r.status_code == 200
    assert r.json()["note"] == "Material em falta: Bomba"
    assert client.get(f"/work-orders/{wo.id}", headers=h).json()["status"] == "pending"

    r = client.post(f"/time-entries/work-orders/{wo.id}/pause", json={"reason": "enviado_oficina"}, headers=h)
    assert r.status_code == 404

    assert client.post(f"/time-entries/work-orders/{wo.id}/start", headers=h).status_code == 201
    r = client.post(f"/work-orders/{wo.id}/complete", json={"signature": signature_b64, "note": "Feito"}, headers=h)
    assert r.status_code == 200
    body = r.json()
    assert body["work_order"]["status"] == "completed"
    assert body["attachment"]["kind"] == "completion_report"

    r = client.get(f"/attachments/{body['attachment']['id']}/download", headers=auth_headers(customer))
    assert r.status_code == 200
    assert r.content.startswith(b"%PDF")
    assert r.headers["content-type"] == "application/pdf"

    completed = {n.user_id for n in db.query(Notification).filter(Notification.type == "work_order_completed")}
    assert completed == {customer.id, manager.id}


def test_edit_and_delete_time_entries(client, db, make_user, make_work_order, auth_headers):
    worker = make_user(Role.EMPLOYEE)
    other = make_user(Role.EMPLOYEE)
    wo = make_work_order(workers=[worker, other])
    start = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)
    entry = TimeEntry(
        work_order_id=wo.id,
        user_id=worker.id,
        start_time=start,
        end_time=start + timedelta(hours=1),
        duration_hours=1.0,
    )
    db.add(entry)
    db.commit()

    r = client.put(f"/time-entries/{entry.id}", json={"hours": 0, "note": "x"}, headers=auth_headers(worker))
    assert r.status_code == 400

    r = client.put(f"/time-entries/{entry.id}", json={"hours": 2.5, "note": "Ajuste"}, headers=auth_headers(other))
    assert r.status_code == 404

    r = client.put(f"/time-entries/{entry.id}", json={"hours": 2.5, "note": "Ajuste"}, headers=auth_headers(worker))
    assert r.status_code == 200
    assert r.json()["duration_hours"] == pytest.approx(2.5)
    assert client.get(f"/work-orders/{wo.id}", headers=auth_headers(worker)).json()["total_hours"] == pytest.approx(2.5)

    assert client.delete(f"/time-entries/{entry.id}", headers=auth_headers(worker)).status_code == 200
    assert client.get(f"/work-orders/{wo.id}", headers=auth_headers(worker)).json()["total_hours"] == 0


def test_complete_requires_signature(client, make_user, make_work_order, auth_headers):
    worker = make_user(Role.EMPLOYEE)
    wo = make_work_order(workers=[worker])
    r = client.post(f"/work-orders/{wo.id}/complete", json={"signature": "  "}, headers=auth_headers(worker))
    assert r.status_code == 422
    r = client.post(f"/work-orders/{wo.id}/complete", json={"signature": "aGVsbG8="}, headers=auth_headers(worker))
    assert r.status_code == 400


def test_listing_is_paginated_and_scoped(client, make_user, make_work_order, auth_headers):
    manager = make_user(Role.MANAGER)
    customer = make_user(Role.CLIENT)
    for i in range(3):
        make_work_order(client=customer, title=f"Job {i}")
    make_work_order()

    page = client.get("/work-orders?page=1&page_size=2", headers=auth_headers(manager)).json()
    assert page["total"] == 4 and len(page["items"]) == 2 and page["total_pages"] == 2

    page = client.get("/work-orders", headers=auth_headers(customer)).json()
    assert page["total"] == 3
    assert all(item["client_id"] == str(customer.id) for item in page["items"])

    assert client.get("/work-orders?status=bogus", headers=auth_headers(manager)).status_code == 422


def test_other_clients_cannot_see_order(client, make_user, make_work_order, auth_headers):
    wo = make_work_order()
    stranger = make_user(Role.CLIENT)
    assert client.get(f"/work-orders/{wo.id}", headers=auth_headers(stranger)).status_code == 404


def test_attachment_upload_and_delete(client, db, make_user, make_work_order, auth_headers):
    manager = make_user(Role.MANAGER)
    worker = make_user(Role.EMPLOYEE)
    wo = make_work_order(workers=[worker])

    r = client.post(
        f"/attachments/work-orders/{wo.id}",
        files={"file": ("Foto Avaria.JPG", b"\xff\xd8\xff fake jpeg", "image/jpeg")},
        headers=auth_headers(worker),
    )
    assert r.status_code == 201
    att_id = r.json()["id"]
    key = db.query(Attachment).one().key
    assert key.startswith(f"{wo.id}/") and key.endswith("_foto-avaria.jpg")

    listed = client.get(f"/attachments/work-orders/{wo.id}", headers=auth_headers(manager)).json()
    assert [a["filename"] for a in listed] == ["Foto Avaria.JPG"]

    r = client.get(f"/attachments/{att_id}/download", headers=auth_headers(manager))
    assert r.content == b"\xff\xd8\xff fake jpeg"

    assert client.delete(f"/attachments/{att_id}", headers=auth_headers(manager)).status_code == 200
    assert db.query(Attachment).count() == 0


def test_download_with_non_latin1_filename(client, make_user, make_work_order, auth_headers):
    worker = make_user(Role.EMPLOYEE)
    wo = make_work_order(workers=[worker])
    h = auth_headers(worker)

    r = client.post(
        f"/attachments/work-orders/{wo.id}",
        files={"file": ("orçamento €.pdf", b"%PDF-1.4 quote", "application/pdf")},
        headers=h,
    )
    assert r.status_code == 201

    r = client.get(f"/attachments/{r.json()['id']}/download", headers=h)
    assert r.status_code == 200
    assert r.content == b"%PDF-1.4 quote"
    disposition = r.headers["content-disposition"]
    assert "filename*=UTF-8''or%C3%A7amento%20%E2%82%AC.pdf" in disposition
    assert disposition.startswith('attachment; filename="orcamento')


def test_notifications_endpoints(client, db, make_user, auth_headers):
    user = make_user(Role.CLIENT)
    for i in range(3):
        db.add(Notification(user_id=user.id, type="work_order_updated", payload={"reference": f"OT-{i}", "message": "m"}))
    db.commit()
    h = auth_headers(user)

    assert client.get("/notifications/unread-count", headers=h).json() == {"count": 3}
    items = client.get("/notifications", headers=h).json()
    client.post(f"/notifications/{items[0]['id']}/read", headers=h)
    assert client.get("/notifications/unread-count", headers=h).json() == {"count": 2}
    client.post("/notifications/mark-all-read", headers=h)
    assert client.get("/notifications?unread_only=true", headers=h).json() == []
    assert client.get("/notifications/email-logs", headers=h).status_code == 403


def test_manager_update_and_delete(client, db, make_user, make_work_order, auth_headers):
    manager = make_user(Role.MANAGER)
    wo = make_work_order(status=WorkOrderStatus.COMPLETED)
    h = auth_headers(manager)

    r = client.put(f"/work-orders/{wo.id}", json={"status": "pending", "priority": "urgent"}, headers=h)
    assert r.status_code == 200
    assert r.json()["status"] == "pending" and r.json()["priority"] == "urgent"

    history = client.get(f"/work-orders/{wo.id}/history", headers=h).json()
    assert {row["action"] for row in history} == {"STATUS_CHANGE", "UPDATE"}
    assert all(row["actor_id"] == str(manager.id) for row in history)

    assert client.delete(f"/work-orders/{wo.id}", headers=h).status_code == 200
    assert client.get(f"/work-orders/{wo.id}", headers=h).status_code == 404
