from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from ticketdesk.main import create_app
from ticketdesk.models import Notification


@pytest.fixture
def client(ctx):
    return TestClient(create_app(ctx))


def test_requests_without_token_are_rejected(client) -> None:
    response = client.get("/api/v1/tickets")
    assert response.status_code in (401, 403)


def test_ticket_flow_over_http(client, db, make_user, auth_headers) -> None:
    admin = make_user("admin")
    customer = make_user("client")

    created = client.post("/api/v1/tickets", json={"title": "Laptop fan noise"}, headers=auth_headers(customer))
    assert created.status_code == 201
    ticket_id = created.json()["id"]

    sent = client.post(
        f"/api/v1/tickets/{ticket_id}/messages",
        json={"message": "internal triage", "message_mode": "internal"},
        headers=auth_headers(admin),
    )
    assert sent.status_code == 201
    assert sent.json()["message_mode"] == "internal"

    listing = client.get("/api/v1/tickets", headers=auth_headers(admin))
    assert listing.status_code == 200
    [summary] = listing.json()["tickets"]
    assert summary["last_message"] == "internal triage"
    assert listing.json()["partial_failures"] == []

    detail = client.get(f"/api/v1/tickets/{ticket_id}", headers=auth_headers(customer))
    assert detail.status_code == 200
    assert detail.json()["is_creator"] is True
    assert detail.json()["writable_modes"] == ["client"]


def test_domain_errors_are_rendered_as_problem_json(client, make_user, make_ticket, auth_headers) -> None:
    owner = make_user("client")
    stranger = make_user("client")
    ticket = make_ticket(owner)

    response = client.get(f"/api/v1/tickets/{ticket.id}", headers=auth_headers(stranger))

    assert response.status_code == 403
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["code"] == "TICKET_ACTION_FORBIDDEN"


def test_notification_centre(client, db, make_user, auth_headers) -> None:
    user = make_user("employee")
    for title in ("one", "two"):
        db.add(Notification(user_id=user.id, type="ticket_update", title=title, message=title))
    db.commit()
    headers = auth_headers(user)

    assert client.get("/api/v1/notifications/unread-count", headers=headers).json() == {"unread_count": 2}

    first_id = client.get("/api/v1/notifications", headers=headers).json()[0]["id"]
    assert client.post(f"/api/v1/notifications/{first_id}/read", headers=headers).json()["is_read"] is True
    assert len(client.get("/api/v1/notifications?unread_only=true", headers=headers).json()) == 1

    assert client.post("/api/v1/notifications/read-all", headers=headers).json() == {"updated": 1}
    assert client.delete(f"/api/v1/notifications/{first_id}", headers=headers).status_code == 204
    assert client.get("/api/v1/notifications", headers=headers).json()[0]["title"] in {"one", "two"}


def test_notification_preferences_default_and_upsert(client, make_user, auth_headers) -> None:
    headers = auth_headers(make_user("employee"))

    defaults = client.get("/api/v1/notifications/preferences", headers=headers).json()
    assert all(defaults.values())

    update = {**defaults, "chat_internal": False}
    saved = client.put("/api/v1/notifications/preferences", json=update, headers=headers)
    assert saved.status_code == 200
    assert client.get("/api/v1/notifications/preferences", headers=headers).json()["chat_internal"] is False


def test_other_users_notifications_are_not_found(client, db, make_user, auth_headers) -> None:
    owner = make_user("employee")
    note = Notification(user_id=owner.id, type="ticket_update", title="t", message="m")
    db.add(note)
    db.commit()

    response = client.post(f"/api/v1/notifications/{note.id}/read", headers=auth_headers(make_user("employee")))

    assert response.status_code == 404
    assert response.json()["code"] == "NOTIFICATION_NOT_FOUND"


def test_admin_user_listing_requires_admin(client, make_user, auth_headers) -> None:
    assert client.get("/api/v1/users", headers=auth_headers(make_user("employee"))).status_code == 403
    assert client.get("/api/v1/users", headers=auth_headers(make_user("admin"))).status_code == 200


def test_file_upload_and_serve(client, make_user, make_ticket, auth_headers) -> None:
    admin = make_user("admin")
    ticket = make_ticket(admin)
    headers = auth_headers(admin)

    uploaded = client.post(
        f"/api/v1/files/tickets/{ticket.id}",
        files={"file": ("notes.txt", b"reboot fixed it", "text/plain")},
        headers=headers,
    )
    assert uploaded.status_code == 201
    url = uploaded.json()["file_url"]

    served = client.get(url.replace("http://testserver", ""), headers=headers)
    assert served.status_code == 200
    assert served.content == b"reboot fixed it"


def test_confirm_upload_requires_object_in_storage(client, make_user, make_ticket, auth_headers) -> None:
    admin = make_user("admin")
    ticket = make_ticket(admin)

    response = client.post(
        f"/api/v1/files/tickets/{ticket.id}/confirm",
        json={"file_path": f"tickets/{ticket.id}/files/missing.pdf", "file_name": "missing.pdf"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "File not found in storage. Upload may have failed."


def test_served_files_require_ticket_access(client, make_user, make_ticket, auth_headers) -> None:
    admin = make_user("admin")
    ticket = make_ticket(admin)
    uploaded = client.post(
        f"/api/v1/files/tickets/{ticket.id}",
        files={"file": ("notes.txt", b"private", "text/plain")},
        headers=auth_headers(admin),
    )
    path = uploaded.json()["file_url"].replace("http://testserver", "")

    denied = client.get(path, headers=auth_headers(make_user("employee", approval_status="pending")))

    assert denied.status_code == 403
    assert denied.json()["code"] == "TICKET_ACTION_FORBIDDEN"
