from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from ticketdesk.domain_errors import ConflictError, DomainError, NotFoundError, ValidationError
from ticketdesk.problem_details import build_problem_details_response, register_problem_handlers


def test_problem_details_payload_contains_stable_code_and_rfc7807_fields() -> None:
    response = build_problem_details_response(
        ConflictError(
            code="MEMBERS_ALREADY_PRESENT",
            message="All selected users are already members",
            details={"user_ids": ["u1"]},
        )
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"

    body = response.body.decode("utf-8")
    assert '"type":"https://api.ticketdesk.local/problems/members_already_present"' in body
    assert '"title":"Conflict"' in body
    assert '"status":409' in body
    assert '"detail":"All selected users are already members"' in body
    assert '"code":"MEMBERS_ALREADY_PRESENT"' in body
    assert '"details":{"user_ids":["u1"]}' in body


def test_problem_details_omits_details_when_none() -> None:
    response = build_problem_details_response(NotFoundError(code="TICKET_NOT_FOUND", message="Ticket not found"))

    body = response.body.decode("utf-8")
    assert response.status_code == 404
    assert '"code":"TICKET_NOT_FOUND"' in body
    assert '"details"' not in body


def test_validation_error_can_carry_a_custom_status() -> None:
    response = build_problem_details_response(
        ValidationError(code="FILE_TOO_LARGE", message="File too large", http_status=413)
    )

    assert response.status_code == 413
    assert '"status":413' in response.body.decode("utf-8")


def test_registered_handler_maps_domain_error_to_problem_details() -> None:
    app = FastAPI()
    register_problem_handlers(app)

    @app.get("/boom")
    def _boom():
        raise DomainError(
            code="ROUTE_PROBLEM",
            http_status=502,
            message="route failed",
            details={"source": "test"},
        )

    client = TestClient(app)
    response = client.get("/boom")

    assert response.status_code == 502
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "ROUTE_PROBLEM"
    assert payload["detail"] == "route failed"
    assert payload["details"] == {"source": "test"}
