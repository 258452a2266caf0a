import uuid

import pytest

from tests._client import get_async_client
from tests.factories import auth_headers, make_user


@pytest.mark.anyio
async def test_error_responses_include_request_id_in_body_and_header():
    async with get_async_client() as client:
        r = await client.get("/this-route-does-not-exist")
    assert r.status_code == 404

    payload = r.json()
    assert payload["success"] is False
    assert payload["request_id"], payload
    assert r.headers.get("x-request-id") == payload["request_id"]


@pytest.mark.anyio
async def test_caller_request_id_is_echoed(client):
    r = await client.get("/api/v1/users/me", headers={"X-Request-ID": "req-123"})
    assert r.headers.get("x-request-id") == "req-123"
    assert r.json()["request_id"] == "req-123"


@pytest.mark.anyio
async def test_missing_token_is_unauthenticated(client):
    r = await client.get("/api/v1/users/me")
    assert r.status_code == 401
    body = r.json()
    assert body["kind"] == "unauthenticated"
    assert body["errors"]


@pytest.mark.anyio
async def test_body_validation_is_400_with_field_errors(client):
    r = await client.post("/api/v1/users/register", json={"email": "not-an-email", "password": "x"})
    assert r.status_code == 400
    body = r.json()
    assert body["kind"] == "validation"
    assert any(e.startswith("email") for e in body["errors"])
    assert any(e.startswith("password") for e in body["errors"])


@pytest.mark.anyio
async def test_unknown_entity_is_404_not_found(client, session):
    officer = await make_user(session, "loan_officer_processor")
    r = await client.get(f"/api/v1/loans/{uuid.uuid4()}", headers=auth_headers(officer))
    assert r.status_code == 404
    body = r.json()
    assert body["kind"] == "not_found"
    assert body["message"] == "Loan not found"


@pytest.mark.anyio
async def test_missing_role_is_403_forbidden(client, session):
    customer = await make_user(session, "customer")
    r = await client.get("/api/v1/loans/stats", headers=auth_headers(customer))
    assert r.status_code == 403
    assert r.json()["kind"] == "forbidden"


@pytest.mark.anyio
async def test_suspended_account_is_forbidden(client, session):
    user = await make_user(session, "customer", status="suspended")
    r = await client.get("/api/v1/users/me", headers=auth_headers(user))
    assert r.status_code == 403
