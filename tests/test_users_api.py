import re

import pytest

from pawnbroker.clock import utcnow
from tests.conftest import FakeClock
from tests.factories import PASSWORD, auth_headers, make_user


@pytest.fixture
def clock() -> FakeClock:
    # tokens are checked against wall time, so this module runs on it
    return FakeClock(utcnow())


def _code(notifier) -> str:
    return re.search(r"\b(\d{6})\b", notifier.sent[-1].body).group(1)


async def _register(client, email="rudo@example.com"):
    return await client.post(
        "/api/v1/users/register",
        json={"email": email, "password": PASSWORD, "first_name": "Rudo", "last_name": "Chikwanha", "phone": "+263771000111"},
    )


@pytest.mark.anyio
async def test_register_verify_login_me(client, notifier):
    r = await _register(client, email="  Rudo@Example.com ")
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    assert data["email"] == "rudo@example.com"
    assert data["status"] == "pending"
    assert data["roles"] == ["customer"]
    assert "password_hash" not in data
    assert notifier.sent[-1].kind == "user.verify_email"

    r = await client.post("/api/v1/users/login", json={"email": "rudo@example.com", "password": PASSWORD})
    assert r.status_code == 403

    r = await client.post("/api/v1/users/verify-email", json={"email": "rudo@example.com", "otp": "000000x"})
    assert r.status_code == 400
    assert r.json()["kind"] == "validation"

    r = await client.post("/api/v1/users/verify-email", json={"email": "rudo@example.com", "otp": _code(notifier)})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["status"] == "active"
    assert r.json()["data"]["email_verified"] is True

    r = await client.post("/api/v1/users/login", json={"email": "rudo@example.com", "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json()["kind"] == "unauthenticated"

    r = await client.post("/api/v1/users/login", json={"email": "rudo@example.com", "password": PASSWORD})
    assert r.status_code == 200, r.text
    token = r.json()["data"]["access_token"]
    assert r.json()["data"]["token_type"] == "bearer"

    r = await client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["data"]["email"] == "rudo@example.com"
    assert r.json()["data"]["last_login_at"] is not None


@pytest.mark.anyio
async def test_duplicate_registration_conflicts(client):
    assert (await _register(client)).status_code == 201
    r = await _register(client, email="RUDO@example.com")
    assert r.status_code == 409
    assert r.json()["kind"] == "duplicate"


@pytest.mark.anyio
async def test_password_reset(client, session, notifier):
    user = await make_user(session, email="tinashe@example.com")

    r = await client.post("/api/v1/users/forgot-password", json={"email": "nobody@example.com"})
    assert r.status_code == 200
    assert notifier.sent == []

    r = await client.post("/api/v1/users/forgot-password", json={"email": user.email})
    assert r.status_code == 200
    otp = _code(notifier)

    r = await client.post(
        "/api/v1/users/reset-password", json={"email": user.email, "otp": otp, "new_password": "N3w-password!"}
    )
    assert r.status_code == 200, r.text

    r = await client.post("/api/v1/users/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 401
    r = await client.post("/api/v1/users/login", json={"email": user.email, "password": "N3w-password!"})
    assert r.status_code == 200

    # codes are single use
    r = await client.post(
        "/api/v1/users/reset-password", json={"email": user.email, "otp": otp, "new_password": "Other-password1"}
    )
    assert r.status_code == 400


@pytest.mark.anyio
async def test_account_deletion_anonymises(client, session, notifier):
    user = await make_user(session, email="farai@example.com")
    headers = auth_headers(user)

    r = await client.post("/api/v1/users/account-deletion/request", headers=headers)
    assert r.status_code == 200
    r = await client.post("/api/v1/users/account-deletion/confirm", json={"otp": _code(notifier)}, headers=headers)
    assert r.status_code == 200, r.text

    await session.refresh(user)
    assert user.status == "deleted"
    assert user.email.endswith("@deleted.invalid")
    assert user.password_hash is None

    r = await client.get("/api/v1/users/me", headers=headers)
    assert r.status_code == 401

    # the address is free again
    assert (await _register(client, email="farai@example.com")).status_code == 201


@pytest.mark.anyio
async def test_admin_creates_staff(client, session):
    admin = await make_user(session, "admin_pawn_limited")
    customer = await make_user(session)
    body = {
        "email": "officer@example.com",
        "password": PASSWORD,
        "first_name": "Nyasha",
        "last_name": "Dube",
        "roles": ["loan_officer_processor"],
    }

    r = await client.post("/api/v1/users", json=body, headers=auth_headers(customer))
    assert r.status_code == 403

    r = await client.post("/api/v1/users", json={**body, "roles": ["super_admin_vendor"]}, headers=auth_headers(admin))
    assert r.status_code == 403

    r = await client.post("/api/v1/users", json=body, headers=auth_headers(admin))
    assert r.status_code == 201, r.text
    assert r.json()["data"]["status"] == "active"
    assert r.json()["data"]["roles"] == ["loan_officer_processor"]
