"""Tests for bearer token handling and role checks."""

import pytest
from datetime import timedelta
from uuid import uuid4

from app.services.auth import issue_token, token_subject


def test_token_round_trip():
    user_id = uuid4()
    assert token_subject(issue_token(user_id)) == user_id


def test_expired_token_is_rejected():
    assert token_subject(issue_token(uuid4(), lifetime=timedelta(seconds=-10))) is None


def test_malformed_subject_is_rejected():
    assert token_subject(issue_token(uuid4(), sub="not-a-uuid")) is None


@pytest.mark.asyncio
async def test_unknown_user_is_unauthenticated(client):
    resp = await client.get("/api/v1/me/points", headers={"Authorization": f"Bearer {issue_token(uuid4())}"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHENTICATED"


@pytest.mark.asyncio
async def test_disabled_account_is_forbidden(client, db, client_user, headers):
    client_user.is_active = False
    await db.commit()

    resp = await client.get("/api/v1/me/points", headers=headers(client_user))

    assert resp.status_code == 403
    assert resp.json()["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_client_cannot_use_operator_route(client, client_user, headers):
    resp = await client.patch(
        f"/api/v1/bookings/{uuid4()}/status", json={"status": "CONFIRMED"}, headers=headers(client_user)
    )
    assert resp.status_code == 403
