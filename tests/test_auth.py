# tests/test_auth.py: Authentication router tests
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlmodel import select

from models.models import DeleteAccountToken, PasswordResetToken, Task, utcnow
from tests.conftest import TEST_PASSWORD, create_project, get_auth_headers


async def _token_for(session_factory, model, email: str):
    async with session_factory() as session:
        return (await session.exec(select(model).where(model.email == email))).first()


async def _expire_token(session_factory, model, email: str) -> None:
    async with session_factory() as session:
        async with session.begin():
            row = (await session.exec(select(model).where(model.email == email))).first()
            row.expires_at = utcnow() - timedelta(minutes=1)
            session.add(row)


# ── Register / login ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_register_returns_token(client: AsyncClient):
    resp = await client.post(
        "/api/auth/register",
        json={"name": "Nina New", "email": "Nina@NudgeApp.io", "password": "Str0ng!pass"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "nina@nudgeapp.io"

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["name"] == "Nina New"


@pytest.mark.asyncio
@pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "NoDigits!!", "NoSpecial123"])
async def test_register_rejects_weak_passwords(client: AsyncClient, password):
    resp = await client.post(
        "/api/auth/register", json={"name": "Weak", "email": "weak@nudgeapp.io", "password": password}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, owner):
    resp = await client.post(
        "/api/auth/register", json={"name": "Again", "email": owner.email, "password": "Str0ng!pass"}
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_login(client: AsyncClient, owner):
    resp = await client.post("/api/auth/login", json={"email": owner.email, "password": TEST_PASSWORD})
    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == owner.id

    resp = await client.post("/api/auth/login", json={"email": owner.email, "password": "Wr0ng!pass"})
    assert resp.status_code == 401
    resp = await client.post("/api/auth/login", json={"email": "nobody@nudgeapp.io", "password": TEST_PASSWORD})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_me_rejects_bad_token(client: AsyncClient):
    resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


# ── Password reset ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_password_reset_flow(client: AsyncClient, session_factory, owner):
    resp = await client.post("/api/auth/password-reset/request", json={"email": owner.email})
    assert resp.status_code == 200
    row = await _token_for(session_factory, PasswordResetToken, owner.email)

    new_password = "N3w!password"
    resp = await client.post("/api/auth/password-reset/confirm", json={"token": row.token, "password": new_password})
    assert resp.status_code == 200

    login = await client.post("/api/auth/login", json={"email": owner.email, "password": new_password})
    assert login.status_code == 200

    # Tokens are single use
    resp = await client.post("/api/auth/password-reset/confirm", json={"token": row.token, "password": new_password})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_password_reset_for_unknown_email_looks_the_same(client: AsyncClient, owner):
    known = await client.post("/api/auth/password-reset/request", json={"email": owner.email})
    unknown = await client.post("/api/auth/password-reset/request", json={"email": "ghost@nudgeapp.io"})
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()


@pytest.mark.asyncio
async def test_expired_password_reset(client: AsyncClient, session_factory, owner):
    await client.post("/api/auth/password-reset/request", json={"email": owner.email})
    await _expire_token(session_factory, PasswordResetToken, owner.email)
    row = await _token_for(session_factory, PasswordResetToken, owner.email)

    resp = await client.post("/api/auth/password-reset/confirm", json={"token": row.token, "password": "N3w!password"})
    assert resp.status_code == 410


# ── Account deletion ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_delete_account_flow(client: AsyncClient, store, session_factory, project, owner, member):
    task = await store.create_task(Task(project_id=project.id, creator_id=owner.id, assignee_id=member.id, title="Handover"))
    headers = get_auth_headers(member)

    assert (await client.post("/api/auth/delete-account/request", headers=headers)).status_code == 200
    row = await _token_for(session_factory, DeleteAccountToken, member.email)

    resp = await client.post("/api/auth/delete-account/confirm", json={"token": row.token}, headers=headers)
    assert resp.status_code == 200

    assert await store.get_user(member.id) is None
    assert (await store.get_task(task.id)).assignee_id is None
    access = await store.get_project_access(project.id)
    assert member.id not in access.members


@pytest.mark.asyncio
async def test_deleting_creator_removes_their_projects(client: AsyncClient, store, session_factory, owner):
    project = await create_project(store, owner)
    headers = get_auth_headers(owner)

    await client.post("/api/auth/delete-account/request", headers=headers)
    row = await _token_for(session_factory, DeleteAccountToken, owner.email)
    await client.post("/api/auth/delete-account/confirm", json={"token": row.token}, headers=headers)

    assert await store.get_project(project.id) is None


@pytest.mark.asyncio
async def test_delete_token_belongs_to_its_user(client: AsyncClient, session_factory, owner, outsider):
    await client.post("/api/auth/delete-account/request", headers=get_auth_headers(owner))
    row = await _token_for(session_factory, DeleteAccountToken, owner.email)

    resp = await client.post(
        "/api/auth/delete-account/confirm", json={"token": row.token}, headers=get_auth_headers(outsider)
    )
    assert resp.status_code == 403
    # The rightful owner can still use the token afterwards
    resp = await client.post(
        "/api/auth/delete-account/confirm", json={"token": row.token}, headers=get_auth_headers(owner)
    )
    assert resp.status_code == 200
