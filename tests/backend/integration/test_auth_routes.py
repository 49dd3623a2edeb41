import pytest

from app.config import settings
from app.core.security import token_lifetime_minutes
from app.models.codes import AccessCode, InviteCode
from app.models.permission import UserPermission
from app.models.user import User, UserSettings
from app.schemas.auth import UserOut


pytestmark = pytest.mark.asyncio


async def test_first_registration_becomes_admin_without_code(client):
    resp = await client.post("/api/auth/register", json={"username": "founder", "password": "Founder#1"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["role"] == "admin"

    user = await User.get(username="founder")
    assert user.is_admin
    assert not await UserPermission.filter(user_id=user.id).exists()
    assert await UserSettings.filter(user_id=user.id).exists()


async def test_registration_requires_invite_after_first_account(client, create_admin):
    await create_admin()
    resp = await client.post("/api/auth/register", json={"username": "newbie", "password": "Newbie#12"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVITE_CODE_REQUIRED"
    assert not await User.filter(username="newbie").exists()


async def test_registration_without_invite_when_not_required(client, create_admin, monkeypatch):
    monkeypatch.setattr(settings, "require_invite_code", False)
    await create_admin()
    resp = await client.post("/api/auth/register", json={"username": "open", "password": "OpenReg#1"})
    assert resp.status_code == 200
    assert resp.json()["data"]["role"] == "user"


async def test_registration_consumes_invite_code(client, create_admin):
    admin, _ = await create_admin()
    await InviteCode.create(code="JOINUS22", created_by=admin, max_uses=1)

    resp = await client.post("/api/auth/register", json={
        "username": "invitee", "password": "Invitee#1", "inviteCode": "joinus22",
    })
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["role"] == "user"

    code = await InviteCode.get(code="JOINUS22")
    assert code.current_uses == 1
    assert code.is_used is True
    user = await User.get(username="invitee")
    assert user.invite_code == "JOINUS22"
    perm = await UserPermission.get(user_id=user.id)
    assert perm.permissions == ["chat"]

    # Exhausted
    resp = await client.post("/api/auth/register", json={
        "username": "latecomer", "password": "Latecomer#1", "inviteCode": "JOINUS22",
    })
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_INVITE_CODE"


async def test_failed_registration_does_not_consume_invite(client, create_admin, create_user):
    admin, _ = await create_admin()
    existing, _ = await create_user()
    await InviteCode.create(code="KEEPME22", created_by=admin, max_uses=1)

    resp = await client.post("/api/auth/register", json={
        "username": existing.username.upper(), "password": "Whatever#1", "inviteCode": "KEEPME22",
    })
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "USER_EXISTS"
    code = await InviteCode.get(code="KEEPME22")
    assert code.current_uses == 0
    assert code.is_used is False


async def test_disabled_invite_code_is_rejected(client, create_admin):
    admin, _ = await create_admin()
    await InviteCode.create(code="SWITCHED", created_by=admin, max_uses=10, is_used=True)
    resp = await client.post("/api/auth/register", json={
        "username": "blocked", "password": "Blocked#1", "inviteCode": "SWITCHED",
    })
    assert resp.status_code == 400


async def test_login_me_logout(client, create_user):
    member, password = await create_user()
    resp = await client.post("/api/auth/login", json={"username": member.username, "password": password})
    assert resp.status_code == 200
    token = resp.json()["data"]["accessToken"]
    assert "accessToken" in resp.cookies

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["data"]["id"] == str(member.id)
    assert set(me.json()["data"]) == set(UserOut.model_fields)

    await member.refresh_from_db()
    assert member.last_login_at is not None

    out = await client.post("/api/auth/logout")
    assert out.status_code == 200


async def test_login_wrong_password(client, create_user):
    member, _ = await create_user()
    resp = await client.post("/api/auth/login", json={"username": member.username, "password": "nope"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_INVALID_CREDENTIALS"


async def test_inactive_user_cannot_login_or_use_token(client, create_user, auth_header_factory):
    member, password = await create_user()
    headers = await auth_header_factory(member.username, password)
    member.is_active = False
    await member.save()

    resp = await client.post("/api/auth/login", json={"username": member.username, "password": password})
    assert resp.status_code == 403
    me = await client.get("/api/auth/me", headers=headers)
    assert me.status_code == 403


async def test_me_requires_token(client):
    resp = await client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_REQUIRED"


async def test_guest_login_inherits_scope_from_access_code(client, create_user):
    host, _ = await create_user()
    host_settings = await UserSettings.get(user_id=host.id)
    host_settings.theme = "dark"
    await host_settings.save()
    await AccessCode.create(
        code="GUEST234", created_by=host, max_uses=1, allowed_model_ids="gpt-4o-mini,deepseek-chat",
    )

    resp = await client.post("/api/auth/guest", json={"accessCode": "guest234", "nickname": "Bob"})
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["user"]["role"] == "guest"
    assert data["user"]["hostUserId"] == str(host.id)
    assert f"Max-Age={token_lifetime_minutes('guest') * 60}" in resp.headers["set-cookie"]
    assert data["user"]["username"].startswith("Bob-")

    guest = await User.get(id=data["user"]["id"])
    perm = await UserPermission.get(user_id=guest.id)
    assert perm.allowed_models() == ["gpt-4o-mini", "deepseek-chat"]
    assert perm.can_share_access is False
    assert (await UserSettings.get(user_id=guest.id)).theme == "dark"

    code = await AccessCode.get(code="GUEST234")
    assert code.current_uses == 1

    # Cap reached
    resp = await client.post("/api/auth/guest", json={"accessCode": "GUEST234"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_ACCESS_CODE"


async def test_guest_login_with_inactive_host(client, create_user):
    host, _ = await create_user()
    host.is_active = False
    await host.save()
    await AccessCode.create(code="NOHOST22", created_by=host)
    resp = await client.post("/api/auth/guest", json={"accessCode": "NOHOST22"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "HOST_UNAVAILABLE"
    assert (await AccessCode.get(code="NOHOST22")).current_uses == 0
