import uuid

import pytest

from app.core.permissions import ADMIN_PANEL, CHAT
from app.core.security import create_access_token
from app.models.codes import AccessCode, InviteCode
from app.models.conversation import Conversation
from app.models.message import Message, MessageRole
from app.models.permission import LimitType, UserPermission
from app.models.token_usage import TokenUsage
from app.models.user import User, UserRole, UserSettings


pytestmark = pytest.mark.asyncio


async def _seed_chat_history(user: User) -> Conversation:
    conv = await Conversation.create(user=user, title="hello")
    msg = await Message.create(conversation=conv, user=user, seq=1, role=MessageRole.USER, content="hi")
    await TokenUsage.create(user=user, conversation=conv, message=msg, prompt_tokens=3, completion_tokens=4, total_tokens=7)
    return conv


def _bearer(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), UserRole(user.role).value)}"}


def _admin_calls(caller: str, victim_id: str, invite_id: str, access_id: str) -> list[tuple[str, str, dict]]:
    target = {"adminUserId": caller, "userId": victim_id}
    return [
        ("GET", "/api/admin/users", {"params": {"adminUserId": caller}}),
        ("POST", "/api/admin/users", {"json": {"adminUserId": caller, "username": "sneaky", "password": "pw123456"}}),
        ("PATCH", "/api/admin/users", {"json": {**target, "action": "updateStatus", "isActive": False}}),
        ("PATCH", "/api/admin/users", {"json": {
            **target, "action": "updateAccessCodePermission", "canShareAccessCode": False,
        }}),
        ("PATCH", "/api/admin/users", {"json": {
            **target, "action": "updatePermissions", "limitType": "token", "tokenLimit": 1, "resetUsage": True,
        }}),
        ("DELETE", "/api/admin/users", {"json": target}),
        ("GET", "/api/admin/codes", {"params": {"adminUserId": caller, "type": "invite"}}),
        ("POST", "/api/admin/codes", {"json": {"adminUserId": caller, "type": "invite"}}),
        ("PATCH", "/api/admin/codes", {"json": {
            "adminUserId": caller, "codeId": invite_id, "type": "invite", "action": "toggle",
        }}),
        ("PATCH", "/api/admin/codes", {"json": {
            "adminUserId": caller, "codeId": access_id, "type": "access", "action": "toggle",
        }}),
        ("DELETE", "/api/admin/codes", {"json": {"adminUserId": caller, "codeId": invite_id, "type": "invite"}}),
        ("DELETE", "/api/admin/codes", {"json": {"adminUserId": caller, "codeId": access_id, "type": "access"}}),
        ("GET", "/api/admin/database-reset", {"params": {"adminUserId": caller}}),
        ("POST", "/api/admin/database-reset", {"json": {"adminUserId": caller, "confirmText": "RESET DATABASE"}}),
    ]


# ---------- permission gate ----------
async def test_every_admin_endpoint_rejects_callers_without_admin_session(client, create_admin, create_user):
    admin, _ = await create_admin(login=False)
    member, _ = await create_user(token_used=42)
    victim, _ = await create_user(token_used=42)
    guest, _ = await create_user(role=UserRole.GUEST, host=admin)
    invite = await InviteCode.create(code="GATEINV2", created_by=admin, max_uses=3)
    access = await AccessCode.create(code="GATEACC2", created_by=admin)

    attempts = [
        (admin, {}),                  # admin id known, no session
        (member, {}),                 # no session at all
        (member, _bearer(member)),    # authenticated, but not an admin
        (admin, _bearer(member)),     # someone else's session claiming the admin id
        (admin, _bearer(guest)),      # a guest of the admin claiming its host id
    ]
    for claimed, headers in attempts:
        calls = _admin_calls(str(claimed.id), str(victim.id), str(invite.id), str(access.id))
        for method, url, kwargs in calls:
            resp = await client.request(method, url, headers=headers, **kwargs)
            assert resp.status_code == 403, (method, url, resp.text)
            assert resp.json()["success"] is False

    # Nothing changed
    assert await User.filter(username="sneaky").count() == 0
    await victim.refresh_from_db()
    assert victim.is_active is True
    perm = await UserPermission.get(user_id=victim.id)
    assert (perm.can_share_access, perm.limit_type, perm.token_limit, perm.token_used) == (True, LimitType.NONE, None, 42)
    assert await InviteCode.all().count() == 1
    invite_after = await InviteCode.get(id=invite.id)
    assert (invite_after.is_used, invite_after.current_uses) == (False, 0)
    assert (await AccessCode.get(id=access.id)).is_active is True
    assert await User.filter(id=admin.id).exists()


async def test_admin_session_must_match_admin_user_id(client, create_admin):
    admin, _ = await create_admin()
    other_admin, _ = await create_admin(login=False)
    resp = await client.get("/api/admin/users", params={"adminUserId": str(other_admin.id)})
    assert resp.status_code == 403
    resp = await client.get("/api/admin/users", params={"adminUserId": str(admin.id)})
    assert resp.status_code == 200


async def test_admin_session_via_cookie(client, create_admin):
    admin, password = await create_admin(login=False)
    login = await client.post("/api/auth/login", json={"username": admin.username, "password": password})
    assert login.status_code == 200
    resp = await client.get("/api/admin/users", params={"adminUserId": str(admin.id)})
    assert resp.status_code == 200


async def test_admin_panel_tag_grants_access(client, create_user):
    operator, _ = await create_user(permissions=[CHAT, ADMIN_PANEL])
    resp = await client.get(
        "/api/admin/users", params={"adminUserId": str(operator.id)}, headers=_bearer(operator),
    )
    assert resp.status_code == 200


async def test_missing_admin_user_id_is_400(client):
    resp = await client.get("/api/admin/users")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "BAD_REQUEST"


# ---------- users ----------
async def test_create_user_with_defaults(client, create_admin):
    admin, _ = await create_admin()
    resp = await client.post("/api/admin/users", json={
        "adminUserId": str(admin.id),
        "username": "member1",
        "password": "Member#123",
        "email": "member1@example.com",
    })
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    assert data["role"] == "user"
    assert "password_hash" not in data and "passwordHash" not in data
    assert data["permission"]["permissions"] == ["chat"]
    assert data["permission"]["limitType"] == "none"
    assert data["permission"]["canShareAccess"] is True

    user = await User.get(username="member1")
    assert await UserSettings.filter(user_id=user.id).exists()
    assert await UserPermission.filter(user_id=user.id).exists()

    login = await client.post("/api/auth/login", json={"username": "member1", "password": "Member#123"})
    assert login.status_code == 200


async def test_create_admin_account_has_no_permission_row(client, create_admin):
    admin, _ = await create_admin()
    resp = await client.post("/api/admin/users", json={
        "adminUserId": str(admin.id), "username": "boss2", "password": "Boss#1234", "role": "admin",
    })
    assert resp.status_code == 201
    assert resp.json()["data"]["permission"] is None


async def test_create_user_rejects_duplicate_username_case_insensitively(client, create_admin):
    admin, _ = await create_admin()
    body = {"adminUserId": str(admin.id), "username": "Alice", "password": "Alice#123"}
    assert (await client.post("/api/admin/users", json=body)).status_code == 201

    resp = await client.post("/api/admin/users", json={**body, "username": "alice"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "USER_EXISTS"
    assert await User.filter(username__iexact="alice").count() == 1


async def test_create_user_rejects_duplicate_email(client, create_admin, create_user):
    admin, _ = await create_admin()
    existing, _ = await create_user()
    resp = await client.post("/api/admin/users", json={
        "adminUserId": str(admin.id), "username": "fresh", "password": "Fresh#123", "email": existing.email,
    })
    assert resp.status_code == 400


async def test_list_users_filters_and_stats(client, create_admin, create_user):
    admin, _ = await create_admin()
    active, _ = await create_user()
    banned, _ = await create_user()
    banned.is_active = False
    await banned.save()
    await _seed_chat_history(active)

    resp = await client.get("/api/admin/users", params={
        "adminUserId": str(admin.id), "role": "user", "isActive": "true", "includeStats": "true",
    })
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total"] == 1
    assert data["limit"] == 50 and data["offset"] == 0
    item = data["items"][0]
    assert item["id"] == str(active.id)
    assert item["stats"] == {"conversationCount": 1, "messageCount": 1, "totalTokens": 7}

    resp = await client.get("/api/admin/users", params={"adminUserId": str(admin.id), "limit": 1})
    data = resp.json()["data"]
    assert data["total"] == 3
    assert len(data["items"]) == 1
    assert "stats" not in data["items"][0]


async def test_list_users_limit_out_of_range(client, create_admin):
    admin, _ = await create_admin()
    resp = await client.get("/api/admin/users", params={"adminUserId": str(admin.id), "limit": 500})
    assert resp.status_code == 400


async def test_update_status_bans_and_blocks_login(client, create_admin, create_user):
    admin, _ = await create_admin()
    member, password = await create_user()
    resp = await client.patch("/api/admin/users", json={
        "adminUserId": str(admin.id), "action": "updateStatus", "userId": str(member.id), "isActive": False,
    })
    assert resp.status_code == 200
    assert resp.json()["data"]["isActive"] is False

    login = await client.post("/api/auth/login", json={"username": member.username, "password": password})
    assert login.status_code == 403


async def test_admin_cannot_ban_self(client, create_admin):
    admin, _ = await create_admin()
    resp = await client.patch("/api/admin/users", json={
        "adminUserId": str(admin.id), "action": "updateStatus", "userId": str(admin.id), "isActive": False,
    })
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "SELF_ACTION_FORBIDDEN"
    await admin.refresh_from_db()
    assert admin.is_active is True


async def test_update_access_code_permission(client, create_admin, create_user):
    admin, _ = await create_admin()
    member, _ = await create_user()
    resp = await client.patch("/api/admin/users", json={
        "adminUserId": str(admin.id),
        "action": "updateAccessCodePermission",
        "userId": str(member.id),
        "canShareAccessCode": False,
    })
    assert resp.status_code == 200
    assert resp.json()["data"]["permission"]["canShareAccess"] is False
    perm = await UserPermission.get(user_id=member.id)
    assert perm.can_share_access is False


async def test_update_permissions_sets_token_quota(client, create_admin, create_user):
    admin, _ = await create_admin()
    member, _ = await create_user()
    resp = await client.patch("/api/admin/users", json={
        "adminUserId": str(admin.id),
        "action": "updatePermissions",
        "userId": str(member.id),
        "limitType": "token",
        "limitPeriod": "daily",
        "tokenLimit": 1000,
        "allowedModelIds": ["gpt-4o-mini", "deepseek-chat"],
    })
    assert resp.status_code == 200, resp.text
    perm = resp.json()["data"]["permission"]
    assert perm["limitType"] == "token"
    assert perm["limitPeriod"] == "daily"
    assert perm["tokenLimit"] == 1000
    assert perm["costLimit"] is None
    assert perm["allowedModelIds"] == ["gpt-4o-mini", "deepseek-chat"]


async def test_update_permissions_creates_missing_row(client, create_admin):
    admin, _ = await create_admin()
    other_admin, _ = await create_admin(login=False)
    resp = await client.patch("/api/admin/users", json={
        "adminUserId": str(admin.id),
        "action": "updatePermissions",
        "userId": str(other_admin.id),
        "permissions": ["chat", "view_usage"],
    })
    assert resp.status_code == 200
    assert await UserPermission.filter(user_id=other_admin.id).exists()


async def test_update_permissions_validation(client, create_admin, create_user):
    admin, _ = await create_admin()
    member, _ = await create_user()
    base = {"adminUserId": str(admin.id), "action": "updatePermissions", "userId": str(member.id)}

    resp = await client.patch("/api/admin/users", json={**base, "permissions": ["launch_missiles"]})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_PERMISSION"

    resp = await client.patch("/api/admin/users", json={**base, "limitType": "cost"})
    assert resp.status_code == 400

    resp = await client.patch("/api/admin/users", json={**base, "tokenLimit": -5})
    assert resp.status_code == 400


async def test_update_permissions_reset_usage(client, create_admin, create_user):
    admin, _ = await create_admin()
    member, _ = await create_user(token_used=500)
    resp = await client.patch("/api/admin/users", json={
        "adminUserId": str(admin.id), "action": "updatePermissions", "userId": str(member.id), "resetUsage": True,
    })
    assert resp.status_code == 200
    assert resp.json()["data"]["permission"]["tokenUsed"] == 0


async def test_unknown_action_is_400(client, create_admin, create_user):
    admin, _ = await create_admin()
    member, _ = await create_user()
    resp = await client.patch("/api/admin/users", json={
        "adminUserId": str(admin.id), "action": "promoteToKing", "userId": str(member.id),
    })
    assert resp.status_code == 400


async def test_update_missing_user_is_404(client, create_admin):
    admin, _ = await create_admin()
    resp = await client.patch("/api/admin/users", json={
        "adminUserId": str(admin.id), "action": "updateStatus", "userId": str(uuid.uuid4()), "isActive": True,
    })
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "USER_NOT_FOUND"


async def test_delete_user_cascades(client, create_admin, create_user):
    admin, _ = await create_admin()
    host, _ = await create_user()
    guest, _ = await create_user(role=UserRole.GUEST, host=host)
    await _seed_chat_history(host)
    await InviteCode.create(code="HOSTINV1", created_by=host)
    await AccessCode.create(code="HOSTACC1", created_by=host)

    resp = await client.request("DELETE", "/api/admin/users", json={
        "adminUserId": str(admin.id), "userId": str(host.id),
    })
    assert resp.status_code == 200, resp.text

    assert not await User.filter(id=host.id).exists()
    for model in (Conversation, Message, TokenUsage, UserPermission, UserSettings):
        assert await model.filter(user_id=host.id).count() == 0
    assert await InviteCode.filter(created_by_id=host.id).count() == 0
    assert await AccessCode.filter(created_by_id=host.id).count() == 0

    guest_row = await User.get(id=guest.id)
    assert guest_row.host_user_id is None
    assert guest_row.is_active is False


async def test_delete_user_is_all_or_nothing(client, create_admin, create_user, monkeypatch):
    admin, _ = await create_admin()
    member, _ = await create_user()
    await _seed_chat_history(member)

    async def _boom(self, using_db=None):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(User, "delete", _boom)
    resp = await client.request("DELETE", "/api/admin/users", json={
        "adminUserId": str(admin.id), "userId": str(member.id),
    })
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "INTERNAL_ERROR"
    monkeypatch.undo()

    assert await User.filter(id=member.id).exists()
    assert await Conversation.filter(user_id=member.id).count() == 1
    assert await Message.filter(user_id=member.id).count() == 1
    assert await TokenUsage.filter(user_id=member.id).count() == 1
    assert await UserPermission.filter(user_id=member.id).exists()


async def test_admin_cannot_delete_self(client, create_admin):
    admin, _ = await create_admin()
    resp = await client.request("DELETE", "/api/admin/users", json={
        "adminUserId": str(admin.id), "userId": str(admin.id),
    })
    assert resp.status_code == 400
    assert await User.filter(id=admin.id).exists()


async def test_delete_missing_user_is_404(client, create_admin):
    admin, _ = await create_admin()
    resp = await client.request("DELETE", "/api/admin/users", json={
        "adminUserId": str(admin.id), "userId": str(uuid.uuid4()),
    })
    assert resp.status_code == 404
