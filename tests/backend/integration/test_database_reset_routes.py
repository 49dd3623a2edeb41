import asyncio

import pytest

from app.config import settings
from app.models.conversation import Conversation
from app.models.provider import AIModel, Provider
from app.models.user import User
from app.services import database_reset


pytestmark = pytest.mark.asyncio


async def test_reset_info(client, create_admin):
    admin, _ = await create_admin()
    resp = await client.get("/api/admin/database-reset", params={"adminUserId": str(admin.id)})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["available"] is True
    assert data["confirmationRequired"] == "RESET DATABASE"
    assert data["warning"]
    assert len(data["steps"]) > 0


@pytest.mark.parametrize("confirm", [None, "", "reset database", "RESET DATABASE ", "RESET"])
async def test_reset_rejects_wrong_confirmation(client, create_admin, confirm):
    admin, _ = await create_admin()
    body = {"adminUserId": str(admin.id)}
    if confirm is not None:
        body["confirmText"] = confirm
    resp = await client.post("/api/admin/database-reset", json=body)
    assert resp.status_code == 400
    assert await User.filter(id=admin.id).exists()


async def test_reset_wipes_and_reseeds(client, create_admin, create_user, monkeypatch):
    monkeypatch.setenv("ADMIN_PASSWORD", "Reseeded#123")
    monkeypatch.setenv("ADMIN_USERNAME", "root")
    admin, _ = await create_admin()
    member, _ = await create_user()
    await Conversation.create(user=member, title="bye")
    await AIModel.filter(model_id="gpt-4o").delete()

    resp = await client.post("/api/admin/database-reset", json={
        "adminUserId": str(admin.id), "confirmText": "RESET DATABASE",
    })
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["reset"]["ok"] is True
    assert data["seed"]["ok"] is True
    assert data["seed"]["skipped"] is False
    assert any("users" in line for line in data["reset"]["output"])

    assert await Conversation.all().count() == 0
    users = await User.all()
    assert [u.username for u in users] == ["root"]
    assert await Provider.all().count() == 3
    assert await AIModel.filter(model_id="gpt-4o").exists()

    login = await client.post("/api/auth/login", json={"username": "root", "password": "Reseeded#123"})
    assert login.status_code == 200


async def test_reset_without_admin_password_leaves_no_users(client, create_admin, monkeypatch):
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    admin, _ = await create_admin()
    resp = await client.post("/api/admin/database-reset", json={
        "adminUserId": str(admin.id), "confirmText": "RESET DATABASE",
    })
    assert resp.status_code == 200
    assert await User.all().count() == 0
    assert "default admin: not created" in resp.json()["data"]["seed"]["output"]


async def test_reset_step_timeout_skips_seed(client, create_admin, monkeypatch):
    admin, _ = await create_admin()

    async def _slow(db, result):
        await asyncio.sleep(1)

    monkeypatch.setattr(database_reset, "_clear_tables", _slow)
    monkeypatch.setattr(settings, "db_reset_timeout_seconds", 0.01)

    resp = await client.post("/api/admin/database-reset", json={
        "adminUserId": str(admin.id), "confirmText": "RESET DATABASE",
    })
    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error["code"] == "DATABASE_RESET_FAILED"
    assert error["details"]["reset"]["ok"] is False
    assert "timed out" in error["details"]["reset"]["error"]
    assert error["details"]["seed"]["skipped"] is True
    assert await User.filter(id=admin.id).exists()
