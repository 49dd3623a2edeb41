import os
import uuid
from typing import Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from tortoise import Tortoise

from app.core import db as db_module
from app.core.bootstrap import seed_reference_data
from app.core.permissions import CHAT
from app.core.security import create_access_token, hash_password
from app.main import app
from app.models.permission import UserPermission
from app.models.user import User, UserRole, UserSettings


TEST_DB_URL = "sqlite://:memory:?cache=shared"
os.environ["DATABASE_URL"] = TEST_DB_URL
db_module.DB_URL = TEST_DB_URL
db_module.TORTOISE_ORM["connections"]["default"] = TEST_DB_URL


async def _init_test_db() -> None:
    """
    Initialize a clean in-memory SQLite database for every test.
    Ensures tables are recreated from scratch.
    """
    if Tortoise._inited:
        await Tortoise.close_connections()
    await Tortoise.init(config=db_module.TORTOISE_ORM)
    await Tortoise.generate_schemas()


@pytest_asyncio.fixture
async def db():
    """
    Fresh database with default providers and models; yields the persistence handle.
    """
    await _init_test_db()
    conn = db_module.get_connection()
    await seed_reference_data(conn)
    yield conn
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def client(db):
    """
    Provide an HTTPX AsyncClient bound to the FastAPI app.
    Unhandled errors come back as 500 responses instead of being re-raised.
    """
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client


@pytest_asyncio.fixture
async def create_admin(client):
    """
    Factory fixture to create admin users directly via ORM for privileged endpoints.

    With `login=True` (the default) the shared client is signed in as the new
    admin through a default Authorization header; a per-request header still
    overrides it.
    """

    async def _create_admin(password: str = "AdminPass!23", *, login: bool = True) -> tuple[User, str]:
        user = await User.create(
            username=f"admin_{uuid.uuid4().hex[:6]}",
            email=f"admin_{uuid.uuid4().hex[:6]}@example.com",
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
        )
        await UserSettings.create(user=user)
        if login:
            token = create_access_token(str(user.id), UserRole.ADMIN.value)
            client.headers["Authorization"] = f"Bearer {token}"
        return user, password

    return _create_admin


@pytest_asyncio.fixture
async def create_user(db):
    """
    Factory fixture to create regular users (with settings and a default
    unrestricted permission row) directly.
    """

    async def _create_user(
        password: str = "UserPass!23",
        *,
        role: UserRole = UserRole.USER,
        permissions: Optional[list[str]] = None,
        host: Optional[User] = None,
        **permission_fields,
    ) -> tuple[User, str]:
        user = await User.create(
            username=f"user_{uuid.uuid4().hex[:6]}",
            email=f"{uuid.uuid4().hex[:6]}@example.com",
            password_hash=hash_password(password),
            role=role,
            host_user=host,
        )
        await UserSettings.create(user=user)
        await UserPermission.create(
            user=user,
            permissions=permissions if permissions is not None else [CHAT],
            can_share_access=role == UserRole.USER,
            **permission_fields,
        )
        return user, password

    return _create_user


@pytest_asyncio.fixture
async def auth_header_factory(client):
    """
    Helper fixture to obtain Authorization headers via the login endpoint.
    """

    async def _get_headers(username: str, password: str) -> dict[str, str]:
        resp = await client.post(
            "/api/auth/login",
            json={"username": username, "password": password},
        )
        assert resp.status_code == 200, resp.text
        token = resp.json()["data"]["accessToken"]
        return {"Authorization": f"Bearer {token}"}

    return _get_headers
