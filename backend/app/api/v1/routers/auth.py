# app/api/v1/routers/auth.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.transactions import in_transaction

from app.api.v1.deps import get_current_user, get_db
from app.config import settings
from app.core.errors import BadRequestError
from app.core.security import create_access_token, token_lifetime_minutes, verify_password
from app.models.user import User, UserRole, UserSettings
from app.schemas.auth import GuestLoginIn, LoginRequest, RegisterIn, UserOut
from app.services.code_admin import redeem_access_code, redeem_invite_code
from app.services.code_generator import generate_code
from app.services.quota import utc_now
from app.services.user_admin import create_user

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("uvicorn.error")


def _user_out(user: User) -> dict:
    return UserOut(
        id=str(user.id),
        username=user.username,
        email=user.email,
        role=UserRole(user.role).value,
        hostUserId=str(user.host_user_id) if user.host_user_id else None,
    ).model_dump()


def _issue_token(response: Response, user: User) -> str:
    role = UserRole(user.role).value
    token = create_access_token(str(user.id), role)
    response.set_cookie(
        "accessToken", token, httponly=True, secure=False, samesite="lax",
        max_age=token_lifetime_minutes(role) * 60,
    )
    return token


@router.post("/register")
async def register(body: RegisterIn, db: BaseDBAsyncClient = Depends(get_db)):
    """
    Register a new user account.

    The very first account needs no invite code and becomes the admin.
    Afterwards an invite code is required while REQUIRE_INVITE_CODE is on;
    consuming it and creating the account happen in one transaction.

    Error codes:
        - USER_EXISTS: Username (case-insensitive) or email already taken
        - INVITE_CODE_REQUIRED: No invite code supplied
        - INVALID_INVITE_CODE: Unknown, disabled, exhausted or expired code
    """
    async with in_transaction(db.connection_name) as tx:
        is_first = not await User.all(using_db=tx).exists()
        role = UserRole.ADMIN if is_first else UserRole.USER

        invite = None
        if not is_first and (settings.require_invite_code or body.inviteCode):
            if not body.inviteCode:
                raise BadRequestError("An invite code is required to register", code="INVITE_CODE_REQUIRED")
            invite = await redeem_invite_code(tx, body.inviteCode)

        user, _ = await create_user(
            db,
            username=body.username,
            password=body.password,
            email=body.email,
            role=role,
            invite_code=invite.code if invite else None,
            using_tx=tx,
        )

    logger.info("[auth] registered user=%s role=%s", user.username, role.value)
    return {"success": True, "data": _user_out(user)}


@router.post("/login")
async def login(payload: LoginRequest, response: Response, db: BaseDBAsyncClient = Depends(get_db)):
    """
    Authenticate user and create access token.

    The token is returned in the response body and also set as an HttpOnly
    cookie named "accessToken" for browser-based clients.

    Raises:
        HTTPException (401): If credentials are invalid
        HTTPException (403): If the account has been deactivated
    """
    user = await User.get_or_none(username__iexact=payload.username.strip(), using_db=db)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail={"code": "AUTH_INVALID_CREDENTIALS", "message": "Incorrect username or password"})
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail={"code": "AUTH_USER_DISABLED", "message": "This account has been disabled"})

    user.last_login_at = utc_now()
    await user.save(using_db=db, update_fields=["last_login_at"])
    token = _issue_token(response, user)
    return {"success": True, "data": {"user": _user_out(user), "accessToken": token}}


@router.post("/guest")
async def guest_login(body: GuestLoginIn, response: Response, db: BaseDBAsyncClient = Depends(get_db)):
    """
    Enter as a guest through a host's access code.

    Creates a guest account linked to the code's creator. The guest inherits the
    code's model allow-list and the host's display settings; its usage is
    charged to the host's quota.

    Error codes:
        - INVALID_ACCESS_CODE: Unknown, inactive, exhausted or expired code
        - HOST_UNAVAILABLE: The code's creator is gone or deactivated
    """
    async with in_transaction(db.connection_name) as tx:
        code = await redeem_access_code(tx, body.accessCode)
        host = await User.get_or_none(id=code.created_by_id, using_db=tx)
        if not host or not host.is_active:
            raise BadRequestError("The host of this access code is unavailable", code="HOST_UNAVAILABLE")

        nickname = (body.nickname or "").strip() or "guest"
        guest, _ = await create_user(
            db,
            username=f"{nickname}-{generate_code(6).lower()}",
            password=generate_code(24),
            role=UserRole.GUEST,
            host_user_id=host.id,
            access_code=code.code,
            allowed_model_ids=code.allowed_model_ids,
            using_tx=tx,
        )

        host_settings = await UserSettings.get_or_none(user_id=host.id, using_db=tx)
        if host_settings:
            await UserSettings.filter(user_id=guest.id).using_db(tx).update(
                theme=host_settings.theme,
                language=host_settings.language,
                model_group_order=host_settings.model_group_order,
            )

        guest.last_login_at = utc_now()
        await guest.save(using_db=tx, update_fields=["last_login_at"])

    logger.info("[auth] guest=%s entered via host=%s", guest.username, host.username)
    token = _issue_token(response, guest)
    return {"success": True, "data": {"user": _user_out(guest), "accessToken": token}}


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    """
    Get current authenticated user information.
    """
    return {"success": True, "data": _user_out(user)}


@router.post("/logout")
async def logout(response: Response):
    """
    Log out the current user by clearing the access token cookie.

    Note:
        The JWT itself remains valid until it expires.
    """
    response.delete_cookie("accessToken")
    return {"success": True}
