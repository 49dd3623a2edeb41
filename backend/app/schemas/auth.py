# app/schemas/auth.py
"""
Pydantic schemas for authentication endpoints.
Defines request/response models for registration, login and guest access.
"""
from typing import Optional
from pydantic import BaseModel, Field


class RegisterIn(BaseModel):
    """
    Request model for account registration.
    inviteCode is required once the first account exists (see REQUIRE_INVITE_CODE).
    """
    username: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=6)
    email: Optional[str] = None
    inviteCode: Optional[str] = None


class LoginRequest(BaseModel):
    """
    Request model for user login endpoint.
    """
    username: str  # User login name
    password: str  # User password (plain text, will be verified against the hash)


class GuestLoginIn(BaseModel):
    """
    Request model for guest access through a host's access code.
    """
    accessCode: str = Field(min_length=1)
    nickname: Optional[str] = Field(default=None, max_length=64)


class UserOut(BaseModel):
    """
    User information model returned in authentication responses.
    """
    id: str
    username: str
    email: Optional[str] = None
    role: str = "user"
    hostUserId: Optional[str] = None
