# app/core/security.py
"""
Password hashing and session tokens.

Sessions are stateless JWTs carrying the user id (`sub`) and role. Guests
created from an access code get one long session instead of the regular
lifetime; they have no password to log in again with.
"""
import os
import datetime as dt
import jwt  # PyJWT
from passlib.context import CryptContext
from dotenv import load_dotenv
from pathlib import Path

ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
GUEST_TOKEN_EXPIRE_MINUTES = int(os.getenv("GUEST_TOKEN_EXPIRE_MINUTES", "720"))

# Claims a session token must carry to be accepted
REQUIRED_CLAIMS = ["sub", "role", "exp"]


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def token_lifetime_minutes(role: str) -> int:
    """Session length for a role: guests get GUEST_TOKEN_EXPIRE_MINUTES, everyone else the default."""
    if role == "guest":
        return GUEST_TOKEN_EXPIRE_MINUTES
    return ACCESS_TOKEN_EXPIRE_MINUTES


def create_access_token(user_id: str, role: str, expires_minutes: int | None = None) -> str:
    """
    Sign a session token for `user_id`.

    Args:
        user_id: User UUID as a string
        role: "admin", "user" or "guest"; also picks the default lifetime
        expires_minutes: Explicit lifetime, overriding the role's
    """
    now = dt.datetime.now(dt.timezone.utc)
    minutes = expires_minutes if expires_minutes is not None else token_lifetime_minutes(role)
    payload = {
        "sub": user_id,
        "role": role,
        "iat": now,
        "exp": now + dt.timedelta(minutes=minutes),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_access_token(token: str) -> dict:
    """
    Verify signature and expiry and return the claims.

    Raises:
        jwt.ExpiredSignatureError: token has expired
        jwt.MissingRequiredClaimError: `sub`, `role` or `exp` absent
        jwt.InvalidTokenError: any other malformed or forged token
    """
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG], options={"require": REQUIRED_CLAIMS})
