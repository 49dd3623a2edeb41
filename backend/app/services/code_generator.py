"""
Shared invite/access code generation.
"""
import secrets
import string
from typing import Type

from tortoise import models
from tortoise.backends.base.client import BaseDBAsyncClient

from ..config import settings
from ..core.errors import AppError

# No 0/O/1/I so codes survive being read aloud or retyped
CODE_ALPHABET = "".join(c for c in string.ascii_uppercase + string.digits if c not in "0O1I")


def generate_code(length: int | None = None) -> str:
    """
    Generate a random code like "K7M4QX2P".
    """
    length = length or settings.code_length
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(raw: str | None) -> str:
    """Codes are matched case-insensitively and without surrounding whitespace."""
    return (raw or "").strip().upper()


async def generate_unique_code(db: BaseDBAsyncClient, model_cls: Type[models.Model]) -> str:
    """
    Generate a code not yet present in `model_cls.code`.
    Gives up after a few attempts instead of looping forever.
    """
    for _ in range(settings.code_generation_attempts):
        code = generate_code()
        if not await model_cls.filter(code=code).using_db(db).exists():
            return code
    raise AppError("Could not generate a unique code", code="CODE_GENERATION_COLLISION")
