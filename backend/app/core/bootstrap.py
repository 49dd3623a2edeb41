# app/core/bootstrap.py
"""
Bootstrap module for application initialization.
Handles initial setup tasks such as creating the default admin user and
seeding provider/model reference data.
"""
import os
import logging
from decimal import Decimal
from typing import Optional

from tortoise.backends.base.client import BaseDBAsyncClient

from app.models.user import User, UserRole, UserSettings
from app.models.provider import Provider, AIModel
from app.core.security import hash_password

logger = logging.getLogger("uvicorn.error")

# Providers and models available out of the box. Prices are USD per million tokens.
DEFAULT_PROVIDERS = [
    {
        "name": "openai",
        "display_name": "OpenAI",
        "base_url": "https://api.openai.com/v1",
        "models": [
            {"model_id": "gpt-4o-mini", "name": "GPT-4o mini", "group_name": "OpenAI",
             "input_price": "0.15", "output_price": "0.60"},
            {"model_id": "gpt-4o", "name": "GPT-4o", "group_name": "OpenAI",
             "input_price": "2.50", "output_price": "10.00"},
        ],
    },
    {
        "name": "anthropic",
        "display_name": "Anthropic",
        "base_url": "https://api.anthropic.com/v1",
        "models": [
            {"model_id": "claude-3-5-haiku", "name": "Claude 3.5 Haiku", "group_name": "Anthropic",
             "input_price": "0.80", "output_price": "4.00"},
            {"model_id": "claude-3-5-sonnet", "name": "Claude 3.5 Sonnet", "group_name": "Anthropic",
             "input_price": "3.00", "output_price": "15.00"},
        ],
    },
    {
        "name": "deepseek",
        "display_name": "DeepSeek",
        "base_url": "https://api.deepseek.com/v1",
        "models": [
            {"model_id": "deepseek-chat", "name": "DeepSeek Chat", "group_name": "DeepSeek",
             "input_price": "0.27", "output_price": "1.10"},
            {"model_id": "deepseek-reasoner", "name": "DeepSeek Reasoner", "group_name": "DeepSeek",
             "input_price": None, "output_price": None},
        ],
    },
]


def _price(raw: Optional[str]) -> Optional[Decimal]:
    return Decimal(raw) if raw is not None else None


async def seed_reference_data(db: Optional[BaseDBAsyncClient] = None) -> dict:
    """
    Create the default providers and models that are missing. Existing rows are left alone.

    Returns:
        Counts of rows created: {"providers": int, "models": int}
    """
    created = {"providers": 0, "models": 0}
    for p_order, entry in enumerate(DEFAULT_PROVIDERS):
        provider = await Provider.get_or_none(name=entry["name"], using_db=db)
        if provider is None:
            provider = await Provider.create(
                name=entry["name"],
                display_name=entry["display_name"],
                base_url=entry["base_url"],
                sort_order=p_order,
                using_db=db,
            )
            created["providers"] += 1
        for m_order, m in enumerate(entry["models"]):
            if await AIModel.filter(model_id=m["model_id"]).using_db(db).exists():
                continue
            await AIModel.create(
                provider=provider,
                model_id=m["model_id"],
                name=m["name"],
                group_name=m["group_name"],
                input_price=_price(m["input_price"]),
                output_price=_price(m["output_price"]),
                sort_order=m_order,
                using_db=db,
            )
            created["models"] += 1
    return created


async def ensure_default_admin(db: Optional[BaseDBAsyncClient] = None) -> Optional[User]:
    """
    If no admin exists in the database, create a default admin based on environment variables.
    Only takes effect under the following conditions:
      - Currently no user with role="admin"
      - And ADMIN_PASSWORD is set (to avoid using default weak password)
    Environment variables:
      ADMIN_USERNAME (default: "admin")
      ADMIN_EMAIL    (default: "admin@example.com")
      ADMIN_PASSWORD (required, otherwise won't create)

    Returns:
        The created admin, or None when nothing was created
    """
    has_admin = await User.filter(role=UserRole.ADMIN).using_db(db).exists()
    if has_admin:
        return None

    admin_password = os.getenv("ADMIN_PASSWORD")
    if not admin_password:
        logger.warning("[bootstrap] No admin present, but ADMIN_PASSWORD not set -> skip creating default admin.")
        return None

    admin_username = os.getenv("ADMIN_USERNAME", "admin")
    admin_email = os.getenv("ADMIN_EMAIL", "admin@example.com")

    # If username is already taken (user may register a regular account with "admin"), create a non-conflicting name
    base_username = admin_username
    suffix = 1
    while await User.filter(username__iexact=admin_username).using_db(db).exists():
        suffix += 1
        admin_username = f"{base_username}{suffix}"

    u = await User.create(
        username=admin_username,
        email=admin_email,
        password_hash=hash_password(admin_password),
        role=UserRole.ADMIN,
        using_db=db,
    )
    await UserSettings.create(user=u, using_db=db)
    logger.warning("[bootstrap] Created default admin -> username=%s email=%s id=%s",
                   u.username, u.email, u.id)
    return u
