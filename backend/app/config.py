# app/config.py
import os
from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Settings(BaseModel):
    # General app settings
    APP_NAME: str = "FimAI Chat API"
    env: str = os.getenv("ENV", "dev")

    # Host & Port settings
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    # CORS origins for frontend
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Registration: once the first (admin) account exists, new accounts need an invite code
    require_invite_code: bool = _env_flag("REQUIRE_INVITE_CODE", "true")

    # Invite / access code generation
    code_length: int = int(os.getenv("CODE_LENGTH", "8"))
    code_generation_attempts: int = 10

    # Database reset: each step (reset, seed) is bounded by this timeout
    db_reset_timeout_seconds: float = float(os.getenv("DB_RESET_TIMEOUT_SECONDS", "30"))
    db_reset_confirm_text: str = "RESET DATABASE"

    # Chat presentation
    chat_title_max_length: int = 8
    default_model_group: str = "Other"
    # Rough token estimate used when a provider does not report usage
    chars_per_token: int = 4


settings = Settings()  # Instantiate configuration
