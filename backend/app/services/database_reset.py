"""
Destructive database reset, run in-process.

Two sequential steps, each bounded by `settings.db_reset_timeout_seconds`:
1. reset: delete every row of every table in one transaction, then make sure
   the schema exists
2. seed: recreate default providers/models and (when configured) the default admin

A failed reset aborts the run and the seed step is reported as skipped, so the
caller always knows which step succeeded.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Awaitable, Callable, Optional

from tortoise import Tortoise
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.transactions import in_transaction

from ..config import settings
from ..core.bootstrap import ensure_default_admin, seed_reference_data
from ..core.errors import DatabaseResetError
from ..models.codes import AccessCode, InviteCode
from ..models.conversation import Conversation
from ..models.message import Message
from ..models.permission import UserPermission
from ..models.provider import AIModel, Provider
from ..models.token_usage import TokenUsage
from ..models.user import User, UserSettings

logger = logging.getLogger(__name__)

# Children before parents
RESET_ORDER = [
    TokenUsage,
    Message,
    Conversation,
    InviteCode,
    AccessCode,
    UserPermission,
    UserSettings,
    User,
    AIModel,
    Provider,
]

RESET_STEPS_DESCRIPTION = [
    "All user accounts will be deleted",
    "All chat conversations will be deleted",
    "All invite codes and access codes will be deleted",
    "All token usage statistics will be deleted",
    "Database schema will be verified",
    "Default providers and models will be reseeded",
    "The default admin is recreated only if ADMIN_PASSWORD is configured; otherwise register a new admin account",
]


@dataclass
class StepResult:
    step: str
    ok: bool = False
    skipped: bool = False
    output: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ResetReport:
    reset: StepResult
    seed: StepResult

    @property
    def ok(self) -> bool:
        return self.reset.ok and self.seed.ok

    def to_dict(self) -> dict:
        return {"reset": asdict(self.reset), "seed": asdict(self.seed)}


def reset_info() -> dict:
    return {
        "available": True,
        "warning": "This action will permanently delete all data and cannot be undone.",
        "confirmationRequired": settings.db_reset_confirm_text,
        "timeoutSeconds": settings.db_reset_timeout_seconds,
        "steps": RESET_STEPS_DESCRIPTION,
    }


async def _clear_tables(db: BaseDBAsyncClient, result: StepResult) -> None:
    async with in_transaction(db.connection_name) as tx:
        for model_cls in RESET_ORDER:
            deleted = await model_cls.all(using_db=tx).delete()
            result.output.append(f"cleared {model_cls._meta.db_table}: {deleted} rows")
    await Tortoise.generate_schemas(safe=True)
    result.output.append("schema verified")


async def _seed(db: BaseDBAsyncClient, result: StepResult) -> None:
    async with in_transaction(db.connection_name) as tx:
        created = await seed_reference_data(tx)
        result.output.append(f"seeded {created['providers']} providers, {created['models']} models")
        admin = await ensure_default_admin(tx)
    result.output.append(f"default admin: {admin.username}" if admin else "default admin: not created")


async def _run_step(
    name: str,
    action: Callable[[BaseDBAsyncClient, StepResult], Awaitable[None]],
    db: BaseDBAsyncClient,
) -> StepResult:
    result = StepResult(step=name)
    try:
        await asyncio.wait_for(action(db, result), timeout=settings.db_reset_timeout_seconds)
        result.ok = True
        logger.warning("[reset] step %s done: %s", name, "; ".join(result.output))
    except asyncio.TimeoutError:
        result.error = f"{name} timed out after {settings.db_reset_timeout_seconds}s"
        logger.error("[reset] %s", result.error)
    except Exception as e:
        result.error = f"{type(e).__name__}: {e}"
        logger.error("[reset] step %s failed: %s", name, e, exc_info=True)
    return result


async def reset_database(db: BaseDBAsyncClient) -> ResetReport:
    """
    Run reset then seed.

    Raises:
        DatabaseResetError: either step failed; `details` holds the full report
    """
    logger.warning("[reset] Starting database reset...")
    reset = await _run_step("reset", _clear_tables, db)
    if not reset.ok:
        report = ResetReport(reset=reset, seed=StepResult(step="seed", skipped=True))
        raise DatabaseResetError("Failed to reset database", details=report.to_dict())

    seed = await _run_step("seed", _seed, db)
    report = ResetReport(reset=reset, seed=seed)
    if not seed.ok:
        raise DatabaseResetError("Database was reset but reseeding failed", details=report.to_dict())
    return report
