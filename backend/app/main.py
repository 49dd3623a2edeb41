# app/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.core.db import init_db, close_db, get_connection
from app.core.errors import AppError
from app.core.bootstrap import ensure_default_admin, seed_reference_data

from app.api.v1.routers import access_codes, admin, auth, chat, conversations

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title=settings.APP_NAME)

# CORS (with Cookie)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(code: str, message: str, details=None) -> dict:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render service errors with the status their class maps to."""
    if exc.status_code >= 500:
        logger.error("[api] %s %s failed: %s %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Auth dependencies raise HTTPException with a code string or a {code, message} dict."""
    detail = exc.detail
    if isinstance(detail, dict):
        body = _error_body(detail.get("code", "HTTP_ERROR"), detail.get("message", ""))
    else:
        body = _error_body(str(detail), str(detail))
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing or invalid fields, including unknown `action` / `type` variants, are a 400."""
    fields = [
        {"field": ".".join(str(part) for part in err.get("loc", [])), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    first = fields[0] if fields else {"field": "", "message": "Validation error"}
    return JSONResponse(
        status_code=400,
        content=_error_body("BAD_REQUEST", f"Invalid field '{first['field']}': {first['message']}", fields),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("[api] Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=_error_body("INTERNAL_ERROR", "Internal server error"))


@app.on_event("startup")
async def on_startup():
    await init_db()
    db = get_connection()
    # Reference data (providers / models) is idempotent
    created = await seed_reference_data(db)
    logger.info("[bootstrap] reference data: %s", created)
    # Ensure there's a default admin account on first run
    await ensure_default_admin(db)


@app.on_event("shutdown")
async def on_shutdown():
    await close_db()


# REST
app.include_router(auth.router, prefix="/api")
app.include_router(admin.router, prefix="/api")
app.include_router(conversations.router, prefix="/api")
app.include_router(chat.router, prefix="/api")
app.include_router(access_codes.router, prefix="/api")


@app.get("/healthz")
def healthz():
    return {"ok": True}
