import asyncio
import os

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal, get_db
from app.errors import RateLimitError, ServiceError
from app.logging_config import get_logger, setup_logging
from app.models import Bot, Channel, Conversation, Message
from app.routers import admin, integrations, meta_webhook, oauth, widget
from app.services.oauth_service import refresh_expiring_tokens

setup_logging(settings.log_level)

logger = get_logger("api")

app = FastAPI(
    title="Servio API",
    description="Multi-channel bot orchestration: website widget, WhatsApp and Instagram",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(widget.router)
app.include_router(meta_webhook.router)
app.include_router(oauth.router)
app.include_router(integrations.router)
app.include_router(admin.router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    body = {"error": exc.message}
    headers = None
    if isinstance(exc, RateLimitError):
        body["retry_after"] = exc.retry_after
        headers = {**exc.headers, "Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(
            "Service error",
            extra={"context": {"path": request.url.path, "status": exc.status_code, "error": exc.message}},
        )
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Missing or invalid fields"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        extra={"context": {"path": request.url.path, "method": request.method, "error": str(exc)}},
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


token_refresh_logger = get_logger("token_refresh_worker")
_token_refresh_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_token_refresh_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    if not settings.token_refresh_enabled:
        return False
    return _is_env_enabled(os.environ.get("TOKEN_REFRESH_WORKER_ENABLED"), default=True)


def run_token_refresh_sweep() -> list[dict]:
    db = SessionLocal()
    try:
        return refresh_expiring_tokens(db)
    finally:
        db.close()


async def _token_refresh_loop() -> None:
    while True:
        try:
            await asyncio.sleep(max(settings.token_refresh_interval_seconds, 1.0))
            results = await asyncio.to_thread(run_token_refresh_sweep)
            token_refresh_logger.info(
                "Token refresh sweep finished",
                extra={"context": {"checked": len(results)}},
            )
        except asyncio.CancelledError:
            break
        except Exception as exc:
            token_refresh_logger.error(
                "Token refresh loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_token_refresh_worker() -> None:
    global _token_refresh_task
    if not _is_token_refresh_enabled():
        return
    if _token_refresh_task is None or _token_refresh_task.done():
        _token_refresh_task = asyncio.create_task(_token_refresh_loop())
        token_refresh_logger.info("Token refresh worker started")


@app.on_event("shutdown")
async def stop_token_refresh_worker() -> None:
    global _token_refresh_task
    if _token_refresh_task is None:
        return
    _token_refresh_task.cancel()
    try:
        await _token_refresh_task
    except asyncio.CancelledError:
        pass
    _token_refresh_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "bots": db.query(Bot).count(),
        "channels": db.query(Channel).count(),
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
    }
