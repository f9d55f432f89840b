import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from cardsync.core.config import settings
from cardsync.core.database import SessionLocal
from cardsync.core.errors import AppError, InternalFailure
from cardsync.core.log_events import configure_logging
from cardsync.core.security import require_secret
from cardsync.core.security_headers import SecurityHeadersMiddleware
from cardsync.routes.auth import router as auth_router
from cardsync.routes.sync import router as sync_router
from cardsync.routes.users import router as users_router
from cardsync.services.cleanup import run_cleanup
from cardsync.services.rate_limiter import RateLimiter, build_rate_limiter

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

require_secret()


def _cleanup_once(limiter: RateLimiter) -> None:
    with SessionLocal() as db:
        run_cleanup(db, rate_limit_store=limiter.store)


async def _cleanup_loop(limiter: RateLimiter, interval_seconds: int) -> None:
    while True:
        try:
            await run_in_threadpool(_cleanup_once, limiter)
        except Exception:
            logger.exception("Cleanup sweep failed")
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    limiter = build_rate_limiter(settings, SessionLocal)
    app.state.rate_limiter = limiter

    cleanup_task = None
    if settings.CLEANUP_INTERVAL_SECONDS > 0:
        cleanup_task = asyncio.create_task(_cleanup_loop(limiter, settings.CLEANUP_INTERVAL_SECONDS))
    else:
        logger.info("Cleanup sweep disabled (CLEANUP_INTERVAL_SECONDS=0)")

    try:
        yield
    finally:
        if cleanup_task is not None:
            cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await cleanup_task
        limiter.close()


app = FastAPI(title="Card Sync", lifespan=lifespan)
logger.info(
    "Startup config: ENV=%s RATE_LIMIT_ENABLED=%s RATE_LIMIT_BACKEND=%s",
    settings.ENV,
    settings.RATE_LIMIT_ENABLED,
    settings.RATE_LIMIT_BACKEND,
)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
}


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


@app.exception_handler(AppError)
def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("Request failed: %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=exc.headers())


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    detail = exc.detail
    message: str
    details: dict | None = None

    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, dict):
        msg = detail.get("message")
        message = msg if isinstance(msg, str) and msg else "Request failed"
        det = detail.get("details")
        details = det if isinstance(det, dict) else None
    else:
        message = str(detail) if detail is not None else "Request failed"

    payload: dict = {"error": _error_code(exc.status_code), "message": message}
    if details:
        payload["details"] = details
    return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request payload",
            "details": {"errors": [{"loc": e.get("loc"), "msg": e.get("msg")} for e in exc.errors()]},
        },
    )


@app.exception_handler(SQLAlchemyError)
def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Storage failure: %s %s: %s", request.method, request.url.path, type(exc).__name__)
    failure = InternalFailure()
    return JSONResponse(status_code=failure.status_code, content=failure.body())


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)
app.add_middleware(SecurityHeadersMiddleware)

app.include_router(auth_router)
app.include_router(sync_router)
app.include_router(users_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}
