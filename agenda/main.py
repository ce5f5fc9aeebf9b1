import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

# Import models so every table is registered with Base before create_all
from . import models  # noqa: F401
from .config import NOTIFIER_USE_QUEUE, RATE_LIMIT_BACKEND
from .database import Base, SessionLocal, engine
from .domain.limits.repository import DatabaseViolationSink
from .domain.limits.router import router as limits_router
from .domain.notifications.change_feed import AppointmentChangeFeed
from .domain.notifications.dispatch import InlineDispatcher, QueueDispatcher
from .domain.notifications.notifier import AppointmentNotifier
from .domain.scheduling.router import appointments_router, payments_router
from .domain.scheduling.router import router as reservations_router
from .email_service import get_email_sender
from .errors import AgendaError, ResourceExhaustedError
from .rate_limiter import build_rate_limiters, get_redis_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    if RATE_LIMIT_BACKEND == "redis" or NOTIFIER_USE_QUEUE:
        try:
            get_redis_client()  # Connection test
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning(f"Redis connection failed - queued jobs and shared limits unavailable: {e}")

    app.state.violation_sink = DatabaseViolationSink(SessionLocal)
    app.state.rate_limiters = build_rate_limiters(violation_sink=app.state.violation_sink)
    for limiter in app.state.rate_limiters.values():
        limiter.start_cleanup_timer()

    if NOTIFIER_USE_QUEUE:
        dispatcher = QueueDispatcher()
    else:
        dispatcher = InlineDispatcher(AppointmentNotifier(SessionLocal, get_email_sender()))
    feed = AppointmentChangeFeed(dispatcher)
    feed.register(SessionLocal)

    yield

    logger.info("Application shutting down...")
    feed.unregister()
    if isinstance(dispatcher, QueueDispatcher):
        await dispatcher.close()
    for limiter in app.state.rate_limiters.values():
        limiter.stop_cleanup_timer()


app = FastAPI(title="Agenda API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(AgendaError)
async def agenda_error_handler(request: Request, exc: AgendaError):
    """Map domain errors to their HTTP status with a stable error code"""
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.code} - {exc.message}")
    else:
        logger.warning(f"⚠️ {request.method} {request.url.path}: {exc.code} - {exc.message}")

    headers = None
    if isinstance(exc, ResourceExhaustedError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": jsonable_encoder(exc.to_dict())},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests as invalid-argument"""
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "invalid-argument",
                "message": "Request validation failed",
                "details": {"errors": jsonable_encoder(exc.errors())},
            }
        },
    )


app.include_router(reservations_router)
app.include_router(appointments_router)
app.include_router(payments_router)
app.include_router(limits_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/health/redis")
async def redis_health_check():
    try:
        client = get_redis_client()
        client.ping()
        return {"status": "healthy", "redis": "connected"}
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "redis": str(e)})
