import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_scheduler.api.routes import auth, bookings, catalog, payments, provider_portal
from clinic_scheduler.core.config import _ENV_FILE, facility_now, settings
from clinic_scheduler.core.db import async_session_maker, engine, init_db
from clinic_scheduler.core.exceptions import Busy, SchedulingError
from clinic_scheduler.core.locks import ProviderLocks
from clinic_scheduler.services.booking_ledger import BookingLedger
from clinic_scheduler.services.email_service import EmailNotificationSink
from clinic_scheduler.services.notifications import FanOutNotificationSink, LoggingNotificationSink
from clinic_scheduler.services.provider_service import seed_demo_data
from clinic_scheduler.services.scheduling_service import SchedulingService

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


def build_scheduling_service() -> SchedulingService:
    ledger = BookingLedger(
        async_session_maker,
        locks=ProviderLocks(settings.provider_lock_timeout_seconds),
        clock=facility_now,
    )
    notifier = FanOutNotificationSink(LoggingNotificationSink(), EmailNotificationSink())
    return SchedulingService(ledger, notifier=notifier)


async def _run_maintenance(scheduling: SchedulingService) -> None:
    """Release unpaid holds and send due reminders."""
    try:
        released = await scheduling.release_unpaid_holds()
        if released:
            logger.info("Maintenance: released %d unpaid hold(s)", released)
        reminded = await scheduling.dispatch_reminders()
        if reminded:
            logger.info("Maintenance: %d reminder(s) dispatched", reminded)
    except Exception as e:
        logger.exception("Maintenance run failed: %s", e)


async def _maintenance_loop(scheduling: SchedulingService) -> None:
    while True:
        await asyncio.sleep(settings.maintenance_interval_seconds)
        await _run_maintenance(scheduling)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    if settings.create_tables_on_startup:
        await init_db()
    if settings.seed_demo_data:
        async with async_session_maker() as session:
            await seed_demo_data(session)
            await session.commit()
    app.state.scheduling = build_scheduling_service()
    logger.info(
        "Scheduling ready: timezone=%s, cancellation notice=%dh, unpaid hold=%dmin, orphan policy=%s",
        settings.facility_timezone,
        settings.cancellation_notice_hours,
        settings.pending_payment_hold_minutes,
        settings.orphan_policy,
    )
    if settings.email_enabled:
        logger.info("Email: SMTP configured (%s)", settings.smtp_host)
    else:
        logger.warning("Email: NOT configured. Set SMTP_HOST, SMTP_USER, SMTP_PASSWORD and FROM_EMAIL in %s", _ENV_FILE)
    # Startup: run once, then periodically
    await _run_maintenance(app.state.scheduling)
    task = asyncio.create_task(_maintenance_loop(app.state.scheduling))
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    await engine.dispose()


app = FastAPI(
    title="Clinic Scheduler API",
    description="Guest booking, provider availability and appointment lifecycle",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Payment-Secret"],
)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(catalog.router, prefix="/api/v1")
app.include_router(bookings.router, prefix="/api/v1")
app.include_router(provider_portal.router, prefix="/api/v1")
app.include_router(payments.router, prefix="/api/v1")


def _cors_headers(origin: str | None) -> dict[str, str]:
    """Add CORS headers to error responses so the browser doesn't block them."""
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type, X-Payment-Secret",
    }
    if origin and origin in settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = origin
    elif settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = settings.cors_origins_list[0]
    return headers


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    headers = _cors_headers(request.headers.get("origin"))
    if isinstance(exc, Busy):
        headers["Retry-After"] = "1"
    logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return the error as JSON; include CORS so 500 responses are not blocked by browser."""
    origin = request.headers.get("origin")
    headers = _cors_headers(origin)
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
        headers=headers,
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
