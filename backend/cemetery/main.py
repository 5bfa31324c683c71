"""
Cemetery Purchases & Payments — FastAPI Application Entry Point

Aggregates all routers, configures middleware and error handling,
initializes the database and starts the background jobs on startup.
"""
import logging
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from cemetery.config import get_settings
from cemetery.database import SessionLocal, init_db
from cemetery.exceptions import CemeteryError
from cemetery.jobs.scheduler import SettlementScheduler
from cemetery.logging_config import configure_logging
from cemetery.routes import (
    admin_router, dashboard_router, payments_router, purchases_router, staff_router,
)
from cemetery.schemas.schemas import ErrorResponse, HealthResponse

settings = get_settings()
logger = logging.getLogger("cemetery.main")

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Purchases and payments for a cemetery: graves, services and memorials bought "
        "outright or on installment plans, paid by cash, Paynow or EcoCash, with "
        "idempotent settlement, redemption, and abandoned-checkout cleanup."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup / Shutdown ──────────────────────────────────────────────
BOOT_TIME = time.time()
scheduler = None


@app.on_event("startup")
def on_startup():
    """Initialize logging and database tables, start background jobs."""
    global scheduler
    configure_logging()
    init_db()

    boot_msg = (
        f"\n{'='*60}\n"
        f"  {settings.APP_NAME} v{settings.APP_VERSION}\n"
        f"  TIME: {datetime.now().isoformat()}\n"
        f"  PAYNOW: {'[OK] Configured' if settings.PAYNOW_INTEGRATION_ID else '[!] Missing credentials'}\n"
        f"  DATABASE: {settings.DATABASE_URL}\n"
        f"  SCHEDULER: {'enabled' if settings.SCHEDULER_ENABLED else 'disabled'}\n"
        f"  DEBUG: {settings.DEBUG}\n"
        f"{'='*60}"
    )
    logger.info(boot_msg)

    if settings.SCHEDULER_ENABLED:
        scheduler = SettlementScheduler(SessionLocal)
        scheduler.start()


@app.on_event("shutdown")
def on_shutdown():
    if scheduler is not None:
        scheduler.shutdown()


# ─── Error Handling ──────────────────────────────────────────────────
@app.exception_handler(CemeteryError)
async def cemetery_error_handler(request: Request, exc: CemeteryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=exc.message, error_code=exc.code).model_dump(),
    )


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)

    return response


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(purchases_router)
app.include_router(payments_router)
app.include_router(staff_router)
app.include_router(admin_router)
app.include_router(dashboard_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def deep_health():
    """Health check including database connectivity and scheduler state."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        logger.exception("Health check could not reach the database")
    finally:
        db.close()

    running = scheduler is not None and scheduler.scheduler.running
    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "scheduler": "running" if running else "stopped",
        "version": settings.APP_VERSION,
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
    }
