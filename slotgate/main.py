# slotgate/main.py
"""
FastAPI application entry point.
Includes security middleware, domain + global error handlers, all routers and
the reconciliation sweeps.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from slotgate.routers import anpr, bookings, gate, health, parkings, payments
from slotgate.database import create_tables
from slotgate.config import settings
from slotgate.errors import SlotGateError
from slotgate.utils.logger import configure_logging, get_logger
import time
import asyncio

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="SlotGate Parking API",
    description="Parking reservations — slot holds, Razorpay checkout, gate check-in/out.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (rider app + owner console) ─────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to the app origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional shared-secret check between the upstream auth gateway and this service.
    Set API_KEY in .env. Leave empty to disable.
    """
    open_paths = {"/api/v1/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Exception Handlers ───────────────────────────────────────────────────────
@app.exception_handler(SlotGateError)
async def domain_exception_handler(request: Request, exc: SlotGateError):
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(f"{request.method} {request.url.path} → {exc.status_code} {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(parkings.router, prefix="/api/v1", tags=["🅿️  Parkings"])
app.include_router(bookings.router, prefix="/api/v1", tags=["📅 Bookings"])
app.include_router(payments.router, prefix="/api/v1", tags=["💳 Payments"])
app.include_router(gate.router,     prefix="/api/v1", tags=["🚧 Gate"])
app.include_router(anpr.router,     prefix="/api/v1", tags=["🔍 ANPR"])
app.include_router(health.router,   prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 SlotGate backend starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_HOST}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")

    if settings.SCHEDULER_ENABLED:
        from slotgate.services.reconciliation import start_reconciliation
        app.state.reconciliation = asyncio.create_task(start_reconciliation())
        logger.info(f"🔁 Reconciliation started (every {settings.RECONCILE_INTERVAL_SECONDS}s)")
    else:
        logger.info("Reconciliation disabled (SCHEDULER_ENABLED=false)")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 SlotGate backend shutting down...")
    task = getattr(app.state, "reconciliation", None)
    if task:
        task.cancel()
