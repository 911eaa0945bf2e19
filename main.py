"""
main.py
FastAPI application entry point.
Registers routers, middleware, exception handlers and startup/shutdown.

Long-lived collaborators (Razorpay gateway, SOS broadcaster) are built in
the lifespan and kept on app.state; routes receive them via dependencies.
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from logging import LogRecord

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pybreaker import CircuitBreakerError
from sqlalchemy import text

import config.redis_client as redis_state
from config.database import AsyncSessionLocal, close_db, init_db
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from services.admin.router import router as admin_router
from services.booking.router import router as booking_router
from services.notification.router import router as notification_router
from services.partner.router import router as partner_router
from services.payment.gateway import RazorpayGateway
from services.payment.router import router as payment_router
from services.plan.router import router as plan_router
from services.sos.broadcaster import SOSBroadcaster
from services.sos.router import router as sos_router


# ── Logging ───────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.APP_ENV})")

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    app.state.payment_gateway = RazorpayGateway()
    app.state.sos_broadcaster = SOSBroadcaster(RedisCache(redis_state.redis_client))

    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Home Services Platform API

- **Bookings**: cart quotes, credits, coupons, checkout fields
- **Payments**: Razorpay orders and signature verification
- **Plans**: subscription plans with credit wallets shared with family
- **Partner jobs**: travel updates, OTP-gated start/end, holds
- **SOS**: emergency dispatch with live admin console events
- **Admin**: manual assignment, status corrections, audit log

### Authentication
All protected endpoints require `Authorization: Bearer <access_token>`.

### Roles
- `USER`: book services, buy plans, raise SOS
- `PARTNER`: work assigned jobs
- `ADMIN`: oversight, assignment, SOS handling
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (outermost first) ──────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add a unique X-Request-ID to every request."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Per-IP limit for unauthenticated traffic only.
        Fails open when Redis is unavailable.
        """
        skip_paths = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths or request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        client = redis_state.redis_client
        if client is not None:
            client_ip = request.client.host if request.client else "unknown"
            try:
                allowed = await RedisCache(client).check_rate_limit(
                    f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
                )
            except Exception as e:
                logger.error(f"Rate limit check failed: {e}")
                allowed = True
            if not allowed:
                logger.warning(f"Rate limit exceeded for IP {client_ip}")
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded. Please slow down."},
                    headers={"Retry-After": "60"},
                )

        return await call_next(request)

    # ── Exception Handlers ────────────────────────────────────

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all. Stack traces stay in the logs unless DEBUG."""
        request_id = getattr(request.state, "request_id", None)

        if isinstance(exc, CircuitBreakerError):
            logger.error(f"[{request_id}] Circuit breaker open: {exc}")
            return JSONResponse(
                status_code=503,
                content={
                    "detail": "Service temporarily unavailable. Please try again later.",
                    "request_id": request_id,
                    "status": "degraded",
                },
            )

        logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if settings.DEBUG else "An internal server error occurred",
                "request_id": request_id,
            },
        )

    # ── Routes ────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        checks = {
            "status": "ok",
            "version": settings.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            logger.exception("Health check: database unreachable")
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_state.redis_client is None:
                raise RuntimeError("Redis not initialized")
            await redis_state.redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            logger.warning("Health check: redis unreachable")
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(booking_router)
    app.include_router(payment_router)
    app.include_router(plan_router)
    app.include_router(partner_router)
    app.include_router(sos_router)
    app.include_router(notification_router)
    app.include_router(admin_router)

    # ── Prometheus Metrics ────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
