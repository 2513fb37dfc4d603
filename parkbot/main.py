# parkbot/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from parkbot.routers import telegram, spaces, payments, reservations, health
from parkbot.database import create_tables
from parkbot.config import settings
from parkbot.utils.logger import configure_logging, get_logger
import time

logger = get_logger(__name__)

app = FastAPI(
    title="Parkiraj Bot API",
    description="Telegram parking bot — reservations, Stars and TON payments.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (the web app calls the read API from the browser) ──────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to WEB_APP_URL in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

OPEN_PATHS = {"/api/v1/telegram/webhook", "/api/v1/health", "/docs", "/redoc", "/openapi.json"}


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth for the admin/read endpoints.
    The Telegram webhook is excluded; TELEGRAM_WEBHOOK_SECRET guards it.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    async def dispatch(self, request: Request, call_next):
        if request.url.path in OPEN_PATHS or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(telegram.router,     prefix="/api/v1", tags=["🤖 Telegram"])
app.include_router(spaces.router,       prefix="/api/v1", tags=["🅿️  Spaces"])
app.include_router(reservations.router, prefix="/api/v1", tags=["📅 Reservations"])
app.include_router(payments.router,     prefix="/api/v1", tags=["💎 Payments"])
app.include_router(health.router,       prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    configure_logging()
    logger.info("🚀 Parkbot backend starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_IP}:{settings.BACKEND_PORT}")
    logger.info("🤖 Telegram webhook at /api/v1/telegram/webhook")
    logger.info("📖 API docs at /docs")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 Parkbot backend shutting down...")
