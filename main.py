"""
HireOn Backend
Accounts, Google sign-in, Razorpay subscriptions and desktop app hand-off
"""

from pathlib import Path
import logging
import traceback
from datetime import datetime

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

# Import routers
from auth import auth_router
from routers.billing_router import billing_router
from routers.desktop_router import desktop_router
from routers.download_router import download_router
from routers.user_router import user_router
from utils.rate_limit import RateLimiterMiddleware
from utils.token_revoker import get_token_revoker
from database import AsyncSessionLocal, get_db, init_db, ping_db
from jobs.scheduler import JobScheduler, PeriodicJob, build_reset_token_gc, build_subscription_sweep
from config.settings import IS_PRODUCTION, settings, validate_startup_settings

APP_VERSION = "1.0.0"

# Logging setup - write ALL events to /logs/app.log
LOGS_DIR = Path("./logs")
LOGS_DIR.mkdir(exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOGS_DIR / "app.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# ============================================================================
# FASTAPI APP SETUP
# ============================================================================

app = FastAPI(title="HireOn Backend", version=APP_VERSION)
scheduler = JobScheduler()


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception: {e}\n{traceback.format_exc()}")
            detail = "Internal server error" if IS_PRODUCTION else f"Internal server error: {e}"
            return JSONResponse(status_code=500, content={"detail": detail})


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses: CSP, HSTS, X-Frame-Options, X-Content-Type-Options"""
    async def dispatch(self, request, call_next):
        response = await call_next(request)

        # Razorpay checkout and Google Sign-In load scripts and frames from their own origins
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline' https://checkout.razorpay.com https://accounts.google.com; "
            "style-src 'self' 'unsafe-inline' https://accounts.google.com; "
            "connect-src 'self' https://api.razorpay.com https://accounts.google.com; "
            "frame-src https://api.razorpay.com https://checkout.razorpay.com https://accounts.google.com; "
            "img-src 'self' data: https:; "
            "font-src 'self' data:; "
            "object-src 'none'; "
            "base-uri 'self'; "
            "form-action 'self';"
        )

        # HTTPS is only guaranteed behind the production proxy
        if IS_PRODUCTION:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        # X-Frame-Options: Prevent clickjacking attacks
        response.headers["X-Frame-Options"] = "DENY"

        # X-Content-Type-Options: Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        return response


app.add_middleware(UncaughtExceptionMiddleware)
app.add_middleware(RateLimiterMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# CORS MUST be near the bottom
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================
@app.on_event("startup")
async def check_settings_on_startup():
    """Fail fast on missing production configuration; warn about optional integrations."""
    validate_startup_settings()

    optional = {
        "RAZORPAY_KEY_ID": settings.razorpay_key_id,
        "RAZORPAY_KEY_SECRET": settings.razorpay_key_secret,
        "RAZORPAY_WEBHOOK_SECRET": settings.razorpay_webhook_secret,
        "GOOGLE_CLIENT_ID": settings.google_client_id,
        "RESEND_API_KEY": settings.resend_api_key,
    }
    missing = [key for key, value in optional.items() if not value]
    if missing:
        logger.warning(f"Startup check: Missing environment variables: {', '.join(missing)}")
    else:
        logger.info("Startup check: All integration keys are set")


# Initialize database on startup
@app.on_event("startup")
async def initialize_database():
    """Create all tables."""
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


@app.on_event("startup")
async def start_background_jobs():
    revoker = get_token_revoker()
    scheduler.add(PeriodicJob(
        "subscription-sweep",
        build_subscription_sweep(AsyncSessionLocal, revoker),
        settings.subscription_sweep_interval_seconds,
    ))
    scheduler.add(PeriodicJob(
        "reset-token-gc",
        build_reset_token_gc(AsyncSessionLocal, revoker),
        settings.reset_token_gc_interval_seconds,
    ))
    scheduler.start()


@app.on_event("shutdown")
async def stop_background_jobs():
    await scheduler.stop()


# ============================================================================
# HEALTH
# ============================================================================
@app.get("/api/health")
async def health(db: AsyncSession = Depends(get_db)):
    """Liveness plus a round trip to the user store"""
    try:
        await ping_db(db)
    except Exception as e:
        logger.error(f"Health check: database unreachable: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "database": "unreachable", "version": APP_VERSION},
        )
    return {
        "status": "ok",
        "database": "ok",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "version": APP_VERSION,
    }


# ============================================================================
# INCLUDE ROUTERS
# ============================================================================
app.include_router(auth_router)
app.include_router(user_router)
app.include_router(billing_router)
app.include_router(desktop_router)
app.include_router(download_router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
