"""
FastAPI application entry point for Silver Circles.

Every gated route resolves the caller from its bearer session and asks the
entitlement engine before touching data. Denials are rendered by a single
exception handler with the decision's status and reason code.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.routes import health
from src.api.routes import auth
from src.api.routes import forums
from src.api.routes import groups
from src.api.routes import zoom_calls
from src.api.routes import billing
from src.api.routes import webhooks_stripe
from src.api.routes import admin
from src.auth.session_service import get_session_service
from src.config.access_policy import get_access_policy
from src.database.session import create_tables
from src.entitlements.errors import EntitlementDeniedError
from src.services.notification_service import build_account_notifier

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Silver Circles API")

    policy = get_access_policy()
    logger.info("Access policy loaded", extra={
        "session_ttl_days": policy.session_ttl_days,
        "hide_premium_resources_from_anonymous": policy.hide_premium_resources_from_anonymous,
    })

    # Optional integrations: the app runs without them, affected routes answer 503
    integration_vars = ["STRIPE_SECRET_KEY", "STRIPE_PRICE_ID", "STRIPE_WEBHOOK_SECRET"]
    missing_vars = [var for var in integration_vars if not os.getenv(var)]
    app.state.billing_configured = not missing_vars
    if missing_vars:
        logger.warning(
            f"Stripe billing not fully configured (missing: {missing_vars}). "
            "Subscription and webhook endpoints will return 503."
        )
    else:
        logger.info("Stripe billing configured")

    if not os.getenv("SESSION_SECRET"):
        logger.warning("SESSION_SECRET is not set; sessions will not survive a restart")

    # Process-wide collaborators shared by every request
    if getattr(app.state, "notifier", None) is None:
        app.state.notifier = build_account_notifier()
    if getattr(app.state, "session_service", None) is None:
        app.state.session_service = get_session_service()

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logger.error(
            "DATABASE_URL is not set. All data endpoints will return 503."
        )
        app.state.database_configured = False
    else:
        # Mask credentials for safe logging
        masked = database_url.split("@")[-1] if "@" in database_url else database_url.split("://")[0]
        logger.info("DATABASE_URL configured", extra={"host_db": masked})
        app.state.database_configured = True

        # SQLite has no migration step; create the schema in place
        if database_url.startswith("sqlite") or os.getenv("ENV") == "development":
            try:
                create_tables()
                logger.info("Database tables ensured")
            except Exception as e:
                logger.exception("Table creation failed", extra={"error": str(e)})

    yield

    # Shutdown
    logger.info("Shutting down Silver Circles API")


# Create FastAPI app
app = FastAPI(
    title="Silver Circles API",
    description="Community platform with tiered forums, groups and video calls",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware (configure for your frontend domain)
cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include health route (bypasses authentication)
app.include_router(health.router)

# Account lifecycle (register, login, verification, password recovery)
app.include_router(auth.router)

# Community resources (gated by the entitlement engine)
app.include_router(forums.router)
app.include_router(groups.router)
app.include_router(zoom_calls.router)

# Premium subscriptions and Stripe webhooks
app.include_router(billing.router)
app.include_router(webhooks_stripe.router)

# Admin management (requires is_admin)
app.include_router(admin.router)


@app.exception_handler(EntitlementDeniedError)
async def entitlement_denied_handler(request: Request, exc: EntitlementDeniedError):
    """Render a denied access decision with its status and reason code."""
    headers = None
    if exc.http_status == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Render route errors in the same flat shape as access denials.

    Structured details ({"error", "message", ...}) become the response body;
    plain string details stay under "detail".
    """
    content = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


# Global exception handler for anything the routes did not translate
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
