"""
Linklytics - short link redirects with click analytics

FastAPI application entry point.
"""
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# Import observability modules
from linklytics.config import settings
from linklytics.database import get_db
from linklytics.logging_config import configure_logging, logger
from linklytics.sentry_config import configure_sentry
from linklytics.middleware.logging import LoggingMiddleware
from linklytics.routes.metrics import router as metrics_router

# Import route modules
from linklytics.routes.redirect import router as redirect_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Short link redirects with click attribution and milestone webhooks",
    # Kept off the root so /docs, /redoc and friends stay usable as slugs
    docs_url=f"{settings.META_PREFIX}/docs",
    redoc_url=f"{settings.META_PREFIX}/redoc",
    openapi_url=f"{settings.META_PREFIX}/openapi.json",
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    """Liveness plus a database round trip."""
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error("health_database_failed", error=str(e))
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "environment": settings.ENVIRONMENT
    }


# Catch-all /{slug} must be registered after every fixed path
app.include_router(redirect_router)
