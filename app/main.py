# =============================================================================
# app/main.py - FastAPI Application Entry Point
# =============================================================================
# This is the main entry point for the Stager API.
# It configures the FastAPI application with middleware, routers, and handlers.
#
# Usage:
#   uvicorn app.main:app --reload
#   python -m app.main
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.exceptions import (
    StagingAPIException,
    staging_api_exception_handler,
    validation_exception_handler,
)
from app.routers import health, staging, team, billing, webhooks, jobs, notifications, properties, email
from app.auth import routes as auth_routes

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    With QStash as the queue backend, the cleanup cron schedules are
    registered on startup. Celery beat owns them otherwise.
    """
    logger.info(f"Starting Stager API in {settings.ENVIRONMENT} mode")
    logger.info(f"CORS origins: {settings.cors_origins_list}")
    logger.info(f"Queue backend: {settings.QUEUE_BACKEND}")

    if settings.QUEUE_BACKEND == "qstash" and settings.is_production:
        from workers.queue import QueuePublishError, initialize_scheduled_jobs

        try:
            initialize_scheduled_jobs()
        except QueuePublishError as e:
            logger.error(f"Could not register scheduled jobs: {e}")

    yield

    logger.info("Shutting down Stager API")


# Create FastAPI application
app = FastAPI(
    title="Stager API",
    description="""
## Virtual Staging API

Upload a photo of an empty room, pick a room type and furniture style, and
get back a furnished version generated by an image model.

### How It Works

1. **Stage** - `POST /api/v1/staging` with a base64 image (1 credit)
2. **Poll** - `GET /api/v1/staging/{id}` until `completed`
3. **Remix** - `POST /api/v1/staging/{id}/remix` to try another style;
   the first two remixes of each image are free
4. **Pick** - `PUT /api/v1/staging/{id}/primary` to choose the version to keep

### Teams

Enterprise subscribers get an organization with a shared credit pool,
handed out to members through invitations and per-member allocations.
""",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Auth", "description": "Verify tokens and read the caller's profile"},
        {"name": "Staging", "description": "Stage images, poll jobs, remix and manage versions"},
        {"name": "Team", "description": "Organizations, members, credit allocation, invitations and the audit log"},
        {"name": "Billing", "description": "Subscriptions, credit top-ups and the customer portal"},
        {"name": "Properties", "description": "Group staged images by listing"},
        {"name": "Notifications", "description": "In-app notifications"},
        {"name": "Email", "description": "Email preferences and one-click unsubscribe"},
        {"name": "Webhooks", "description": "Stripe and Replicate callbacks"},
        {"name": "Jobs", "description": "Background job delivery from the queue"},
        {"name": "Health", "description": "API health and readiness checks"},
    ],
)


# =============================================================================
# Middleware
# =============================================================================

# CORS middleware - allows cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(StagingAPIException)
async def handle_staging_api_exception(request: Request, exc: StagingAPIException):
    """Handle application exceptions."""
    return await staging_api_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    return await validation_exception_handler(request, exc)


@app.exception_handler(Exception)
async def handle_general_exception(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
        }
    )


# =============================================================================
# Routers
# =============================================================================

app.include_router(auth_routes.router, prefix="/api/v1/auth", tags=["Auth"])

app.include_router(health.router, prefix="/api/v1", tags=["Health"])

app.include_router(staging.router, prefix="/api/v1/staging", tags=["Staging"])

app.include_router(team.router, prefix="/api/v1/team", tags=["Team"])

app.include_router(billing.router, prefix="/api/v1/billing", tags=["Billing"])

app.include_router(properties.router, prefix="/api/v1/properties", tags=["Properties"])

app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["Notifications"])

app.include_router(email.router, prefix="/api/v1/email", tags=["Email"])

app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])

app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])


# =============================================================================
# Root Endpoint
# =============================================================================

@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint - returns API info.
    """
    return {
        "name": "Stager API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.is_development,
    )
