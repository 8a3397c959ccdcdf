"""
FastAPI application entry point.

Using an application factory (create_app) because:
- Tests can create apps with their own Settings
- Initialization order is explicit

Storage, signing and token rendering are built once in the lifespan
from an explicit StorageConfig. Missing signing keys stop startup
instead of failing on the first download.

For local development:
    uvicorn hvms.main:app --reload

For production:
    gunicorn hvms.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.routes import health, visitors
from .config.settings import Settings, get_settings
from .core.custody.tokens import CheckInTokenIssuer
from .infrastructure.qr.renderer import create_token_renderer
from .infrastructure.snowflake.client import MockSnowflakeConnection
from .infrastructure.storage.client import StorageConfig, create_object_store
from .infrastructure.storage.signing import create_credential_signer

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger(__name__)


def build_storage_config(settings: Settings) -> StorageConfig:
    return StorageConfig(
        access_key_id=settings.storage_access_key_id,
        secret_access_key=settings.storage_secret_access_key,
        bucket_name=settings.storage_bucket_name,
        endpoint_url=settings.storage_endpoint,
        region=settings.storage_region,
        public_host=settings.storage_public_host,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the long-lived collaborators, makes sure the bucket exists,
    and keeps everything on app.state for the dependencies to hand out.
    """
    settings: Settings = app.state.settings

    logger.info(
        "HVMS API starting",
        extra={
            "version": settings.api_version,
            "mock_mode": {
                "snowflake": settings.snowflake_mock_mode,
                "storage": settings.storage_mock_mode,
            }
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    storage_config = build_storage_config(settings)

    # raises SigningUnavailableError when key material is missing
    app.state.credential_signer = create_credential_signer(
        storage_config,
        lifetime_seconds=settings.signed_url_lifetime_seconds,
        mock_mode=settings.storage_mock_mode,
    )
    app.state.object_store = create_object_store(
        config=storage_config,
        mock_mode=settings.storage_mock_mode,
    )
    app.state.token_issuer = CheckInTokenIssuer(
        renderer=create_token_renderer(),
        tag=settings.checkin_token_tag,
    )

    if settings.snowflake_mock_mode:
        app.state.mock_snowflake = MockSnowflakeConnection()

    await app.state.object_store.ensure_namespace()

    yield

    logger.info("HVMS API shutting down")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Called once at import time in production, and once per test with a
    test-specific Settings.
    """
    settings = settings or get_settings()

    logging.getLogger().setLevel(settings.log_level.upper())

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Visitor check-in service.

        ## Workflow

        1. **Register**: `POST /api/visitors`
           - Multipart form with name, contact and an optional identity proof
           - Returns the visitor and a check-in QR code

        2. **Retrieve identity proof**: `GET /api/visitors/{visitor_id}/download-id`
           - Redirects to a signed URL valid for a few minutes

        ## Authentication

        All visitor endpoints require an API key in the `X-API-Key` header.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        visitors.router,
        prefix="/api/visitors",
        tags=["Visitors"],
    )

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": "HVMS Visitor Check-in API",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc):
        """
        Return error details as the response body.

        The front-desk UI reads `error` at the top level, so dict details
        are returned as-is and plain strings are wrapped.
        """
        content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Catch-all exception handler.

        Prevents stack traces from leaking to clients. The full error is
        logged server-side.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error. Please contact support if this persists."
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "hvms.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
