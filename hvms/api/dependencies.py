"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests
- Configuration is centralized

Long-lived collaborators (object store, signer, token issuer) are built
once in the application lifespan and kept on app.state. The visitor
repository gets a connection per request.
"""

import logging
from contextlib import contextmanager
from typing import Annotated, Generator

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.custody.orchestrator import CredentialSigner, CustodyOrchestrator, ObjectStore
from ..core.custody.tokens import CheckInTokenIssuer
from ..infrastructure.snowflake.client import create_snowflake_connection
from ..infrastructure.snowflake.repositories.visitors import (
    SnowflakeConfig,
    VisitorRepository,
)

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def get_app_settings(request: Request) -> Settings:
    """
    Settings the running application was created with.

    Falls back to the process-wide cached settings so routes also work
    when mounted outside create_app.
    """
    settings = getattr(request.app.state, "settings", None)
    return settings or get_settings()


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_app_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Identity proofs are personal data, so every visitor endpoint sits
    behind a front-desk API key. Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:4]}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def build_snowflake_config(settings: Settings) -> SnowflakeConfig:
    return SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )


@contextmanager
def open_visitor_repository(
    request: Request,
    settings: Settings,
) -> Generator[VisitorRepository, None, None]:
    """
    Open a VisitorRepository for the duration of a with-block.

    In mock mode, the application keeps one shared in-memory connection
    so that visitors persist across requests. Otherwise a Snowflake
    connection is opened here, so connection failures surface to the caller.
    """
    if settings.snowflake_mock_mode:
        yield VisitorRepository(request.app.state.mock_snowflake)
        return

    with create_snowflake_connection(config=build_snowflake_config(settings)) as conn:
        logger.debug("Created VisitorRepository with Snowflake connection")
        yield VisitorRepository(conn)


def get_visitor_repository(
    request: Request,
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> Generator[VisitorRepository, None, None]:
    """
    Provide VisitorRepository with database connection.

    This is a generator function (yields instead of returns) because
    the connection must be closed after the request.
    """
    with open_visitor_repository(request, settings) as repo:
        yield repo


def get_object_store(request: Request) -> ObjectStore:
    """Object store created at startup."""
    return request.app.state.object_store


def get_credential_signer(request: Request) -> CredentialSigner:
    """Signer created (and key material checked) at startup."""
    return request.app.state.credential_signer


def get_token_issuer(request: Request) -> CheckInTokenIssuer:
    return request.app.state.token_issuer


def get_custody_orchestrator(
    repository: Annotated[VisitorRepository, Depends(get_visitor_repository)],
    object_store: Annotated[ObjectStore, Depends(get_object_store)],
    signer: Annotated[CredentialSigner, Depends(get_credential_signer)],
    token_issuer: Annotated[CheckInTokenIssuer, Depends(get_token_issuer)],
) -> CustodyOrchestrator:
    """
    Provide a CustodyOrchestrator wired to this request's repository.

    The orchestrator is stateless, so a new instance per request is cheap.
    """
    return CustodyOrchestrator(
        visitors=repository,
        object_store=object_store,
        signer=signer,
        token_issuer=token_issuer,
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
ObjectStoreDep = Annotated[ObjectStore, Depends(get_object_store)]
CustodyOrchestratorDep = Annotated[CustodyOrchestrator, Depends(get_custody_orchestrator)]
