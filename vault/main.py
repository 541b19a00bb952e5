"""Entry point and composition root for the LinkVault service."""

import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from vault import config
from vault.blob_store import BlobStore, create_blob_store
from vault.database import init_database
from vault.exceptions import (
    AuthenticationRequiredError,
    ConflictError,
    ContentNotFoundError,
    ForbiddenError,
    InvalidAPIKeyError,
    PasswordRejectedError,
    PasswordRequiredError,
    QuotaExceededError,
    StorageUnavailableError,
    ValidationError,
    VaultException,
)
from vault.expiry_reaper import ExpiryReaper
from vault.routes.content_routes import router as content_router
from vault.schemas.common import ErrorResponse
from vault.services.content_service import ContentService

logger = setup_logging('linkvault')

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
}

# Blob failures caused by the store itself rather than its availability.
_BAD_GATEWAY_REASONS = {"credentials_rejected", "upstream_error", "blob_not_found"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Initialize storage and own the expiry reaper for the process lifetime.
    """
    logger.info("LinkVault service starting up...")

    init_database()
    Path(config.STAGING_DIR).mkdir(parents=True, exist_ok=True)
    logger.info("Database initialized")

    reaper: ExpiryReaper = app.state.reaper
    if app.state.reaper_enabled:
        await reaper.start()

    try:
        yield
    finally:
        logger.info("LinkVault service shutting down...")
        await reaper.stop()
        await app.state.blob_store.close()
        logger.info("Expiry reaper stopped")


def _error_response(status_code: int, code: str, message: str, reason: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(detail=message, code=code, reason=reason)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Validation error: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", str(exc))

    @app.exception_handler(ContentNotFoundError)
    async def content_not_found_handler(request: Request, exc: ContentNotFoundError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Content not found: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_404_NOT_FOUND, "CONTENT_NOT_FOUND", str(exc))

    @app.exception_handler(PasswordRequiredError)
    async def password_required_handler(request: Request, exc: PasswordRequiredError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.info(f"Password required [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_401_UNAUTHORIZED, "PASSWORD_REQUIRED", str(exc))

    @app.exception_handler(PasswordRejectedError)
    async def password_rejected_handler(request: Request, exc: PasswordRejectedError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Password rejected [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_403_FORBIDDEN, "PASSWORD_REJECTED", str(exc))

    @app.exception_handler(QuotaExceededError)
    async def quota_exceeded_handler(request: Request, exc: QuotaExceededError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.info(f"Quota exceeded [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_410_GONE, "QUOTA_EXCEEDED", str(exc))

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Forbidden: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_403_FORBIDDEN, "FORBIDDEN", str(exc))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f"Conflict: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_409_CONFLICT, "CONFLICT", str(exc))

    @app.exception_handler(AuthenticationRequiredError)
    async def authentication_required_handler(request: Request, exc: AuthenticationRequiredError):
        return _error_response(status.HTTP_401_UNAUTHORIZED, "AUTHENTICATION_REQUIRED", str(exc))

    @app.exception_handler(InvalidAPIKeyError)
    async def invalid_api_key_handler(request: Request, exc: InvalidAPIKeyError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Invalid API key error: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_401_UNAUTHORIZED, "INVALID_API_KEY", str(exc))

    @app.exception_handler(StorageUnavailableError)
    async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(
            f"Storage unavailable: {exc} reason={exc.reason} detail={exc.detail} "
            f"[request_id={request_id}] path={request.url.path}"
        )
        status_code = (
            status.HTTP_502_BAD_GATEWAY if exc.reason in _BAD_GATEWAY_REASONS
            else status.HTTP_503_SERVICE_UNAVAILABLE
        )
        message = str(exc)
        if not config.is_production() and exc.detail:
            message = f"{message} ({exc.detail})"
        return _error_response(status_code, "STORAGE_UNAVAILABLE", message, reason=exc.reason)

    @app.exception_handler(VaultException)
    async def vault_exception_handler(request: Request, exc: VaultException):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(
            f"Unhandled LinkVault error: {exc} [request_id={request_id}] path={request.url.path}",
            exc_info=True
        )
        message = "Server error." if config.is_production() else str(exc)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", message)

    @app.exception_handler(Exception)
    async def unexpected_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(
            f"Unexpected error: {type(exc).__name__} [request_id={request_id}] path={request.url.path}",
            exc_info=True
        )
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "Server error.")


def create_app(
    blob_store: Optional[BlobStore] = None,
    content_service: Optional[ContentService] = None,
    reaper: Optional[ExpiryReaper] = None,
    start_reaper: bool = True,
) -> FastAPI:
    """
    Build the application and wire its collaborators.

    Args:
        blob_store: Blob store to use (default from configuration)
        content_service: Service override, mainly for tests
        reaper: Reaper override, mainly for tests
        start_reaper: Whether the lifespan starts the expiry reaper

    Returns:
        Configured FastAPI application
    """
    blob_store = blob_store or create_blob_store()

    app = FastAPI(
        title="LinkVault",
        description="Ephemeral, access-controlled links to text and files",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.blob_store = blob_store
    app.state.content_service = content_service or ContentService(blob_store)
    app.state.reaper = reaper or ExpiryReaper(blob_store)
    app.state.reaper_enabled = start_reaper

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Middleware to log requests and attach security headers.
        """
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        logger.info(f"Request started: {request.method} {request.url.path} [request_id={request_id}]")

        response = await call_next(request)

        duration = time.time() - start_time
        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
        )

        response.headers["X-Request-ID"] = request_id
        for header, value in SECURITY_HEADERS.items():
            response.headers[header] = value

        return response

    _register_exception_handlers(app)
    app.include_router(content_router)

    @app.get("/")
    async def root():
        """
        Root endpoint for health check.
        """
        return {"message": "LinkVault API", "status": "running"}

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint for container orchestration.
        """
        return {"status": "healthy", "service": "linkvault"}

    return app


app = create_app()


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "vault.main:app",
        host=config.VAULT_HOST,
        port=config.VAULT_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
