"""FastAPI application factory."""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tradie_invoices import __version__
from tradie_invoices.api.routes import catalog, drafts, invoices, payments
from tradie_invoices.backend import AuthenticationError, BackendError, RateLimitError
from tradie_invoices.clients import LLMClientError
from tradie_invoices.config import configure_logging, get_settings
from tradie_invoices.config.logging import bind_request_context, clear_request_context
from tradie_invoices.invoicing.errors import (
    CorrectionInProgressError,
    InvoiceError,
    InvoiceValidationError,
    NotFoundError,
    SchemaViolationError,
)
from tradie_invoices.invoicing.session import DraftSessionStore

logger = structlog.get_logger(__name__)


def status_for(exc: InvoiceError) -> int:
    """HTTP status for an invoicing error."""
    if isinstance(exc, InvoiceValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, CorrectionInProgressError):
        return 409
    if isinstance(exc, SchemaViolationError):
        return 502
    return 503


def _error(status_code: int, message: str, retryable: bool, request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "retryable": retryable,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    if app.state.mailer is not None:
        await app.state.mailer.close()


def create_app(sessions: DraftSessionStore | None = None) -> FastAPI:
    """Build the API application."""
    app = FastAPI(title="Tradie Invoices API", version=__version__, lifespan=lifespan)
    if sessions is None:
        sessions = DraftSessionStore(ttl_seconds=get_settings().draft_session_ttl_seconds)
    app.state.sessions = sessions
    app.state.llm = None
    app.state.mailer = None

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Bind a request id to every log line emitted while handling the request."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        bind_request_context(request_id, method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(InvoiceError)
    async def invoice_error_handler(request: Request, exc: InvoiceError) -> JSONResponse:
        status_code = status_for(exc)
        log = logger.warning if status_code < 500 else logger.error
        log(
            "request_failed",
            error_type=type(exc).__name__,
            error=str(exc),
            status_code=status_code,
            request_id=getattr(request.state, "request_id", None),
        )
        return _error(status_code, exc.user_message, exc.retryable, request)

    @app.exception_handler(AuthenticationError)
    async def auth_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
        return _error(401, "Please sign in again", False, request)

    @app.exception_handler(RateLimitError)
    async def rate_limit_handler(request: Request, exc: RateLimitError) -> JSONResponse:
        return _error(429, "Too many requests. Please wait and try again.", True, request)

    @app.exception_handler(BackendError)
    async def backend_error_handler(request: Request, exc: BackendError) -> JSONResponse:
        logger.error(
            "backend_error", status_code=exc.status_code, error=str(exc), details=exc.details
        )
        return _error(503, "A service is temporarily unavailable. Please try again.", True, request)

    @app.exception_handler(LLMClientError)
    async def llm_error_handler(request: Request, exc: LLMClientError) -> JSONResponse:
        logger.error("llm_unavailable", provider=exc.provider, error=str(exc))
        return _error(503, "Invoice drafting is unavailable right now.", True, request)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    app.include_router(drafts.router)
    app.include_router(invoices.router)
    app.include_router(catalog.router)
    app.include_router(payments.router)

    return app


def build_app() -> FastAPI:
    """Entry point for ``uvicorn --factory``: configures logging, then builds."""
    configure_logging()
    return create_app()
