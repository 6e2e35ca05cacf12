from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatgate.app.api.chat import router as chat_router
from chatgate.app.api.conversations import router as conversations_router
from chatgate.app.api.rate_limit import router as rate_limit_router
from chatgate.app.api.transcribe import router as transcribe_router
from chatgate.app.core.config import settings
from chatgate.app.core.http_client import init_http_client
from chatgate.app.core.logging import get_log_context, get_logger, setup_logging
from chatgate.app.db.async_session import close_async_engine, init_async_db
from chatgate.app.exceptions import GatewayException, ValidationError
from chatgate.app.middleware.client_identity import get_client_identity
from chatgate.app.middleware.request_id import RequestIdMiddleware, get_request_id
from chatgate.app.providers.factory import reset_completion_provider
from chatgate.app.services.admission import get_admission_controller
from chatgate.app.services.conversation_store import get_conversation_store
from chatgate.app.services.summarizer import get_summarizer


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Application lifespan context manager.

        Initializes the shared HTTP client, the conversation tables and the
        summarization worker on startup; drains and closes them on shutdown.
        """
        async with init_http_client() as http_client:
            if settings.database_url:
                await init_async_db()

            summarizer = get_summarizer()
            summarizer.start()

            logger.info(
                "Application startup complete",
                extra={
                    "redis_enabled": settings.redis_enabled,
                    "persistent_store": bool(settings.database_url),
                    "mock_provider": settings.mock_provider,
                    "debug_mode": settings.debug,
                },
            )

            yield {"http_client": http_client}

            # Pending summaries still need the HTTP client
            await summarizer.shutdown()
            reset_completion_provider()

        await get_admission_controller().store.close()
        await get_conversation_store().close()
        await close_async_engine()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Chatgate",
        description="Abuse-resistant streaming chat gateway with rate limiting and prompt screening",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=600,
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(transcribe_router)
    app.include_router(rate_limit_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "components": {
                "rate_state": "redis" if settings.redis_enabled else "memory",
                "conversation_store": "sql" if settings.database_url else "memory",
                "summarizer_pending": get_summarizer().pending,
            },
        }

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Map gateway exceptions to their status code and JSON body."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"Request rejected: {exc.code}",
            extra=get_log_context(
                request_id=get_request_id(request),
                client_id=get_client_identity(request),
                category=exc.category,
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
            ),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.response_headers(),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed bodies get the same shape as other validation failures."""
        error = ValidationError("Invalid request body")
        logger.warning(
            f"Request rejected: {error.code}",
            extra=get_log_context(
                request_id=get_request_id(request),
                client_id=get_client_identity(request),
                category=error.category,
                path=request.url.path,
                method=request.method,
                status_code=error.status_code,
                error_count=len(exc.errors()),
            ),
        )
        return JSONResponse(status_code=error.status_code, content=error.to_response())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; debug mode adds the
        exception message.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra=get_log_context(
                request_id=request_id,
                client_id=get_client_identity(request),
                category="internal",
                path=request.url.path,
                method=request.method,
                status_code=500,
                exception_type=type(exc).__name__,
            ),
        )

        content = {
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
        }
        if settings.debug:
            content["exception_type"] = type(exc).__name__
            content["message"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
