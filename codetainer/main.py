"""
FastAPI Main Server
===================

Main entry point for the Codetainer API server.
Provides REST endpoints for images, codetainers, files and terminal
geometry, and the WebSocket terminal attachment.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Config
from .context import AppContext, build_context, get_context
from .errors import CodetainerError
from .routers import codetainers_router, images_router
from .schemas import ErrorBody, ErrorDetail, HealthBody
from .websocket import router as attach_router

logger = logging.getLogger(__name__)

LOCALHOST_ADDRESSES = ("127.0.0.1", "::1", "localhost")

HTTP_ERROR_KINDS = {
    400: "validation_error",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
}


def error_response(status_code: int, kind: str, message: str) -> JSONResponse:
    """Render the uniform error envelope."""
    body = ErrorBody(error=ErrorDetail(kind=kind, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    context: AppContext | None = getattr(app.state, "context", None)
    if context is None:
        context = build_context(Config.from_env())
        app.state.context = context
    logger.info(f"Codetainer API starting (database: {context.config.database_url})")

    yield

    logger.info("Codetainer API shutting down")
    await context.shutdown()


def create_app(context: AppContext | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        context: Prebuilt application context. Built from the environment
            at startup when omitted.
    """
    app = FastAPI(
        title="Codetainer",
        description="Interactive terminals and file access for Docker containers",
        version="0.1.0",
        lifespan=lifespan,
    )
    if context is not None:
        app.state.context = context

    config = context.config if context is not None else Config.from_env()

    # CORS - allow configured origins, or "*" for all
    cors_origins = list(config.cors_origins) or [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security: only allow localhost unless external access is enabled
    if not config.allow_external_access:
        @app.middleware("http")
        async def require_localhost(request: Request, call_next):
            client_host = request.client.host if request.client else None
            if client_host not in LOCALHOST_ADDRESSES:
                logger.warning(f"Rejected request from non-local address: {client_host}")
                return error_response(403, "forbidden", "Localhost access only")
            return await call_next(request)

    # ========================================================================
    # Exception handlers
    # ========================================================================

    @app.exception_handler(CodetainerError)
    async def codetainer_error_handler(request: Request, exc: CodetainerError):
        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
        return error_response(exc.status_code, exc.kind, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:]) or 'body'}: {error['msg']}"
            for error in exc.errors()
        )
        return error_response(400, "validation_error", problems or "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        kind = HTTP_ERROR_KINDS.get(exc.status_code, "http_error")
        return error_response(exc.status_code, kind, str(exc.detail))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return error_response(500, "internal_error", "Internal server error")

    # ========================================================================
    # Routes
    # ========================================================================

    app.include_router(images_router)
    app.include_router(codetainers_router)
    app.include_router(attach_router)

    @app.get("/api/health", response_model=HealthBody)
    async def health_check(request: Request):
        """Health check endpoint."""
        ctx = get_context(request)
        docker_ok = await asyncio.to_thread(ctx.runtime.ping)
        return HealthBody(docker=docker_ok)

    return app


def run() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    config = Config.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = create_app(build_context(config))
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    run()
