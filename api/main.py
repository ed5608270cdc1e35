"""
Main FastAPI application for the Lead Qualification Engine.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routes import conversation, research, optimize, live
from .services import get_services, initialize_services, reset_services
from .middleware.metrics import MetricsMiddleware, metrics_endpoint
from .middleware.rate_limit import RateLimitMiddleware, RequestWindows
from config.settings import get_settings
from core.errors import (
    AlreadyExists,
    EngineError,
    InvalidIdentity,
    InvalidState,
    NotFound,
    UpstreamUnavailable,
)
from llm.prompt_templates import PromptTemplates

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFound: 404,
    AlreadyExists: 409,
    InvalidState: 409,
    InvalidIdentity: 422,
    UpstreamUnavailable: 503,
}


def error_status(error: EngineError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Lead Qualification Engine starting up...")

    # Initialize database (if configured)
    settings = get_settings()
    session_factory = None
    if settings.database_url:
        try:
            from database.session import init_db
            session_factory = await init_db(settings.database_url)
        except Exception as e:
            logger.warning(f"Database init failed (running in memory): {e}")

    services = initialize_services(session_factory)
    services.request_windows = app.state.request_windows
    await services.start()
    logger.info("Lead Qualification Engine ready")
    yield
    logger.info("Lead Qualification Engine shutting down...")

    await services.shutdown()
    reset_services()

    # Close database
    if session_factory is not None:
        from database.session import close_db
        await close_db()


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = error_status(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")

    body = exc.to_dict()
    body["response"] = PromptTemplates.FALLBACK_RESPONSE
    return JSONResponse(status_code=status_code, content=body)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.api_title,
        description="Conversational lead qualification: staged funnel, prompt optimization and lead research.",
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    # Rate limiting middleware
    app.state.request_windows = RequestWindows(limit=settings.rate_limit_per_minute)
    app.add_middleware(RateLimitMiddleware, windows=app.state.request_windows)

    app.add_exception_handler(EngineError, engine_error_handler)

    # --- Core routers ---
    app.include_router(conversation.router, prefix="/api/v1", tags=["Conversations"])
    app.include_router(research.router, prefix="/api/v1", tags=["Research"])
    app.include_router(optimize.router, prefix="/api/v1", tags=["Optimizer"])
    app.include_router(live.router, prefix="/api/v1", tags=["Live"])

    # --- Prometheus metrics endpoint ---
    app.get("/metrics", tags=["Monitoring"])(metrics_endpoint)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "service": settings.api_title,
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
        }

    # Health check
    @app.get("/health")
    async def health():
        services = get_services()
        return {
            "status": "healthy" if services.is_ready else "degraded",
            "services": services.health(),
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
