"""
Member Portal Workflow - FastAPI Application
============================================

Application factory with routers, middleware and error handlers.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from src.api import auth, projects, workflows
from src.core.config import settings
from src.core.database import close_db, init_db, ping_db
from src.core.schemas import ErrorResponse, HealthResponse
from src.core.workflow import (
    InvalidWorkflowRequestError,
    WorkflowError,
    WorkflowNotFoundError,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


# ==========================================================================
# Lifespan
# ==========================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables on startup, release the pool on shutdown."""
    logger.info("Starting Member Portal Workflow", version=settings.APP_VERSION)

    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Member Portal Workflow")
    await close_db()
    logger.info("Database connections closed")


# ==========================================================================
# Error Mapping
# ==========================================================================

def _error_response(status_code: int, error: str, detail: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail, code=code).model_dump(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map domain errors to HTTP.

    not found -> 404, invalid request/transition -> 400. Body validation
    failures are invalid requests too.
    """

    @app.exception_handler(WorkflowNotFoundError)
    async def not_found_handler(request: Request, exc: WorkflowNotFoundError) -> JSONResponse:
        return _error_response(status.HTTP_404_NOT_FOUND, "Not Found", exc.message, exc.code)

    @app.exception_handler(InvalidWorkflowRequestError)
    async def invalid_request_handler(
        request: Request, exc: InvalidWorkflowRequestError
    ) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, "Bad Request", exc.message, exc.code)

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, "Bad Request", exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        return _error_response(
            status.HTTP_400_BAD_REQUEST, "Bad Request", problems, "INVALID_REQUEST"
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(
            "Database error",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            str(exc) if settings.is_development else "A storage error occurred",
            "DATABASE_ERROR",
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            str(exc) if settings.is_development else "An unexpected error occurred",
            "INTERNAL_ERROR",
        )


# ==========================================================================
# App Factory
# ==========================================================================

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Member portal project workflow tracker",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Application and database status."""
        try:
            await ping_db()
            database = "connected"
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database ping failed", error=str(e))
            database = "unavailable"

        return HealthResponse(
            status="healthy" if database == "connected" else "degraded",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            database=database,
        )

    app.include_router(auth.router, prefix=settings.API_V1_PREFIX)
    app.include_router(projects.router, prefix=settings.API_V1_PREFIX)
    app.include_router(workflows.router, prefix=settings.API_V1_PREFIX)

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Root endpoint with API info."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs" if settings.is_development else "Disabled in production",
            "health": "/health",
            "api": settings.API_V1_PREFIX,
        }

    return app


# ==========================================================================
# Application Instance
# ==========================================================================

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="info",
    )
