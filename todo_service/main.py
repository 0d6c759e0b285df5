import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from todo_service.container import build_services
from todo_service.core.config import Settings, SettingsDep, get_settings
from todo_service.core.logging_config import configure_logging
from todo_service.database import create_db_and_tables
from todo_service.errors import (
    ImmutablePastDueError,
    NotFoundError,
    RateLimitedError,
    TodoServiceError,
    UnavailableError,
    ValidationError,
)
from todo_service.routers import todos

logger = logging.getLogger(__name__)

_ERROR_STATUS = [
    (NotFoundError, status.HTTP_404_NOT_FOUND, "Not Found"),
    (ImmutablePastDueError, status.HTTP_409_CONFLICT, "Conflict"),
    (ValidationError, status.HTTP_400_BAD_REQUEST, "Bad Request"),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS, "Too Many Requests"),
    (UnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "Service Unavailable"),
]


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        services = build_services(settings)
        if settings.create_tables_on_startup and services.engine is not None:
            await create_db_and_tables(services.engine)
        await services.cache.init_cache()
        if settings.sweep_enabled:
            services.scheduler.start()
        app.state.services = services
        try:
            yield
        finally:
            await services.aclose()

    app = FastAPI(
        title="Todo Service API",
        description="Todo lifecycle service with read-through caching and past-due sweeping",
        swagger_ui_parameters={"displayRequestDuration": True},
        version="1.0.0",
        lifespan=lifespan,
    )
    app.dependency_overrides[get_settings] = lambda: settings

    @app.exception_handler(TodoServiceError)
    async def todo_error_handler(request: Request, exc: TodoServiceError) -> JSONResponse:
        for error_type, status_code, label in _ERROR_STATUS:
            if isinstance(exc, error_type):
                logger.error("%s: %s", label, exc)
                return JSONResponse(
                    status_code=status_code,
                    content={"error": label, "message": str(exc)},
                )
        logger.error("Unexpected service error: %s", exc, exc_info=exc)
        return _internal_error()

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.error("Validation error: %s", exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Bad Request",
                "message": "Request validation failed",
                "detail": jsonable_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unexpected error occurred: %s", exc, exc_info=exc)
        return _internal_error()

    # Include routers
    app.include_router(todos.router)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to Todo Service API",
            "docs": "/docs",
            "version": "1.0.0",
        }

    @app.get("/health")
    async def health_check(request: Request, config: SettingsDep):
        services = request.app.state.services
        reader = services.reader
        return {
            "status": "healthy",
            "cache_backend": config.cache_backend,
            "cache": services.cache.get_stats(),
            "circuit_breaker": (
                reader.circuit_breaker.get_state() if reader.circuit_breaker else None
            ),
            "rate_limiter": (
                reader.rate_limiter.get_state() if reader.rate_limiter else None
            ),
            "scheduler_running": services.scheduler.running,
        }

    @app.post("/admin/sweep")
    async def run_sweep(request: Request):
        updated = await request.app.state.services.sweep.mark_past_due_if_required()
        return {"updated": updated}

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances that JSON cannot encode
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


app = create_app()
