"""
FastAPI application factory
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from subwallet.config import get_settings
from subwallet.infrastructure.db.session import check_db_connection
from subwallet.application.errors import (
    AllocationExecutionError, InsufficientFundsError, NotFoundError, ValidationError,
)
from subwallet.application.scheduler import start_scheduler, shutdown_scheduler
from subwallet.api.v1 import allocation_rules, allocations, budgets, events, sub_accounts

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    yield
    shutdown_scheduler()


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds(request: Request, exc: InsufficientFundsError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(AllocationExecutionError)
    async def execution_error(request: Request, exc: AllocationExecutionError):
        logger.error("Allocation failed on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """
    Application factory - builds and configures the FastAPI app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="Subwallet",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    _register_error_handlers(app)

    # Routers
    app.include_router(sub_accounts.router)
    app.include_router(allocation_rules.router)
    app.include_router(allocations.router)
    app.include_router(budgets.router)
    app.include_router(events.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (checks the database)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "subwallet.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
