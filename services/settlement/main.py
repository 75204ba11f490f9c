"""
Settlement Service - Main Application
=====================================

FastAPI application for safe-capture identity verification, webhook
reconciliation and dealer compliance checks.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.settlement import __version__
from services.settlement.container import SettlementContainer
from services.settlement.routes import buyer, dealer, webhooks
from shared.config import settings
from shared.errors import ErrorKind, SettlementError
from shared.logging import bind_context, clear_context, get_logger, setup_logging
from shared.models.common import ErrorResponse, HealthResponse, new_id


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="settlement",
)

logger = get_logger(__name__)


def create_app(container: SettlementContainer | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        container: Pre-built component graph; built from settings on startup
            when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        """Application lifespan manager."""
        logger.info(
            "settlement_service_starting",
            environment=settings.environment.value,
            port=settings.ports.settlement,
        )

        # Startup
        try:
            if app.state.container is None:
                app.state.container = SettlementContainer.build(settings)
            await app.state.container.startup()
        except Exception as e:
            logger.error("startup_failed", error=str(e), error_type=type(e).__name__)
            raise

        yield

        # Shutdown
        logger.info("settlement_service_shutting_down")
        await app.state.container.shutdown()

    app = FastAPI(
        title="VeriSettle Settlement Service",
        description="Safe-capture identity verification and AB1263 compliance checks",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.container = container

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.origins_list,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next: Any) -> Any:
        """Tag every log line of a request with its request id."""
        request_id = request.headers.get("X-Request-ID") or new_id()
        clear_context()
        bind_context(request_id=request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # ========================================================================
    # Health Check Endpoints
    # ========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> HealthResponse:
        """Health of the service and its collaborators."""
        current: SettlementContainer | None = request.app.state.container
        components = await current.health() if current is not None else {}
        all_healthy = current is not None and all(
            c.get("status") == "healthy" for c in components.values()
        )
        return HealthResponse(
            status="healthy" if all_healthy else "degraded",
            service="settlement",
            version=__version__,
            components=components,
        )

    @app.get("/", tags=["Health"])
    async def root() -> dict[str, str]:
        return {
            "service": "VeriSettle Settlement Service",
            "version": __version__,
            "docs": "/docs",
        }

    # ========================================================================
    # Include Routers
    # ========================================================================

    app.include_router(buyer.router, prefix="/api/v1/buyer", tags=["Buyer"])
    app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
    app.include_router(dealer.router, prefix="/api/v1/dealer", tags=["Dealer"])

    # ========================================================================
    # Error Handlers
    # ========================================================================

    @app.exception_handler(SettlementError)
    async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
        """Map settlement errors to their HTTP status."""
        log = logger.warning if exc.kind is not ErrorKind.DUPLICATE_REQUEST else logger.info
        log(
            "settlement_error",
            error_kind=exc.kind.value,
            status_code=exc.status_code,
            path=request.url.path,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies are validation errors, reported without input echo."""
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        logger.warning("request_validation_failed", fields=fields, path=request.url.path)
        body = ErrorResponse(
            error=ErrorKind.VALIDATION.value,
            message=f"Invalid request: {', '.join(fields)}",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(mode="json", exclude={"timestamp"}),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle HTTP exceptions."""
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.detail,
                "status_code": exc.status_code,
            },
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error(
            "unhandled_exception",
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Internal server error",
                "status_code": 500,
            },
        )

    return app


app = create_app()


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.settlement.main:app",
        host="0.0.0.0",
        port=settings.ports.settlement,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
