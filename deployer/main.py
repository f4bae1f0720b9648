"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deployer import __version__
from deployer.api import deployments
from deployer.api.middleware import RequestLoggingMiddleware
from deployer.api.v1.router import router as v1_router
from deployer.config import Settings, get_settings
from deployer.core.events import InMemorySubscriberStore, ProgressChannel
from deployer.core.exceptions import (
    DeployerError,
    DeploymentNotFoundError,
    ValidationError,
)
from deployer.core.orchestrator import DeploymentOrchestrator
from deployer.core.session import DeploymentSessionManager
from deployer.services.identity import IdentityService
from deployer.services.platform import FlyPlatform
from deployer.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

ERROR_STATUS_CODES: dict[type[DeployerError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    DeploymentNotFoundError: status.HTTP_404_NOT_FOUND,
}


def create_app(
    settings: Settings | None = None,
    orchestrator: DeploymentOrchestrator | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        # Startup
        configure_logging(settings)
        logger.info(
            "application.starting",
            version=__version__,
            environment=settings.app_env,
        )
        if not settings.humanitec_service_user_api_token:
            logger.warning(
                "humanitec_service_user_api_token not set - deployments will fail"
            )

        yield

        # Shutdown
        await app.state.sessions.shutdown()
        logger.info("application.shutdown")

    app = FastAPI(
        title="Chat Deployer API",
        description="Provisions and deploys chat app instances with live progress",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )

    channel = ProgressChannel(InMemorySubscriberStore())
    orchestrator = orchestrator or DeploymentOrchestrator(
        settings,
        identity=IdentityService(settings),
        platform=FlyPlatform(settings),
    )
    app.state.settings = settings
    app.state.channel = channel
    app.state.sessions = DeploymentSessionManager(
        channel,
        orchestrator,
        subscriber_wait_seconds=settings.subscriber_wait_seconds,
    )

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # Register exception handlers
    @app.exception_handler(DeployerError)
    async def deployer_error_handler(
        request: Request, exc: DeployerError
    ) -> JSONResponse:
        """Handle application-specific errors."""
        status_code = ERROR_STATUS_CODES.get(
            type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        return JSONResponse(
            status_code=status_code,
            content={
                "error": {
                    "code": type(exc).__name__.upper(),
                    "message": exc.message,
                    "details": exc.details,
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected errors."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )

        if settings.is_development:
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": str(exc),
                        "type": type(exc).__name__,
                    }
                },
            )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                }
            },
        )

    # Include routers
    app.include_router(deployments.router, tags=["deployments"])
    app.include_router(v1_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "deployer.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
