"""
Diamond Deployer - FastAPI Application
Main entry point for the Diamond Deployer service.
Deploys EIP-2535 diamonds and reconciles their facets with a target configuration.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from diamond_deployer.api.deps.deployer_deps import get_repository
from diamond_deployer.core.config import is_development, is_production, settings
from diamond_deployer.core.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    setup_logging()
    logger.info(
        f"{settings.APP_NAME} started",
        environment=settings.ENVIRONMENT,
        record_backend=settings.RECORD_BACKEND,
    )
    yield
    # Shutdown
    repository = get_repository()
    if hasattr(repository, "disconnect"):
        await repository.disconnect()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description="EIP-2535 Diamond lifecycle API - deployment, facet reconciliation, upgrades and verification",
        version="1.0.0",
        docs_url="/docs" if not is_production() else None,
        redoc_url="/redoc" if not is_production() else None,
        openapi_url="/openapi.json" if not is_production() else None,
        lifespan=lifespan,
    )

    from diamond_deployer.api.routers import diamond_router

    app.include_router(
        diamond_router.router, prefix="/api/v1/diamonds", tags=["Diamond Lifecycle"]
    )

    @app.get("/")
    async def root():
        """Root endpoint for health check."""
        return {
            "message": f"{settings.APP_NAME} API",
            "version": "1.0.0",
            "status": "healthy",
            "features": [
                "Fresh Diamond Deployment",
                "Selector Registry & Priority Resolution",
                "Facet Reconciliation",
                "Resilient RPC Execution",
                "Deployment Verification",
            ],
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "record_backend": settings.RECORD_BACKEND,
            "features_enabled": {
                "rpc": bool(settings.RPC_URL or settings.NETWORK_RPC_URLS),
                "signing": bool(settings.PRIVATE_KEY),
                "batch_cuts": settings.BATCH_CUTS,
            },
        }

    return app


# Create the FastAPI app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "diamond_deployer.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=is_development(),
        log_level="info",
    )
