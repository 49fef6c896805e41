import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from kpay_gateway.api.router import router as kpay_router
from kpay_gateway.core.dependencies import initialize_app_dependencies
from kpay_gateway.core.dependency_container import DependencyContainer
from kpay_gateway.core.logging import setup_logging
from kpay_gateway.db.database_async import close_db_engine
from kpay_gateway.settings import Settings

setup_logging()


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifespan of the application resources.

    Initializes dependencies on startup and ensures they are cleaned up on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None: After startup procedures are complete, allowing the application to run.

    Raises:
        RuntimeError: If critical application dependencies fail to initialize during startup.
    """
    logger.info("Application startup sequence initiated.")

    app_settings = Settings()
    logger.info("Settings loaded.")

    initialized_dependencies: DependencyContainer | None = None
    try:
        initialized_dependencies = await initialize_app_dependencies(app_settings)
        app.state.dependencies = initialized_dependencies
        logger.info("Core application dependencies initialized and stored in app state.")
    except Exception as init_exc:
        logger.critical(f"Fatal error during application dependency initialization: {init_exc}", exc_info=True)
        await close_db_engine()
        logger.info("DB Engine closed due to dependency initialization failure during startup.")
        raise RuntimeError(
            f"Application startup failed due to dependency initialization error: {init_exc}"
        ) from init_exc

    yield  # Application runs here

    logger.info("Application shutdown sequence initiated.")

    await close_db_engine()
    logger.info("Main DB Engine closed.")

    await initialized_dependencies.http_client.aclose()
    logger.info("HTTP Client from DependencyContainer closed.")

    logger.info("Application shutdown complete.")


app = FastAPI(
    title="KPay Gateway",
    description="KNET payment initiation, callback handling and reconciliation.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health", tags=["General"], status_code=200)
async def health_check():
    """Perform a basic health check.

    Returns:
        A dictionary indicating the application status.
    """
    return {"status": "ok"}


app.include_router(kpay_router)


if __name__ == "__main__":
    import uvicorn

    dev_settings = Settings()
    uvicorn.run(
        "kpay_gateway.main:app",
        host=dev_settings.get_app_host(),
        port=dev_settings.get_app_port(),
        reload=dev_settings.get_app_reload(),
        log_level=dev_settings.get_log_level().lower(),
    )
