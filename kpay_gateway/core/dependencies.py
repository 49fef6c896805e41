import logging
from typing import AsyncGenerator

import httpx
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from kpay_gateway.core.dependency_container import DependencyContainer
from kpay_gateway.core.events import PaymentNotifier
from kpay_gateway.db.database_async import create_db_engine, create_db_tables
from kpay_gateway.db.database_async import get_db_session as db_get_session
from kpay_gateway.gateway.client import GatewayClient
from kpay_gateway.gateway.signing_context import SigningContext
from kpay_gateway.settings import Settings

logger = logging.getLogger(__name__)

# --- Dependency Providers --- #


def get_dependencies(request: Request) -> DependencyContainer:
    """Dependency to retrieve the DependencyContainer from application state."""
    dependencies: DependencyContainer | None = getattr(request.app.state, "dependencies", None)
    if dependencies is None:
        logger.critical(
            "DependencyContainer not found in application state. "
            "This indicates a critical setup error in the application lifespan."
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: Application dependencies not initialized.",
        )
    return dependencies


async def get_db_session(
    dependencies: DependencyContainer = Depends(get_dependencies),
) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency to get an async database session using the container's factory."""
    session_factory = dependencies.db_session_factory
    if session_factory is None:
        logger.critical("DB Session Factory not found in DependencyContainer.")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: Database session factory not available.",
        )

    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_signing_context(dependencies: DependencyContainer = Depends(get_dependencies)) -> SigningContext:
    return dependencies.signing_context


def get_notifier(dependencies: DependencyContainer = Depends(get_dependencies)) -> PaymentNotifier:
    return dependencies.notifier


def get_gateway_client(dependencies: DependencyContainer = Depends(get_dependencies)) -> GatewayClient:
    return dependencies.create_gateway_client()


async def initialize_app_dependencies(app_settings: Settings) -> DependencyContainer:
    """Initialize and configure core application dependencies.

    Sets up the HTTP client used for refund and inquiry calls, the database
    engine and session factory, and the gateway signing context.

    Args:
        app_settings: The application settings instance.

    Returns:
        A DependencyContainer instance populated with initialized dependencies.

    Raises:
        RuntimeError: If initialization of the HTTP client or database engine fails.
    """
    logger.info("Initializing core application dependencies...")

    timeout = httpx.Timeout(app_settings.get_http_timeout())
    http_client = httpx.AsyncClient(timeout=timeout)
    logger.info("HTTP Client initialized for DependencyContainer.")

    try:
        logger.info("Attempting to create main DB engine and session factory for DependencyContainer...")
        await create_db_engine()
        if app_settings.get_create_tables():
            await create_db_tables()
        db_session_factory = db_get_session
        logger.info("Main DB engine successfully created for DependencyContainer.")
    except Exception as db_exc:
        logger.critical(f"Failed to initialize database for DependencyContainer due to exception: {db_exc}")
        await http_client.aclose()
        logger.info("HTTP client closed due to DB initialization failure.")
        raise RuntimeError(f"Failed to initialize database for DependencyContainer: {db_exc}") from db_exc

    try:
        signing_context = SigningContext.from_settings(app_settings)
        dependencies = DependencyContainer(
            settings=app_settings,
            http_client=http_client,
            db_session_factory=db_session_factory,
            signing_context=signing_context,
            notifier=PaymentNotifier(),
        )
        logger.info(f"Dependency Container created successfully: {signing_context}")
        return dependencies
    except Exception as container_exc:
        logger.critical(f"Failed to create Dependency Container instance: {container_exc}", exc_info=True)
        await http_client.aclose()
        logger.info("HTTP client closed due to Dependency Container instantiation failure.")
        raise RuntimeError(f"Failed to create Dependency Container instance: {container_exc}") from container_exc
