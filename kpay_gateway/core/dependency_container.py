# Dependency Injection Container.

from typing import AsyncContextManager, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from kpay_gateway.core.events import PaymentNotifier
from kpay_gateway.gateway.client import GatewayClient
from kpay_gateway.gateway.signing_context import SigningContext
from kpay_gateway.settings import Settings


class DependencyContainer:
    """Holds shared dependencies for the application.

    Route handlers receive everything they touch from here, so tests can swap
    any of it for a mock.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        db_session_factory: Callable[[], AsyncContextManager[AsyncSession]],
        signing_context: Optional[SigningContext] = None,
        notifier: Optional[PaymentNotifier] = None,
    ) -> None:
        """
        Initializes the container.

        Args:
            settings: Application settings.
            http_client: Shared asynchronous HTTP client used for refund and inquiry calls.
            db_session_factory: A factory function that returns an async context manager
                                yielding an SQLAlchemy AsyncSession.
            signing_context: Gateway credentials and defaults. Built from ``settings`` when omitted.
            notifier: Status-change notifier shared by every request.
        """
        self.settings = settings
        self.http_client = http_client
        self.db_session_factory = db_session_factory
        self.signing_context = signing_context or SigningContext.from_settings(settings)
        self.notifier = notifier or PaymentNotifier()

    def create_gateway_client(self) -> GatewayClient:
        """Creates a refund/inquiry client bound to the shared HTTP client and signing context."""
        return GatewayClient(http_client=self.http_client, context=self.signing_context)
