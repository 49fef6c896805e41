import os
from typing import Callable, Dict
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from kpay_gateway.core.dependency_container import DependencyContainer
from kpay_gateway.core.events import PaymentNotifier
from kpay_gateway.db import sqlmodel_models  # noqa: F401
from kpay_gateway.gateway import crypto
from kpay_gateway.gateway.params import HASH_FIELD, build_signing_string
from kpay_gateway.gateway.signing_context import SigningContext
from kpay_gateway.settings import Settings

TEST_KEY = "TEST_KEY_16_BYTE"
CALLBACK_URL = "https://merchant.example.com/kpay/response"

_ENV_PREFIXES = ("KPAY_", "APP_URL", "DATABASE_URL", "DB_", "LOG_LEVEL", "MAIN_DB_POOL_")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """AUTOUSE: Removes gateway, database and logging variables so every test starts from defaults."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    yield


# --- Database fixtures ---


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """In-memory SQLite async engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def async_session(async_engine):
    """In-memory SQLite async session for testing."""
    async_session_factory = async_sessionmaker(async_engine, expire_on_commit=False)

    async with async_session_factory() as session:
        yield session


# --- Gateway fixtures ---


@pytest.fixture
def signing_context() -> SigningContext:
    """A test-mode context with full credentials and public callback URLs."""
    return SigningContext(
        tranportal_id="TP100",
        tranportal_password="secret-pass",
        resource_key=TEST_KEY,
        response_url=CALLBACK_URL,
        error_url=CALLBACK_URL,
    )


@pytest.fixture
def sign_fields() -> Callable[[Dict[str, str]], Dict[str, str]]:
    """Returns a helper that adds a valid ``hash`` to a gateway field dict."""

    def _sign(fields: Dict[str, str], key: str = TEST_KEY) -> Dict[str, str]:
        signed = dict(fields)
        signed[HASH_FIELD] = crypto.sign(build_signing_string(signed, key))
        return signed

    return _sign


# --- Mock fixtures ---


@pytest.fixture
def mock_settings() -> MagicMock:
    """Provides a mock Settings instance."""
    return MagicMock(spec=Settings)


@pytest.fixture
def mock_http_client() -> AsyncMock:
    """Provides a mock httpx.AsyncClient instance."""
    return AsyncMock(spec=httpx.AsyncClient)


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Provides a mock SQLAlchemy AsyncSession instance."""
    return AsyncMock(spec=AsyncSession)


@pytest.fixture
def mock_db_session_factory(mock_db_session: AsyncMock) -> MagicMock:
    """Provides a mock database session factory context manager."""
    mock_factory = MagicMock()
    mock_async_context_manager = AsyncMock()
    mock_async_context_manager.__aenter__.return_value = mock_db_session
    mock_async_context_manager.__aexit__.return_value = None
    mock_factory.return_value = mock_async_context_manager
    return mock_factory


@pytest.fixture
def mock_container(
    mock_settings: MagicMock,
    mock_http_client: AsyncMock,
    mock_db_session_factory: MagicMock,
    signing_context: SigningContext,
) -> DependencyContainer:
    """Provides a DependencyContainer wired with mocks and the test signing context."""
    return DependencyContainer(
        settings=mock_settings,
        http_client=mock_http_client,
        db_session_factory=mock_db_session_factory,
        signing_context=signing_context,
        notifier=PaymentNotifier(),
    )
