"""Shared test fixtures and configuration."""

import os
import pytest

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("PORTONE_API_SECRET", "test_portone_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from payment_reconciler.config import GatewayConfig
from payment_reconciler.gateway import SimulatorGateway



@pytest.fixture
def gateway_config() -> GatewayConfig:
    """Gateway config with retries but no backoff sleeps."""
    return GatewayConfig(
        api_secret="test_portone_secret",
        max_read_attempts=3,
        retry_backoff_seconds=0,
    )


@pytest.fixture
def simulator() -> SimulatorGateway:
    return SimulatorGateway()


@pytest.fixture
def mock_api_key():
    """API key accepted by the test app."""
    return os.environ["API_KEY"]


@pytest.fixture
def auth_headers(mock_api_key):
    """Return headers with authentication."""
    return {"Authorization": f"Bearer {mock_api_key}"}


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    from payment_reconciler.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    from payment_reconciler.database import get_async_session_factory

    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session
