"""
Pytest configuration and fixtures.
"""
import os

# Settings are cached on first use; configure the environment before importing the package.
os.environ.setdefault("PIX_CLIENT_ID", "client-id-test")
os.environ.setdefault("PIX_CLIENT_SECRET", "client-secret-test")
os.environ.setdefault("PIX_KEY", "donations@example.org")
os.environ.setdefault("PIX_SANDBOX", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Dict
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pix_donations.config import Settings
from pix_donations.core.models import Charge
from pix_donations.core.notifications import NotificationHub
from pix_donations.core.registry import PartnerRegistry
from pix_donations.core.store import DonationStore
from pix_donations.database.connection import create_session_factory, init_db
from pix_donations.database.models import PartnerRecord
from pix_donations.integrations.pix_client import PixClient

REGISTERED_TAX_ID = "12345678901"


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast tests without I/O beyond in-memory doubles")
    config.addinivalue_line("markers", "integration: tests crossing several components")


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        pix_client_id="client-id-test",
        pix_client_secret="client-secret-test",
        pix_key="donations@example.org",
        pix_sandbox=True,
        database_url="sqlite+aiosqlite:///:memory:",
        app_name="pix-donations-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, Any]:
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    factory = create_session_factory(db_engine)
    async with factory() as session:
        async with session.begin():
            session.add(
                PartnerRecord(tax_id=REGISTERED_TAX_ID, name="Jane Doe", registry_ref="CIM-1234")
            )
    return factory


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> DonationStore:
    return DonationStore(session_factory)


@pytest.fixture
def registry(session_factory: async_sessionmaker[AsyncSession]) -> PartnerRegistry:
    return PartnerRegistry(session_factory)


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()


@pytest.fixture
def gateway(test_settings: Settings) -> AsyncMock:
    """Gateway double; tests set return values per operation."""
    mock_gateway = AsyncMock(spec=PixClient)
    mock_gateway.settings = test_settings
    return mock_gateway


@pytest.fixture
def sample_charge() -> Charge:
    return Charge(
        tx_id="abc123",
        loc_id="789",
        qr_code="pix.example.com/qr/v2/cobv/abc",
        copy_paste="00020101021226830014BR.GOV.BCB.PIX2561pix.example.com",
        created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def charge_details(
    tx_id: str = "abc123",
    status: str = "CONCLUIDA",
    amount: str | None = "50.00",
    payer_tax_id: str | None = REGISTERED_TAX_ID,
    payer_name: str | None = "Jane Doe",
) -> Dict[str, Any]:
    """Build a charge record shaped like the gateway's GET /v2/cob response."""
    debtor: Dict[str, Any] = {}
    if payer_tax_id is not None:
        debtor["cpf"] = payer_tax_id
    if payer_name is not None:
        debtor["nome"] = payer_name
    details: Dict[str, Any] = {
        "txid": tx_id,
        "status": status,
        "calendario": {"criacao": "2024-05-01T12:00:00Z", "expiracao": 3600},
        "loc": {"id": 789, "location": "pix.example.com/qr/v2/cobv/abc"},
        "location": "pix.example.com/qr/v2/cobv/abc",
        "pixCopiaECola": "00020101021226830014BR.GOV.BCB.PIX2561pix.example.com",
        "devedor": debtor,
        "chave": "donations@example.org",
    }
    if amount is not None:
        details["valor"] = {"original": amount}
    return details


@pytest.fixture
def make_details() -> Callable[..., Dict[str, Any]]:
    return charge_details


@pytest.fixture
def confirmed_details() -> Dict[str, Any]:
    return charge_details()
