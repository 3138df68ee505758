"""FastAPI dependency providers wiring the pipeline components."""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pix_donations.core.charges import ChargeCreationFlow
from pix_donations.core.notifications import NotificationHub
from pix_donations.core.reconciliation import ReconciliationEngine
from pix_donations.core.registry import PartnerRegistry
from pix_donations.core.store import DonationStore
from pix_donations.database.connection import get_session_factory
from pix_donations.integrations.pix_client import PixClient
from pix_donations.integrations.webhook_handler import WebhookHandler
from pix_donations.monitoring.health import HealthCheck


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


def get_notification_hub(request: Request) -> NotificationHub:
    return request.app.state.notification_hub


def get_pix_client(request: Request) -> PixClient:
    return request.app.state.pix_client


def get_donation_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> DonationStore:
    return DonationStore(session_factory)


def get_partner_registry(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> PartnerRegistry:
    return PartnerRegistry(session_factory)


def get_charge_flow(
    registry: PartnerRegistry = Depends(get_partner_registry),
    gateway: PixClient = Depends(get_pix_client),
) -> ChargeCreationFlow:
    return ChargeCreationFlow(registry=registry, gateway=gateway)


def get_reconciliation_engine(
    gateway: PixClient = Depends(get_pix_client),
    store: DonationStore = Depends(get_donation_store),
    registry: PartnerRegistry = Depends(get_partner_registry),
) -> ReconciliationEngine:
    return ReconciliationEngine(gateway=gateway, store=store, registry=registry)


def get_webhook_handler(
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    hub: NotificationHub = Depends(get_notification_hub),
) -> WebhookHandler:
    return WebhookHandler(engine=engine, hub=hub)


def get_health_check(
    gateway: PixClient = Depends(get_pix_client),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> HealthCheck:
    return HealthCheck(gateway=gateway, session_factory=session_factory)
