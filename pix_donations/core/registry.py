"""Partner registry lookups used to resolve donor identity."""
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pix_donations.core.models import RegistryEntry
from pix_donations.database.models import PartnerRecord
from pix_donations.errors import DatabaseError

logger = structlog.get_logger(__name__)


class PartnerRegistry:
    """Read-only view of the partner registry."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_exact_tax_id(self, tax_id: str) -> Optional[RegistryEntry]:
        """
        Resolve a donor by exact tax id.

        Args:
            tax_id: Digits-only tax id

        Returns:
            Optional[RegistryEntry]: Display name and registry reference, or None

        Raises:
            DatabaseError: If the registry cannot be queried
        """
        stmt = select(PartnerRecord).where(PartnerRecord.tax_id == tax_id).limit(1)
        try:
            async with self.session_factory() as session:
                partner = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("partner_lookup_failed", error=str(e))
            raise DatabaseError(f"Failed to query partner registry: {e}", original_error=e)

        if partner is None:
            return None
        return RegistryEntry(name=partner.name, registry_ref=partner.registry_ref)
