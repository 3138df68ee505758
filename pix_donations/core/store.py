"""
Donation store over the ``donations`` table.

Rows are decoded into ``Donation`` objects here and nowhere else, so the
rest of the pipeline never sees ORM instances or driver-specific
timestamp types.
"""
import math
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pix_donations.core.models import Donation, DonationPage
from pix_donations.database.models import DonationRecord
from pix_donations.errors import DatabaseError, NotFoundError

logger = structlog.get_logger(__name__)


def decode_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored timestamp to an aware UTC datetime."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def decode_record(record: DonationRecord) -> Donation:
    """Convert a ``donations`` row into a domain ``Donation``."""
    return Donation(
        id=record.id,
        donor_tax_id=record.donor_tax_id,
        donor_name=record.donor_name,
        donor_registry_ref=record.donor_registry_ref,
        amount=record.amount,
        tx_id=record.tx_id,
        loc_id=record.loc_id,
        qr_code=record.qr_code,
        copy_paste=record.copy_paste,
        status=record.status,
        created_at=decode_timestamp(record.created_at),
    )


class DonationStore:
    """CRUD over the donations collection, keyed by id and looked up by tx_id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_tx_id(self, tx_id: str) -> Optional[Donation]:
        """
        Find the donation recorded for a transaction.

        Args:
            tx_id: Gateway transaction id

        Returns:
            Optional[Donation]: Oldest matching donation, or None

        Raises:
            DatabaseError: If the lookup fails
        """
        stmt = (
            select(DonationRecord)
            .where(DonationRecord.tx_id == tx_id)
            .order_by(DonationRecord.created_at)
            .limit(1)
        )
        try:
            async with self.session_factory() as session:
                record = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("donation_lookup_failed", tx_id=tx_id, error=str(e))
            raise DatabaseError(
                f"Failed to look up donation by txId: {e}", tx_id=tx_id, original_error=e
            )
        return decode_record(record) if record is not None else None

    async def get(self, donation_id: str) -> Optional[Donation]:
        """Fetch a donation by its store id."""
        try:
            async with self.session_factory() as session:
                record = await session.get(DonationRecord, donation_id)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to load donation {donation_id}: {e}", original_error=e)
        return decode_record(record) if record is not None else None

    async def create(self, donation: Donation) -> Donation:
        """
        Persist a new donation.

        The store assigns ``id`` and ``created_at``; any values carried by
        ``donation`` for those fields are ignored.

        Raises:
            DatabaseError: If the insert fails
        """
        record = DonationRecord(
            donor_tax_id=donation.donor_tax_id,
            donor_name=donation.donor_name,
            donor_registry_ref=donation.donor_registry_ref,
            amount=donation.amount,
            tx_id=donation.tx_id,
            loc_id=donation.loc_id,
            qr_code=donation.qr_code,
            copy_paste=donation.copy_paste,
            status=donation.status,
            created_at=datetime.now(timezone.utc),
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(record)
                created = decode_record(record)
        except SQLAlchemyError as e:
            logger.error("donation_create_failed", tx_id=donation.tx_id, error=str(e))
            raise DatabaseError(
                f"Failed to save donation: {e}", tx_id=donation.tx_id, original_error=e
            )

        logger.info(
            "donation_created",
            donation_id=created.id,
            tx_id=created.tx_id,
            status=created.status,
        )
        return created

    async def update_status(self, donation_id: str, status: str) -> Donation:
        """
        Overwrite the status of a stored donation. No other column changes.

        Raises:
            NotFoundError: If no donation has this id
            DatabaseError: If the update fails
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    record = await session.get(DonationRecord, donation_id)
                    if record is None:
                        raise NotFoundError(f"Donation {donation_id} not found")
                    record.status = status
                updated = decode_record(record)
        except SQLAlchemyError as e:
            logger.error("donation_update_failed", donation_id=donation_id, error=str(e))
            raise DatabaseError(
                f"Failed to update donation {donation_id}: {e}", original_error=e
            )

        logger.info(
            "donation_status_updated",
            donation_id=donation_id,
            tx_id=updated.tx_id,
            status=status,
        )
        return updated

    async def scan(self, page: int = 1, limit: int = 15) -> DonationPage:
        """
        Page through donations, newest first.

        Args:
            page: 1-based page number
            limit: Page size

        Returns:
            DonationPage: Requested page with totals
        """
        page = max(1, page)
        limit = max(1, limit)
        try:
            async with self.session_factory() as session:
                total = (
                    await session.execute(select(func.count(DonationRecord.id)))
                ).scalar_one()
                if total == 0:
                    return DonationPage(current_page=page, limit=limit)

                stmt = (
                    select(DonationRecord)
                    .order_by(DonationRecord.created_at.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
                records = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to list donations: {e}", original_error=e)

        return DonationPage(
            items=[decode_record(r) for r in records],
            current_page=page,
            total_pages=math.ceil(total / limit),
            total_results=total,
            limit=limit,
        )
