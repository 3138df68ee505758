"""SQLAlchemy database models for the donation pipeline."""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class DonationRecord(Base):
    """
    Donations table.

    A row exists only once a webhook has been observed for its transaction.
    ``tx_id`` is indexed for lookup but deliberately not unique, and
    ``donor_registry_ref`` is a weak link to the partner registry.
    """

    __tablename__ = "donations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    donor_tax_id: Mapped[str] = mapped_column(String(14), nullable=False, index=True)
    donor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    donor_registry_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tx_id: Mapped[str] = mapped_column(String(64), nullable=False)
    loc_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    copy_paste: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        Index("idx_donations_tx_id", "tx_id"),
        Index("idx_donations_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of DonationRecord."""
        return (
            f"<DonationRecord(id={self.id}, tx_id={self.tx_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class PartnerRecord(Base):
    """Registered donors that charges may be created for."""

    __tablename__ = "partners"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tax_id: Mapped[str] = mapped_column(String(11), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    registry_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<PartnerRecord(id={self.id}, name={self.name})>"
