"""Domain objects of the donation pipeline."""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class DonationStatus(str, Enum):
    """Statuses owned by this service; gateway statuses are stored verbatim."""

    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"


@dataclass(frozen=True)
class Donation:
    """A persisted donation, decoded from the store."""

    donor_tax_id: str
    donor_name: str
    amount: Decimal
    tx_id: str
    status: str
    donor_registry_ref: Optional[str] = None
    loc_id: Optional[str] = None
    qr_code: Optional[str] = None
    copy_paste: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.status == DonationStatus.PAID.value

    def to_notification(self) -> Dict[str, Any]:
        """Payload pushed to the client waiting on this transaction."""
        return {
            "txid": self.tx_id,
            "valor": float(self.amount),
            "pagador": self.donor_name or "Unknown",
            "horario": self.created_at.isoformat() if self.created_at else None,
            "status": self.status,
        }


@dataclass(frozen=True)
class Charge:
    """A pending payment request as reported by the gateway. Never persisted."""

    tx_id: str
    loc_id: str
    qr_code: str
    copy_paste: str
    created_at: datetime


@dataclass(frozen=True)
class ChargePresentation:
    """What the donor needs to pay a freshly created charge."""

    donor_tax_id: str
    donor_name: str
    donor_registry_ref: Optional[str]
    amount: Decimal
    tx_id: str
    loc_id: str
    qr_code: str
    copy_paste: str
    created_at: datetime
    status: str = DonationStatus.AWAITING_PAYMENT.value


@dataclass(frozen=True)
class RegistryEntry:
    """Display name and reference of a registered donor."""

    name: str
    registry_ref: Optional[str] = None


@dataclass(frozen=True)
class DonationPage:
    """One page of a store scan."""

    items: List[Donation] = field(default_factory=list)
    current_page: int = 1
    total_pages: int = 0
    total_results: int = 0
    limit: int = 15
