"""
Charge creation for registered donors.

Nothing is written to the donation store here: the donation row is only
materialized once the gateway confirms payment through a webhook.
"""
import re
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from pix_donations.core.models import ChargePresentation
from pix_donations.core.registry import PartnerRegistry
from pix_donations.errors import (
    DatabaseError,
    ExternalError,
    NotFoundError,
    ValidationError,
)
from pix_donations.integrations.pix_client import PixClient
from pix_donations.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

TAX_ID_LENGTH = 11
CENTS = Decimal("0.01")
# Numeric(12, 2) on donations.amount
MAX_AMOUNT = Decimal("9999999999.99")
_NON_DIGITS = re.compile(r"\D")


def clean_tax_id(value: str) -> str:
    """Strip punctuation from a tax id, keeping digits only."""
    return _NON_DIGITS.sub("", value)


def parse_amount(value: Any) -> Decimal:
    """
    Parse a donation amount to a two-decimal ``Decimal``.

    Raises:
        ValidationError: If the amount is not a number, is not positive once
            rounded to cents, or does not fit the donation amount column
    """
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
        if not amount.is_finite():
            raise ValidationError("Donation amount must be greater than 0.")
        amount = amount.quantize(CENTS)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid donation amount: {value!r}")
    if amount <= 0:
        raise ValidationError("Donation amount must be greater than 0.")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"Donation amount must not exceed {MAX_AMOUNT}.")
    return amount


def new_tx_id() -> str:
    """Generate a gateway-compatible transaction id (32 alphanumerics)."""
    return uuid.uuid4().hex


class ChargeCreationFlow:
    """Validates donor input, resolves the donor and requests a charge."""

    def __init__(self, registry: PartnerRegistry, gateway: PixClient):
        self.registry = registry
        self.gateway = gateway

    async def create_charge(
        self, donor_tax_id: Optional[str], amount: Any
    ) -> ChargePresentation:
        """
        Create a Pix charge for a registered donor.

        Args:
            donor_tax_id: Donor tax id, punctuation allowed
            amount: Donation amount

        Returns:
            ChargePresentation: Charge data to show the donor

        Raises:
            ValidationError: If input is missing or malformed
            NotFoundError: If the tax id is not registered
            ExternalError: If the gateway fails
        """
        if not donor_tax_id or amount in (None, ""):
            metrics.record_charge("rejected")
            raise ValidationError("Donor tax id and amount are required.")

        try:
            parsed_amount = parse_amount(amount)
            cleaned_tax_id = clean_tax_id(donor_tax_id)
            if len(cleaned_tax_id) != TAX_ID_LENGTH:
                raise ValidationError("Invalid donor tax id.")

            partner = await self.registry.find_by_exact_tax_id(cleaned_tax_id)
            if partner is None:
                raise NotFoundError("Donor tax id is not registered.")
        except (ValidationError, NotFoundError):
            metrics.record_charge("rejected")
            raise

        tx_id = new_tx_id()
        try:
            charge = await self.gateway.create_charge(
                tx_id=tx_id,
                amount=parsed_amount,
                payer_tax_id=cleaned_tax_id,
                payer_name=partner.name,
            )
        except (ValidationError, DatabaseError, ExternalError) as e:
            metrics.record_charge("failed")
            logger.error("charge_creation_failed", tx_id=tx_id, error=str(e))
            raise
        except Exception as e:
            metrics.record_charge("failed")
            logger.error("charge_creation_failed", tx_id=tx_id, error=str(e))
            raise ExternalError(
                f"Failed to create Pix charge: {e}", tx_id=tx_id, original_error=e
            ) from e

        metrics.record_charge("created")
        logger.info(
            "charge_created",
            tx_id=charge.tx_id,
            amount=str(parsed_amount),
            donor_registry_ref=partner.registry_ref,
        )

        return ChargePresentation(
            donor_tax_id=cleaned_tax_id,
            donor_name=partner.name,
            donor_registry_ref=partner.registry_ref,
            amount=parsed_amount,
            tx_id=charge.tx_id,
            loc_id=charge.loc_id,
            qr_code=charge.qr_code,
            copy_paste=charge.copy_paste,
            created_at=charge.created_at,
        )
