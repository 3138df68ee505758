"""
Tests for charge creation.
"""
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest

from pix_donations.core.charges import (
    ChargeCreationFlow,
    clean_tax_id,
    new_tx_id,
    parse_amount,
)
from pix_donations.core.models import Charge, DonationStatus
from pix_donations.errors import DatabaseError, ExternalError, NotFoundError, ValidationError


class TestInputParsing:
    """Amount and tax id normalization."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value,expected",
        [("50.00", "50.00"), ("50", "50.00"), (12.5, "12.50"), ("7,25", "7.25"), (" 1.999 ", "2.00")],
    )
    def test_parse_amount(self, value: Any, expected: str) -> None:
        assert parse_amount(value) == Decimal(expected)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value", ["0", "-5.00", "abc", "NaN", "Infinity", "0.004", "1e30", "10000000000.00"]
    )
    def test_parse_amount_rejects(self, value: str) -> None:
        with pytest.raises(ValidationError):
            parse_amount(value)

    @pytest.mark.unit
    def test_clean_tax_id(self) -> None:
        assert clean_tax_id("123.456.789-01") == "12345678901"

    @pytest.mark.unit
    def test_new_tx_id_is_gateway_compatible(self) -> None:
        tx_id = new_tx_id()
        assert len(tx_id) == 32
        assert tx_id.isalnum()
        assert tx_id != new_tx_id()


class TestChargeCreationFlow:
    """Test suite for ChargeCreationFlow."""

    @pytest.fixture
    def flow(self, registry: Any, gateway: AsyncMock) -> ChargeCreationFlow:
        return ChargeCreationFlow(registry=registry, gateway=gateway)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_charge_success(
        self, flow: ChargeCreationFlow, gateway: AsyncMock, store: Any, sample_charge: Charge
    ) -> None:
        gateway.create_charge.return_value = sample_charge

        charge = await flow.create_charge("123.456.789-01", "50.00")

        assert charge.tx_id == "abc123"
        assert charge.donor_name == "Jane Doe"
        assert charge.donor_registry_ref == "CIM-1234"
        assert charge.amount == Decimal("50.00")
        assert charge.status == DonationStatus.AWAITING_PAYMENT.value
        assert charge.created_at == sample_charge.created_at

        kwargs = gateway.create_charge.call_args.kwargs
        assert kwargs["payer_tax_id"] == "12345678901"
        assert kwargs["payer_name"] == "Jane Doe"
        assert kwargs["amount"] == Decimal("50.00")
        assert len(kwargs["tx_id"]) == 32

        # Nothing is persisted before the gateway confirms payment
        assert (await store.scan()).total_results == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "tax_id,amount",
        [(None, "50.00"), ("12345678901", None), ("", "50.00"), ("12345678901", "")],
    )
    async def test_missing_input(
        self, flow: ChargeCreationFlow, gateway: AsyncMock, tax_id: Any, amount: Any
    ) -> None:
        with pytest.raises(ValidationError, match="required"):
            await flow.create_charge(tax_id, amount)
        gateway.create_charge.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-10", "0.004"])
    async def test_non_positive_amount(self, flow: ChargeCreationFlow, amount: str) -> None:
        with pytest.raises(ValidationError, match="greater than 0"):
            await flow.create_charge("12345678901", amount)

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["1e30", "10000000000.00"])
    async def test_oversized_amount(
        self, flow: ChargeCreationFlow, gateway: AsyncMock, amount: str
    ) -> None:
        with pytest.raises(ValidationError):
            await flow.create_charge("12345678901", amount)
        gateway.create_charge.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("tax_id",["1234567890", "123456789012", "abc"])
    async def test_malformed_tax_id(self, flow: ChargeCreationFlow, tax_id: str) -> None:
        with pytest.raises(ValidationError, match="Invalid donor tax id"):
            await flow.create_charge(tax_id, "50.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unregistered_donor(self, flow: ChargeCreationFlow, gateway: AsyncMock) -> None:
        with pytest.raises(NotFoundError, match="not registered"):
            await flow.create_charge("99999999999", "50.00")
        gateway.create_charge.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gateway_error_passes_through(
        self, flow: ChargeCreationFlow, gateway: AsyncMock
    ) -> None:
        error = ExternalError("Gateway error on 'create_charge'")
        gateway.create_charge.side_effect = error

        with pytest.raises(ExternalError) as exc_info:
            await flow.create_charge("12345678901", "50.00")

        assert exc_info.value is error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_database_error_passes_through(
        self, flow: ChargeCreationFlow, gateway: AsyncMock
    ) -> None:
        gateway.create_charge.side_effect = DatabaseError("db down")

        with pytest.raises(DatabaseError):
            await flow.create_charge("12345678901", "50.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unexpected_gateway_failure_is_wrapped(
        self, flow: ChargeCreationFlow, gateway: AsyncMock
    ) -> None:
        gateway.create_charge.side_effect = RuntimeError("socket closed")

        with pytest.raises(ExternalError, match="Failed to create Pix charge") as exc_info:
            await flow.create_charge("12345678901", "50.00")

        assert isinstance(exc_info.value.original_error, RuntimeError)
        assert exc_info.value.tx_id is not None
