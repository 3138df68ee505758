"""
Reconciliation of gateway webhook notifications with stored donations.

Every notification is re-derived from two sources: the donation currently
stored for the transaction and the charge details freshly fetched from the
gateway. The webhook body itself is never trusted beyond its ``txid``.
Because the decision is recomputed on every call, duplicated or concurrent
deliveries for the same transaction converge without locking.

Decision table, keyed on (record_exists, record_paid, is_confirmed,
statuses_differ):

    exists  paid   confirmed  differ   action
    no      -      yes        -        MATERIALIZE_PAID
    no      -      no         -        IGNORE_ABSENT
    yes     yes    yes        no       REPLAY_PAID
    yes     no     yes        yes      MARK_PAID
    yes     yes    no         yes      KEEP_TERMINAL
    yes     yes    no         no       KEEP_TERMINAL
    yes     no     no         yes      SYNC_STATUS
    yes     no     no         no       KEEP_UNCHANGED
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional

import httpx
import structlog

from pix_donations.core.charges import TAX_ID_LENGTH, clean_tax_id, parse_amount
from pix_donations.core.models import Donation, DonationStatus
from pix_donations.core.registry import PartnerRegistry
from pix_donations.core.store import DonationStore
from pix_donations.errors import (
    DatabaseError,
    DonationError,
    ExternalError,
    ValidationError,
    passthrough_or_wrap,
)
from pix_donations.integrations.pix_client import ChargeStatus, PixClient
from pix_donations.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ReconciliationAction(str, Enum):
    """What a reconciliation pass does to the stored donation."""

    MATERIALIZE_PAID = "materialize_paid"
    IGNORE_ABSENT = "ignore_absent"
    REPLAY_PAID = "replay_paid"
    MARK_PAID = "mark_paid"
    KEEP_TERMINAL = "keep_terminal"
    SYNC_STATUS = "sync_status"
    KEEP_UNCHANGED = "keep_unchanged"


class DecisionKey(NamedTuple):
    record_exists: bool
    record_paid: bool
    is_confirmed: bool
    statuses_differ: bool


DECISION_TABLE: Dict[DecisionKey, ReconciliationAction] = {
    DecisionKey(False, False, True, True): ReconciliationAction.MATERIALIZE_PAID,
    DecisionKey(False, False, False, True): ReconciliationAction.IGNORE_ABSENT,
    DecisionKey(True, True, True, False): ReconciliationAction.REPLAY_PAID,
    DecisionKey(True, False, True, True): ReconciliationAction.MARK_PAID,
    DecisionKey(True, True, False, True): ReconciliationAction.KEEP_TERMINAL,
    DecisionKey(True, True, False, False): ReconciliationAction.KEEP_TERMINAL,
    DecisionKey(True, False, False, True): ReconciliationAction.SYNC_STATUS,
    DecisionKey(True, False, False, False): ReconciliationAction.KEEP_UNCHANGED,
}

CONFIRMING_ACTIONS = frozenset(
    {ReconciliationAction.MATERIALIZE_PAID, ReconciliationAction.MARK_PAID}
)


def decision_key(existing: Optional[Donation], reported_status: str) -> DecisionKey:
    """
    Build the decision key for a stored donation and a gateway status.

    A confirmed charge targets ``PAID``; any other report targets the
    reported status itself. A missing record always differs.
    """
    is_confirmed = reported_status == ChargeStatus.COMPLETED.value
    target = DonationStatus.PAID.value if is_confirmed else reported_status
    if existing is None:
        return DecisionKey(False, False, is_confirmed, True)
    return DecisionKey(True, existing.is_paid, is_confirmed, existing.status != target)


def decide(existing: Optional[Donation], reported_status: str) -> ReconciliationAction:
    """Look up the action for a stored donation and a gateway status."""
    return DECISION_TABLE[decision_key(existing, reported_status)]


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of reconciling one transaction."""

    tx_id: str
    action: ReconciliationAction
    donation: Optional[Donation]

    @property
    def confirmed(self) -> bool:
        """True when this pass moved the donation to PAID."""
        return self.action in CONFIRMING_ACTIONS


class ReconciliationEngine:
    """
    Applies gateway-reported charge status to the donation store.

    Owns every write to a donation's status.
    """

    def __init__(
        self,
        gateway: PixClient,
        store: DonationStore,
        registry: PartnerRegistry,
    ):
        """
        Initialize reconciliation engine.

        Args:
            gateway: Source of authoritative charge details
            store: Donation store
            registry: Partner registry for best-effort donor references
        """
        self.gateway = gateway
        self.store = store
        self.registry = registry
        self._handlers: Dict[
            ReconciliationAction,
            Callable[[Optional[Donation], Dict[str, Any], str], Awaitable[Optional[Donation]]],
        ] = {
            ReconciliationAction.MATERIALIZE_PAID: self._materialize_paid,
            ReconciliationAction.IGNORE_ABSENT: self._leave_absent,
            ReconciliationAction.REPLAY_PAID: self._leave_as_is,
            ReconciliationAction.MARK_PAID: self._mark_paid,
            ReconciliationAction.KEEP_TERMINAL: self._leave_as_is,
            ReconciliationAction.SYNC_STATUS: self._sync_status,
            ReconciliationAction.KEEP_UNCHANGED: self._leave_as_is,
        }

    async def reconcile(self, payload: Dict[str, Any]) -> ReconciliationResult:
        """
        Reconcile one webhook notification.

        Args:
            payload: Raw notification element (only ``txid`` is used)

        Returns:
            ReconciliationResult: Action applied and resulting donation

        Raises:
            ValidationError: If the payload has no txid, or a new donation
                would be missing payer data
            ExternalError: If the gateway cannot be consulted
            DatabaseError: On persistence failure or any unexpected error
        """
        tx_id = payload.get("txid") if isinstance(payload, dict) else None
        if not tx_id:
            raise ValidationError("Transaction id missing from webhook payload")

        try:
            existing = await self.store.find_by_tx_id(tx_id)
            details = await self.gateway.get_charge_details(tx_id)
            reported_status = details.get("status")
            if not reported_status:
                raise ExternalError(
                    "Gateway charge details carry no status", tx_id=tx_id
                )

            action = decide(existing, reported_status)
            logger.info(
                "reconciliation_decided",
                tx_id=tx_id,
                action=action.value,
                stored_status=existing.status if existing else None,
                reported_status=reported_status,
            )

            donation = await self._handlers[action](existing, details, reported_status)

        except Exception as e:
            error = passthrough_or_wrap(e, lambda err: self._wrap_unexpected(err, tx_id))
            logger.error(
                "reconciliation_failed",
                tx_id=tx_id,
                error=str(error),
                error_type=error.code,
            )
            raise error

        metrics.record_reconciliation(action.value)
        return ReconciliationResult(tx_id=tx_id, action=action, donation=donation)

    @staticmethod
    def _wrap_unexpected(error: BaseException, tx_id: str) -> DonationError:
        if isinstance(error, httpx.HTTPError):
            return ExternalError(
                f"Failed to fetch Pix charge details: {error}", tx_id=tx_id
            )
        return DatabaseError(
            f"Unexpected error while processing transaction {tx_id}", tx_id=tx_id
        )

    async def _leave_absent(
        self, existing: Optional[Donation], details: Dict[str, Any], reported: str
    ) -> Optional[Donation]:
        return None

    async def _leave_as_is(
        self, existing: Optional[Donation], details: Dict[str, Any], reported: str
    ) -> Optional[Donation]:
        return existing

    async def _mark_paid(
        self, existing: Optional[Donation], details: Dict[str, Any], reported: str
    ) -> Optional[Donation]:
        return await self.store.update_status(
            existing.id, DonationStatus.PAID.value  # type: ignore[union-attr,arg-type]
        )

    async def _sync_status(
        self, existing: Optional[Donation], details: Dict[str, Any], reported: str
    ) -> Optional[Donation]:
        # Out-of-order redelivery can move a status backwards here; only PAID is guarded.
        return await self.store.update_status(existing.id, reported)  # type: ignore[union-attr,arg-type]

    async def _materialize_paid(
        self, existing: Optional[Donation], details: Dict[str, Any], reported: str
    ) -> Optional[Donation]:
        """Create the donation from the gateway's own record of the charge."""
        tx_id = details.get("txid")
        debtor = details.get("devedor") if isinstance(details.get("devedor"), dict) else {}
        value = details.get("valor") if isinstance(details.get("valor"), dict) else {}
        payer_tax_id = self._parse_gateway_tax_id(debtor.get("cpf"))
        payer_name = debtor.get("nome")
        amount = self._parse_gateway_amount(value.get("original"))

        if not payer_tax_id or not payer_name or amount is None or not tx_id:
            raise ValidationError(
                "Insufficient gateway data to create donation: "
                f"payer={debtor!r} amount={value.get('original')!r}",
                tx_id=tx_id,
            )

        registry_ref = await self._resolve_registry_ref(payer_tax_id, tx_id)
        loc = details.get("loc") if isinstance(details.get("loc"), dict) else {}
        loc_id = loc.get("id")

        return await self.store.create(
            Donation(
                donor_tax_id=payer_tax_id,
                donor_name=payer_name,
                donor_registry_ref=registry_ref,
                amount=amount,
                tx_id=tx_id,
                loc_id=str(loc_id) if loc_id is not None else None,
                qr_code=details.get("location"),
                copy_paste=details.get("pixCopiaECola"),
                status=DonationStatus.PAID.value,
            )
        )

    @staticmethod
    def _parse_gateway_tax_id(value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        tax_id = clean_tax_id(value)
        return tax_id if len(tax_id) == TAX_ID_LENGTH else None

    @staticmethod
    def _parse_gateway_amount(value: Any) -> Optional[Decimal]:
        if value in (None, ""):
            return None
        try:
            return parse_amount(value)
        except ValidationError:
            return None

    async def _resolve_registry_ref(self, tax_id: str, tx_id: str) -> Optional[str]:
        """Best-effort registry reference; never blocks donation creation."""
        try:
            entry = await self.registry.find_by_exact_tax_id(tax_id)
        except DatabaseError as e:
            logger.warning("registry_lookup_skipped", tx_id=tx_id, error=str(e))
            return None
        return entry.registry_ref if entry else None
