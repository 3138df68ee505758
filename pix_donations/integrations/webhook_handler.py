"""
Inbound Pix webhook batch handler.

Implements:
- Independent reconciliation of every element of the ``pix`` array
- Skipping of malformed elements without failing the batch
- One notification batch for the donations confirmed by this delivery
- A human-readable summary used as the (always 200) response body
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List

import structlog

from pix_donations.core.models import Donation
from pix_donations.core.notifications import NotificationHub
from pix_donations.core.reconciliation import ReconciliationEngine, ReconciliationResult
from pix_donations.errors import DatabaseError, Outcome, passthrough_or_wrap
from pix_donations.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class WebhookSummary:
    """Per-delivery processing summary."""

    processed: int = 0
    skipped: int = 0
    notified: int = 0
    failed_tx_ids: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        failed = len(self.failed_tx_ids)
        if self.processed > 0 and failed == 0:
            return "Pix notifications received and processed successfully."
        if self.processed > 0:
            return (
                f"Pix notifications received. {self.processed} processed successfully. "
                f"Failed on {failed} transactions: [{', '.join(self.failed_tx_ids)}]."
            )
        return "No valid Pix notification was processed, or all of them failed."


class WebhookHandler:
    """
    Handles gateway payment notifications.

    Reconciliation errors never escape: each element is reduced to an
    Outcome so a permanently malformed element cannot make the gateway
    redeliver the whole batch forever.
    """

    def __init__(self, engine: ReconciliationEngine, hub: NotificationHub):
        """
        Initialize webhook handler.

        Args:
            engine: Reconciliation engine applying each notification
            hub: Notification hub receiving confirmed donations
        """
        self.engine = engine
        self.hub = hub

    async def _reconcile(self, element: Dict[str, Any]) -> Outcome[ReconciliationResult]:
        tx_id = element.get("txid")
        try:
            return Outcome.success(await self.engine.reconcile(element))
        except Exception as e:
            error = passthrough_or_wrap(
                e,
                lambda err: DatabaseError(
                    f"Unexpected error while processing transaction {tx_id}", tx_id=tx_id
                ),
            )
            logger.error(
                "webhook_item_failed",
                tx_id=tx_id,
                error=str(error),
                error_type=error.code,
            )
            return Outcome.failure(error)

    async def handle(self, payload: Any) -> WebhookSummary:
        """
        Process one webhook delivery.

        Args:
            payload: Decoded request body, ``{"pix": [...]}``

        Returns:
            WebhookSummary: Counts and response message
        """
        summary = WebhookSummary()
        elements = payload.get("pix") if isinstance(payload, dict) else None

        if not isinstance(elements, list) or not elements:
            logger.warning("webhook_without_pix_notifications")
            return summary

        confirmed: List[Donation] = []

        for element in elements:
            if not isinstance(element, dict) or not element.get("txid"):
                logger.warning("webhook_item_skipped_without_txid", item=element)
                summary.skipped += 1
                metrics.record_webhook_item("skipped")
                continue

            outcome = await self._reconcile(element)
            if not outcome.ok:
                summary.failed_tx_ids.append(str(element["txid"]))
                metrics.record_webhook_item("failed")
                continue

            summary.processed += 1
            metrics.record_webhook_item("succeeded")
            result = outcome.unwrap()
            if result is not None and result.confirmed and result.donation is not None:
                confirmed.append(result.donation)

        if confirmed:
            summary.notified = self.hub.publish(confirmed)

        logger.info(
            "webhook_processed",
            processed=summary.processed,
            skipped=summary.skipped,
            failed=len(summary.failed_tx_ids),
            notified=summary.notified,
        )
        return summary
