"""
Live payment notifications keyed by transaction id.

Each transaction id has at most one subscriber; a newer subscription for the
same id replaces (and closes) the older one. Delivery is best-effort: a
confirmed donation with nobody listening is dropped, and clients are expected
to reconnect or poll if they miss the push.
"""
import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, Set

import structlog

from pix_donations.core.models import Donation
from pix_donations.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

DONATION_PAID_EVENT = "donationPaid"
CONNECTED_EVENT = "connected"

_CLOSE = object()


@dataclass(eq=False)
class Subscription:
    """One live connection waiting on a transaction."""

    tx_id: str
    queue: "asyncio.Queue[Any]" = field(default_factory=asyncio.Queue)
    delivered: Set[str] = field(default_factory=set)

    def close(self) -> None:
        self.queue.put_nowait(_CLOSE)


class NotificationHub:
    """
    Registry of live subscribers, one per transaction id.

    Constructed once per process and shared by reference. Registry mutations
    and lookups never await, so each is atomic on the event loop.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, Subscription] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    def is_subscribed(self, tx_id: str) -> bool:
        return tx_id in self._subscribers

    def subscribe(self, tx_id: str) -> Subscription:
        """
        Register the connection for ``tx_id``, replacing any earlier one.

        Args:
            tx_id: Transaction id the client waits on

        Returns:
            Subscription: The new active subscription
        """
        subscription = Subscription(tx_id=tx_id)
        previous = self._subscribers.get(tx_id)
        self._subscribers[tx_id] = subscription
        if previous is not None:
            previous.close()
            logger.info("notification_subscriber_replaced", tx_id=tx_id)

        metrics.set_subscribers(len(self._subscribers))
        logger.info("notification_subscriber_added", tx_id=tx_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove ``subscription`` if it is still the active one for its id.

        A replaced subscription leaving late must not evict its successor.

        Returns:
            bool: True if the subscription was removed
        """
        if self._subscribers.get(subscription.tx_id) is not subscription:
            return False
        del self._subscribers[subscription.tx_id]
        metrics.set_subscribers(len(self._subscribers))
        logger.info("notification_subscriber_removed", tx_id=subscription.tx_id)
        return True

    def publish(self, donations: Iterable[Donation]) -> int:
        """
        Push a ``donationPaid`` event for each confirmed donation.

        Every donation is handled on its own; a failure for one does not
        affect delivery of the others.

        Args:
            donations: Confirmed donations

        Returns:
            int: Number of events delivered
        """
        delivered = 0
        for donation in donations:
            try:
                if self._deliver(donation):
                    delivered += 1
            except Exception as e:
                logger.error(
                    "notification_delivery_failed",
                    tx_id=getattr(donation, "tx_id", None),
                    error=str(e),
                )
                metrics.record_notification(False)
        return delivered

    def _deliver(self, donation: Donation) -> bool:
        subscription = self._subscribers.get(donation.tx_id)
        if subscription is None:
            logger.debug("notification_dropped_no_subscriber", tx_id=donation.tx_id)
            metrics.record_notification(False)
            return False

        # one confirmed payment per transaction, so at most one push per txId
        if donation.tx_id in subscription.delivered:
            logger.info("notification_already_delivered", tx_id=donation.tx_id)
            return False

        subscription.queue.put_nowait(
            {
                "event": DONATION_PAID_EVENT,
                "data": json.dumps(donation.to_notification()),
            }
        )
        subscription.delivered.add(donation.tx_id)
        metrics.record_notification(True)
        logger.info("notification_delivered", tx_id=donation.tx_id)
        return True

    async def stream(self, tx_id: str) -> AsyncIterator[Dict[str, str]]:
        """
        Subscribe to ``tx_id`` and yield events until closed.

        The subscription is removed when the consumer stops iterating, which
        happens when the client disconnects.
        """
        subscription = self.subscribe(tx_id)
        try:
            yield {
                "event": CONNECTED_EVENT,
                "data": json.dumps({"txid": tx_id}),
            }
            while True:
                message = await subscription.queue.get()
                if message is _CLOSE:
                    break
                yield message
        finally:
            self.unsubscribe(subscription)
            logger.info("notification_stream_closed", tx_id=tx_id)
