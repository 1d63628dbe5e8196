"""Apply matched payment events to orders."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from etransfer_reconciler.config import DEFAULT_CONFIDENCE_THRESHOLD
from etransfer_reconciler.models import COMPLETED, PENDING, PaymentStatus
from etransfer_reconciler.tasks import BackgroundTasks

if TYPE_CHECKING:
    from etransfer_reconciler.matcher import OrderMatcher
    from etransfer_reconciler.models import Order, PaymentEvent
    from etransfer_reconciler.notifications import NotificationDispatcher
    from etransfer_reconciler.repository import OrderRepository
    from etransfer_reconciler.storefront import StorefrontClient

logger = logging.getLogger(__name__)


def target_status(status: PaymentStatus) -> str:
    """Order status a payment event should move its order to.

    Only approved/deposited payments complete an order. Cancelled and
    requested events leave it pending; cancellations are never applied
    automatically.
    """
    if status in (PaymentStatus.APPROVED, PaymentStatus.DEPOSITED):
        return COMPLETED
    return PENDING


class ReconciliationEngine:
    """Decide whether a payment event confirms an order, and apply it."""

    def __init__(
        self,
        repository: OrderRepository,
        matcher: OrderMatcher,
        dispatcher: NotificationDispatcher,
        *,
        storefront: StorefrontClient | None = None,
        threshold: int = DEFAULT_CONFIDENCE_THRESHOLD,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        if not 0 <= threshold <= 100:
            msg = f"Confidence threshold must be between 0 and 100, got {threshold}"
            raise ValueError(msg)
        self.repository = repository
        self.matcher = matcher
        self.dispatcher = dispatcher
        self.storefront = storefront
        self.threshold = threshold
        self.tasks = tasks if tasks is not None else BackgroundTasks()

    async def process(self, event: PaymentEvent) -> bool:
        """Reconcile one payment event; return True if an order was updated.

        Returning False is a normal outcome (nothing to match, low
        confidence, already settled). Persistence errors propagate.
        """
        logger.info(
            "Processing payment event status=%s amount_cents=%d reference=%s "
            "sender=%s message=%s threshold=%d",
            event.status,
            event.amount_cents,
            event.order_reference,
            event.sender_email or "(none)",
            event.message_id,
            self.threshold,
        )

        if not event.amount_cents:
            logger.info("No amount detected in message %s, skipping matching", event.message_id)
            return False

        match = await self.matcher.find_match(event)
        if match is None:
            logger.info("No matching order found for amount %d cents", event.amount_cents)
            return False

        order = match.order
        if match.confidence < self.threshold:
            logger.warning(
                "Order %s matched at %d%% (%s), below threshold %d%%; manual review recommended",
                order.id,
                match.confidence,
                match.tier,
                self.threshold,
            )
            return False

        old_status = order.status
        new_status = target_status(event.status)
        if new_status == old_status:
            logger.info("Order %s is already %s, nothing to update", order.id, new_status)
            return False

        updated = await self.repository.update_status(
            order.id, new_status, expected_status=old_status
        )
        if updated is None:
            logger.info("Order %s changed while reconciling, leaving it alone", order.id)
            return False

        logger.info(
            "Order %s updated to %s (was %s), confidence %d%%",
            order.id,
            new_status,
            old_status,
            match.confidence,
        )
        self._after_update(updated, old_status, match.confidence)
        return True

    def _after_update(self, order: Order, old_status: str, confidence: int) -> None:
        if order.merchant_email:
            self.tasks.spawn(
                self.dispatcher.send_order_status_emails(order, old_status, order.merchant_email),
                name=f"notify-order-{order.id}",
            )
        else:
            logger.warning("Order %s has no merchant email, not notifying", order.id)

        if order.external_order_id and self.storefront is not None:
            self.tasks.spawn(
                self.storefront.push_status(order.external_order_id, order.status, confidence),
                name=f"storefront-sync-{order.id}",
            )
