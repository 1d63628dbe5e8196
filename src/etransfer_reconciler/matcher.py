"""Match payment events to pending orders with a confidence score.

Tiers are tried strongest signal first and the first hit wins:

==============  ==========  ===========================================
Tier            Confidence  Rule
==============  ==========  ===========================================
exact           100         reference and amount both match
amount_sender   90          amount matches, sender is the customer
amount          70          amount matches (most recent order)
fuzzy           50-100      weighted closeness over recent orders
==============  ==========  ===========================================

Only pending orders are ever candidates. Amounts are compared in
dollars against the stored decimal total.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from etransfer_reconciler.config import FUZZY_CANDIDATE_LIMIT
from etransfer_reconciler.models import PENDING, MatchResult, MatchTier

if TYPE_CHECKING:
    from etransfer_reconciler.models import Order, PaymentEvent
    from etransfer_reconciler.repository import OrderRepository

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 100
AMOUNT_SENDER_CONFIDENCE = 90
AMOUNT_ONLY_CONFIDENCE = 70
FUZZY_MIN_SCORE = 50


class OrderMatcher:
    """Find the pending order a payment event most likely pays for."""

    def __init__(
        self,
        repository: OrderRepository,
        *,
        fuzzy_candidate_limit: int = FUZZY_CANDIDATE_LIMIT,
    ) -> None:
        self.repository = repository
        self.fuzzy_candidate_limit = fuzzy_candidate_limit

    async def find_match(self, event: PaymentEvent) -> MatchResult | None:
        """Return the best candidate order for event, or None."""
        amount = event.amount_dollars

        if event.order_reference:
            orders = await self.repository.find_orders(
                status=PENDING,
                total=amount,
                external_order_id=event.order_reference,
                limit=1,
            )
            if orders:
                logger.info(
                    "Exact match (reference+amount): order %s -> %d%%",
                    orders[0].id,
                    EXACT_CONFIDENCE,
                )
                return MatchResult(orders[0], EXACT_CONFIDENCE, MatchTier.EXACT)

        if event.sender_email:
            orders = await self.repository.find_orders(
                status=PENDING,
                total=amount,
                customer_email=event.sender_email.strip(),
                limit=1,
            )
            if orders:
                logger.info(
                    "Amount+sender match: order %s -> %d%%",
                    orders[0].id,
                    AMOUNT_SENDER_CONFIDENCE,
                )
                return MatchResult(
                    orders[0], AMOUNT_SENDER_CONFIDENCE, MatchTier.AMOUNT_SENDER
                )

        orders = await self.repository.find_orders(status=PENDING, total=amount, limit=1)
        if orders:
            logger.info(
                "Amount-only match: order %s -> %d%%",
                orders[0].id,
                AMOUNT_ONLY_CONFIDENCE,
            )
            return MatchResult(orders[0], AMOUNT_ONLY_CONFIDENCE, MatchTier.AMOUNT)

        return await self._fuzzy_match(event)

    async def _fuzzy_match(self, event: PaymentEvent) -> MatchResult | None:
        candidates = await self.repository.find_orders(
            status=PENDING, limit=self.fuzzy_candidate_limit
        )

        best: Order | None = None
        best_score = 0
        for order in candidates:
            score = fuzzy_score(event, order)
            # Strict comparison: on a tie the earlier (more recent) order stays.
            if score > best_score and score >= FUZZY_MIN_SCORE:
                best = order
                best_score = score

        if best is None:
            return None
        logger.info("Fuzzy match: order %s -> %d%%", best.id, best_score)
        return MatchResult(best, best_score, MatchTier.FUZZY)


def fuzzy_score(event: PaymentEvent, order: Order) -> int:
    """Score amount closeness (up to 70) plus reference closeness (up to 30)."""
    score = 0

    diff = abs(order.total_cents - event.amount_cents)
    if diff == 0:
        score += 70
    elif diff <= 1:
        score += 50
    elif diff <= 5:
        score += 30

    if event.order_reference and order.external_order_id:
        reference = str(order.external_order_id)
        if event.order_reference == reference:
            score += 30
        elif event.order_reference in reference:
            score += 20

    return score
