"""Periodic detection of order status changes made outside the engine."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from etransfer_reconciler.config import (
    POLL_INITIAL_DELAY_SECONDS,
    POLL_INTERVAL_SECONDS,
    POLL_WINDOW_SIZE,
)
from etransfer_reconciler.models import COMPLETED, TERMINAL_STATUSES, normalize_status

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from etransfer_reconciler.models import Order
    from etransfer_reconciler.notifications import NotificationDispatcher
    from etransfer_reconciler.repository import OrderRepository

logger = logging.getLogger(__name__)


class StatusCache:
    """Last observed normalized status per order id."""

    def __init__(self) -> None:
        self._statuses: dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._statuses)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._statuses

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._statuses))

    def get(self, order_id: int) -> str | None:
        return self._statuses.get(order_id)

    def set(self, order_id: int, status: str) -> None:
        self._statuses[order_id] = normalize_status(status)

    def evict(self, order_id: int) -> None:
        self._statuses.pop(order_id, None)


class StatusDriftPoller:
    """Watch the newest non-terminal orders and notify on status changes.

    Orders are only ever compared against a status seen on an earlier
    tick, so nothing fires the first time an order is observed. Orders
    that leave the window are checked once more, then forgotten.
    """

    def __init__(
        self,
        repository: OrderRepository,
        dispatcher: NotificationDispatcher,
        *,
        cache: StatusCache | None = None,
        window_size: int = POLL_WINDOW_SIZE,
        interval: float = POLL_INTERVAL_SECONDS,
        initial_delay: float = POLL_INITIAL_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.repository = repository
        self.dispatcher = dispatcher
        self.cache = cache if cache is not None else StatusCache()
        self.window_size = window_size
        self.interval = interval
        self.initial_delay = initial_delay
        self._sleep = sleep
        self._tick_lock = asyncio.Lock()
        self._stopped = False

    async def run(self) -> None:
        """Tick every interval until stopped; overlapping ticks are skipped."""
        logger.info(
            "Order monitoring started: newest %d non-terminal orders every %.0fs",
            self.window_size,
            self.interval,
        )
        await self._sleep(self.initial_delay)
        pending: set[asyncio.Task[bool]] = set()
        while not self._stopped:
            task = asyncio.create_task(self.tick_if_idle(), name="status-drift-tick")
            pending.add(task)
            task.add_done_callback(pending.discard)
            await self._sleep(self.interval)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def stop(self) -> None:
        self._stopped = True

    async def tick_if_idle(self) -> bool:
        """Run a tick unless one is already running. Return whether it ran."""
        if self._tick_lock.locked():
            logger.info("Previous monitoring tick still running, skipping")
            return False
        async with self._tick_lock:
            try:
                await self.tick()
            except Exception:
                logger.exception("Error in order monitoring tick")
        return True

    async def tick(self) -> None:
        """Compare the current window against the cache once."""
        orders = await self.repository.find_orders(
            exclude_statuses=TERMINAL_STATUSES,
            order_by="id",
            limit=self.window_size,
        )
        logger.debug(
            "Monitoring %d orders, cache holds %s", len(orders), list(self.cache)
        )

        for order in orders:
            try:
                await self._check_windowed(order)
            except Exception:
                logger.exception("Error checking order %s", order.id)

        window_ids = {order.id for order in orders}
        for order_id in self.cache:
            if order_id in window_ids:
                continue
            try:
                await self._check_departed(order_id)
            except Exception:
                logger.exception("Error checking departed order %s", order_id)
                self.cache.evict(order_id)

    async def _check_windowed(self, order: Order) -> None:
        current = order.normalized_status
        previous = self.cache.get(order.id)

        if previous is None:
            logger.debug("First sight of order %s, caching %s", order.id, current)
        elif previous != current:
            logger.info("Order %s status changed: %s -> %s", order.id, previous, current)
            await self._notify(order, previous)

        self.cache.set(order.id, current)

    async def _check_departed(self, order_id: int) -> None:
        previous = self.cache.get(order_id)
        order = await self.repository.get(order_id)
        if order is None:
            logger.info("Order %s no longer exists, evicting", order_id)
            self.cache.evict(order_id)
            return

        current = order.normalized_status
        if previous is not None and previous not in TERMINAL_STATUSES and current == COMPLETED:
            logger.info("Order %s completed: %s -> %s", order_id, previous, current)
            await self._notify(order, previous)
        else:
            logger.debug(
                "Order %s left the window as %s (cached %s), no notification",
                order_id,
                current,
                previous,
            )

        self.cache.evict(order_id)

    async def _notify(self, order: Order, previous: str) -> None:
        if not order.merchant_email:
            logger.warning("Order %s has no merchant email, not notifying", order.id)
            return
        try:
            await self.dispatcher.send_order_status_emails(order, previous, order.merchant_email)
        except Exception:
            logger.exception("Error sending notifications for order %s", order.id)
