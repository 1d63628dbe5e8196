"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Collection
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import pytest

from etransfer_reconciler.config import ImapConfig
from etransfer_reconciler.models import Order, Recipient

if TYPE_CHECKING:
    from collections.abc import Callable

BASE_DATE = datetime(2025, 6, 15, 10, 30, 0, tzinfo=UTC)


class InMemoryOrderRepository:
    """OrderRepository test double holding orders in a dict."""

    def __init__(self, orders: Collection[Order] = ()) -> None:
        self.orders: dict[int, Order] = {order.id: order for order in orders}
        self.find_calls: list[dict[str, Any]] = []
        self.status_updates: list[tuple[int, str]] = []

    def add(self, order: Order) -> Order:
        self.orders[order.id] = order
        return order

    async def get(self, order_id: int) -> Order | None:
        order = self.orders.get(order_id)
        return order.model_copy() if order else None

    async def find_orders(
        self,
        *,
        status: str | None = None,
        exclude_statuses: Collection[str] = (),
        total: Decimal | None = None,
        external_order_id: str | None = None,
        customer_email: str | None = None,
        order_by: str = "date",
        limit: int | None = None,
    ) -> list[Order]:
        self.find_calls.append(
            {
                "status": status,
                "total": total,
                "external_order_id": external_order_id,
                "customer_email": customer_email,
                "limit": limit,
            }
        )
        results = []
        for order in self.orders.values():
            if status is not None and order.status != status:
                continue
            if order.status in exclude_statuses:
                continue
            if total is not None and order.total != total:
                continue
            if external_order_id is not None and order.external_order_id != external_order_id:
                continue
            if (
                customer_email is not None
                and order.customer_email.strip().lower() != customer_email.strip().lower()
            ):
                continue
            results.append(order)

        results.sort(key=lambda o: o.date if order_by == "date" else o.id, reverse=True)
        if limit is not None:
            results = results[:limit]
        return [order.model_copy() for order in results]

    async def update_status(
        self, order_id: int, status: str, *, expected_status: str
    ) -> Order | None:
        order = self.orders.get(order_id)
        if order is None or order.status != expected_status:
            return None
        order.status = status
        self.status_updates.append((order_id, status))
        return order.model_copy()

    async def mark_notification_sent(self, order_id: int, recipient: Recipient) -> bool:
        order = self.orders.get(order_id)
        if order is None or order.notification_sent(recipient):
            return False
        setattr(order, recipient.flag_column, True)
        return True


class RecordingSender:
    """EmailSender that records messages instead of sending them."""

    def __init__(self, fail_for: Collection[str] = ()) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_for = set(fail_for)

    def send(self, to_addr: str, subject: str, body: str) -> None:
        if to_addr in self.fail_for:
            msg = f"SMTP refused {to_addr}"
            raise OSError(msg)
        self.sent.append((to_addr, subject, body))


@pytest.fixture
def make_order() -> Callable[..., Order]:
    """Build an Order; ``age_minutes`` pushes its date into the past."""

    def _make(
        order_id: int,
        *,
        total: str = "25.00",
        status: str = "pending",
        external_order_id: str | None = None,
        customer_email: str = "customer@example.com",
        merchant_email: str | None = "merchant@shop.example.com",
        age_minutes: int = 0,
    ) -> Order:
        return Order(
            id=order_id,
            external_order_id=external_order_id,
            status=status,
            total=Decimal(total),
            customer_name="Casey Customer",
            customer_email=customer_email,
            merchant_email=merchant_email,
            date=BASE_DATE - timedelta(minutes=age_minutes),
        )

    return _make


@pytest.fixture
def repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def imap_config() -> ImapConfig:
    """Provide a test IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        username="payments@shop.example.com",
        password="secret",  # pragma: allowlist secret
        port=993,
        folder="INBOX",
        poll_interval=0.01,
    )
