"""Tests for etransfer_reconciler.models."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from etransfer_reconciler.models import (
    MailMessage,
    Order,
    PaymentEvent,
    PaymentStatus,
    Recipient,
    cents_to_dollars,
    dollars_to_cents,
    normalize_status,
)

ORDER_DATE = datetime(2025, 6, 15, 10, 30, tzinfo=UTC)


class TestOrder:
    """Tests for Order validation."""

    def test_database_row(self) -> None:
        order = Order.model_validate(
            {
                "id": 42,
                "external_order_id": "1042",
                "status": " Pending ",
                "total": Decimal("25.50"),
                "customer_name": "Jane Doe",
                "customer_email": "jane@example.com",
                "merchant_email": "merchant@shop.example.com",
                "date": ORDER_DATE,
                "payment_received_customer_email_sent": False,
                "payment_received_merchant_email_sent": True,
            }
        )

        assert order.total_cents == 2550
        assert order.normalized_status == "pending"
        assert order.is_terminal is False
        assert order.notification_sent(Recipient.CUSTOMER) is False
        assert order.notification_sent(Recipient.MERCHANT) is True

    def test_null_total_and_status(self) -> None:
        order = Order(
            id=1,
            status=None,  # type: ignore[arg-type]
            total=None,  # type: ignore[arg-type]
            customer_email="jane@example.com",
            date=ORDER_DATE,
        )
        assert order.total == Decimal("0.00")
        assert order.status == "pending"

    def test_negative_total_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Order(id=1, total=Decimal("-1.00"), customer_email="a@b.c", date=ORDER_DATE)

    def test_too_many_decimal_places_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Order(id=1, total=Decimal("1.005"), customer_email="a@b.c", date=ORDER_DATE)

    @pytest.mark.parametrize("status", ["completed", "Cancelled"])
    def test_terminal(self, status: str) -> None:
        order = Order(id=1, status=status, customer_email="a@b.c", date=ORDER_DATE)
        assert order.is_terminal is True


class TestStatusAndMoney:
    """Tests for the status and money helpers."""

    def test_normalize_status(self) -> None:
        assert normalize_status(" On-Hold ") == "on-hold"
        assert normalize_status("") == "pending"
        assert normalize_status(None) == "pending"

    def test_cents_to_dollars(self) -> None:
        assert cents_to_dollars(2500) == Decimal("25.00")
        assert cents_to_dollars(7) == Decimal("0.07")

    def test_dollars_to_cents_rounds_half_up(self) -> None:
        assert dollars_to_cents(Decimal("12.34")) == 1234
        assert dollars_to_cents(Decimal("0.005")) == 1

    def test_flag_column(self) -> None:
        assert Recipient.CUSTOMER.flag_column == "payment_received_customer_email_sent"


class TestPaymentEvent:
    def test_amount_dollars(self) -> None:
        event = PaymentEvent(status=PaymentStatus.APPROVED, amount_cents=1999, raw_text="")
        assert event.amount_dollars == Decimal("19.99")

    def test_is_immutable(self) -> None:
        event = PaymentEvent(status=PaymentStatus.APPROVED, amount_cents=1999, raw_text="")
        with pytest.raises(AttributeError):
            event.amount_cents = 0  # type: ignore[misc]


class TestMailMessage:
    def test_seen_flag(self) -> None:
        message = MailMessage(
            uid="1", message_id="<m@x>", sender="a@b.c", subject="", flags=frozenset({"\\Seen"})
        )
        assert message.is_seen is True

    def test_combined_text(self) -> None:
        message = MailMessage(
            uid="1",
            message_id="<m@x>",
            sender="a@b.c",
            subject="",
            text_body="Amount: $5.00",
            html_body="<p>Deposited</p>",
        )
        assert message.combined_text == "Amount: $5.00 <p>Deposited</p>"
        assert MailMessage(uid="2", message_id="", sender="", subject="").combined_text == " "
