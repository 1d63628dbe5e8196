"""Order status notifications to customers and merchants."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Protocol

from etransfer_reconciler.models import Recipient, normalize_status

if TYPE_CHECKING:
    from etransfer_reconciler.config import SmtpConfig
    from etransfer_reconciler.models import Order
    from etransfer_reconciler.repository import OrderRepository

logger = logging.getLogger(__name__)

_ON_HOLD_STATUSES = frozenset({"pending", "on-hold", "onhold"})
_PAYMENT_RECEIVED_STATUSES = frozenset({"processing", "completed"})


class EmailSender(Protocol):
    """Protocol for outbound email transports."""

    def send(self, to_addr: str, subject: str, body: str) -> None: ...


class SmtpEmailSender:
    """Send plain-text email through an SMTP relay."""

    def __init__(self, config: SmtpConfig) -> None:
        self.config = config

    def send(self, to_addr: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.config.from_addr
        msg["To"] = to_addr

        with smtplib.SMTP(self.config.host, self.config.port, timeout=30) as server:
            if self.config.starttls:
                server.starttls()
            if self.config.username and self.config.password:
                server.login(self.config.username, self.config.password)
            server.sendmail(self.config.from_addr, [to_addr], msg.as_string())
        logger.info("Email sent: %s -> %s", subject, to_addr)


class NotificationDispatcher:
    """Send the messages that go with an order's current status.

    Payment-received messages go out at most once per recipient. The
    sent flags are read from a fresh load of the order right before
    sending and flipped only after the send succeeds.
    """

    def __init__(self, repository: OrderRepository, sender: EmailSender) -> None:
        self.repository = repository
        self.sender = sender

    async def send_order_status_emails(
        self,
        order: Order,
        previous_status: str | None,
        merchant_email: str | None,
    ) -> None:
        if not merchant_email:
            logger.warning("Merchant email missing for order %s, not notifying", order.id)
            return
        if merchant_email.strip().lower() == order.customer_email.strip().lower():
            logger.error(
                "Merchant email matches customer email for order %s, not notifying",
                order.id,
            )
            return

        status = order.normalized_status
        logger.info(
            "Notifying for order %s: %s -> %s",
            order.id,
            normalize_status(previous_status) if previous_status else None,
            status,
        )

        if status in _ON_HOLD_STATUSES:
            sends = [
                self._send(order.customer_email, *_on_hold_message(order)),
                self._send(merchant_email, *_new_order_message(order)),
            ]
        elif status in _PAYMENT_RECEIVED_STATUSES:
            customer_subject, customer_body = _payment_received_message(order)
            merchant_subject, merchant_body = _payment_confirmed_message(order)
            sends = [
                self._send_payment_received(
                    order, Recipient.CUSTOMER, order.customer_email, customer_subject, customer_body
                ),
                self._send_payment_received(
                    order, Recipient.MERCHANT, merchant_email, merchant_subject, merchant_body
                ),
            ]
        else:
            logger.warning("No notification for order %s status %r", order.id, order.status)
            return

        results = await asyncio.gather(*sends, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "Failed sending notification for order %s",
                    order.id,
                    exc_info=(type(result), result, result.__traceback__),
                )

    async def _send_payment_received(
        self,
        order: Order,
        recipient: Recipient,
        to_addr: str,
        subject: str,
        body: str,
    ) -> None:
        latest = await self.repository.get(order.id)
        if latest is None:
            logger.error("Order %s not found, skipping %s notification", order.id, recipient)
            return
        if latest.notification_sent(recipient):
            logger.info(
                "Payment received %s email already sent for order %s, skipping",
                recipient,
                order.id,
            )
            return

        await self._send(to_addr, subject, body)
        if not await self.repository.mark_notification_sent(order.id, recipient):
            logger.warning(
                "Payment received %s flag for order %s was set concurrently",
                recipient,
                order.id,
            )

    async def _send(self, to_addr: str, subject: str, body: str) -> None:
        await asyncio.to_thread(self.sender.send, to_addr, subject, body)


def _order_label(order: Order) -> str:
    return order.external_order_id or str(order.id)


def _on_hold_message(order: Order) -> tuple[str, str]:
    subject = "Complete Your Order - e-Transfer Details"
    body = (
        f"Hello {order.customer_name or order.customer_email},\n\n"
        f"Your order #{_order_label(order)} is on hold until we receive your "
        f"e-Transfer of ${order.total}.\n"
        f"Please include the order number in the transfer message.\n"
    )
    return subject, body


def _new_order_message(order: Order) -> tuple[str, str]:
    subject = "New e-Transfer Order Received"
    body = (
        f"Order #{_order_label(order)} for ${order.total} was placed by "
        f"{order.customer_email} and is awaiting payment.\n"
    )
    return subject, body


def _payment_received_message(order: Order) -> tuple[str, str]:
    subject = "Payment Received - Order Now Processing"
    body = (
        f"Hello {order.customer_name or order.customer_email},\n\n"
        f"We received your e-Transfer of ${order.total} for order "
        f"#{_order_label(order)}. Your order is now being processed.\n"
    )
    return subject, body


def _payment_confirmed_message(order: Order) -> tuple[str, str]:
    subject = f"Order Payment Confirmed - Order #{_order_label(order)}"
    body = (
        f"Payment of ${order.total} from {order.customer_email} for order "
        f"#{_order_label(order)} has been confirmed.\n"
    )
    return subject, body
