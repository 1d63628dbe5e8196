"""Domain models for payment reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

CENT = Decimal("0.01")

PENDING = "pending"
COMPLETED = "completed"
CANCELLED = "cancelled"
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED})


def normalize_status(status: str | None) -> str:
    """Lower-case and trim an order status; empty values count as pending."""
    if status is None:
        return PENDING
    normalized = str(status).strip().lower()
    return normalized or PENDING


def cents_to_dollars(amount_cents: int) -> Decimal:
    """Convert integer cents to a two-place dollar amount."""
    return (Decimal(amount_cents) / 100).quantize(CENT)


def dollars_to_cents(amount: Decimal) -> int:
    """Convert a dollar amount to integer cents, rounding half up."""
    return int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class PaymentStatus(StrEnum):
    """Status carried by a bank-transfer notification."""

    REQUESTED = "requested"
    APPROVED = "approved"
    DEPOSITED = "deposited"
    CANCELLED = "cancelled"


class MatchTier(StrEnum):
    """Which matching rule produced a MatchResult."""

    EXACT = "exact"
    AMOUNT_SENDER = "amount_sender"
    AMOUNT = "amount"
    FUZZY = "fuzzy"


class Recipient(StrEnum):
    """Who a payment-received notification goes to."""

    CUSTOMER = "customer"
    MERCHANT = "merchant"

    @property
    def flag_column(self) -> str:
        return f"payment_received_{self.value}_email_sent"


class Order(BaseModel):
    """Order record as stored in the database."""

    id: int
    external_order_id: str | None = None
    status: str = PENDING
    total: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2)
    customer_name: str | None = None
    customer_email: str
    merchant_email: str | None = None
    date: datetime
    payment_received_customer_email_sent: bool = False
    payment_received_merchant_email_sent: bool = False

    @field_validator("total", mode="before")
    @classmethod
    def _null_total_is_zero(cls, value: object) -> object:
        return Decimal("0.00") if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _null_status_is_pending(cls, value: object) -> object:
        return PENDING if value is None else value

    @property
    def total_cents(self) -> int:
        return dollars_to_cents(self.total)

    @property
    def normalized_status(self) -> str:
        return normalize_status(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.normalized_status in TERMINAL_STATUSES

    def notification_sent(self, recipient: Recipient) -> bool:
        """Return whether the payment-received message went to recipient."""
        return bool(getattr(self, recipient.flag_column))


@dataclass(frozen=True)
class PaymentEvent:
    """Structured fields extracted from one payment notification email."""

    status: PaymentStatus
    amount_cents: int
    raw_text: str
    order_reference: str | None = None
    sender_email: str | None = None
    message_id: str | None = None

    @property
    def amount_dollars(self) -> Decimal:
        return cents_to_dollars(self.amount_cents)


@dataclass
class MatchResult:
    """A candidate order for a payment event, with 0-100 confidence."""

    order: Order
    confidence: int
    tier: MatchTier


@dataclass
class MailMessage:
    """A message fetched from the mailbox."""

    uid: str
    message_id: str
    sender: str
    subject: str
    flags: frozenset[str] = field(default_factory=frozenset)
    text_body: str | None = None
    html_body: str | None = None

    @property
    def is_seen(self) -> bool:
        return "\\Seen" in self.flags

    @property
    def combined_text(self) -> str:
        """Plain-text and HTML bodies joined for pattern matching."""
        return f"{self.text_body or ''} {self.html_body or ''}"
