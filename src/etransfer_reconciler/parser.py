"""Parse bank-transfer notification emails into payment events.

Every extractor walks an ordered list of patterns and takes the first
one that matches anywhere in the text. Nothing here performs I/O.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation

from etransfer_reconciler.models import PaymentEvent, PaymentStatus, dollars_to_cents

logger = logging.getLogger(__name__)

NOTIFICATION_SERVICE_DOMAINS = ("interac.ca", "payments.interac")

_APPROVED_PATTERN = re.compile(r"deposited|accepted|approved|completed|received", re.I)
_CANCELLED_PATTERN = re.compile(r"cancelled|declined|rejected|failed", re.I)

_AMOUNT = r"([0-9]+(?:\.[0-9]{2})?)"

AMOUNT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"\${_AMOUNT}"),
    re.compile(rf"amount[:\s]*\${_AMOUNT}", re.I),
    re.compile(rf"total[:\s]*\${_AMOUNT}", re.I),
    re.compile(rf"{_AMOUNT}\s*CAD", re.I),
    re.compile(rf"{_AMOUNT}\s*dollars", re.I),
)

ORDER_REFERENCE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\border[:\s]*#?(\d+)", re.I),
    re.compile(r"\breference[:\s]*([A-Z0-9-]+)", re.I),
    re.compile(r"\bref[:\s]*([A-Z0-9-]+)", re.I),
    re.compile(r"#(\d+)"),
    re.compile(r"ORD-(\d+)"),
)

_EMAIL = r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"

SENDER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        rf"(?:from|sent by|sender|received from|sent from|transfer from)[:\s]*({_EMAIL})",
        re.I,
    ),
    re.compile(rf"(?:e-Transfer\s+)?from[:\s]*({_EMAIL})", re.I),
)
_ANY_EMAIL_PATTERN = re.compile(_EMAIL)


def parse_notification(text: str, *, message_id: str | None = None) -> PaymentEvent:
    """Extract status, amount, order reference and sender from a notification.

    ``text`` is the combined plain-text and HTML body of the email.
    """
    return PaymentEvent(
        status=classify_status(text),
        amount_cents=extract_amount_cents(text),
        raw_text=text,
        order_reference=extract_order_reference(text),
        sender_email=extract_sender_email(text),
        message_id=message_id,
    )


def classify_status(text: str) -> PaymentStatus:
    """Classify the notification; positive keywords win over negative ones."""
    if _APPROVED_PATTERN.search(text):
        return PaymentStatus.APPROVED
    if _CANCELLED_PATTERN.search(text):
        return PaymentStatus.CANCELLED
    return PaymentStatus.REQUESTED


def extract_amount_cents(text: str) -> int:
    """Return the transfer amount in cents, or 0 when none is found."""
    for pattern in AMOUNT_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        try:
            return dollars_to_cents(Decimal(match.group(1)))
        except InvalidOperation:
            logger.debug("Unparseable amount %r", match.group(1))
            return 0
    return 0


def extract_order_reference(text: str) -> str | None:
    """Return the first order reference found in the text."""
    for pattern in ORDER_REFERENCE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_sender_email(text: str) -> str | None:
    """Return the email address of the customer who sent the transfer.

    Context-anchored patterns ("from", "sent by", ...) are tried first;
    otherwise the first address in the body that belongs neither to the
    notification service nor to a no-reply mailbox is used.
    """
    for pattern in SENDER_PATTERNS:
        for match in pattern.finditer(text):
            email = match.group(1).strip().lower()
            if not _is_service_address(email):
                logger.debug("Transfer sender email detected: %s", email)
                return email

    for candidate in _ANY_EMAIL_PATTERN.findall(text):
        email = candidate.lower()
        if _is_service_address(email) or _is_no_reply(email):
            continue
        logger.debug("Transfer sender email (fallback): %s", email)
        return email
    return None


def _is_service_address(email: str) -> bool:
    return any(domain in email for domain in NOTIFICATION_SERVICE_DOMAINS)


def _is_no_reply(email: str) -> bool:
    local_part = email.split("@", 1)[0]
    return "noreply" in local_part or "no-reply" in local_part
