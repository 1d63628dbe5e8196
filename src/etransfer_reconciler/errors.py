"""Exception types raised by the reconciler."""

from __future__ import annotations


class ReconcilerError(Exception):
    """Base class for reconciler errors."""


class MailboxError(ReconcilerError):
    """The mail store connection is unusable or answered unexpectedly."""


class StorefrontSyncError(ReconcilerError):
    """Pushing an order status to the storefront failed after all retries."""

    def __init__(self, message: str, *, external_order_id: str, attempts: int) -> None:
        super().__init__(message)
        self.external_order_id = external_order_id
        self.attempts = attempts
