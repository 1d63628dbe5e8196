"""Push order status changes to the storefront's order API."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import requests

from etransfer_reconciler.errors import StorefrontSyncError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from etransfer_reconciler.config import StorefrontConfig

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 1.0

_STATUS_MAP = {
    "completed": "processing",
    "approved": "processing",
    "deposited": "processing",
    "pending": "pending",
    "cancelled": "cancelled",
    "failed": "failed",
}


def storefront_status(status: str) -> str | None:
    """Map a local order status to the storefront's status, if it has one."""
    return _STATUS_MAP.get(status.strip().lower())


def retry_delay(retry: int) -> float:
    """Seconds to wait before retry number ``retry`` (1-based): 1, 2, 4, ..."""
    return RETRY_BASE_DELAY_SECONDS * 2 ** (retry - 1)


class StorefrontClient:
    """Best-effort status sync; local order state stays authoritative."""

    def __init__(
        self,
        config: StorefrontConfig,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.session.auth = (config.consumer_key, config.consumer_secret)
        self._sleep = sleep

    async def push_status(self, external_order_id: str, status: str, confidence: int) -> bool:
        """Update the storefront order, retrying transport failures.

        Returns True on success. Failures after the last retry are logged
        and reported as False; they never raise.
        """
        remote_status = storefront_status(status)
        if remote_status is None:
            logger.info("No storefront status mapping for %r, skipping sync", status)
            return False

        try:
            await self._put_with_retries(external_order_id, remote_status, confidence)
        except StorefrontSyncError as exc:
            logger.error(
                "Giving up on storefront order %s after %d attempts",
                exc.external_order_id,
                exc.attempts,
            )
            return False
        return True

    async def _put_with_retries(
        self, external_order_id: str, remote_status: str, confidence: int
    ) -> None:
        url = f"{self.config.api_url}/orders/{external_order_id}"
        payload = {
            "status": remote_status,
            "meta_data": [
                {"key": "_etransfer_payment_confirmed", "value": "true"},
                {"key": "_etransfer_confidence", "value": str(confidence)},
                {"key": "_etransfer_updated_at", "value": datetime.now(tz=UTC).isoformat()},
            ],
        }

        attempts = MAX_RETRIES + 1
        for attempt in range(1, attempts + 1):
            logger.info(
                "Updating storefront order %s to %s (attempt %d/%d)",
                external_order_id,
                remote_status,
                attempt,
                attempts,
            )
            try:
                await asyncio.to_thread(self._put, url, payload)
            except requests.RequestException as exc:
                logger.warning(
                    "Storefront API error for order %s (attempt %d): %s",
                    external_order_id,
                    attempt,
                    exc,
                )
                if attempt == attempts:
                    msg = f"Storefront sync failed for order {external_order_id}"
                    raise StorefrontSyncError(
                        msg, external_order_id=external_order_id, attempts=attempt
                    ) from exc
                delay = retry_delay(attempt)
                logger.info("Retrying storefront sync in %.0fs", delay)
                await self._sleep(delay)
            else:
                logger.info("Storefront order %s updated", external_order_id)
                return

    def _put(self, url: str, payload: dict[str, object]) -> None:
        response = self.session.put(url, json=payload, timeout=self.config.timeout)
        response.raise_for_status()
