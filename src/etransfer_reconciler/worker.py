"""Wire the mailbox watcher, reconciliation engine and drift poller together."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from etransfer_reconciler.config import (
    get_confidence_threshold,
    get_imap_config,
    get_reconnect_policy,
    get_smtp_config,
    get_storefront_config,
    imap_configured,
)
from etransfer_reconciler.mailbox import MailboxWatcher
from etransfer_reconciler.matcher import OrderMatcher
from etransfer_reconciler.notifications import NotificationDispatcher, SmtpEmailSender
from etransfer_reconciler.parser import parse_notification
from etransfer_reconciler.poller import StatusDriftPoller
from etransfer_reconciler.reconciler import ReconciliationEngine
from etransfer_reconciler.repository import PostgresOrderRepository
from etransfer_reconciler.storefront import StorefrontClient

if TYPE_CHECKING:
    from etransfer_reconciler.models import MailMessage

logger = logging.getLogger(__name__)


class Worker:
    """Background process: email-driven reconciliation plus status polling."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        poller: StatusDriftPoller,
        watcher: MailboxWatcher | None = None,
    ) -> None:
        self.engine = engine
        self.poller = poller
        self.watcher = watcher
        if watcher is not None:
            watcher.on_new_message(self.handle_message)

    @classmethod
    def from_env(cls) -> Worker:
        """Build a worker from environment configuration."""
        repository = PostgresOrderRepository()
        dispatcher = NotificationDispatcher(repository, SmtpEmailSender(get_smtp_config()))

        storefront_config = get_storefront_config()
        if storefront_config is None:
            logger.warning("Storefront API credentials not configured, status sync disabled")
        storefront = StorefrontClient(storefront_config) if storefront_config else None

        engine = ReconciliationEngine(
            repository,
            OrderMatcher(repository),
            dispatcher,
            storefront=storefront,
            threshold=get_confidence_threshold(),
        )
        poller = StatusDriftPoller(repository, dispatcher)

        watcher = None
        if imap_configured():
            watcher = MailboxWatcher(get_imap_config(), get_reconnect_policy())
        else:
            logger.warning("IMAP credentials not configured, skipping mailbox ingestion")

        return cls(engine, poller, watcher)

    async def handle_message(self, message: MailMessage) -> None:
        """Parse one notification email and reconcile it."""
        event = parse_notification(message.combined_text, message_id=message.message_id)
        logger.info(
            "Message %s parsed: status=%s amount_cents=%d reference=%s",
            message.uid,
            event.status,
            event.amount_cents,
            event.order_reference,
        )
        await self.engine.process(event)

    async def run(self) -> None:
        """Run until cancelled."""
        jobs = [self.poller.run()]
        if self.watcher is not None:
            jobs.append(self.watcher.run())
        try:
            await asyncio.gather(*jobs)
        finally:
            await self.stop()

    async def stop(self) -> None:
        self.poller.stop()
        if self.watcher is not None:
            await self.watcher.disconnect()
        await self.engine.tasks.drain()
