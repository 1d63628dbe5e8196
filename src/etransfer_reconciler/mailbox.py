"""Long-lived mailbox watcher with exponential-backoff reconnection."""

from __future__ import annotations

import asyncio
import imaplib
import logging
from email.utils import parseaddr
from typing import TYPE_CHECKING

from etransfer_reconciler.adapters.imap import ImapSession
from etransfer_reconciler.config import ReconnectPolicy
from etransfer_reconciler.errors import MailboxError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from etransfer_reconciler.adapters.base import MailboxSession
    from etransfer_reconciler.config import ImapConfig
    from etransfer_reconciler.models import MailMessage

logger = logging.getLogger(__name__)

# Timeouts, resets and broken pipes are OSErrors; IMAP4.abort is an IMAP4.error.
TRANSPORT_ERRORS = (imaplib.IMAP4.error, OSError, MailboxError)


def backoff_delay_ms(attempt: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """Delay before reconnect attempt ``attempt`` (1-based), capped at max."""
    return min(base_delay_ms * 2 ** (attempt - 1), max_delay_ms)


def is_allowed_sender(sender: str, allowlist: Iterable[str]) -> bool:
    """Whether the From address is, or belongs to a domain in, the allow-list."""
    address = parseaddr(sender)[1].strip().lower()
    if not address:
        return False
    domain = address.rpartition("@")[2]
    for pattern in allowlist:
        pattern = pattern.strip().lower()
        if not pattern:
            continue
        if address == pattern or domain == pattern or domain.endswith(f".{pattern}"):
            return True
    return False


class MailboxWatcher:
    """Keep one mailbox session alive and feed its messages to handlers.

    On every (re)connect, unseen messages from allowed senders are drained
    before listening for new mail. A message is flagged \\Seen only after
    all handlers return without raising; failed messages stay unseen and
    are offered again on the next sync.
    """

    def __init__(
        self,
        config: ImapConfig,
        policy: ReconnectPolicy | None = None,
        *,
        session_factory: Callable[[ImapConfig], MailboxSession] = ImapSession,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.policy = policy or ReconnectPolicy()
        self._session_factory = session_factory
        self._sleep = sleep
        self._handlers: list[Callable[[MailMessage], Awaitable[object]]] = []
        self._session: MailboxSession | None = None
        self._reconnecting = False
        self._attempts = 0
        self._stopped = False
        self.gave_up = False

    @property
    def session(self) -> MailboxSession | None:
        return self._session

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    def on_new_message(self, handler: Callable[[MailMessage], Awaitable[object]]) -> None:
        """Register a coroutine called once per incoming message."""
        self._handlers.append(handler)

    async def connect(self) -> None:
        """Open a session, drain the backlog, and reset the attempt counter."""
        session = self._session_factory(self.config)
        self._session = session
        try:
            await session.open()
        except BaseException:
            await self._teardown()
            raise
        session.subscribe(self._sync)
        await self._sync()
        self._attempts = 0

    async def run(self) -> None:
        """Connect and listen until disconnect() or reconnection gives up."""
        try:
            await self.connect()
        except TRANSPORT_ERRORS as exc:
            logger.error("Error starting IMAP session: %s", exc)
            if not await self.reconnect():
                return

        while not self._stopped:
            session = self._session
            if session is None:
                return
            try:
                await session.listen()
            except TRANSPORT_ERRORS as exc:
                if self._stopped:
                    break
                logger.warning("IMAP connection lost: %s", exc)
                if not await self.reconnect():
                    return
            else:
                if self._stopped:
                    break
                logger.warning("IMAP session closed unexpectedly")
                if not await self.reconnect():
                    return

    async def reconnect(self) -> bool:
        """Tear down and reconnect with backoff. Return True once connected.

        Concurrent calls while a reconnection is in progress return False
        immediately.
        """
        if self._reconnecting:
            logger.info("Reconnection already in progress")
            return False

        self._reconnecting = True
        try:
            while not self._stopped:
                if self._attempts >= self.policy.max_attempts:
                    logger.critical(
                        "Max reconnection attempts (%d) reached; mail ingestion stopped "
                        "until restart",
                        self.policy.max_attempts,
                    )
                    self.gave_up = True
                    await self._teardown()
                    return False

                self._attempts += 1
                await self._teardown()
                delay_ms = backoff_delay_ms(
                    self._attempts, self.policy.base_delay_ms, self.policy.max_delay_ms
                )
                logger.info(
                    "Reconnecting in %.1fs (attempt %d/%d)",
                    delay_ms / 1000,
                    self._attempts,
                    self.policy.max_attempts,
                )
                await self._sleep(delay_ms / 1000)
                if self._stopped:
                    break
                try:
                    await self.connect()
                except TRANSPORT_ERRORS as exc:
                    logger.error("Reconnection attempt %d failed: %s", self._attempts, exc)
                    continue
                logger.info("IMAP reconnected")
                return True
            return False
        finally:
            self._reconnecting = False

    async def disconnect(self) -> None:
        """Stop listening and release the connection."""
        self._stopped = True
        await self._teardown()
        logger.info("IMAP connection closed")

    async def _teardown(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close()

    async def _sync(self) -> None:
        """Process every unseen message from an allowed sender, in order."""
        session = self._session
        if session is None:
            return
        messages = await session.fetch_unseen()
        logger.info("Found %d unseen messages", len(messages))

        for message in messages:
            if message.is_seen:
                continue
            if not is_allowed_sender(message.sender, self.config.sender_allowlist):
                logger.debug("Skipping message %s from %s", message.uid, message.sender)
                continue
            if await self._dispatch(message):
                await session.mark_seen(message.uid)
                logger.info("Message %s marked as seen", message.uid)

    async def _dispatch(self, message: MailMessage) -> bool:
        logger.info("Processing message %s from %s", message.uid, message.sender)
        try:
            for handler in self._handlers:
                await handler(message)
        except Exception:
            logger.exception("Error processing message %s; leaving it unseen", message.uid)
            return False
        return True
