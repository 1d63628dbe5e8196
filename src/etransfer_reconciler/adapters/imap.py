"""IMAP mailbox session."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import imaplib
import logging
from email import message_from_bytes
from email.header import decode_header
from typing import TYPE_CHECKING, cast

from etransfer_reconciler.errors import MailboxError
from etransfer_reconciler.models import MailMessage

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from email.message import Message

    from etransfer_reconciler.config import ImapConfig

logger = logging.getLogger(__name__)

# Peeking leaves \Seen untouched; messages are flagged only once processed.
_FETCH_ITEMS = "(FLAGS BODY.PEEK[])"


class ImapSession:
    """A single imaplib connection with the folder selected read-write.

    New-message notifications come from the server's untagged EXISTS
    responses, checked with NOOP every ``poll_interval`` seconds. Blocking
    imaplib calls run in a worker thread, one at a time.
    """

    def __init__(self, config: ImapConfig) -> None:
        self.config = config
        self._conn: imaplib.IMAP4 | None = None
        self._handlers: list[Callable[[], Awaitable[None]]] = []
        self._exists = 0
        self._closed = asyncio.Event()

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def open(self) -> None:
        """Connect, authenticate and select the configured folder."""
        await asyncio.to_thread(self._open)
        logger.info(
            "IMAP session open on %s:%d/%s (%d messages)",
            self.config.host,
            self.config.port,
            self.config.folder,
            self._exists,
        )

    def subscribe(self, handler: Callable[[], Awaitable[None]]) -> None:
        self._handlers.append(handler)

    async def listen(self) -> None:
        """Invoke subscribers whenever the server announces new mail, until closed.

        Transport errors propagate to the caller.
        """
        while not self._closed.is_set():
            if await asyncio.to_thread(self._poll_new):
                logger.info("New mail in %s", self.config.folder)
                for handler in list(self._handlers):
                    await handler()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._closed.wait(), timeout=self.config.poll_interval)

    async def fetch_unseen(self) -> list[MailMessage]:
        return await asyncio.to_thread(self._fetch_unseen)

    async def mark_seen(self, uid: str) -> None:
        await asyncio.to_thread(self._mark_seen, uid)

    async def close(self) -> None:
        """Drop all subscriptions and log out. Safe to call repeatedly."""
        self._handlers.clear()
        self._closed.set()
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await asyncio.to_thread(conn.logout)
        except Exception:
            logger.debug("Error during IMAP logout", exc_info=True)

    def _open(self) -> None:
        self._conn = self._connect()
        status, data = self._conn.select(self.config.folder)
        if status != "OK":
            msg = f"Cannot select folder {self.config.folder}: {data!r}"
            raise MailboxError(msg)
        self._exists = _parse_count(data)

    def _connect(self) -> imaplib.IMAP4:
        """Establish an IMAP4 (TLS unless disabled) connection and authenticate."""
        conn: imaplib.IMAP4
        if self.config.secure:
            conn = imaplib.IMAP4_SSL(
                self.config.host, self.config.port, timeout=self.config.timeout
            )
        else:
            conn = imaplib.IMAP4(self.config.host, self.config.port, timeout=self.config.timeout)
        self._conn = conn
        conn.login(self.config.username, self.config.password)
        return conn

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            msg = "IMAP session is not open"
            raise MailboxError(msg)
        return self._conn

    def _poll_new(self) -> bool:
        """Send NOOP and report whether the server announced new mail.

        Any untagged EXISTS, or a non-zero RECENT, counts as new mail.
        EXPUNGE responses only lower the tracked message count.
        """
        conn = self._require_conn()
        status, data = conn.noop()
        if status != "OK":
            msg = f"IMAP NOOP failed: {data!r}"
            raise MailboxError(msg)
        expunged = _untagged(conn, "EXPUNGE")
        if expunged:
            self._exists = max(self._exists - len(expunged), 0)
            logger.debug("%d message(s) expunged from %s", len(expunged), self.config.folder)
        exists = _untagged(conn, "EXISTS")
        recent = _untagged(conn, "RECENT")
        if exists:
            self._exists = int(exists[-1])
        return bool(exists) or any(int(value) > 0 for value in recent)

    def _fetch_unseen(self) -> list[MailMessage]:
        conn = self._require_conn()
        status, data = conn.uid("SEARCH", None, "UNSEEN")
        if status != "OK":
            msg = f"IMAP SEARCH failed: {data!r}"
            raise MailboxError(msg)
        raw = data[0] if data else None
        if not raw:
            return []

        messages: list[MailMessage] = []
        for uid in cast("bytes", raw).decode().split():
            fetched = self._fetch_raw(conn, uid)
            if fetched is None:
                continue
            raw_email, flags = fetched
            try:
                messages.append(self._parse_message(message_from_bytes(raw_email), uid, flags))
            except Exception:
                logger.warning("Failed to parse message UID %s, skipping", uid, exc_info=True)
        return messages

    def _fetch_raw(self, conn: imaplib.IMAP4, uid: str) -> tuple[bytes, frozenset[str]] | None:
        """Fetch one message's bytes and flags by UID without setting \\Seen."""
        status, data = conn.uid("FETCH", uid, _FETCH_ITEMS)
        if status != "OK" or not data:
            logger.warning("Could not fetch message UID %s: %s", uid, status)
            return None

        raw_email: bytes | None = None
        flags: tuple[bytes, ...] = ()
        for part in data:
            if isinstance(part, tuple):
                flags = flags or imaplib.ParseFlags(part[0])
                raw_email = part[1]
            elif isinstance(part, bytes):
                flags = flags or imaplib.ParseFlags(part)
        if raw_email is None:
            return None
        return raw_email, frozenset(flag.decode() for flag in flags)

    def _mark_seen(self, uid: str) -> None:
        conn = self._require_conn()
        status, data = conn.uid("STORE", uid, "+FLAGS", "(\\Seen)")
        if status != "OK":
            msg = f"Could not flag message UID {uid} as seen: {data!r}"
            raise MailboxError(msg)

    def _parse_message(self, msg: Message, uid: str, flags: frozenset[str]) -> MailMessage:
        """Convert an email Message to a MailMessage."""
        html_body, text_body = self._extract_bodies(msg)
        return MailMessage(
            uid=uid,
            message_id=_message_id(msg, uid),
            sender=_header_text(msg.get("From")),
            subject=_header_text(msg.get("Subject")),
            flags=flags,
            text_body=text_body,
            html_body=html_body,
        )

    @staticmethod
    def _extract_bodies(msg: Message) -> tuple[str | None, str | None]:
        """Walk the MIME tree and return the first HTML and plain-text bodies."""
        html_body: str | None = None
        text_body: str | None = None

        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            if "attachment" in str(part.get("Content-Disposition", "")).lower():
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/html", "text/plain"):
                continue
            raw_payload = part.get_payload(decode=True)
            if raw_payload is None:
                continue
            codec = _codec(part.get_content_charset())
            payload = cast("bytes", raw_payload).decode(codec, errors="replace")

            if content_type == "text/html" and html_body is None:
                html_body = payload
            elif content_type == "text/plain" and text_body is None:
                text_body = payload

        return html_body, text_body


def _codec(charset: str | None) -> str:
    """Python codec for a MIME charset; unknown or missing charsets read as UTF-8."""
    if not charset:
        return "utf-8"
    try:
        return codecs.lookup(charset).name
    except LookupError:
        logger.debug("Unknown charset %r, decoding as utf-8", charset)
        return "utf-8"


def _header_text(value: str | None) -> str:
    """Unfold an RFC 2047 header into text."""
    if not value:
        return ""
    return "".join(
        chunk.decode(_codec(charset), errors="replace") if isinstance(chunk, bytes) else chunk
        for chunk, charset in decode_header(value)
    )


def _message_id(msg: Message, uid: str) -> str:
    """The Message-ID header, or the mailbox UID for messages without one."""
    header = (msg.get("Message-ID") or "").strip()
    return header or f"uid:{uid}"


def _untagged(conn: imaplib.IMAP4, name: str) -> list[bytes]:
    """Pop the untagged ``name`` responses collected since the last command."""
    _code, values = conn.response(name)
    return [value for value in values if isinstance(value, bytes) and value.strip().isdigit()]


def _parse_count(data: list[bytes | None] | list[object]) -> int:
    for value in reversed(data):
        if isinstance(value, bytes) and value.strip().isdigit():
            return int(value)
    return 0
