"""Mailbox session protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from etransfer_reconciler.models import MailMessage


@runtime_checkable
class MailboxSession(Protocol):
    """One authenticated connection to a mail store.

    A session owns its new-content subscriptions; ``close()`` drops them
    all and logs out, after which the session must not be reused.
    """

    async def open(self) -> None: ...

    def subscribe(self, handler: Callable[[], Awaitable[None]]) -> None: ...

    async def listen(self) -> None: ...

    async def fetch_unseen(self) -> list[MailMessage]: ...

    async def mark_seen(self, uid: str) -> None: ...

    async def close(self) -> None: ...
