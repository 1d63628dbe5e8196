"""Tests for etransfer_reconciler.worker."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from etransfer_reconciler.models import MailMessage, PaymentStatus
from etransfer_reconciler.worker import Worker


def _worker(*, with_watcher: bool = True) -> tuple[Worker, MagicMock, MagicMock, MagicMock | None]:
    engine = MagicMock()
    engine.process = AsyncMock(return_value=True)
    engine.tasks.drain = AsyncMock()
    poller = MagicMock()
    poller.run = AsyncMock()
    watcher = None
    if with_watcher:
        watcher = MagicMock()
        watcher.run = AsyncMock()
        watcher.disconnect = AsyncMock()
    return Worker(engine, poller, watcher), engine, poller, watcher


class TestHandleMessage:
    def test_parses_and_reconciles(self) -> None:
        worker, engine, _poller, watcher = _worker()
        assert watcher is not None
        watcher.on_new_message.assert_called_once_with(worker.handle_message)

        message = MailMessage(
            uid="17",
            message_id="<17@interac.ca>",
            sender="notify@payments.interac.ca",
            subject="INTERAC e-Transfer",
            text_body="Your funds have been deposited.",
            html_body="<p>Amount: $25.00</p>",
        )
        asyncio.run(worker.handle_message(message))

        event = engine.process.await_args.args[0]
        assert event.status == PaymentStatus.APPROVED
        assert event.amount_cents == 2500
        assert event.message_id == "<17@interac.ca>"


class TestRun:
    def test_runs_jobs_then_stops(self) -> None:
        worker, engine, poller, watcher = _worker()
        assert watcher is not None

        asyncio.run(worker.run())

        poller.run.assert_awaited_once()
        watcher.run.assert_awaited_once()
        poller.stop.assert_called_once()
        watcher.disconnect.assert_awaited_once()
        engine.tasks.drain.assert_awaited_once()

    def test_runs_without_mailbox(self) -> None:
        worker, _engine, poller, _watcher = _worker(with_watcher=False)

        asyncio.run(worker.run())

        poller.run.assert_awaited_once()


class TestFromEnv:
    def test_mailbox_disabled_without_imap_credentials(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
        monkeypatch.setenv("IMAP_CONFIDENCE_THRESHOLD", "80")
        for name in (
            "IMAP_HOST",
            "IMAP_USERNAME",
            "IMAP_PASSWORD",
            "STOREFRONT_API_URL",
            "STOREFRONT_CONSUMER_KEY",
            "STOREFRONT_CONSUMER_SECRET",
        ):
            monkeypatch.delenv(name, raising=False)

        worker = Worker.from_env()

        assert worker.watcher is None
        assert worker.engine.storefront is None
        assert worker.engine.threshold == 80

    def test_mailbox_enabled_with_imap_credentials(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
        monkeypatch.setenv("IMAP_HOST", "mail.example.com")
        monkeypatch.setenv("IMAP_USERNAME", "payments@shop.example.com")
        monkeypatch.setenv("IMAP_PASSWORD", "pass123")  # pragma: allowlist secret

        worker = Worker.from_env()

        assert worker.watcher is not None
        assert worker.watcher.config.host == "mail.example.com"
