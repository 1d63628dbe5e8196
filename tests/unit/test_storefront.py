"""Tests for etransfer_reconciler.storefront."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from etransfer_reconciler.config import StorefrontConfig
from etransfer_reconciler.storefront import StorefrontClient, retry_delay, storefront_status

CONFIG = StorefrontConfig(
    api_url="https://shop.example.com/wp-json/wc/v3",
    consumer_key="ck_test",
    consumer_secret="cs_test",  # pragma: allowlist secret
)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _client(*outcomes: Exception | None) -> tuple[StorefrontClient, MagicMock, SleepRecorder]:
    """Client whose successive PUTs raise the given errors, or succeed on None."""
    session = MagicMock()
    responses = []
    for outcome in outcomes:
        response = MagicMock()
        if outcome is not None:
            response.raise_for_status.side_effect = outcome
        responses.append(response)
    session.put.side_effect = responses
    sleep = SleepRecorder()
    return StorefrontClient(CONFIG, session=session, sleep=sleep), session, sleep


class TestStorefrontStatus:
    """Tests for storefront_status()."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("completed", "processing"),
            ("approved", "processing"),
            ("Deposited", "processing"),
            ("pending", "pending"),
            ("cancelled", "cancelled"),
            ("failed", "failed"),
            ("refunded", None),
        ],
    )
    def test_mapping(self, status: str, expected: str | None) -> None:
        assert storefront_status(status) == expected


class TestRetryDelay:
    def test_doubles(self) -> None:
        assert [retry_delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestPushStatus:
    """Tests for StorefrontClient.push_status()."""

    def test_success(self) -> None:
        client, session, sleep = _client(None)

        assert asyncio.run(client.push_status("42", "completed", 100)) is True

        session.put.assert_called_once()
        url = session.put.call_args.args[0]
        payload = session.put.call_args.kwargs["json"]
        assert url == "https://shop.example.com/wp-json/wc/v3/orders/42"
        assert session.put.call_args.kwargs["timeout"] == 10.0
        assert payload["status"] == "processing"
        meta = {item["key"]: item["value"] for item in payload["meta_data"]}
        assert meta["_etransfer_payment_confirmed"] == "true"
        assert meta["_etransfer_confidence"] == "100"
        assert "_etransfer_updated_at" in meta
        assert session.auth == ("ck_test", "cs_test")
        assert sleep.delays == []

    def test_retries_then_succeeds(self) -> None:
        client, session, sleep = _client(
            requests.ConnectionError("refused"), requests.HTTPError("502"), None
        )

        assert asyncio.run(client.push_status("42", "completed", 90)) is True

        assert session.put.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    def test_gives_up_after_retries(self, caplog: pytest.LogCaptureFixture) -> None:
        errors = [requests.Timeout("timed out") for _ in range(4)]
        client, session, sleep = _client(*errors)

        assert asyncio.run(client.push_status("42", "completed", 100)) is False

        assert session.put.call_count == 4
        assert sleep.delays == [1.0, 2.0, 4.0]
        assert "Giving up on storefront order 42 after 4 attempts" in caplog.text

    def test_unmapped_status_is_not_sent(self) -> None:
        client, session, _sleep = _client()

        assert asyncio.run(client.push_status("42", "refunded", 100)) is False

        session.put.assert_not_called()
