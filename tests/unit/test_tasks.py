"""Tests for etransfer_reconciler.tasks."""

from __future__ import annotations

import asyncio
import logging

import pytest

from etransfer_reconciler.tasks import BackgroundTasks


class TestBackgroundTasks:
    """Tests for BackgroundTasks."""

    def test_drain_waits_for_spawned_work(self) -> None:
        tasks = BackgroundTasks()
        done: list[str] = []

        async def work(name: str) -> None:
            await asyncio.sleep(0)
            done.append(name)

        async def scenario() -> int:
            tasks.spawn(work("a"), name="a")
            tasks.spawn(work("b"), name="b")
            running = len(tasks)
            await tasks.drain()
            return running

        assert asyncio.run(scenario()) == 2
        assert sorted(done) == ["a", "b"]
        assert len(tasks) == 0

    def test_failures_are_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        tasks = BackgroundTasks()

        async def boom() -> None:
            msg = "smtp down"
            raise RuntimeError(msg)

        async def scenario() -> None:
            tasks.spawn(boom(), name="notify-order-42")
            await tasks.drain()

        with caplog.at_level(logging.ERROR, logger="etransfer_reconciler.tasks"):
            asyncio.run(scenario())

        assert "Background task notify-order-42 failed" in caplog.text
        assert "smtp down" in caplog.text

    def test_drain_includes_tasks_spawned_meanwhile(self) -> None:
        tasks = BackgroundTasks()
        done: list[str] = []

        async def child() -> None:
            done.append("child")

        async def parent() -> None:
            await asyncio.sleep(0)
            tasks.spawn(child(), name="child")
            done.append("parent")

        async def scenario() -> None:
            tasks.spawn(parent(), name="parent")
            await tasks.drain()

        asyncio.run(scenario())

        assert done == ["parent", "child"]
