"""Tests for progress notices (driven with asyncio.run, no plugins needed)."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from src.assistant.notifier import HttpNotifier
from src.threads.progress import ProgressNotifier, ProgressRegistry, ResponseState


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, thread_id: str, text: str) -> None:
        self.sent.append((thread_id, text))


class FailingNotifier:
    def __init__(self) -> None:
        self.attempts = 0

    async def send(self, thread_id: str, text: str) -> None:
        self.attempts += 1
        raise RuntimeError("webhook down")


async def _wait_until_done(progress: ProgressNotifier, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while progress.running and loop.time() < deadline:
        await asyncio.sleep(0.001)


class TestProgressNotifier:
    def test_caps_at_max_messages(self) -> None:
        notifier = RecordingNotifier()

        async def scenario() -> ProgressNotifier:
            progress = ProgressNotifier(notifier, "t1", delay_seconds=0, max_messages=4)
            progress.start()
            await _wait_until_done(progress)
            return progress

        progress = asyncio.run(scenario())

        assert progress.count == 4
        assert len(notifier.sent) == 4
        assert all(thread == "t1" for thread, _ in notifier.sent)

    def test_nothing_sent_once_response_is_out(self) -> None:
        notifier = RecordingNotifier()

        async def scenario() -> None:
            progress = ProgressNotifier(notifier, "t1", delay_seconds=0.01, max_messages=4)
            progress.start()
            progress.state.mark_sent()
            await _wait_until_done(progress)

        asyncio.run(scenario())
        assert notifier.sent == []

    def test_stop_cancels_pending_notice(self) -> None:
        notifier = RecordingNotifier()

        async def scenario() -> ProgressNotifier:
            progress = ProgressNotifier(notifier, "t1", delay_seconds=30, max_messages=4)
            progress.start()
            await asyncio.sleep(0)
            await progress.stop()
            return progress

        progress = asyncio.run(scenario())

        assert not progress.running
        assert notifier.sent == []

    def test_at_most_one_stray_notice_after_flag_flips(self) -> None:
        state = ResponseState()

        class SlowNotifier:
            def __init__(self) -> None:
                self.sent = 0
                self.in_flight = asyncio.Event()
                self.release = asyncio.Event()

            async def send(self, thread_id: str, text: str) -> None:
                self.in_flight.set()
                await self.release.wait()
                self.sent += 1

        async def scenario() -> int:
            notifier = SlowNotifier()
            progress = ProgressNotifier(notifier, "t1", state=state, delay_seconds=0, max_messages=4)
            progress.start()
            await notifier.in_flight.wait()
            state.mark_sent()
            notifier.release.set()
            await _wait_until_done(progress)
            return notifier.sent

        assert asyncio.run(scenario()) == 1

    def test_send_failures_are_logged_and_bounded(self) -> None:
        notifier = FailingNotifier()

        async def scenario() -> None:
            progress = ProgressNotifier(notifier, "t1", delay_seconds=0, max_messages=3)
            progress.start()
            await _wait_until_done(progress)

        asyncio.run(scenario())
        assert notifier.attempts == 3


class TestProgressRegistry:
    def test_finish_marks_sent_and_stops(self) -> None:
        notifier = RecordingNotifier()

        async def scenario() -> tuple[ProgressNotifier, int]:
            registry = ProgressRegistry()
            progress = registry.start("t1", notifier, delay_seconds=30)
            await registry.finish("t1")
            return progress, len(registry)

        progress, remaining = asyncio.run(scenario())

        assert progress.state.sent
        assert not progress.running
        assert remaining == 0

    def test_start_is_idempotent_per_thread(self) -> None:
        notifier = RecordingNotifier()

        async def scenario() -> bool:
            registry = ProgressRegistry()
            first = registry.start("t1", notifier, delay_seconds=30)
            second = registry.start("t1", notifier, delay_seconds=30)
            await registry.close()
            return first is second

        assert asyncio.run(scenario())

    def test_close_stops_everything(self) -> None:
        notifier = RecordingNotifier()

        async def scenario() -> list[ProgressNotifier]:
            registry = ProgressRegistry()
            started = [registry.start(t, notifier, delay_seconds=30) for t in ("t1", "t2")]
            await registry.close()
            assert len(registry) == 0
            return started

        for progress in asyncio.run(scenario()):
            assert not progress.running

    def test_finish_unknown_thread_is_noop(self) -> None:
        asyncio.run(ProgressRegistry().finish("missing"))


class TestHttpNotifier:
    def test_posts_json_payload(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        async def scenario() -> None:
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                await HttpNotifier("https://hooks.test/notify", client=client).send("t1", "Still working…")

        asyncio.run(scenario())

        (request,) = seen
        assert request.url == "https://hooks.test/notify"
        assert json.loads(request.content) == {"thread_id": "t1", "text": "Still working…"}

    def test_error_status_raises(self) -> None:
        async def scenario() -> None:
            transport = httpx.MockTransport(lambda request: httpx.Response(500))
            async with httpx.AsyncClient(transport=transport) as client:
                await HttpNotifier("https://hooks.test/notify", client=client).send("t1", "x")

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(scenario())
