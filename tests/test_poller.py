import asyncio
from datetime import datetime, timedelta, timezone

from conftest import make_message

from textbridge.core.models import PipelineOutcome
from textbridge.core.poller import INITIAL_LOOKBACK, Poller

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingPipeline:
    def __init__(self, fail_for=()):
        self.processed = []
        self.fail_for = set(fail_for)

    async def process(self, message):
        if message.message_handle in self.fail_for:
            raise RuntimeError("boom")
        self.processed.append(message.message_handle)
        return PipelineOutcome.DISPATCHED


async def test_first_poll_looks_back_one_minute(provider):
    clock = Clock()
    poller = Poller(provider, RecordingPipeline(), clock=clock)

    await poller.poll_once()
    assert provider.fetch_calls == [T0 - INITIAL_LOOKBACK]


async def test_cursor_is_advanced_before_the_query(provider):
    clock = Clock()
    poller = Poller(provider, RecordingPipeline(), clock=clock)

    clock.now = T0 + timedelta(seconds=5)
    await poller.poll_once()
    assert poller.cursor == T0 + timedelta(seconds=5)

    clock.now = T0 + timedelta(seconds=10)
    await poller.poll_once()
    assert provider.fetch_calls[1] == T0 + timedelta(seconds=5)
    assert poller.cursor == T0 + timedelta(seconds=10)


async def test_fetch_failure_rolls_cursor_back(provider):
    clock = Clock()
    poller = Poller(provider, RecordingPipeline(), clock=clock)
    start = poller.cursor
    provider.fetch_error = RuntimeError("network down")

    clock.now = T0 + timedelta(seconds=5)
    assert await poller.poll_once() == 0
    assert poller.cursor == start

    provider.fetch_error = None
    clock.now = T0 + timedelta(seconds=10)
    await poller.poll_once()
    assert provider.fetch_calls[-1] == start


async def test_outbound_messages_are_skipped(provider):
    pipeline = RecordingPipeline()
    poller = Poller(provider, pipeline, clock=Clock())
    provider.inbound = [make_message("m1"), make_message("m2", is_outbound=True)]

    assert await poller.poll_once() == 1
    assert pipeline.processed == ["m1"]


async def test_one_failing_message_does_not_abort_the_batch(provider):
    pipeline = RecordingPipeline(fail_for={"m1"})
    poller = Poller(provider, pipeline, clock=Clock())
    provider.inbound = [make_message("m1"), make_message("m2")]

    assert await poller.poll_once() == 1
    assert pipeline.processed == ["m2"]


async def test_overlapping_cycle_is_skipped(provider):
    release = asyncio.Event()
    entered = asyncio.Event()

    async def slow_fetch(since):
        provider.fetch_calls.append(since)
        entered.set()
        await release.wait()
        return []

    provider.fetch_inbound = slow_fetch
    poller = Poller(provider, RecordingPipeline(), clock=Clock())

    first = asyncio.create_task(poller.poll_once())
    await entered.wait()
    assert poller.in_flight is True

    assert await poller.poll_once() == 0
    assert poller.skipped_cycles == 1
    assert len(provider.fetch_calls) == 1

    release.set()
    await first
    assert poller.in_flight is False


async def test_duplicates_across_polls_reach_backend_once(provider, backend, pipeline):
    clock = Clock()
    poller = Poller(provider, pipeline, clock=clock)
    provider.inbound = [make_message("m1")]

    await poller.poll_once()
    clock.now = T0 + timedelta(seconds=5)
    await poller.poll_once()

    assert [e.message_id for e in backend.envelopes] == ["m1"]
