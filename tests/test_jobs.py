"""Tests for the job registry and progress broadcaster."""

import asyncio
import json

import pytest

from intention.jobs import (
    DONE,
    ERROR,
    HEARTBEAT,
    PENDING,
    RUNNING,
    InvalidTransition,
    JobRegistry,
    ProgressBroadcaster,
    ProgressEvent,
    SubscriberClosed,
    Subscription,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def kinds(events):
    return [e.kind for e in events]


def run(coro):
    return asyncio.run(coro)


class TestProgressEvent:
    def test_sse_format(self):
        event = ProgressEvent("log", {"message": "hi"})
        assert event.to_sse() == 'event: log\ndata: {"message": "hi"}\n\n'


class TestStatusTransitions:
    """Status only moves pending -> running -> done|error."""

    def setup_method(self):
        self.registry = JobRegistry()
        self.broadcaster = ProgressBroadcaster()

    def test_new_job_is_pending(self):
        job = self.registry.create_job()
        assert job.status == PENDING
        assert job.logs == []
        assert job.result is None

    def test_forward_path(self):
        job = self.registry.create_job()
        self.broadcaster.set_status(job, RUNNING)
        self.broadcaster.set_status(job, DONE)
        assert job.status == DONE
        assert job.finished_at is not None

    @pytest.mark.parametrize("path", [
        [DONE],
        [RUNNING, PENDING],
        [RUNNING, DONE, RUNNING],
        [RUNNING, ERROR, DONE],
        [RUNNING, RUNNING],
    ])
    def test_rejected(self, path):
        job = self.registry.create_job()
        with pytest.raises(InvalidTransition):
            for status in path:
                self.broadcaster.set_status(job, status)

    def test_error_message(self):
        job = self.registry.create_job()
        with pytest.raises(InvalidTransition, match="cannot move from pending to done"):
            self.broadcaster.set_status(job, DONE)

    def test_complete_with_error(self):
        job = self.registry.create_job()
        self.broadcaster.set_status(job, RUNNING)
        self.broadcaster.complete(job, error="boom")
        assert job.status == ERROR
        assert job.logs[-1].endswith("Error: boom")
        assert job.result is None


class TestLogs:
    def test_log_lines_are_timestamped(self):
        registry = JobRegistry()
        job = registry.create_job()
        line = ProgressBroadcaster().append_log(job, "hello")
        timestamp, _, message = line.partition(" ")
        assert message == "hello"
        assert timestamp.endswith("Z")
        assert "T" in timestamp
        assert job.logs == [line]


class TestSubscriptions:
    """Tests for subscribe/unsubscribe and replay."""

    def setup_method(self):
        self.registry = JobRegistry()
        self.broadcaster = ProgressBroadcaster()

    def test_subscribe_replays_status(self):
        job = self.registry.create_job()
        sub = self.broadcaster.subscribe(job)
        events = sub.pending()
        assert kinds(events) == ["status"]
        assert events[0].data == {"status": PENDING}

    def test_late_subscriber_gets_full_history(self):
        job = self.registry.create_job()
        self.broadcaster.set_status(job, RUNNING)
        self.broadcaster.append_log(job, "one")
        self.broadcaster.append_log(job, "two")
        self.broadcaster.complete(job, result="Feature: X")

        sub = self.broadcaster.subscribe(job)
        events = sub.pending()
        assert kinds(events) == ["status", "log", "log", "done"]
        assert events[0].data == {"status": DONE}
        assert [e.data["message"].split(" ", 1)[1] for e in events[1:3]] == ["one", "two"]
        assert events[-1].data == {"gherkin": "Feature: X"}

    def test_live_events_in_order(self):
        job = self.registry.create_job()
        sub = self.broadcaster.subscribe(job)
        sub.pending()
        self.broadcaster.set_status(job, RUNNING)
        self.broadcaster.append_log(job, "working")
        self.broadcaster.complete(job, result="Feature: X")
        assert kinds(sub.pending()) == ["status", "log", "status", "done"]

    def test_every_subscriber_gets_events(self):
        job = self.registry.create_job()
        first = self.broadcaster.subscribe(job)
        second = self.broadcaster.subscribe(job)
        self.broadcaster.append_log(job, "shared")
        assert kinds(first.pending()) == ["status", "log"]
        assert kinds(second.pending()) == ["status", "log"]

    def test_unsubscribe_is_idempotent(self):
        job = self.registry.create_job()
        sub = self.broadcaster.subscribe(job)
        self.broadcaster.unsubscribe(job, sub)
        self.broadcaster.unsubscribe(job, sub)
        assert job.subscribers == []
        assert sub.closed

    def test_no_delivery_after_unsubscribe(self):
        job = self.registry.create_job()
        gone = self.broadcaster.subscribe(job)
        stays = self.broadcaster.subscribe(job)
        gone.pending()
        self.broadcaster.unsubscribe(job, gone)

        self.broadcaster.append_log(job, "after")
        self.broadcaster.set_status(job, RUNNING)

        assert gone.pending() == []
        assert kinds(stays.pending()) == ["status", "log", "status"]
        assert job.logs[-1].endswith(" after")

    def test_closed_subscriber_is_dropped(self):
        job = self.registry.create_job()
        dead = self.broadcaster.subscribe(job)
        alive = self.broadcaster.subscribe(job)
        dead.close()
        self.broadcaster.append_log(job, "still here")
        assert dead not in job.subscribers
        assert kinds(alive.pending()) == ["status", "log"]

    def test_deliver_after_close(self):
        sub = Subscription("job")
        sub.close()
        with pytest.raises(SubscriberClosed):
            sub.deliver(ProgressEvent("log", {"message": "x"}))


class TestStream:
    """Tests for Subscription.stream."""

    def test_heartbeat_then_done(self):
        async def scenario():
            registry = JobRegistry()
            broadcaster = ProgressBroadcaster()
            job = registry.create_job()
            sub = broadcaster.subscribe(job)
            chunks = []

            async def consume():
                async for chunk in sub.stream(heartbeat=0.01):
                    chunks.append(chunk)

            consumer = asyncio.create_task(consume())
            await asyncio.sleep(0.05)
            broadcaster.set_status(job, RUNNING)
            broadcaster.complete(job, result="Feature: X")
            await asyncio.wait_for(consumer, timeout=1)
            return chunks

        chunks = run(scenario())
        assert chunks[0].startswith("event: status")
        assert HEARTBEAT in chunks
        assert chunks[-1].startswith("event: done")
        data = json.loads(chunks[-1].split("data: ", 1)[1])
        assert data == {"gherkin": "Feature: X"}

    def test_stream_ends_on_replayed_done(self):
        async def scenario():
            registry = JobRegistry()
            broadcaster = ProgressBroadcaster()
            job = registry.create_job()
            broadcaster.set_status(job, RUNNING)
            broadcaster.complete(job, error="bad")
            sub = broadcaster.subscribe(job)
            return [c async for c in sub.stream(heartbeat=5)]

        chunks = run(scenario())
        assert chunks[-1] == 'event: done\ndata: {"gherkin": ""}\n\n'


class TestEviction:
    """Tests for JobRegistry eviction."""

    def finish(self, registry, broadcaster, job):
        broadcaster.set_status(job, RUNNING)
        broadcaster.complete(job, result="Feature: X")

    def test_expired_finished_jobs_are_evicted(self):
        clock = FakeClock()
        registry = JobRegistry(retention_seconds=60, clock=clock)
        broadcaster = ProgressBroadcaster(clock=clock)
        old = registry.create_job()
        self.finish(registry, broadcaster, old)
        running = registry.create_job()
        broadcaster.set_status(running, RUNNING)

        clock.now += 61
        registry.create_job()
        assert old.id not in registry
        assert running.id in registry

    def test_recent_jobs_are_kept(self):
        clock = FakeClock()
        registry = JobRegistry(retention_seconds=60, clock=clock)
        broadcaster = ProgressBroadcaster(clock=clock)
        job = registry.create_job()
        self.finish(registry, broadcaster, job)
        clock.now += 30
        assert registry.evict_expired() == []
        assert registry.get(job.id) is job

    def test_capacity_drops_oldest_finished(self):
        clock = FakeClock()
        registry = JobRegistry(retention_seconds=3600, max_jobs=2, clock=clock)
        broadcaster = ProgressBroadcaster(clock=clock)
        first = registry.create_job()
        self.finish(registry, broadcaster, first)
        clock.now += 1
        second = registry.create_job()
        self.finish(registry, broadcaster, second)
        clock.now += 1

        third = registry.create_job()
        assert first.id not in registry
        assert second.id in registry
        assert third.id in registry
        assert len(registry) == 2

    def test_capacity_never_drops_unfinished(self):
        registry = JobRegistry(max_jobs=1)
        first = registry.create_job()
        second = registry.create_job()
        assert first.id in registry
        assert second.id in registry
