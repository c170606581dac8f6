# jobs.py
from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .settings import HEARTBEAT_SECONDS, JOB_RETENTION_SECONDS, MAX_JOBS
from .ui.console import get_console

# ---------------------------------------------------------------------
# Job state
# ---------------------------------------------------------------------

PENDING = "pending"
RUNNING = "running"
DONE = "done"
ERROR = "error"

TERMINAL = (DONE, ERROR)

_ALLOWED = {
    PENDING: (RUNNING,),
    RUNNING: (DONE, ERROR),
    DONE: (),
    ERROR: (),
}

HEARTBEAT = ": ping\n\n"


@dataclass
class InvalidTransition(Exception):
    """Raised when a job status would move backwards or be set twice."""
    job_id: str
    current: str
    requested: str

    def __str__(self) -> str:
        return f"job {self.job_id}: cannot move from {self.current} to {self.requested}"


class SubscriberClosed(Exception):
    """Raised when delivering to a subscription that has been closed."""
    pass


@dataclass(frozen=True)
class ProgressEvent:
    kind: str  # status|log|done
    data: Dict[str, Any]

    def to_sse(self) -> str:
        return f"event: {self.kind}\ndata: {json.dumps(self.data)}\n\n"


class Subscription:
    """
    A single progress listener.

    Every subscriber owns its own queue, so a slow or broken consumer can
    only ever lose its own events.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self.queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self.closed = False

    def deliver(self, event: ProgressEvent) -> None:
        if self.closed:
            raise SubscriberClosed(self.job_id)
        self.queue.put_nowait(event)

    def close(self) -> None:
        self.closed = True

    def pending(self) -> List[ProgressEvent]:
        """Drain queued events without waiting."""
        events: List[ProgressEvent] = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events

    async def stream(self, heartbeat: float = HEARTBEAT_SECONDS) -> AsyncIterator[str]:
        """
        Yield SSE text for each event, with a comment line whenever the job
        stays quiet for `heartbeat` seconds. Ends after the done event.
        """
        while not self.closed:
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield HEARTBEAT
                continue
            yield event.to_sse()
            if event.kind == "done":
                return


@dataclass
class Job:
    """One repository analysis request and its lifecycle."""
    id: str
    status: str = PENDING
    logs: List[str] = field(default_factory=list)
    result: Optional[str] = None
    subscribers: List[Subscription] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "logs": list(self.logs),
            "gherkin": self.result or "",
        }


# ---------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------

class JobRegistry:
    """
    In-process map of job id -> Job.

    Only touched from the event loop, so no locking. Finished jobs are
    evicted after `retention_seconds`, and the map never holds more than
    `max_jobs` entries unless they are all still running.
    """

    def __init__(
        self,
        retention_seconds: float = JOB_RETENTION_SECONDS,
        max_jobs: int = MAX_JOBS,
        clock: Callable[[], float] = time.time,
    ):
        self.retention_seconds = retention_seconds
        self.max_jobs = max_jobs
        self.clock = clock
        self._jobs: Dict[str, Job] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def create_job(self) -> Job:
        self.evict_expired()
        job = Job(id=uuid.uuid4().hex, created_at=self.clock())
        self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def evict_expired(self) -> List[str]:
        """Drop finished jobs past retention, then the oldest finished ones over capacity."""
        now = self.clock()
        evicted = [
            job_id
            for job_id, job in self._jobs.items()
            if job.terminal and job.finished_at is not None
            and now - job.finished_at >= self.retention_seconds
        ]
        for job_id in evicted:
            del self._jobs[job_id]

        # room for the job about to be created
        overflow = len(self._jobs) - self.max_jobs + 1
        if overflow > 0:
            finished = sorted(
                (j for j in self._jobs.values() if j.terminal),
                key=lambda j: j.finished_at or j.created_at,
            )
            for job in finished[:overflow]:
                del self._jobs[job.id]
                evicted.append(job.id)

        if evicted:
            get_console().print_debug(f"Evicted {len(evicted)} finished job(s)")
        return evicted


# ---------------------------------------------------------------------
# Broadcaster
# ---------------------------------------------------------------------

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ProgressBroadcaster:
    """Pushes status/log/done events to every subscriber of a job."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def subscribe(self, job: Job) -> Subscription:
        """
        Register a listener and replay the job's history into it:
        current status, every log line so far, and done if already finished.
        """
        sub = Subscription(job.id)
        sub.deliver(ProgressEvent("status", {"status": job.status}))
        for line in job.logs:
            sub.deliver(ProgressEvent("log", {"message": line}))
        if job.terminal:
            sub.deliver(ProgressEvent("done", {"gherkin": job.result or ""}))
        job.subscribers.append(sub)
        return sub

    def unsubscribe(self, job: Job, sub: Subscription) -> None:
        sub.close()
        if sub in job.subscribers:
            job.subscribers.remove(sub)

    def append_log(self, job: Job, message: str) -> str:
        line = f"{_timestamp()} {message}"
        job.logs.append(line)
        get_console().print_job_log(job.id, message)
        self._broadcast(job, ProgressEvent("log", {"message": line}))
        return line

    def set_status(self, job: Job, status: str) -> None:
        if status not in _ALLOWED.get(job.status, ()):
            raise InvalidTransition(job_id=job.id, current=job.status, requested=status)
        job.status = status
        if job.terminal:
            job.finished_at = self.clock()
        self._broadcast(job, ProgressEvent("status", {"status": job.status}))

    def complete(
        self,
        job: Job,
        result: Optional[str] = None,
        error: Optional[BaseException | str] = None,
    ) -> None:
        """Move the job to done (or error), then send the final event."""
        if error is not None:
            self.set_status(job, ERROR)
            self.append_log(job, f"Error: {error}")
        else:
            job.result = result
            self.set_status(job, DONE)
        self._broadcast(job, ProgressEvent("done", {"gherkin": job.result or ""}))

    def _broadcast(self, job: Job, event: ProgressEvent) -> None:
        for sub in list(job.subscribers):
            try:
                sub.deliver(event)
            except Exception:
                # a dead or stalled listener only loses its own stream
                get_console().print_debug(f"Dropping subscriber of job {job.id}")
                self.unsubscribe(job, sub)
