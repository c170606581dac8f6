# orchestrator.py
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, Set

from .jobs import RUNNING, Job, JobRegistry, ProgressBroadcaster
from .model import RepoRef
from .repo import repo_url
from .ui.console import get_console

# (repo_url, on_progress) -> final gherkin
AnalyzeFn = Callable[[str, Callable[[str], None]], Awaitable[str]]


class JobOrchestrator:
    """Creates generation jobs and runs the analysis for each in the background."""

    def __init__(
        self,
        registry: JobRegistry,
        broadcaster: ProgressBroadcaster,
        analyze: AnalyzeFn,
    ):
        self.registry = registry
        self.broadcaster = broadcaster
        self.analyze = analyze
        # strong refs so running tasks are not garbage collected mid-flight
        self._tasks: Set[asyncio.Task] = set()

    def start_generation(self, ref: RepoRef) -> str:
        """
        Register a job and schedule its work; returns the job id before any
        of that work has run, so callers can subscribe without racing it.
        Must be called from inside the running event loop.
        """
        job = self.registry.create_job()
        task = asyncio.get_running_loop().create_task(self._run(job, ref))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job.id

    async def wait_all(self) -> None:
        """Wait for every scheduled job body (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, job: Job, ref: RepoRef) -> None:
        console = get_console()
        url = repo_url(ref)
        start_time = time.time()
        console.print_job_started(job.id, url)

        try:
            self.broadcaster.set_status(job, RUNNING)
            self.broadcaster.append_log(job, f"Analyzing via OpenAI link-based analyzer on {url}")
            gherkin = await self.analyze(url, lambda msg: self.broadcaster.append_log(job, msg))
        except Exception as e:
            console.print_exception(e)
            self._finish(job, error=str(e) or type(e).__name__)
        else:
            self.broadcaster.append_log(job, "Generation complete.")
            self._finish(job, result=gherkin)

        console.print_job_finished(job.id, job.status, duration=time.time() - start_time)

    def _finish(self, job: Job, result: Optional[str] = None, error: Optional[str] = None) -> None:
        if job.terminal:
            return
        if job.status != RUNNING:
            # failed before the job was marked running
            self.broadcaster.set_status(job, RUNNING)
        self.broadcaster.complete(job, result=result, error=error)
