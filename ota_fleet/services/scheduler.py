"""Drives update jobs forward in discrete ticks.

Each job gets its own asyncio task, so jobs progress independently. The
blocking database work of a tick runs in a worker thread with a fresh session.
A per-job lock serialises ticks and cancellation: a cancel either waits for the
in-flight tick to finish or runs before it starts, and the next tick then sees
the terminal status and stops without publishing anything.
"""
import asyncio
import logging
import uuid
from typing import Callable

from sqlalchemy.orm import Session

from ota_fleet.models import UpdateJob
from ota_fleet.schemas.job import JobUpdate
from ota_fleet.services.auth import CallerIdentity
from ota_fleet.services.broadcaster import ProgressBroadcaster
from ota_fleet.services.errors import NotFoundError
from ota_fleet.services.jobs import JobStateMachine

logger = logging.getLogger(__name__)


class JobScheduler:
    def __init__(
        self,
        state_machine: JobStateMachine,
        broadcaster: ProgressBroadcaster,
        session_factory: Callable[[], Session],
        start_delay: float = 1.0,
        tick_interval: float = 2.0,
        tick_attempts: int = 2,
    ):
        self.state_machine = state_machine
        self.broadcaster = broadcaster
        self.session_factory = session_factory
        self.start_delay = start_delay
        self.tick_interval = tick_interval
        self.tick_attempts = tick_attempts
        self._tasks: dict[uuid.UUID, asyncio.Task] = {}
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}

    def _lock_for(self, job_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    def is_running(self, job_id: uuid.UUID) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def schedule(self, job_id: uuid.UUID) -> asyncio.Task:
        """Start progressing ``job_id``; a job already being driven keeps its existing task."""
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            return task
        task = asyncio.get_running_loop().create_task(self._run(job_id), name=f"update-job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._forget(job_id, task))
        return task

    def _forget(self, job_id: uuid.UUID, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
            self._locks.pop(job_id, None)

    def _advance(self, job_id: uuid.UUID) -> tuple[list[JobUpdate], bool]:
        with self.session_factory() as db:
            events = self.state_machine.advance(db, job_id)
            job = db.get(UpdateJob, job_id)
            finished = job is None or job.status.is_terminal
        return events, finished

    def _cancel(self, job_id: uuid.UUID, actor: CallerIdentity) -> tuple[UpdateJob, JobUpdate]:
        with self.session_factory() as db:
            job, event = self.state_machine.cancel(db, job_id, actor)
            db.expunge(job)
        return job, event

    def _abort(self, job_id: uuid.UUID, reason: str) -> JobUpdate | None:
        with self.session_factory() as db:
            return self.state_machine.abort(db, job_id, reason)

    def _unfinished(self) -> list[uuid.UUID]:
        with self.session_factory() as db:
            return [job.id for job in self.state_machine.list_unfinished(db)]

    async def tick(self, job_id: uuid.UUID) -> bool:
        """Run one tick and publish its events; return True once the job is terminal.

        A tick that raises is retried once. If the retry fails too the job is
        moved to ``failed`` so it never stays unfinished without a driver.
        """
        async with self._lock_for(job_id):
            last_error: Exception | None = None
            for attempt in range(1, self.tick_attempts + 1):
                try:
                    events, finished = await asyncio.to_thread(self._advance, job_id)
                    break
                except NotFoundError:
                    raise
                except Exception as exc:
                    logger.warning("Tick of job %s failed (attempt %d): %s", job_id, attempt, exc)
                    last_error = exc
            else:
                logger.error("Giving up on job %s after %d failed ticks: %r", job_id, self.tick_attempts, last_error)
                event = await asyncio.to_thread(self._abort, job_id, "tick_failed")
                events, finished = ([event] if event else []), True
            for event in events:
                self.broadcaster.publish(event.job_id, event.data)
        return finished

    async def resume(self) -> int:
        """Schedule every job left pending or in progress, e.g. after a restart."""
        job_ids = await asyncio.to_thread(self._unfinished)
        for job_id in job_ids:
            self.schedule(job_id)
        if job_ids:
            logger.info("Resumed %d unfinished job(s)", len(job_ids))
        return len(job_ids)

    async def _run(self, job_id: uuid.UUID) -> None:
        try:
            await asyncio.sleep(self.start_delay)
            while not await self.tick(job_id):
                await asyncio.sleep(self.tick_interval)
            logger.info("Job %s finished", job_id)
        except asyncio.CancelledError:
            logger.info("Job %s progression stopped", job_id)
            raise
        except Exception:
            logger.exception("Job %s progression aborted", job_id)

    async def cancel(self, job_id: uuid.UUID, actor: CallerIdentity) -> UpdateJob:
        """Cancel ``job_id`` atomically with respect to its ticks and publish the terminal event."""
        lock = self._lock_for(job_id)
        try:
            async with lock:
                job, event = await asyncio.to_thread(self._cancel, job_id, actor)
                self.broadcaster.publish(event.job_id, event.data)
        finally:
            if not self.is_running(job_id) and self._locks.get(job_id) is lock and not lock.locked():
                del self._locks[job_id]
        task = self._tasks.get(job_id)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        return job

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._locks.clear()
