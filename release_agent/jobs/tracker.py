"""Submit/poll state machine over the generation backend."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from release_agent.adapters.base import BackendAdapter
from release_agent.config import TrackerConfig
from release_agent.core.clock import SYSTEM_CLOCK, Clock
from release_agent.core.errors import BackendError, JobFailed, JobPollingError, JobTimedOut
from release_agent.core.models import AsyncJob, CachedMedia, GeneratedTrack, JobState
from release_agent.core.store import MemoryStore

logger = logging.getLogger(__name__)

SUCCESS_STATUS = "SUCCESS"
FAILURE_STATUSES = frozenset(
    {"CREATE_TASK_FAILED", "GENERATE_AUDIO_FAILED", "CALLBACK_EXCEPTION", "SENSITIVE_WORD_ERROR"}
)
IN_PROGRESS_STATUSES = frozenset({"PENDING", "TEXT_SUCCESS", "FIRST_SUCCESS"})


def classify_status(raw_status: Optional[str]) -> JobState:
    """Map a backend status string onto the tracker state machine.

    Unknown statuses are treated as still in progress.
    """
    if raw_status == SUCCESS_STATUS:
        return JobState.SUCCEEDED
    if raw_status in FAILURE_STATUSES:
        return JobState.FAILED
    if raw_status not in IN_PROGRESS_STATUSES:
        logger.debug(f"Unknown generation status {raw_status!r}, treating as in progress")
    return JobState.POLLING


@dataclass(slots=True)
class JobStatus:
    """Outcome of a single poll."""

    job_id: str
    state: JobState
    raw_status: Optional[str]
    tracks: List[GeneratedTrack] = field(default_factory=list)
    error: Optional[str] = None


PollObserver = Callable[[JobStatus], Awaitable[None]]


class AsyncJobTracker:
    """Turns the generation backend into an awaitable.

    Active jobs live in memory until they reach a terminal state; terminal
    jobs, together with any media fetched on completion, move to a bounded
    store that evicts the oldest entry once over capacity.
    """

    def __init__(
        self,
        adapter: BackendAdapter,
        config: TrackerConfig = TrackerConfig(),
        clock: Clock = SYSTEM_CLOCK,
        store: Optional[MemoryStore[str, AsyncJob]] = None,
    ) -> None:
        self._adapter = adapter
        self._config = config
        self._clock = clock
        self._store: MemoryStore[str, AsyncJob] = store or MemoryStore(capacity=config.cache_capacity)
        self._active: Dict[str, AsyncJob] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def _call(self, operation: str, args: Mapping[str, Any]) -> Dict[str, Any]:
        attempts = max(1, self._config.call_attempts)
        for attempt in range(1, attempts):
            try:
                return await self._adapter.invoke(operation, args)
            except BackendError as exc:
                if not exc.retryable:
                    raise
                delay = 2 * attempt
                logger.warning(
                    f"{operation} attempt {attempt}/{attempts} failed: {exc.message}. Retrying in {delay}s"
                )
                await self._clock.sleep(delay)
        return await self._adapter.invoke(operation, args)

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        return self._locks.setdefault(job_id, asyncio.Lock())

    async def submit(self, args: Mapping[str, Any]) -> str:
        """Start a job; returns as soon as the backend acknowledges it."""
        data = await self._call("submit_generation", args)
        job_id = data["task_id"]
        self._active[job_id] = AsyncJob(job_id=job_id, started_at=self._clock.time())
        logger.info(f"Generation job {job_id} submitted")
        return job_id

    async def get_job(self, job_id: str) -> Optional[AsyncJob]:
        job = self._active.get(job_id)
        if job is not None:
            return job
        return await self._store.get(job_id)

    async def cached_media(self, job_id: str) -> Optional[CachedMedia]:
        job = await self._store.get(job_id)
        return job.media if job is not None else None

    async def poll_once(self, job_id: str) -> JobStatus:
        async with self._lock_for(job_id):
            job = await self.get_job(job_id)
            if job is None:
                # Polling an id submitted elsewhere adopts it.
                job = AsyncJob(job_id=job_id, started_at=self._clock.time())
                self._active[job_id] = job

            data = await self._call("get_generation", {"task_id": job_id})
            raw_status = data.get("status")
            tracks: List[GeneratedTrack] = list(data.get("tracks") or [])
            state = classify_status(raw_status)
            if state is JobState.SUCCEEDED and not (tracks and tracks[0].audio_url):
                logger.info(f"Job {job_id} reported {raw_status} without an audio URL yet, still polling")
                state = JobState.POLLING

            job.raw_status = raw_status
            job.state = state
            if state is JobState.SUCCEEDED:
                job.result = tracks
            elif state is JobState.FAILED:
                job.error = data.get("error") or raw_status
            return JobStatus(job_id=job_id, state=state, raw_status=raw_status, tracks=tracks, error=job.error)

    async def await_completion(
        self,
        job_id: str,
        max_wait: Optional[float] = None,
        poll_interval: Optional[float] = None,
        on_poll: Optional[PollObserver] = None,
    ) -> AsyncJob:
        """Poll until the job is terminal.

        Raises :class:`JobFailed` on the first backend-reported failure,
        :class:`JobPollingError` once consecutive poll errors exceed the
        tolerance, and :class:`JobTimedOut` when ``max_wait`` runs out.
        """
        max_wait = self._config.max_wait if max_wait is None else max_wait
        poll_interval = self._config.poll_interval if poll_interval is None else poll_interval
        tolerance = self._config.poll_error_tolerance
        started = self._clock.monotonic()
        consecutive_errors = 0
        polls = 0

        while self._clock.monotonic() - started < max_wait:
            polls += 1
            try:
                status = await self.poll_once(job_id)
            except BackendError as exc:
                consecutive_errors += 1
                logger.warning(f"Poll {polls} of {job_id} failed ({consecutive_errors}/{tolerance}): {exc.message}")
                if consecutive_errors > tolerance:
                    await self._finish(job_id, JobState.FAILED, error=exc.message)
                    raise JobPollingError(job_id, consecutive_errors, exc) from exc
            else:
                consecutive_errors = 0
                logger.debug(f"Poll {polls} of {job_id}: {status.raw_status}")
                if on_poll is not None:
                    await on_poll(status)
                if status.state is JobState.SUCCEEDED:
                    return await self._complete(job_id)
                if status.state is JobState.FAILED:
                    await self._finish(job_id, JobState.FAILED, error=status.error)
                    raise JobFailed(job_id, status.error or str(status.raw_status))
            await self._clock.sleep(poll_interval)

        waited = self._clock.monotonic() - started
        await self._finish(job_id, JobState.TIMED_OUT, error=f"timed out after {waited:.0f}s")
        raise JobTimedOut(job_id, waited)

    async def _finish(self, job_id: str, state: JobState, error: Optional[str] = None) -> AsyncJob:
        job = self._active.pop(job_id, None) or await self._store.get(job_id) or AsyncJob(job_id=job_id)
        job.state = state
        job.finished_at = self._clock.time()
        if error is not None:
            job.error = error
        await self._store.put(job_id, job)
        self._prune_locks()
        return job

    async def _complete(self, job_id: str) -> AsyncJob:
        job = await self._finish(job_id, JobState.SUCCEEDED)
        track = job.result[0] if job.result else None
        if track is None:
            return job
        try:
            audio = await self._adapter.fetch_media(track.audio_url, fallback_url=track.stream_audio_url)
        except BackendError as exc:
            logger.warning(f"Could not cache audio for {job_id}: {exc.message}")
            return job
        image = None
        if track.image_url:
            try:
                image = await self._adapter.fetch_media(track.image_url)
            except BackendError as exc:
                logger.warning(f"Could not cache cover image for {job_id}: {exc.message}")
        job.media = CachedMedia(title=track.title, audio=audio, image=image, fetched_at=self._clock.time())
        logger.info(f"Cached {len(audio)} bytes of audio for {job_id}")
        return job

    def _prune_locks(self) -> None:
        for job_id in list(self._locks):
            if job_id not in self._active and job_id not in self._store:
                del self._locks[job_id]

    async def generate(self, args: Mapping[str, Any], on_poll: Optional[PollObserver] = None) -> AsyncJob:
        """Submit a job and wait for it with the configured policy."""
        job_id = await self.submit(args)
        return await self.await_completion(job_id, on_poll=on_poll)
