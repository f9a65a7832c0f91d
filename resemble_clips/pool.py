"""
Drives clip requests through their lifecycle.

Every outbound call runs as an asyncio task. When it finishes, its outcome is
queued as a `CallCompletion`; only `RequestPool.tick` consumes that queue, so
all job state changes happen in one place, one at a time.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Coroutine, Dict, FrozenSet, Optional, Set

from .api_client import ClipStatus, ResembleClient
from .artifacts import ArtifactWriter
from .constants import POLL_COOLDOWN, STATUS_TIMEOUT
from .exceptions import (
    ClipRequestError, CreateOrUpdateError, StatusCheckError, RequestTimeoutError,
    DownloadError, DeletionError, RequestCancelledError,
)
from .jobs import Job, JobState, make_temporary_name
from .notifications import Notifier, Severity
from .store import JobStore

SUBMIT, STATUS, DOWNLOAD, DELETE = 'submit', 'status', 'download', 'delete'

# The states in which each kind of call may be outstanding.
CALL_OWNERS: Dict[str, FrozenSet[JobState]] = {
    SUBMIT: frozenset({JobState.SUBMITTING}),
    STATUS: frozenset({JobState.AWAITING_FIRST_STATUS, JobState.POLLING}),
    DOWNLOAD: frozenset({JobState.DOWNLOADING}),
    DELETE: frozenset({JobState.DELETING_REMOTE}),
}

CALL_ERRORS = {
    SUBMIT: CreateOrUpdateError,
    STATUS: StatusCheckError,
    DOWNLOAD: DownloadError,
    DELETE: DeletionError,
}

STATE_ERRORS = {
    JobState.CREATED: CreateOrUpdateError,
    JobState.SUBMITTING: CreateOrUpdateError,
    JobState.AWAITING_FIRST_STATUS: StatusCheckError,
    JobState.POLLING: StatusCheckError,
    JobState.DOWNLOADING: DownloadError,
    JobState.DELETING_REMOTE: DeletionError,
}


@dataclass
class CallCompletion:
    """The outcome of one outbound call, waiting to be applied by the next tick."""
    job_id: str
    token: int
    kind: str
    result: Any = None
    error: Optional[BaseException] = None


class RequestPool:
    """Starts clip requests and advances them on every scheduler tick."""

    def __init__(self, client: ResembleClient, store: JobStore, notifier: Notifier,
                 artifacts: ArtifactWriter, poll_cooldown: float = POLL_COOLDOWN,
                 status_timeout: float = STATUS_TIMEOUT, clock: Callable[[], float] = time.monotonic):
        """
        Initializes the RequestPool.

        Args:
            client: Remote service client.
            store: Shared job store; its scheduler must call `tick`.
            notifier: Receives the terminal message of every job.
            artifacts: Writes downloaded audio.
            poll_cooldown: Minimum seconds between two status calls for one job.
            status_timeout: Seconds a job may wait for its clip before failing.
            clock: Time source used when starting jobs outside of a tick.
        """
        self.client = client
        self.store = store
        self.notifier = notifier
        self.artifacts = artifacts
        self.poll_cooldown = poll_cooldown
        self.status_timeout = status_timeout
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self._completions: asyncio.Queue[CallCompletion] = asyncio.Queue()
        self._calls: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    # --- Starting requests ---

    async def start_clip_request(self, title: str, body: str, voice: str, target_path: Path,
                                 remote_id: str = "", display_name: Optional[str] = None,
                                 notify_subject: Any = None) -> Job:
        """
        Generates (or regenerates, when `remote_id` is given) a named clip.

        If a request for the same remote clip is already in flight, that job is
        returned and nothing new is started.
        """
        existing = self.store.find_by_remote_id(remote_id)
        if existing is not None:
            self.logger.info(f"A request for clip {remote_id} is already running ({existing.display_name}).")
            return existing

        job = Job(
            display_name=display_name or title, target_path=Path(target_path), title=title,
            body=body, voice=voice, remote_id=remote_id, notify_subject=notify_subject,
        )
        await self._start(job)
        return job

    async def start_one_shot(self, body: str, voice: str, target_path: Path) -> Job:
        """Generates a throwaway remote clip, downloads it, then deletes it remotely."""
        target_path = Path(target_path)
        job = Job(
            display_name=f"OneShot > {target_path.stem}", target_path=target_path,
            title=make_temporary_name(), body=body, voice=voice,
            delete_remote_on_completion=True, notify_subject=str(target_path),
        )
        await self._start(job)
        return job

    async def _start(self, job: Job):
        try:
            if await self.artifacts.write_placeholder(job.target_path):
                self.logger.debug(f"Placeholder written to {job.target_path}")
        except OSError as e:
            self.logger.warning(f"Could not write placeholder for {job.display_name}: {e}")

        self.logger.info(f"Starting clip request: {job.display_name}")
        self.store.add(job)
        self._idle.clear()
        self._submit(job)

    def load_persisted(self) -> int:
        """Rehydrates jobs saved by a previous run; they resume on the next tick."""
        count = self.store.load(self.clock())
        if count:
            self._idle.clear()
        return count

    def cancel(self, job_id: str) -> bool:
        """Cancels a job; a completion still in flight for it will be ignored."""
        job = self.store.get(job_id)
        if job is None:
            return False
        self._fail(job, RequestCancelledError("Cancelled by user"))
        return True

    # --- Waiting ---

    @property
    def pending_calls(self) -> int:
        return len(self._calls)

    async def wait_for_calls(self):
        """Waits until every outbound call issued so far has finished."""
        if self._calls:
            await asyncio.gather(*list(self._calls), return_exceptions=True)

    async def wait_until_idle(self):
        """Waits until the store is empty."""
        await self._idle.wait()

    async def shutdown(self):
        """Stops advancing jobs. Unfinished jobs stay persisted and resume on the next start."""
        self.store.scheduler.stop()
        for job in self.store.snapshot():
            job.current_call = None
        calls = list(self._calls)
        for task in calls:
            task.cancel()
        if calls:
            await asyncio.gather(*calls, return_exceptions=True)
        self.store.persist()

    # --- Scheduler tick ---

    def tick(self, now: float):
        """
        Applies queued call completions, then advances every job that needs attention.

        A failure while handling one job fails that job only.
        """
        while True:
            try:
                completion = self._completions.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._guarded(self._apply_completion, completion, now)

        for job in self.store.snapshot():
            if job not in self.store:
                continue
            self._guarded(self._evaluate, job, now)

    def _guarded(self, handler: Callable, item: Any, now: float):
        try:
            handler(item, now)
        except Exception as e:
            job = item if isinstance(item, Job) else self.store.get(item.job_id)
            self.logger.exception(f"Error while advancing job {job.display_name if job else item}:")
            if job is not None and not job.is_done and job in self.store:
                self._fail(job, STATE_ERRORS.get(job.state, ClipRequestError)(str(e)))

    def _evaluate(self, job: Job, now: float):
        if job.resume_pending and not job.has_call_in_flight:
            job.resume_pending = False
            self._resume(job, now)
            return

        if job.state not in (JobState.AWAITING_FIRST_STATUS, JobState.POLLING):
            return

        if now - job.poll_started_at > self.status_timeout:
            self._fail(job, RequestTimeoutError(f"Clip was not ready after {self.status_timeout:g} seconds"))
            return

        if job.has_call_in_flight:
            return

        # Force a delay between status requests to avoid flooding the API.
        delta = now - job.last_poll_time
        if job.state == JobState.AWAITING_FIRST_STATUS or delta < 0 or delta > self.poll_cooldown:
            self._poll(job, now)

    def _resume(self, job: Job, now: float):
        self.logger.info(f"Resuming '{job.display_name}' in state {job.state.value}")
        if job.state in (JobState.CREATED, JobState.SUBMITTING):
            self._submit(job)
        elif job.state in (JobState.AWAITING_FIRST_STATUS, JobState.POLLING):
            self._poll(job, now)
        elif job.state == JobState.DOWNLOADING:
            if not job.download_url:
                self._fail(job, DownloadError("No download link was saved for this clip"))
            else:
                self._download(job)
        elif job.state == JobState.DELETING_REMOTE:
            self._delete(job)

    # --- Outbound calls ---

    def _issue(self, job: Job, kind: str, coro: Coroutine):
        assert job.current_call is None, f"{job.display_name} already has a call in flight"
        job.call_token += 1
        token = job.call_token
        task = asyncio.get_running_loop().create_task(coro, name=f"{kind}-{job.job_id[:8]}")
        job.current_call = task
        self._calls.add(task)
        task.add_done_callback(lambda t: self._on_call_done(t, job.job_id, token, kind))

    def _on_call_done(self, task: asyncio.Task, job_id: str, token: int, kind: str):
        self._calls.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        completion = CallCompletion(job_id, token, kind,
                                    result=None if error else task.result(), error=error)
        self._completions.put_nowait(completion)

    def _submit(self, job: Job):
        if job.state == JobState.CREATED:
            self._advance(job, JobState.SUBMITTING)
        self._issue(job, SUBMIT, self.client.create_or_update(job.remote_id or None, job.title, job.body, job.voice))

    def _poll(self, job: Job, now: float):
        job.last_poll_time = now
        self._issue(job, STATUS, self.client.get_status(job.remote_id))

    def _download(self, job: Job):
        self._issue(job, DOWNLOAD, self._download_and_write(job))

    def _delete(self, job: Job):
        self._issue(job, DELETE, self.client.delete(job.remote_id))

    async def _download_and_write(self, job: Job):
        def on_progress(fraction: float):
            if job.state == JobState.DOWNLOADING:
                job.download_progress = fraction

        data = await self.client.download(job.download_url, on_progress)
        try:
            await self.artifacts.write(job.target_path, data)
        except OSError as e:
            raise DownloadError(f"Could not write {job.target_path}: {e}")

    # --- Completions ---

    def _apply_completion(self, completion: CallCompletion, now: float):
        job = self.store.get(completion.job_id)
        if (job is None or job.current_call is None or job.call_token != completion.token
                or job.state not in CALL_OWNERS[completion.kind]):
            self.logger.debug(f"Ignoring stale {completion.kind} completion for job {completion.job_id}")
            return
        job.current_call = None

        if completion.error is not None:
            error = completion.error
            if not isinstance(error, ClipRequestError):
                error = CALL_ERRORS[completion.kind](str(error))
            self._fail(job, error)
            return

        handlers = {
            SUBMIT: self._on_submitted,
            STATUS: self._on_status,
            DOWNLOAD: self._on_downloaded,
            DELETE: self._on_deleted,
        }
        handlers[completion.kind](job, completion.result, now)

    def _on_submitted(self, job: Job, remote_id: str, now: float):
        if not job.remote_id:
            job.remote_id = remote_id
        job.poll_started_at = now
        job.last_poll_time = now
        self._advance(job, JobState.AWAITING_FIRST_STATUS)

    def _on_status(self, job: Job, status: ClipStatus, now: float):
        if not status.ready:
            if job.state == JobState.AWAITING_FIRST_STATUS:
                self._advance(job, JobState.POLLING)
            return
        job.download_url = status.download_url
        self._advance(job, JobState.DOWNLOADING)
        self._download(job)

    def _on_downloaded(self, job: Job, _result: Any, now: float):
        if job.delete_remote_on_completion:
            self._advance(job, JobState.DELETING_REMOTE)
            self._delete(job)
        else:
            self._complete(job)

    def _on_deleted(self, job: Job, _result: Any, now: float):
        self._complete(job)

    # --- Transitions ---

    def _advance(self, job: Job, state: JobState):
        self.logger.debug(f"{job.display_name}: {job.state.value} -> {state.value}")
        job.advance(state)
        self.store.persist()

    def _complete(self, job: Job):
        job.advance(JobState.COMPLETED)
        self.notifier.notify(f"Download completed\n{job.display_name}", Severity.INFO, job.notify_subject)
        self._prune(job)

    def _fail(self, job: Job, error: ClipRequestError):
        if job.current_call is not None:
            job.current_call.cancel()
            job.current_call = None
        if isinstance(error, DeletionError):
            error = DeletionError(f"{error.detail}. The audio was kept at {job.target_path}, "
                                  f"but remote clip {job.remote_id} may be orphaned")
        job.fail(error)
        severity = Severity.INFO if isinstance(error, RequestCancelledError) else Severity.ERROR
        self.notifier.notify(f"{job.display_name}\n{error}", severity, job.notify_subject)
        self._prune(job)

    def _prune(self, job: Job):
        self.store.remove(job)
        if not len(self.store):
            self._idle.set()
