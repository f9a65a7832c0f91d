"""The shared collection of in-flight clip requests."""
import logging
from typing import Dict, Iterator, Optional, Tuple

from .exceptions import PersistenceError
from .jobs import Job
from .persistence import JobRepository
from .scheduler import Scheduler


class JobStore:
    """
    Holds every job that has not reached a terminal state.

    Each add/remove is persisted (best-effort) and keeps the scheduler running
    exactly while the store is non-empty.
    """

    def __init__(self, repository: JobRepository, scheduler: Scheduler):
        self.repository = repository
        self.scheduler = scheduler
        self.logger = logging.getLogger(__name__)
        self._jobs: Dict[str, Job] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(self.snapshot())

    def __contains__(self, job: object) -> bool:
        return isinstance(job, Job) and self._jobs.get(job.job_id) is job

    def add(self, job: Job):
        """Inserts a job, persists the set and ensures the scheduler is running."""
        self._jobs[job.job_id] = job
        self.persist()
        self.scheduler.start()

    def remove(self, job: Job):
        """Deletes a job, persists the set and stops the scheduler once nothing is left."""
        if self._jobs.pop(job.job_id, None) is None:
            return
        self.persist()
        if not self._jobs:
            self.scheduler.stop()

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def snapshot(self) -> Tuple[Job, ...]:
        """A copy of the current jobs, safe to iterate while jobs are added or removed."""
        return tuple(self._jobs.values())

    def find_by_remote_id(self, remote_id: str) -> Optional[Job]:
        """Returns the in-flight job working on `remote_id`, if any."""
        if not remote_id:
            return None
        for job in self._jobs.values():
            if job.remote_id == remote_id:
                return job
        return None

    def persist(self):
        """Saves the current jobs. Failures are logged and otherwise ignored."""
        try:
            self.repository.save_jobs(list(self._jobs.values()))
        except PersistenceError as e:
            self.logger.warning(f"PersistenceFailed: {e}")

    def load(self, now: float) -> int:
        """
        Rehydrates jobs persisted by a previous run.

        Clock readings from a previous process are meaningless, so the cooldown
        and timeout of every loaded job restart at `now`.

        Returns:
            The number of jobs loaded.
        """
        loaded = 0
        for job in self.repository.load_jobs():
            if job.job_id in self._jobs:
                continue
            job.last_poll_time = now
            job.poll_started_at = now
            job.resume_pending = True
            self._jobs[job.job_id] = job
            loaded += 1
        if loaded:
            self.logger.info(f"Resuming {loaded} clip request(s) from the previous session.")
            self.scheduler.start()
        return loaded
