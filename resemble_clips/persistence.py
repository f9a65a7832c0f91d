"""
Persists in-flight clip requests so they survive an application restart.

Jobs are stored as JSON through Pydantic models; the runtime-only parts of a
`Job` (the in-flight call, clock readings, progress) are not written.
"""

import json
import time
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from .exceptions import PersistenceError
from .jobs import Job, JobState


class JobRecord(BaseModel):
    """The persisted shape of a `Job`."""
    job_id: str
    display_name: str
    target_path: Path
    title: str = ''
    body: str = ''
    voice: str = ''
    remote_id: str = ''
    delete_remote_on_completion: bool = False
    state: JobState = JobState.CREATED
    download_url: str = ''
    notify_subject: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobRecord":
        subject = job.notify_subject if isinstance(job.notify_subject, str) else None
        return cls(
            job_id=job.job_id, display_name=job.display_name, target_path=job.target_path,
            title=job.title, body=job.body, voice=job.voice, remote_id=job.remote_id,
            delete_remote_on_completion=job.delete_remote_on_completion, state=job.state,
            download_url=job.download_url, notify_subject=subject,
        )

    def to_job(self) -> Job:
        return Job(
            job_id=self.job_id, display_name=self.display_name, target_path=self.target_path,
            title=self.title, body=self.body, voice=self.voice, remote_id=self.remote_id,
            delete_remote_on_completion=self.delete_remote_on_completion, state=self.state,
            download_url=self.download_url, notify_subject=self.notify_subject,
        )


class JobFile(BaseModel):
    version: int = 1
    jobs: List[JobRecord] = []


class JobRepository:
    """Handles loading and saving the in-flight job list."""
    def __init__(self, jobs_path: Path):
        """
        Initializes the JobRepository.

        Args:
            jobs_path: The path to the jobs file.
        """
        self.jobs_path = jobs_path
        self.logger = logging.getLogger(__name__)

    def load_jobs(self) -> List[Job]:
        """
        Loads persisted jobs. Terminal jobs are skipped.

        A corrupt file is backed up and treated as empty.
        """
        if not self.jobs_path.exists():
            return []

        try:
            job_file = JobFile.model_validate(json.loads(self.jobs_path.read_text(encoding='utf-8')))
        except (ValidationError, json.JSONDecodeError, UnicodeDecodeError, IOError) as e:
            self.logger.error(f"Error loading {self.jobs_path}: {e}. Backing up and starting empty.")
            try:
                backup_path = self.jobs_path.with_suffix(f".{int(time.time())}.bak")
                self.jobs_path.rename(backup_path)
                self.logger.info(f"Backed up corrupted job file to {backup_path}")
            except IOError as backup_e:
                self.logger.error(f"Could not back up corrupted job file: {backup_e}")
            return []

        return [record.to_job() for record in job_file.jobs if record.state not in (JobState.COMPLETED, JobState.FAILED)]

    def save_jobs(self, jobs: List[Job]):
        """
        Writes the job list, replacing the previous file atomically.

        Raises:
            PersistenceError: If the file could not be written.
        """
        job_file = JobFile(jobs=[JobRecord.from_job(job) for job in jobs])
        tmp_path = self.jobs_path.with_name(self.jobs_path.name + '.tmp')
        try:
            self.jobs_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(job_file.model_dump_json(indent=4), encoding='utf-8')
            tmp_path.replace(self.jobs_path)
        except OSError as e:
            raise PersistenceError(f"Could not save jobs to {self.jobs_path}: {e}") from e
