"""
Defines the main AppController class, which wires the clip request pipeline together.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .api_client import ResembleClient
from .artifacts import ArtifactWriter
from .config import ConfigManager, Settings
from .credentials import CredentialChecker
from .exceptions import ApiError
from .jobs import Job, parse_temporary_name
from .notifications import Notifier, Severity
from .persistence import JobRepository
from .pool import RequestPool
from .scheduler import Scheduler
from .store import JobStore


class AppController:
    """The central controller for the application's business logic."""

    def __init__(self, config_manager: ConfigManager, config: Settings, jobs_file: Path,
                 notifier: Optional[Notifier] = None, client: Optional[ResembleClient] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initializes the AppController.

        Args:
            config_manager: The manager for handling configuration persistence.
            config: The loaded application settings.
            jobs_file: Where in-flight jobs are persisted.
            notifier: Receives terminal job messages; a logging-only notifier by default.
            client: Remote service client; built from `config` by default.
            clock: Time source for the scheduler and the pool.
        """
        self.config_manager = config_manager
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.notifier = notifier or Notifier()

        # Backend Managers
        self.client = client or ResembleClient(config.api_key, config.project_uuid, config.api_base_url)
        self.scheduler = Scheduler(self._tick, config.tick_interval, clock)
        self.store = JobStore(JobRepository(jobs_file), self.scheduler)
        self.pool = RequestPool(
            self.client, self.store, self.notifier, ArtifactWriter(config.placeholder_file),
            poll_cooldown=config.poll_cooldown, status_timeout=config.status_timeout, clock=clock,
        )
        self.credential_checker = CredentialChecker(self._on_checker_event, self.config)

    def _tick(self, now: float):
        self.pool.tick(now)

    async def run_startup_checks(self):
        """Resumes persisted jobs and, if enabled, verifies the API credentials."""
        count = self.pool.load_persisted()
        if count:
            self.logger.info(f"{count} unfinished clip request(s) found from a previous session.")
        if self.config.check_credentials_on_startup:
            self.credential_checker.check_credentials()

    def _on_checker_event(self, event: Tuple[str, Any]):
        """Handles events from the credential checker thread."""
        msg_type, value = event
        handler_map = {
            'credentials_invalid': self._handle_credentials_invalid,
            'credentials_valid': self._handle_credentials_valid,
        }
        handler = handler_map.get(msg_type)
        if handler:
            handler(value)
        else:
            self.logger.warning(f"Unhandled checker event type: {msg_type}")

    def _handle_credentials_invalid(self, value: Dict[str, str]):
        self.notifier.notify(f"Resemble credentials problem\n{value['reason']}", Severity.ERROR)

    def _handle_credentials_valid(self, _):
        self.logger.debug("Credential check passed.")

    async def generate_clip(self, title: str, body: str, target_path: Path, voice: Optional[str] = None,
                            remote_id: str = "", display_name: Optional[str] = None) -> Job:
        """Generates a named clip, or regenerates it when `remote_id` is given."""
        target_path = self._resolve(target_path)
        return await self.pool.start_clip_request(
            title, body, voice or self.config.default_voice, target_path,
            remote_id=remote_id, display_name=display_name, notify_subject=str(target_path),
        )

    async def generate_one_shot(self, body: str, target_path: Path, voice: Optional[str] = None) -> Job:
        """Generates audio through a temporary remote clip that is deleted afterwards."""
        return await self.pool.start_one_shot(body, voice or self.config.default_voice, self._resolve(target_path))

    def _resolve(self, target_path: Path) -> Path:
        target_path = Path(target_path)
        return target_path if target_path.is_absolute() else self.config.output_dir / target_path

    def cancel(self, job_id: str) -> bool:
        return self.pool.cancel(job_id)

    def get_job_summaries(self) -> List[Dict[str, Any]]:
        """A snapshot of every in-flight job for display."""
        return [{
            'job_id': job.job_id,
            'name': job.display_name,
            'state': job.state.value,
            'progress': job.download_progress,
        } for job in self.store.snapshot()]

    async def wait_until_idle(self):
        await self.pool.wait_until_idle()

    async def cleanup_orphaned_clips(self, max_age: Optional[timedelta] = None) -> int:
        """
        Deletes one-shot clips left behind on the service.

        A clip is removed when its title is a temporary name older than
        `max_age` and no in-flight job owns it.

        Returns:
            The number of clips deleted.
        """
        if max_age is None:
            max_age = timedelta(hours=self.config.orphan_max_age_hours)
        cutoff = datetime.now(timezone.utc) - max_age

        # Deleting shifts later clips onto earlier pages, so list everything first.
        orphans = []
        page = 1
        while True:
            clips = await self.client.list_clips(page)
            if not clips:
                break
            for clip in clips:
                created_at = parse_temporary_name(clip.title)
                if created_at is None or created_at > cutoff:
                    continue
                if self.store.find_by_remote_id(clip.remote_id) is not None:
                    continue
                orphans.append(clip)
            page += 1

        deleted = 0
        for clip in orphans:
            try:
                await self.client.delete(clip.remote_id)
                deleted += 1
                self.logger.info(f"Deleted orphaned clip {clip.remote_id} ('{clip.title}')")
            except ApiError as e:
                self.logger.warning(f"Could not delete orphaned clip {clip.remote_id}: {e}")
        return deleted

    async def on_app_closing(self):
        """Handles application shutdown logic."""
        self.logger.info("Application closing.")
        await self.pool.shutdown()
        await self.client.close()
        self.config_manager.save(self.config)

    def save_settings(self, new_settings_data: Dict[str, Any]) -> Tuple[bool, str]:
        """Validates and saves new settings. Timing changes apply immediately."""
        try:
            new_settings = Settings.model_validate({**self.config.model_dump(), **new_settings_data})
        except ValidationError as e:
            error_details = e.errors()[0]
            field, msg = error_details['loc'][0], error_details['msg']
            return False, f"Error in field '{field}': {msg}"
        self.config_manager.save(new_settings)
        self.config = new_settings
        self.pool.poll_cooldown = new_settings.poll_cooldown
        self.pool.status_timeout = new_settings.status_timeout
        self.scheduler.interval = new_settings.tick_interval
        return True, "Settings have been saved."
