"""Shared fakes and fixtures for the clip request tests."""
import asyncio
import queue
from collections import Counter, deque
from typing import Any, Deque, Dict, List, Optional, Tuple

import pytest

from resemble_clips.api_client import ClipStatus, RemoteClip
from resemble_clips.artifacts import ArtifactWriter
from resemble_clips.exceptions import PersistenceError
from resemble_clips.notifications import Notifier
from resemble_clips.persistence import JobRepository
from resemble_clips.pool import RequestPool
from resemble_clips.store import JobStore


class FakeResembleClient:
    """
    Scripted stand-in for ResembleClient.

    Each operation pops its next outcome from a deque; an exception instance is
    raised instead of returned. Calls are recorded as soon as they are issued.
    Setting `gates[kind]` to an Event holds calls of that kind until it is set.
    """

    def __init__(self):
        self.calls: List[Tuple[str, Any]] = []
        self.submit_results: Deque[Any] = deque()
        self.status_results: Deque[Any] = deque()
        self.download_results: Deque[Any] = deque()
        self.delete_results: Deque[Any] = deque()
        self.listed_pages: List[List[RemoteClip]] = []
        # When set, list_clips pages through this list and delete removes from it.
        self.remote_clips: Optional[List[RemoteClip]] = None
        self.page_size = 2
        self.deleted: List[str] = []
        self.gates: Dict[str, asyncio.Event] = {}
        self._next_id = 0

    def count(self, kind: str) -> int:
        return sum(1 for name, _ in self.calls if name == kind)

    async def _respond(self, kind: str, results: Deque[Any], default: Any) -> Any:
        gate = self.gates.get(kind)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        result = results.popleft() if results else default
        if isinstance(result, BaseException):
            raise result
        return result

    def create_or_update(self, remote_id, title, body, voice):
        self.calls.append(('submit', remote_id))
        self._next_id += 1
        return self._respond('submit', self.submit_results, remote_id or f"clip-{self._next_id}")

    def get_status(self, remote_id):
        self.calls.append(('status', remote_id))
        return self._respond('status', self.status_results, ClipStatus(ready=False))

    def download(self, url, on_progress=None):
        self.calls.append(('download', url))
        return self._download(on_progress)

    async def _download(self, on_progress) -> bytes:
        data = await self._respond('download', self.download_results, b"RIFF-audio")
        if on_progress:
            on_progress(0.5)
            on_progress(1.0)
        return data

    def delete(self, remote_id):
        self.calls.append(('delete', remote_id))
        return self._delete(remote_id)

    async def _delete(self, remote_id):
        await self._respond('delete', self.delete_results, None)
        self.deleted.append(remote_id)
        if self.remote_clips is not None:
            self.remote_clips = [clip for clip in self.remote_clips if clip.remote_id != remote_id]

    async def list_clips(self, page: int = 1) -> List[RemoteClip]:
        self.calls.append(('list', page))
        if self.remote_clips is not None:
            start = (page - 1) * self.page_size
            return self.remote_clips[start:start + self.page_size]
        if page <= len(self.listed_pages):
            return self.listed_pages[page - 1]
        return []

    async def close(self):
        pass


class RecordingScheduler:
    """Scheduler double: records start/stop; tests drive `pool.tick` by hand."""

    def __init__(self):
        self.running = False
        self.starts = 0
        self.stops = 0

    @property
    def is_running(self) -> bool:
        return self.running

    def start(self):
        if not self.running:
            self.running = True
            self.starts += 1

    def stop(self):
        if self.running:
            self.running = False
            self.stops += 1


class FailingRepository(JobRepository):
    """A repository whose saves always fail."""

    def save_jobs(self, jobs):
        raise PersistenceError("disk full")


class PoolHarness:
    def __init__(self, pool: RequestPool, client: FakeResembleClient, scheduler: RecordingScheduler,
                 store: JobStore, notifications: queue.Queue, repository: JobRepository):
        self.pool = pool
        self.client = client
        self.scheduler = scheduler
        self.store = store
        self.notifications = notifications
        self.repository = repository

    async def settle(self, now: float):
        """Lets every in-flight call finish, then runs one tick."""
        await self.pool.wait_for_calls()
        self.pool.tick(now)

    def drain_notifications(self) -> list:
        items = []
        while not self.notifications.empty():
            items.append(self.notifications.get_nowait())
        return items

    def in_flight_by_job(self) -> Counter:
        return Counter(task.get_name().split('-', 1)[1] for task in self.pool._calls)


@pytest.fixture
def fake_client() -> FakeResembleClient:
    return FakeResembleClient()


@pytest.fixture
def failing_repository(tmp_path) -> FailingRepository:
    return FailingRepository(tmp_path / 'jobs.json')


@pytest.fixture
def make_pool(tmp_path, fake_client):
    def factory(poll_cooldown: float = 1.5, status_timeout: float = 600.0,
                repository: Optional[JobRepository] = None, placeholder_file=None) -> PoolHarness:
        repository = repository or JobRepository(tmp_path / 'jobs.json')
        scheduler = RecordingScheduler()
        store = JobStore(repository, scheduler)
        notifications: queue.Queue = queue.Queue()
        pool = RequestPool(
            fake_client, store, Notifier(notifications), ArtifactWriter(placeholder_file),
            poll_cooldown=poll_cooldown, status_timeout=status_timeout, clock=lambda: 0.0,
        )
        return PoolHarness(pool, fake_client, scheduler, store, notifications, repository)
    return factory
