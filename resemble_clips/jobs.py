"""
Defines the data class for a clip request job and its state machine.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

from .constants import TEMP_CLIP_PREFIX
from .exceptions import ClipRequestError, InvalidTransitionError


class JobState(str, Enum):
    """
    Lifecycle states of a clip request.

    State transitions:
    - CREATED -> SUBMITTING: As soon as the job is started
    - SUBMITTING -> AWAITING_FIRST_STATUS: When the create/update call succeeds
    - AWAITING_FIRST_STATUS -> POLLING: When the first status says "not ready"
    - AWAITING_FIRST_STATUS / POLLING -> DOWNLOADING: When a status says "ready"
    - DOWNLOADING -> DELETING_REMOTE: When the artifact is written and deletion was requested
    - DOWNLOADING / DELETING_REMOTE -> COMPLETED
    - any non-terminal state -> FAILED
    """
    CREATED = "created"
    SUBMITTING = "submitting"
    AWAITING_FIRST_STATUS = "awaiting_first_status"
    POLLING = "polling"
    DOWNLOADING = "downloading"
    DELETING_REMOTE = "deleting_remote"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[JobState] = frozenset({JobState.COMPLETED, JobState.FAILED})

ALLOWED_TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    JobState.CREATED: frozenset({JobState.SUBMITTING, JobState.FAILED}),
    JobState.SUBMITTING: frozenset({JobState.AWAITING_FIRST_STATUS, JobState.FAILED}),
    JobState.AWAITING_FIRST_STATUS: frozenset({JobState.POLLING, JobState.DOWNLOADING, JobState.FAILED}),
    JobState.POLLING: frozenset({JobState.POLLING, JobState.DOWNLOADING, JobState.FAILED}),
    JobState.DOWNLOADING: frozenset({JobState.DELETING_REMOTE, JobState.COMPLETED, JobState.FAILED}),
    JobState.DELETING_REMOTE: frozenset({JobState.COMPLETED, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
}


def can_transition(current: JobState, new: JobState) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


@dataclass
class Job:
    """
    Represents a single clip request, from submission to the written audio file.

    Attributes:
        job_id: A unique identifier for the job.
        display_name: Label used in notifications.
        target_path: Where the downloaded audio is written.
        title: Remote clip title sent with the create/update call.
        body: Text (with emotion tags) to synthesize.
        voice: Voice uuid.
        remote_id: Remote clip uuid; empty until the create call returns one.
        delete_remote_on_completion: Delete the remote clip once the artifact is written.
        state: Current lifecycle state.
        last_poll_time: Clock time of the last status request.
        poll_started_at: Clock time the job started waiting for the clip; anchors the timeout.
        download_url: Link returned by the first "ready" status.
        download_progress: Fraction in [0, 1] while downloading.
        error: The error that failed the job.
        notify_subject: Opaque reference handed to the notifier.
    """
    display_name: str
    target_path: Path
    title: str = ""
    body: str = ""
    voice: str = ""
    remote_id: str = ""
    delete_remote_on_completion: bool = False
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: JobState = JobState.CREATED
    last_poll_time: float = 0.0
    poll_started_at: float = 0.0
    download_url: str = ""
    download_progress: float = 0.0
    error: Optional[ClipRequestError] = None
    notify_subject: Any = None

    # Runtime only, never persisted.
    current_call: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)
    call_token: int = field(default=0, repr=False, compare=False)
    resume_pending: bool = field(default=False, repr=False, compare=False)

    @property
    def is_done(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def has_call_in_flight(self) -> bool:
        return self.current_call is not None

    def advance(self, new_state: JobState):
        """Moves the job to `new_state`, refusing edges the state machine does not have."""
        if not can_transition(self.state, new_state):
            raise InvalidTransitionError(f"{self.state.value} -> {new_state.value} is not allowed for job {self.job_id}")
        self.state = new_state
        if new_state != JobState.DOWNLOADING:
            self.download_progress = 0.0

    def fail(self, error: ClipRequestError):
        """Marks the job with the error status. The job will be removed from the pool."""
        self.advance(JobState.FAILED)
        self.error = error


def make_temporary_name(now: Optional[datetime] = None) -> str:
    """Builds the remote title used for one-shot clips, e.g. 'Python Project - Temp 1700000000000'."""
    now = now or datetime.now(timezone.utc)
    return f"{TEMP_CLIP_PREFIX}{int(now.timestamp() * 1000)}"


def parse_temporary_name(name: str) -> Optional[datetime]:
    """Returns the creation time encoded in a temporary clip title, or None if it isn't one."""
    if not name.startswith(TEMP_CLIP_PREFIX):
        return None
    stamp = name[len(TEMP_CLIP_PREFIX):]
    if not stamp.isdigit():
        return None
    try:
        return datetime.fromtimestamp(int(stamp) / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
