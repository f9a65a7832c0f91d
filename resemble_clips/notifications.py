"""User-visible feedback for finished clip requests."""
import logging
import queue
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    INFO = "info"
    ERROR = "error"


@dataclass
class Notification:
    message: str
    severity: Severity
    subject: Any = None


class Notifier:
    """
    Receives terminal events from the request pool.

    Every notification is logged; when a queue is given, it is also put there
    for a front end to display.
    """

    def __init__(self, notification_queue: Optional[queue.Queue] = None):
        self.queue = notification_queue
        self.logger = logging.getLogger(__name__)

    def notify(self, message: str, severity: Severity, subject: Any = None):
        level = logging.ERROR if severity == Severity.ERROR else logging.INFO
        self.logger.log(level, message.replace('\n', ' | '))
        if self.queue is not None:
            self.queue.put_nowait(Notification(message, severity, subject))
