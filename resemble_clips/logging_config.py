"""
Configures the application's logging setup.

Records go to `latest.log` in the log directory, to stderr for the CLI, and
optionally to a queue that a front end can drain.
"""

import sys
import queue
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Optional

from .constants import LOG_ARCHIVE_LIMIT, LOG_DIR

# Third-party loggers that are only interesting when something goes wrong.
QUIET_LOGGERS = ('aiohttp.access', 'aiohttp.client', 'urllib3', 'asyncio')


def _archive_latest_log(log_dir: Path, keep: int):
    """Renames the previous session's `latest.log` after its mtime and prunes old archives."""
    latest_log_path = log_dir / 'latest.log'
    if latest_log_path.exists():
        try:
            stamp = datetime.fromtimestamp(latest_log_path.stat().st_mtime).strftime('%Y-%m-%d_%H-%M-%S')
            latest_log_path.rename(log_dir / f"{stamp}.log")
        except OSError as e:
            print(f"Error rotating log file: {e}", file=sys.stderr)

    archives = sorted(p for p in log_dir.glob('*.log') if p.name != 'latest.log')
    for old in archives[:max(0, len(archives) - keep)]:
        try:
            old.unlink()
        except OSError as e:
            print(f"Error removing old log {old}: {e}", file=sys.stderr)


def setup_logging(file_log_level_str: str = 'INFO', console_level_str: str = 'INFO',
                  log_queue: Optional[queue.Queue] = None, log_dir: Path = LOG_DIR,
                  keep_archives: int = LOG_ARCHIVE_LIMIT) -> Path:
    """
    Configures the root logger for file, console, and queue logging.

    Args:
        file_log_level_str: The minimum logging level for the file handler (e.g., 'INFO').
        console_level_str: The minimum logging level for the console handler.
        log_queue: Optional queue to which log records for a front end will be sent.
        log_dir: Directory holding `latest.log` and its archives.
        keep_archives: How many archived session logs to keep.

    Returns:
        The path of the log file for this session.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    _archive_latest_log(log_dir, keep_archives)
    latest_log_path = log_dir / 'latest.log'

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG) # Capture all levels at the root
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    file_log_level = getattr(logging, file_log_level_str.upper(), logging.INFO)
    file_handler = logging.FileHandler(str(latest_log_path), encoding='utf-8')
    file_handler.setLevel(file_log_level)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)-8s - %(name)-28s - %(message)s'))
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, console_level_str.upper(), logging.INFO))
    console_handler.setFormatter(logging.Formatter('%(levelname)-8s %(message)s'))
    root_logger.addHandler(console_handler)

    if log_queue is not None:
        queue_handler = logging.handlers.QueueHandler(log_queue)
        queue_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(queue_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info("--- Logging initialized ---")
    logging.debug(f"File log level set to: {logging.getLevelName(file_log_level)}")
    return latest_log_path
