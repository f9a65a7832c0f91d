"""
Defines application-wide constants and paths.

This module centralizes configuration for paths, API endpoints, and request
timing.
"""

from pathlib import Path

from ._version import __version__

# --- Paths ---
# Use a user-specific directory for configuration to avoid permission issues.
USER_DATA_DIR: Path = Path.home() / '.resemble-clips'
CONFIG_FILE: Path = USER_DATA_DIR / 'config.json'
JOBS_FILE: Path = USER_DATA_DIR / 'jobs.json'
LOG_DIR: Path = USER_DATA_DIR / 'logs'
LOG_ARCHIVE_LIMIT = 10       # Archived session logs kept next to latest.log.


# --- Remote Service ---
API_BASE_URL = 'https://app.resemble.ai/api/v1'
REQUEST_HEADERS = {
    'User-Agent': f'resemble-clips/{__version__}',
}
REQUEST_TIMEOUTS = (10, 60)  # (connect_timeout, read_timeout)
DOWNLOAD_CHUNK_SIZE = 8192

# --- Request Lifecycle ---
POLL_COOLDOWN = 1.5          # Seconds between two status requests for the same clip.
STATUS_TIMEOUT = 600         # Maximum time a clip can take to be generated before it's a timeout.
TICK_INTERVAL = 0.1          # Seconds between two scheduler ticks.

# One-shot clips are created under a recognizable temporary title.
TEMP_CLIP_PREFIX = 'Python Project - Temp '
