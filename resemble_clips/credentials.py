"""Checks, in the background, that the configured API key and project are usable."""
import logging
import threading
from typing import Any, Callable, Tuple

import requests

from .constants import REQUEST_HEADERS, REQUEST_TIMEOUTS
from .config import Settings


class CredentialChecker:
    """Verifies the API key against the project endpoint without blocking startup."""

    def __init__(self, event_callback: Callable[[Tuple[str, Any]], None], config: Settings):
        """
        Initializes the CredentialChecker.

        Args:
            event_callback: The function to call with checker events. Called from a worker thread.
            config: The application's configuration settings object.
        """
        self.event_callback = event_callback
        self.config = config
        self.logger = logging.getLogger(__name__)

    def check_credentials(self) -> threading.Thread:
        """Starts the credential check in a background thread."""
        thread = threading.Thread(target=self._perform_check, daemon=True, name="Credential-Checker")
        thread.start()
        return thread

    def _perform_check(self):
        """
        Fetches the configured project and reports whether access was refused.

        Network errors and unexpected responses are logged but not reported as
        invalid credentials, since they say nothing about the key itself.
        """
        if not self.config.api_key or not self.config.project_uuid:
            self.event_callback(('credentials_invalid', {'reason': 'API key or project is not configured.'}))
            return

        self.logger.info("Checking API credentials...")
        url = f"{self.config.api_base_url}/projects/{self.config.project_uuid}"
        headers = dict(REQUEST_HEADERS)
        headers['Authorization'] = f'Token token={self.config.api_key}'
        try:
            response = requests.get(url, headers=headers, timeout=REQUEST_TIMEOUTS)
            if response.status_code in (401, 403):
                self.event_callback(('credentials_invalid', {'reason': f'The API key was refused (HTTP {response.status_code}).'}))
                return
            if response.status_code == 404:
                self.event_callback(('credentials_invalid', {'reason': f'Project {self.config.project_uuid} was not found.'}))
                return
            response.raise_for_status()
            self.logger.info("API credentials accepted.")
            self.event_callback(('credentials_valid', None))
        except requests.exceptions.RequestException as e:
            status_code = f" (Status: {e.response.status_code})" if getattr(e, 'response', None) is not None else ""
            self.logger.warning(f"Failed to check credentials (network error): {e}{status_code}")
        except Exception:
            self.logger.exception("An unexpected error occurred during the credential check.")
