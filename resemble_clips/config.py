"""
Manages loading, saving, and validating the application configuration using Pydantic.

This module defines the configuration schema as a Pydantic model (`Settings`)
and provides a manager class (`ConfigManager`) to handle persistence to a JSON file.
"""

import json
import time
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, ValidationError

from .constants import API_BASE_URL, POLL_COOLDOWN, STATUS_TIMEOUT, TICK_INTERVAL


class Settings(BaseModel):
    """
    Defines the application's configuration schema using Pydantic.

    This class provides type hints, default values, and validation logic for all
    configuration settings.
    """
    api_key: str = ''
    api_base_url: str = API_BASE_URL
    project_uuid: str = ''
    default_voice: str = ''
    output_dir: Path = Field(default_factory=Path.cwd)
    placeholder_file: Optional[Path] = None
    poll_cooldown: float = Field(default=POLL_COOLDOWN, gt=0)
    status_timeout: float = Field(default=STATUS_TIMEOUT, gt=0)
    tick_interval: float = Field(default=TICK_INTERVAL, gt=0, le=5)
    orphan_max_age_hours: float = Field(default=24, ge=0)
    log_level: str = 'INFO'
    check_credentials_on_startup: bool = True

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Ensures log_level is a valid logging level string."""
        upper_value = value.upper()
        allowed_levels: List[str] = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if upper_value not in allowed_levels:
            raise ValueError(f"'{value}' is not a valid log level. Must be one of {allowed_levels}.")
        return upper_value

    @field_validator('api_base_url')
    @classmethod
    def validate_api_base_url(cls, value: str) -> str:
        """Requires an http(s) URL and strips any trailing slash."""
        if not value.startswith(('http://', 'https://')):
            raise ValueError("API base URL must start with http:// or https://.")
        return value.rstrip('/')

    @field_validator('placeholder_file', mode='before')
    @classmethod
    def validate_placeholder_file(cls, value: Optional[str]) -> Optional[Path]:
        """Drops the placeholder setting if the file has gone missing."""
        if not value:
            return None
        path = Path(value)
        if not path.is_file():
            return None
        return path


class ConfigManager:
    """Handles loading and saving the application configuration file."""
    def __init__(self, config_path: Path):
        """
        Initializes the ConfigManager.

        Args:
            config_path: The path to the configuration file.
        """
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)
        # Ensure the configuration directory exists
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Settings:
        """
        Loads config from file, merges with defaults, validates, and returns it.

        If the file doesn't exist, is invalid, or an error occurs, a default
        configuration is returned. Invalid files are backed up.

        Returns:
            A validated Settings object.
        """
        if not self.config_path.exists():
            self.logger.info("Config file not found. Creating with default settings.")
            default_settings = Settings()
            self.save(default_settings)
            return default_settings

        try:
            config_data = json.loads(self.config_path.read_text(encoding='utf-8'))
            return Settings.model_validate(config_data)
        except (ValidationError, json.JSONDecodeError, UnicodeDecodeError, IOError) as e:
            self.logger.error(f"Error loading {self.config_path}: {e}. Backing up and using defaults.")
            try:
                backup_path = self.config_path.with_suffix(f".{int(time.time())}.bak")
                self.config_path.rename(backup_path)
                self.logger.info(f"Backed up corrupted config to {backup_path}")
            except IOError as backup_e:
                self.logger.error(f"Could not back up corrupted config file: {backup_e}")
            return Settings()

    def save(self, settings: Settings):
        """
        Saves the provided settings object to the config file.

        Args:
            settings: The Settings object to save.
        """
        try:
            self.config_path.write_text(settings.model_dump_json(indent=4), encoding='utf-8')
        except IOError as e:
            self.logger.error(f"Error saving config file to {self.config_path}: {e}")
