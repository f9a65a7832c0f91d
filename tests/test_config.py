import json

import pytest
from pydantic import ValidationError

from resemble_clips.config import ConfigManager, Settings
from resemble_clips.constants import API_BASE_URL, POLL_COOLDOWN, STATUS_TIMEOUT


def test_missing_file_is_created_with_defaults(tmp_path):
    path = tmp_path / "conf" / "config.json"
    settings = ConfigManager(path).load()

    assert path.exists()
    assert settings.api_base_url == API_BASE_URL
    assert settings.poll_cooldown == POLL_COOLDOWN
    assert settings.status_timeout == STATUS_TIMEOUT
    assert settings.log_level == "INFO"


def test_saved_settings_round_trip(tmp_path):
    path = tmp_path / "config.json"
    manager = ConfigManager(path)
    manager.save(Settings(api_key="k", project_uuid="p", default_voice="v", output_dir=tmp_path, poll_cooldown=3))

    loaded = manager.load()
    assert (loaded.api_key, loaded.project_uuid, loaded.default_voice) == ("k", "p", "v")
    assert loaded.output_dir == tmp_path
    assert loaded.poll_cooldown == 3


def test_corrupt_file_is_backed_up(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"poll_cooldown": -1}), encoding="utf-8")

    settings = ConfigManager(path).load()

    assert settings.poll_cooldown == POLL_COOLDOWN
    assert len(list(tmp_path.glob("config.*.bak"))) == 1


def test_undecodable_file_is_backed_up(tmp_path):
    path = tmp_path / "config.json"
    path.write_bytes(b"\xff\xfe{}")

    settings = ConfigManager(path).load()

    assert settings.log_level == "INFO"
    assert len(list(tmp_path.glob("config.*.bak"))) == 1


def test_log_level_is_normalized():
    assert Settings(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        Settings(log_level="LOUD")


def test_base_url_is_validated():
    assert Settings(api_base_url="https://example.test/api/").api_base_url == "https://example.test/api"
    with pytest.raises(ValidationError):
        Settings(api_base_url="ftp://example.test")


def test_missing_placeholder_file_is_dropped(tmp_path):
    existing = tmp_path / "silence.wav"
    existing.write_bytes(b"RIFF")

    assert Settings(placeholder_file=str(existing)).placeholder_file == existing
    assert Settings(placeholder_file=str(tmp_path / "gone.wav")).placeholder_file is None
