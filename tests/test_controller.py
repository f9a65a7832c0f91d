import asyncio
import queue
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import requests

from resemble_clips.api_client import ClipStatus, RemoteClip
from resemble_clips.config import ConfigManager, Settings
from resemble_clips.controller import AppController
from resemble_clips.credentials import CredentialChecker
from resemble_clips.exceptions import ApiError
from resemble_clips.jobs import make_temporary_name
from resemble_clips.notifications import Notification, Notifier, Severity


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        api_key="key", project_uuid="proj", default_voice="voice-1", output_dir=tmp_path / "out",
        tick_interval=0.01, check_credentials_on_startup=False,
    )


@pytest.fixture
def notifications() -> queue.Queue:
    return queue.Queue()


@pytest.fixture
def make_controller(tmp_path, settings, fake_client, notifications):
    def factory() -> AppController:
        return AppController(
            ConfigManager(tmp_path / "config.json"), settings, tmp_path / "jobs.json",
            notifier=Notifier(notifications), client=fake_client,
        )
    return factory


@pytest.mark.asyncio
async def test_one_shot_runs_to_completion(make_controller, fake_client, notifications, tmp_path):
    fake_client.status_results.extend([ClipStatus(ready=True, download_url="https://cdn/a.wav")])
    controller = make_controller()

    job = await controller.generate_one_shot("Hello", Path("greeting.wav"))
    await asyncio.wait_for(controller.wait_until_idle(), timeout=5)

    assert job.is_done and job.error is None
    assert (tmp_path / "out" / "greeting.wav").read_bytes() == b"RIFF-audio"
    assert fake_client.deleted == [job.remote_id]
    assert ('submit', None) in fake_client.calls
    message = notifications.get_nowait()
    assert message.severity == Severity.INFO
    assert "OneShot > greeting" in message.message
    assert not controller.scheduler.is_running

    await controller.on_app_closing()


@pytest.mark.asyncio
async def test_generate_clip_uses_default_voice_and_output_dir(make_controller, fake_client, tmp_path):
    fake_client.gates['submit'] = asyncio.Event()
    controller = make_controller()

    job = await controller.generate_clip("Intro", "Hi there", Path("intro.wav"), remote_id="R1")

    assert job.voice == "voice-1"
    assert job.target_path == tmp_path / "out" / "intro.wav"
    assert job.notify_subject == str(tmp_path / "out" / "intro.wav")
    assert controller.get_job_summaries() == [
        {'job_id': job.job_id, 'name': "Intro", 'state': "submitting", 'progress': 0.0},
    ]
    assert controller.cancel(job.job_id)
    assert controller.get_job_summaries() == []

    fake_client.gates['submit'].set()
    await controller.on_app_closing()


@pytest.mark.asyncio
async def test_unfinished_jobs_resume_after_restart(make_controller, fake_client, notifications):
    fake_client.gates['status'] = asyncio.Event()
    first = make_controller()
    job = await first.generate_clip("Intro", "Hi", Path("intro.wav"))
    while fake_client.count('status') == 0:
        await asyncio.sleep(0.01)
    await first.on_app_closing()

    del fake_client.gates['status']
    fake_client.status_results.append(ClipStatus(ready=True, download_url="https://cdn/intro.wav"))
    second = make_controller()
    await second.run_startup_checks()
    assert [summary['job_id'] for summary in second.get_job_summaries()] == [job.job_id]

    await asyncio.wait_for(second.wait_until_idle(), timeout=5)
    assert fake_client.count('submit') == 1
    assert notifications.get_nowait().severity == Severity.INFO
    await second.on_app_closing()


@pytest.mark.asyncio
async def test_cleanup_deletes_only_old_unowned_temporary_clips(make_controller, fake_client):
    old = make_temporary_name(datetime.now(timezone.utc) - timedelta(days=2))
    fresh = make_temporary_name(datetime.now(timezone.utc))
    fake_client.listed_pages = [
        [RemoteClip("old-1", old), RemoteClip("named", "Intro"), RemoteClip("fresh", fresh)],
        [RemoteClip("old-2", old), RemoteClip("owned", old)],
    ]
    fake_client.gates['submit'] = asyncio.Event()
    controller = make_controller()
    await controller.generate_clip("Regenerate", "Hi", Path("owned.wav"), remote_id="owned")

    deleted = await controller.cleanup_orphaned_clips(max_age=timedelta(hours=1))

    assert deleted == 2
    assert fake_client.deleted == ["old-1", "old-2"]
    assert ('list', 3) in fake_client.calls

    fake_client.gates['submit'].set()
    await controller.on_app_closing()


@pytest.mark.asyncio
async def test_cleanup_survives_failed_deletions(make_controller, fake_client):
    old = make_temporary_name(datetime.now(timezone.utc) - timedelta(days=2))
    fake_client.listed_pages = [[RemoteClip("a", old), RemoteClip("b", old)]]
    fake_client.delete_results.extend([ApiError("gone", status=404), None])
    controller = make_controller()

    assert await controller.cleanup_orphaned_clips() == 1
    assert fake_client.deleted == ["b"]
    await controller.on_app_closing()


@pytest.mark.asyncio
async def test_cleanup_removes_every_orphan_when_pages_shift(make_controller, fake_client):
    old = make_temporary_name(datetime.now(timezone.utc) - timedelta(days=2))
    fake_client.remote_clips = [RemoteClip(f"o{i}", old) for i in range(4)] + [RemoteClip("named", "Intro")]
    fake_client.page_size = 2
    controller = make_controller()

    assert await controller.cleanup_orphaned_clips() == 4
    assert fake_client.remote_clips == [RemoteClip("named", "Intro")]
    await controller.on_app_closing()


def test_save_settings_rejects_invalid_values(make_controller, tmp_path):
    controller = make_controller()
    ok, message = controller.save_settings({"poll_cooldown": 0})
    assert not ok
    assert "poll_cooldown" in message


def test_save_settings_applies_timing_live(make_controller):
    controller = make_controller()
    ok, _ = controller.save_settings({"poll_cooldown": 4, "status_timeout": 30, "tick_interval": 0.5})
    assert ok
    assert controller.pool.poll_cooldown == 4
    assert controller.pool.status_timeout == 30
    assert controller.scheduler.interval == 0.5
    assert controller.config_manager.load().poll_cooldown == 4


def test_invalid_credentials_are_notified(make_controller, notifications):
    controller = make_controller()
    controller._on_checker_event(('credentials_invalid', {'reason': 'The API key was refused (HTTP 401).'}))
    message = notifications.get_nowait()
    assert message.severity == Severity.ERROR
    assert "refused" in message.message


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(response=self)


@pytest.mark.parametrize("status_code, expected", [
    (200, 'credentials_valid'),
    (401, 'credentials_invalid'),
    (404, 'credentials_invalid'),
])
def test_credential_check_reports_outcome(settings, monkeypatch, status_code, expected):
    seen = {}

    def fake_get(url, headers, timeout):
        seen['url'], seen['auth'] = url, headers['Authorization']
        return FakeResponse(status_code)

    monkeypatch.setattr(requests, "get", fake_get)
    events = []
    CredentialChecker(events.append, settings)._perform_check()

    assert [event[0] for event in events] == [expected]
    assert seen['url'].endswith("/projects/proj")
    assert seen['auth'] == "Token token=key"


def test_credential_check_ignores_server_errors(settings, monkeypatch):
    monkeypatch.setattr(requests, "get", lambda url, headers, timeout: FakeResponse(503))
    events = []
    CredentialChecker(events.append, settings)._perform_check()
    assert events == []


def test_credential_check_without_key(settings):
    events = []
    CredentialChecker(events.append, settings.model_copy(update={"api_key": ""}))._perform_check()
    assert events[0][0] == 'credentials_invalid'


def test_notifier_logs_and_queues(caplog):
    notifications = queue.Queue()
    Notifier(notifications).notify("Clip\nStatusCheckFailed: boom", Severity.ERROR, subject="a.wav")
    assert notifications.get_nowait() == Notification("Clip\nStatusCheckFailed: boom", Severity.ERROR, "a.wav")
    assert "Clip | StatusCheckFailed: boom" in caplog.text
