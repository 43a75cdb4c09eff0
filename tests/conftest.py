import logging

import pytest
from fastapi.testclient import TestClient

import app as app_module
from gallery.config import Settings
from gallery.scanner import Library

from .helpers import FakeProbe, RecordingRunner


@pytest.fixture()
def settings(tmp_path):
    s = Settings(
        video_dir=tmp_path / "videos",
        mp4_dir=tmp_path / "mp4",
        thumbnails_dir=tmp_path / "thumbnails",
        cache_file=tmp_path / "metadata_cache.json",
        client_dist=None,
        ffmpeg_bin="gallery-test-missing-ffmpeg",
        ffprobe_bin="gallery-test-missing-ffprobe",
    )
    s.video_dir.mkdir()
    s.thumbnails_dir.mkdir()
    return s


@pytest.fixture()
def probe():
    return FakeProbe()


@pytest.fixture()
def thumbnail_runner():
    return RecordingRunner()


@pytest.fixture()
def preview_runner():
    return RecordingRunner()


@pytest.fixture()
def library(settings, probe, thumbnail_runner, preview_runner):
    return Library.from_settings(
        settings,
        probe=probe,
        thumbnail_runner=thumbnail_runner,
        preview_runner=preview_runner,
    )


@pytest.fixture()
def client(settings, library):
    with TestClient(app_module.create_app(settings, library)) as c:
        yield c


@pytest.fixture()
def gallery_logs(caplog):
    """The gallery logger does not propagate; hook caplog onto it directly."""
    lg = logging.getLogger("gallery")
    lg.addHandler(caplog.handler)
    caplog.set_level(logging.DEBUG, logger="gallery")
    try:
        yield caplog
    finally:
        lg.removeHandler(caplog.handler)
