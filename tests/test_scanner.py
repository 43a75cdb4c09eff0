import asyncio
import io
import os

import pytest
from PIL import Image

from gallery.cache import MetadataRecord
from gallery.errors import AccessDenied, InvalidUpload
from gallery.scanner import Library, flatten, iter_videos

from .helpers import FakeProbe, RecordingRunner, write_video


def test_flatten_nested_paths():
    assert flatten("video.mp4") == "video.mp4"
    assert flatten("subdir/video.mp4") == "subdir__video.mp4"
    assert flatten("a/b/c.mkv") == "a__b__c.mkv"


def test_iter_videos_filters_and_sorts(settings):
    root = settings.video_dir
    for name in ("b.mp4", "a.MOV", "sub/c.mkv", "d.webm", "notes.txt", ".hidden.mp4", ".cache/e.mp4", "f.avi"):
        write_video(root, name)
    assert iter_videos(root, settings.media_exts) == ["a.MOV", "b.mp4", "d.webm", "sub/c.mkv"]


def test_iter_videos_missing_root(tmp_path):
    assert iter_videos(tmp_path / "nope", {".mp4"}) == []


def test_first_listing_queues_each_missing_asset_once(settings, probe):
    write_video(settings.video_dir, "a.mp4")

    async def scenario():
        gate = asyncio.Event()
        thumbs = RecordingRunner(gate=gate)
        previews = RecordingRunner(gate=gate)
        lib = Library.from_settings(settings, probe=probe, thumbnail_runner=thumbs, preview_runner=previews)
        first = await lib.list_assets()
        second = await lib.list_assets()
        pending = (lib.thumbnails.pending, lib.previews.pending)
        gate.set()
        await lib.thumbnails.join()
        await lib.previews.join()
        third = await lib.list_assets()
        return first, second, third, pending, thumbs, previews

    first, second, third, pending, thumbs, previews = asyncio.run(scenario())
    assert pending == (1, 1)
    assert len(thumbs.calls) == 1
    assert len(previews.calls) == 1
    assert previews.calls[0].duration == 8.0
    assert len(probe.calls) == 1

    item = first[0]
    assert item.name == "a.mp4"
    assert item.url == "/api/stream?file=a.mp4"
    assert item.thumbnail is None
    assert item.preview is None
    assert item.duration == 8.0
    assert item.resolution == "1280x720"
    assert item.size == 16
    assert second[0].thumbnail is None

    # Assets written by the jobs show up on the next listing
    thumb = settings.thumbnails_dir / "a.mp4.jpg"
    mtime_ms = thumb.stat().st_mtime_ns // 1_000_000
    assert third[0].thumbnail == f"/thumbnails/a.mp4.jpg?t={mtime_ms}"
    assert third[0].preview == "/thumbnails/a.mp4_preview_9.mp4"


def test_short_or_unknown_duration_skips_preview(library, settings, probe, preview_runner):
    write_video(settings.video_dir, "short.mp4")
    write_video(settings.video_dir, "exact.mp4")
    write_video(settings.video_dir, "broken.mp4")
    probe.durations["short.mp4"] = 3.0
    probe.durations["exact.mp4"] = 5.0
    probe.fail.add("broken.mp4")

    async def scenario():
        items = await library.list_assets()
        await library.previews.join()
        await library.thumbnails.join()
        return items

    items = asyncio.run(scenario())
    assert [i.name for i in items] == ["broken.mp4", "exact.mp4", "short.mp4"]
    assert preview_runner.calls == []
    broken = items[0]
    assert broken.duration == 0
    assert broken.resolution == "Unknown"


def test_existing_assets_are_not_requeued(library, settings, thumbnail_runner, preview_runner):
    write_video(settings.video_dir, "sub/clip.mp4")
    (settings.thumbnails_dir / "sub__clip.mp4.jpg").write_bytes(b"jpg")
    (settings.thumbnails_dir / "sub__clip.mp4_preview_9.mp4").write_bytes(b"mp4")

    items = asyncio.run(library.list_assets())
    assert thumbnail_runner.calls == [] and preview_runner.calls == []
    item = items[0]
    assert item.name == "sub/clip.mp4"
    assert item.url == "/api/stream?file=sub%2Fclip.mp4"
    assert item.thumbnail.startswith("/thumbnails/sub__clip.mp4.jpg?t=")
    assert item.preview == "/thumbnails/sub__clip.mp4_preview_9.mp4"


def test_per_file_error_drops_only_that_file(library, settings, probe, gallery_logs):
    write_video(settings.video_dir, "ok.mp4")
    write_video(settings.video_dir, "boom.mp4")
    probe.crash.add("boom.mp4")

    items = asyncio.run(library.list_assets())
    assert [i.name for i in items] == ["ok.mp4"]
    assert any("Error processing file boom.mp4" in r.getMessage() for r in gallery_logs.records)


def test_batches_bound_concurrency_and_keep_order(settings):
    names = [f"v{i:02d}.mp4" for i in range(12)]
    for name in names:
        write_video(settings.video_dir, name)
    active = 0
    peak = 0

    async def slow_probe(path):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        # Later files finish first inside a batch
        await asyncio.sleep(0.001 * (20 - int(path.stem[1:])))
        active -= 1
        return {"duration": 2.0, "width": 640, "height": 360, "r_frame_rate": "25/1"}

    lib = Library.from_settings(settings, probe=slow_probe, thumbnail_runner=RecordingRunner(), preview_runner=RecordingRunner())

    async def scenario():
        items = await lib.list_assets()
        await lib.close()
        return items

    items = asyncio.run(scenario())
    assert [i.name for i in items] == names
    assert peak == 5


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 6), color=(200, 10, 10)).save(buf, format="PNG")
    return buf.getvalue()


def test_save_cover_writes_jpeg(library, settings):
    url = library.save_cover("sub__clip.mp4", _png_bytes())
    dest = settings.thumbnails_dir / "sub__clip.mp4.jpg"
    assert url.startswith("/thumbnails/sub__clip.mp4.jpg?t=")
    with Image.open(dest) as img:
        assert img.format == "JPEG"
        assert img.size == (8, 6)


def test_save_cover_rejects_non_images(library):
    with pytest.raises(InvalidUpload):
        library.save_cover("clip.mp4", b"definitely not an image")
    with pytest.raises(InvalidUpload):
        library.save_cover("clip.mp4", b"")


def test_save_cover_stays_inside_thumbnail_dir(library):
    with pytest.raises(AccessDenied):
        library.save_cover("../escape", _png_bytes())


def test_status_reports_queue_depth(library):
    status = library.status()
    assert status["cache_entries"] == 0
    assert status["thumbnails_pending"] == 0
    assert status["root"] == str(library.root)
    assert os.path.isabs(status["root"])


def test_queue_missing_shares_listing_rules(library, settings):
    write_video(settings.video_dir, "a.mp4")
    long = MetadataRecord(duration=12.0)
    short = MetadataRecord(duration=5.0)

    async def scenario():
        first = library.queue_missing("a.mp4", long)
        again = library.queue_missing("a.mp4", long)
        thumb_only = library.queue_missing("b.mp4", short, preview=True)
        await library.close()
        return first, again, thumb_only

    first, again, thumb_only = asyncio.run(scenario())
    assert first == (True, True)
    assert again == (False, False)
    assert thumb_only == (True, False)
    assert library.needs_preview("a.mp4", short) is False
    assert library.needs_preview("a.mp4", MetadataRecord()) is False
