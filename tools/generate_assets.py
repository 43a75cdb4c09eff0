#!/usr/bin/env python3
"""
CLI to generate thumbnails and hover previews for a library without running the server.

Usage:
    python tools/generate_assets.py \
        [--root /path/to/videos] \
        [--what all|thumb|preview] \
        [--dry-run]

Notes:
- Reads the same environment as the server (VIDEO_PATH, THUMBNAILS_DIR, ...); --root overrides VIDEO_PATH.
- Jobs go through the same serial queues as the server, one ffmpeg at a time per lane.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Allow `python tools/generate_assets.py` from the repo root
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from gallery.cache import MetadataRecord  # noqa: E402
from gallery.config import Settings  # noqa: E402
from gallery.logs import configure_logging  # noqa: E402
from gallery.scanner import Library, iter_videos  # noqa: E402


async def generate(library: Library, what: str = "all", dry_run: bool = False) -> dict[str, int]:
    """
    Queue every missing asset (or only count them with dry_run) and wait for both lanes.
    `failed` counts queued jobs whose output is absent once the lanes have drained.
    """
    counts = {"videos": 0, "thumbnails": 0, "previews": 0, "failed": 0}
    want_thumbnail = what in ("all", "thumb")
    want_preview = what in ("all", "preview")
    queued_outputs: list[Path] = []
    for rel in await asyncio.to_thread(iter_videos, library.root, library.settings.media_exts):
        counts["videos"] += 1
        src = library.root / rel
        meta = await library.cache.get(src, src.stat()) if want_preview else MetadataRecord()
        if dry_run:
            thumb = want_thumbnail and library.needs_thumbnail(rel)
            preview = want_preview and library.needs_preview(rel, meta)
        else:
            thumb, preview = library.queue_missing(rel, meta, thumbnail=want_thumbnail, preview=want_preview)
            if thumb:
                queued_outputs.append(library.thumbnail_path(rel))
            if preview:
                queued_outputs.append(library.preview_path(rel))
        counts["thumbnails"] += int(thumb)
        counts["previews"] += int(preview)
    await library.thumbnails.join()
    await library.previews.join()
    counts["failed"] = sum(1 for p in queued_outputs if not p.exists())
    return counts


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Generate gallery thumbnails and previews without running the server")
    ap.add_argument("--root", default=None, help="Directory containing video files (overrides VIDEO_PATH)")
    ap.add_argument("--what", default="all", choices=["all", "thumb", "preview"], help="Which asset(s) to generate")
    ap.add_argument("--dry-run", action="store_true", help="Only report what would be generated")
    args = ap.parse_args(argv)

    configure_logging()
    settings = Settings.from_env()
    if args.root:
        settings = settings.model_copy(update={"video_dir": Path(args.root).expanduser().resolve()})
    if not settings.video_dir.is_dir():
        print(f"[cli] Root not found or not a dir: {settings.video_dir}", file=sys.stderr)
        return 2
    settings.thumbnails_dir.mkdir(parents=True, exist_ok=True)

    library = Library.from_settings(settings)
    counts = asyncio.run(generate(library, args.what, args.dry_run))
    verb = "would queue" if args.dry_run else "queued"
    summary = f"{counts['videos']} video(s): {verb} {counts['thumbnails']} thumbnail(s), {counts['previews']} preview(s)"
    if not args.dry_run:
        summary += f", {counts['failed']} failed"
    print(f"[cli] {summary}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
