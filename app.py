from __future__ import annotations
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import List, Optional
from urllib.parse import quote

from fastapi import FastAPI, APIRouter, File, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, FileResponse
from fastapi.staticfiles import StaticFiles
from starlette.responses import StreamingResponse

from gallery import stream as streaming
from gallery.config import Settings
from gallery.errors import GalleryError
from gallery.ffmpeg import ffmpeg_available, ffprobe_available
from gallery.logs import configure_logging, log
from gallery.scanner import AssetSummary, Library


def api_success(data=None, message: str = "OK", status_code: int = 200):
    return JSONResponse({"status": "success", "message": message, "data": data}, status_code=status_code)


def api_error(message: str, status_code: int = 400, data=None):
    return JSONResponse({"status": "error", "message": message, "data": data}, status_code=status_code)


def _attachment(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def create_app(settings: Optional[Settings] = None, library: Optional[Library] = None) -> FastAPI:
    configure_logging()
    settings = settings or Settings.from_env()
    library = library or Library.from_settings(settings)
    transcode_params = streaming.TranscodeParams(
        crf=settings.transcode_crf,
        max_height=settings.transcode_max_height,
    )

    @asynccontextmanager
    async def lifespan(app_obj: FastAPI):
        settings.thumbnails_dir.mkdir(parents=True, exist_ok=True)
        log("scan", f"VIDEOS_DIR: {settings.video_dir}")
        if not settings.video_dir.is_dir():
            log("scan", f"Library root not found at {settings.video_dir}", logging.WARNING)
        if settings.mp4_dir.is_dir():
            log("stream", f"MP4_DIR: {settings.mp4_dir}")
        else:
            log("stream", f"MP4 directory not found at {settings.mp4_dir} - Pre-generated previews disabled", logging.WARNING)
        log("scan", f"Server started on {settings.host}:{settings.port}")
        try:
            yield
        finally:
            await library.close()

    app = FastAPI(title="Video Gallery", version="1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.library = library
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(GalleryError)
    async def gallery_error_handler(request: Request, exc: GalleryError):
        if exc.status_code >= 500:
            log("stream", f"{request.url.path} failed: {exc.message}", logging.ERROR)
        return api_error(exc.message, status_code=exc.status_code, data=exc.data)

    api = APIRouter(prefix="/api")

    @api.get("/videos", response_model=List[AssetSummary])
    async def list_videos():
        log("scan", "Received request for video list")
        try:
            return await library.list_assets()
        except Exception as e:
            log("scan", f"Error listing videos: {e}", logging.ERROR)
            return api_error("Failed to list videos", status_code=500)

    @api.get("/stream")
    async def stream_video(
        file: Optional[str] = Query(default=None),
        download: str = Query(default="false"),
        type: str = Query(default="auto"),
    ):
        if not file:
            return api_error("Missing file parameter", status_code=400)
        decision = streaming.resolve(
            settings.video_dir,
            file,
            download=(download == "true"),
            original=(type == "original"),
            prerendered_dir=settings.mp4_dir,
            params=transcode_params,
        )
        if isinstance(decision, (streaming.ServeOriginal, streaming.ServePreRendered)):
            if decision.download:
                return FileResponse(str(decision.path), filename=decision.path.name)
            return FileResponse(str(decision.path))
        proc = await streaming.start_transcode(
            decision,
            ffmpeg_bin=settings.ffmpeg_bin,
            input_flags=settings.ffmpeg_extra_input,
        )
        headers = {}
        if decision.download_name:
            headers["Content-Disposition"] = _attachment(decision.download_name)
        return StreamingResponse(
            streaming.transcode_stream(proc, decision.source.name),
            media_type="video/mp4",
            headers=headers,
        )

    @api.post("/thumbnails/{video_name}")
    async def upload_thumbnail(video_name: str, thumbnail: Optional[UploadFile] = File(default=None)):
        if thumbnail is None:
            log("upload", "No file uploaded for thumbnail update", logging.WARNING)
            return api_error("No file uploaded", status_code=400)
        try:
            data = await thumbnail.read()
        finally:
            await thumbnail.close()
        try:
            url = await asyncio.to_thread(library.save_cover, video_name, data)
        except OSError as e:
            log("upload", f"Error uploading thumbnail: {e}", logging.ERROR)
            return api_error("Failed to upload thumbnail", status_code=500)
        return {"success": True, "thumbnail": url}

    @api.get("/health")
    def health():
        return api_success({
            **library.status(),
            "ffmpeg": ffmpeg_available(settings.ffmpeg_bin),
            "ffprobe": ffprobe_available(settings.ffprobe_bin),
        })

    app.include_router(api)

    # Already-written assets; directories may appear after startup
    app.mount("/thumbnails", StaticFiles(directory=str(settings.thumbnails_dir), check_dir=False), name="thumbnails")
    app.mount("/videos", StaticFiles(directory=str(settings.video_dir), check_dir=False), name="videos")
    if settings.client_dist is not None and settings.client_dist.is_dir():
        app.mount("/", StaticFiles(directory=str(settings.client_dist), html=True), name="client")
    return app


app = create_app()


if __name__ == "__main__":  # pragma: no cover
    try:
        import uvicorn  # type: ignore
    except Exception:
        sys.stderr.write("[app] Missing dependency: uvicorn. Install with: pip install uvicorn\n")
        sys.exit(1)
    settings: Settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port)
