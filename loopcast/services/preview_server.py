"""
Local HTTP preview of the segmented output.

In preview mode the encoder writes an HLS playlist and its segments into
`preview_dir`. `PreviewServer` publishes them together with a small hls.js
player page so the stream can be watched in a browser:

    /, /index.html      the player page
    /preview/<file>     playlist and segments, uncached, readable cross-origin
    anything else       404

The server runs on the supervisor's event loop. A preview that cannot start is
logged and streaming continues without it.
"""
import asyncio
import contextlib
import mimetypes
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse, HTMLResponse
from loguru import logger

from ..config.stream import HLS_PLAYLIST_NAME
from ..domain.exceptions import PreviewServerError

PREVIEW_HOST = "0.0.0.0"
PREVIEW_ROUTE = "/preview"
PREVIEW_MEDIA_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
}
PREVIEW_HEADERS = {"Cache-Control": "no-cache", "Access-Control-Allow-Origin": "*"}
STARTUP_POLL_SECONDS = 0.05

PLAYER_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Loopcast Preview</title>
    <style>
        body { margin: 0; min-height: 100vh; display: flex; flex-direction: column; align-items: center;
               justify-content: center; background: #0e0e10; color: #efeff1; font-family: sans-serif; }
        .container { width: 100%; max-width: 1200px; padding: 20px; box-sizing: border-box; }
        h1 { text-align: center; color: #9147ff; }
        video { width: 100%; aspect-ratio: 16 / 9; background: #18181b; border-radius: 8px; }
        .status { margin-top: 16px; text-align: center; color: #adadb8; }
    </style>
    <script src="https://cdn.jsdelivr.net/npm/hls.js@1"></script>
</head>
<body>
    <div class="container">
        <h1>Loopcast Preview</h1>
        <video id="video" controls autoplay muted></video>
        <div class="status" id="status">Waiting for stream...</div>
    </div>
    <script>
        const video = document.getElementById('video');
        const status = document.getElementById('status');
        const streamUrl = '__STREAM_URL__';
        if (window.Hls && Hls.isSupported()) {
            const hls = new Hls({ maxBufferLength: 10, maxMaxBufferLength: 30 });
            hls.loadSource(streamUrl);
            hls.attachMedia(video);
            hls.on(Hls.Events.MANIFEST_PARSED, () => {
                status.textContent = 'LIVE';
                video.play().catch(() => { status.textContent = 'Click play to start'; });
            });
            hls.on(Hls.Events.ERROR, (event, data) => {
                if (!data.fatal) return;
                if (data.type === Hls.ErrorTypes.NETWORK_ERROR) {
                    status.textContent = 'Waiting for stream...';
                    setTimeout(() => hls.loadSource(streamUrl), 2000);
                } else if (data.type === Hls.ErrorTypes.MEDIA_ERROR) {
                    status.textContent = 'Recovering from media error...';
                    hls.recoverMediaError();
                } else {
                    status.textContent = 'Fatal error: ' + data.type;
                }
            });
        } else if (video.canPlayType('application/vnd.apple.mpegurl')) {
            video.src = streamUrl;
            video.addEventListener('loadedmetadata', () => { status.textContent = 'LIVE'; });
            video.addEventListener('error', () => {
                status.textContent = 'Waiting for stream...';
                setTimeout(() => { video.src = streamUrl; }, 2000);
            });
        } else {
            status.textContent = 'HLS is not supported in this browser';
        }
    </script>
</body>
</html>
"""


def preview_media_type(path: Path) -> str:
    return (
        PREVIEW_MEDIA_TYPES.get(path.suffix.lower())
        or mimetypes.guess_type(path.name)[0]
        or "application/octet-stream"
    )


def create_app(preview_dir: Path) -> FastAPI:
    """
    Builds the preview web application.

    Args:
        preview_dir: The directory the encoder writes the HLS output into. It
                     may not exist yet; files are looked up per request.

    Returns:
        FastAPI: The application, ready to be served by uvicorn.
    """
    app = FastAPI(title="Loopcast preview", docs_url=None, redoc_url=None, openapi_url=None)
    root = Path(preview_dir).resolve()
    page = PLAYER_PAGE.replace("__STREAM_URL__", f"{PREVIEW_ROUTE}/{HLS_PLAYLIST_NAME}")

    @app.get("/")
    @app.get("/index.html")
    async def player_page():
        return HTMLResponse(page)

    @app.get(PREVIEW_ROUTE + "/{file_path:path}")
    async def preview_file(file_path: str):
        requested = (root / file_path).resolve()
        if not requested.is_relative_to(root):
            raise HTTPException(status_code=403, detail="Access denied")
        if not requested.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(requested, media_type=preview_media_type(requested), headers=PREVIEW_HEADERS)

    return app


class _EmbeddedServer(uvicorn.Server):
    """A uvicorn server that leaves SIGINT/SIGTERM to the host event loop."""

    def install_signal_handlers(self):
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class PreviewServer:
    """
    Serves the preview directory over HTTP while the supervisor runs.

    Args:
        preview_dir: The HLS output directory.
        port: The TCP port to listen on.
        host: The interface to bind; all interfaces by default.
    """

    def __init__(self, preview_dir: Path, port: int, host: str = PREVIEW_HOST):
        self.preview_dir = Path(preview_dir)
        self.port = port
        self.host = host
        self._server: Optional[_EmbeddedServer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """
        Starts listening and returns once the socket is bound.

        Raises:
            PreviewServerError: If the server is already running or cannot bind.
        """
        if self._task is not None:
            raise PreviewServerError("Preview server already running")
        config = uvicorn.Config(
            create_app(self.preview_dir), host=self.host, port=self.port, log_level="error"
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.ensure_future(self._serve())
        while not self._server.started and not self._task.done():
            await asyncio.sleep(STARTUP_POLL_SECONDS)
        if self._task.done():
            task, self._task, self._server = self._task, None, None
            error = task.exception() or "server exited during startup"
            raise PreviewServerError(f"Preview server failed to start on port {self.port}: {error}")
        logger.info(f"Preview server running at {self.url}")

    async def stop(self):
        """Stops the server and waits for it to close. Safe to call when not running."""
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await self._task
        except PreviewServerError as e:
            logger.error(f"{e}")
        finally:
            self._task = None
            self._server = None
        logger.info("Preview server stopped")

    async def _serve(self):
        try:
            await self._server.serve()
        except SystemExit:
            # uvicorn exits the interpreter when it cannot bind; keep that inside this task.
            raise PreviewServerError(f"could not listen on {self.host}:{self.port}") from None
