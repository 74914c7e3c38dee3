# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the Loopcast test suite.

This module provides:
- Fake encoder process handles driven by scripted diagnostic output
- A recording spawn function to inject into `ProcessController`
- Settings pointing every path into a temporary directory
- A media directory with a few (empty) video files

Usage:
    Fixtures are discovered implicitly by pytest.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import pytest

from loopcast.config.settings import OverlaySettings, StreamSettings
from loopcast.domain.models import WorkItem

KILL_RETURNCODE = -getattr(signal, "SIGKILL", 9)


# =============================================================================
# Scripted diagnostic output
# =============================================================================


def banner(duration: str = "00:10:00.00") -> str:
    """A typical FFmpeg startup banner for an H.264/AAC MP4 input."""
    return (
        "ffmpeg version 6.1 Copyright (c) 2000-2023 the FFmpeg developers\n"
        "  configuration: --enable-gpl --enable-libx264 --enable-nvenc\n"
        "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'a.mp4':\n"
        f"  Duration: {duration}, start: 0.000000, bitrate: 2629 kb/s\n"
        "  Stream #0:0[0x1](und): Video: h264 (High) (avc1 / 0x31637661), yuv420p(progressive), "
        "1920x1080 [SAR 1:1 DAR 16:9], 2500 kb/s, 29.97 fps, 29.97 tbr, 30k tbn (default)\n"
        "  Stream #0:1[0x2](und): Audio: aac (LC) (mp4a / 0x6134706D), 48000 Hz, stereo, fltp, 128 kb/s (default)\n"
        "Output #0, flv, to 'rtmp://live.twitch.tv/app/key':\n"
        "  Stream #0:0: Video: h264 (libx264), yuv420p, 1280x720, q=2-31, 3000 kb/s, 30 fps\n"
        "  Stream #0:1: Audio: aac (LC), 44100 Hz, stereo, fltp, 160 kb/s\n"
    )


def progress(*timecodes: str) -> str:
    """Progress status lines, rewritten in place with carriage returns like FFmpeg does."""
    return "".join(
        f"frame={i * 30:5d} fps= 30 q=28.0 size=N/A time={tc} bitrate=N/A speed=1x    \r"
        for i, tc in enumerate(timecodes, start=1)
    )


# =============================================================================
# Fake process handles
# =============================================================================


class FakeStdin:
    def __init__(self, process: "FakeProcess"):
        self._process = process
        self.data = b""
        self.closed = False

    def write(self, data: bytes):
        if self.closed:
            raise BrokenPipeError("stdin closed")
        self.data += data

    async def drain(self):
        if b"q" in self.data:
            self._process.on_quit()

    def close(self):
        self.closed = True


class FakeProcess:
    """
    Mimics `asyncio.subprocess.Process` closely enough for `ProcessController`.

    Args:
        stderr: Chunks (str or bytes) pre-fed into the stderr reader.
        returncode: Exit status used when the process ends on its own.
        run_forever: Keep running until quit or killed.
        quit_returncode: Exit status after the quit token, if it is honored.
        ignore_quit: Never react to the quit token (forces the kill path).
    """

    def __init__(
        self,
        stderr: Sequence[Union[str, bytes]] = (),
        stdout: Sequence[Union[str, bytes]] = (),
        returncode: int = 0,
        run_forever: bool = False,
        quit_returncode: int = 0,
        ignore_quit: bool = False,
        pid: int = 4242,
    ):
        self.pid = pid
        self.stdin = FakeStdin(self)
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        for chunk in stderr:
            self.stderr.feed_data(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
        for chunk in stdout:
            self.stdout.feed_data(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
        self.returncode: Optional[int] = None
        self.quit_returncode = quit_returncode
        self.ignore_quit = ignore_quit
        self.kill_count = 0
        self._exited = asyncio.Event()
        if not run_forever:
            self.exit(returncode)

    def exit(self, code: int):
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    def on_quit(self):
        if not self.ignore_quit:
            self.exit(self.quit_returncode)

    def kill(self):
        if self.returncode is not None:
            raise ProcessLookupError()
        self.kill_count += 1
        self.exit(KILL_RETURNCODE)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


ProcessFactory = Callable[[], Union[FakeProcess, BaseException]]


class FakeSpawner:
    """
    A recording stand-in for `asyncio.create_subprocess_exec`.

    Each call pops the next factory; a factory returning an exception makes
    the spawn raise it. Once the list runs out, `default` is used.
    """

    def __init__(self, factories: Optional[List[ProcessFactory]] = None, default: Optional[ProcessFactory] = None):
        self.factories = list(factories or [])
        self.default = default or (lambda: FakeProcess(run_forever=True))
        self.calls: List[tuple] = []
        self.processes: List[FakeProcess] = []
        self.on_spawn: Optional[Callable[[int], None]] = None

    async def __call__(self, *cmd, **kwargs):
        self.calls.append(cmd)
        factory = self.factories.pop(0) if self.factories else self.default
        outcome = factory()
        if isinstance(outcome, BaseException):
            raise outcome
        self.processes.append(outcome)
        if self.on_spawn is not None:
            self.on_spawn(len(self.calls))
        return outcome


# =============================================================================
# Settings and media fixtures
# =============================================================================


@pytest.fixture
def video_dir(tmp_path: Path) -> Path:
    """A media directory holding a.mp4, b.mkv, c.mov and an ignored notes.txt."""
    directory = tmp_path / "videos"
    directory.mkdir()
    for name in ("a.mp4", "b.mkv", "c.mov", "notes.txt"):
        (directory / name).write_bytes(b"")
    return directory


@pytest.fixture
def settings(tmp_path: Path, video_dir: Path) -> StreamSettings:
    """Preview-mode settings with every path under tmp_path and fast retries."""
    return StreamSettings(
        preview_mode=True,
        preview_dir=tmp_path / "preview",
        overlay=OverlaySettings(enabled=True),
        overlay_file=tmp_path / "overlays" / "current.txt",
        video_dir=video_dir,
        health_check_interval_ms=0,
        max_retries=3,
        retry_base_delay_ms=10,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def live_settings(settings: StreamSettings) -> StreamSettings:
    from dataclasses import replace

    return replace(settings, preview_mode=False, stream_key="live_secret_key")


@pytest.fixture
def work_item(video_dir: Path) -> WorkItem:
    return WorkItem.from_path(video_dir / "a.mp4")
