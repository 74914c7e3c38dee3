"""
Owns the external encoder process.

`ProcessController` starts one FFmpeg invocation at a time, pumps its stderr
(diagnostic stream) and stdout (data stream) into an `OutputParser`, and
reports how the process ended. The live `ProcessSession` belongs to the
controller while the process runs. `wait()` hands back an immutable
`SessionResult` and drops the session.

Stopping is always graceful first: the quit token is written to the
encoder's stdin so it can flush and finalize its output, and only if it has
not exited within the grace period is it killed.

The spawn function is injectable so the controller can be driven by fake
process handles. It must behave like `asyncio.create_subprocess_exec`.
"""
import asyncio
import codecs
import time
from asyncio import subprocess as aio_subprocess
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

from loguru import logger

from ..config.common import QUIT_TOKEN, READ_CHUNK_SIZE, STOP_GRACE_SECONDS
from ..config.settings import StreamSettings
from ..domain.exceptions import SpawnError
from ..domain.models import ExitStatus, ProcessSession, SessionResult, WorkItem
from ..utils.ffmpeg_args import build_ffmpeg_args, format_command
from .output_parser import OutputParser

Spawner = Callable[..., Awaitable[Any]]


class ProcessController:
    def __init__(
        self,
        settings: StreamSettings,
        overlay_file: Optional[Path] = None,
        spawner: Optional[Spawner] = None,
        grace_period: float = STOP_GRACE_SECONDS,
    ):
        self.settings = settings
        self.overlay_file = overlay_file
        self.grace_period = grace_period
        self._spawner: Spawner = spawner or asyncio.create_subprocess_exec
        self._process: Optional[Any] = None
        self._session: Optional[ProcessSession] = None
        self._parser: Optional[OutputParser] = None
        self._stop_task: Optional[asyncio.Task] = None

    # --- State ---
    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def session(self) -> Optional[ProcessSession]:
        return self._session

    @property
    def pid(self) -> Optional[int]:
        return getattr(self._process, "pid", None) if self._process else None

    def build_command(self, item: WorkItem) -> List[str]:
        return [self.settings.ffmpeg_path, *build_ffmpeg_args(item.path, self.settings, self.overlay_file)]

    # --- Lifecycle ---
    async def start(self, item: WorkItem) -> Any:
        """
        Launches the encoder for one work item.

        Args:
            item: The media file to stream.

        Returns:
            The process handle.

        Raises:
            SpawnError: If a session is already active, the input file does not
                        exist, or the encoder executable cannot be launched.
        """
        if self._process is not None:
            raise SpawnError(f"An encoder session is already running (pid {self.pid}).")
        if not item.path.exists():
            raise SpawnError(f"Video file not found: {item.path}")

        cmd = self.build_command(item)
        logger.debug(f"Encoder command: {format_command(cmd, redact=self.settings.stream_key or None)}")

        try:
            process = await self._spawner(
                *cmd,
                stdin=aio_subprocess.PIPE,
                stdout=aio_subprocess.PIPE,
                stderr=aio_subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise SpawnError(
                f"Encoder executable not found: '{cmd[0]}'. Install FFmpeg or set FFMPEG_PATH."
            ) from e
        except PermissionError as e:
            raise SpawnError(f"Encoder executable is not runnable: '{cmd[0]}': {e}") from e
        except OSError as e:
            raise SpawnError(f"Could not launch encoder for {item.path}: {e}") from e

        self._process = process
        self._session = ProcessSession(item=item)
        self._parser = OutputParser(self._session)
        logger.info(f"Encoder started for {item.display_name} (pid {self.pid})")
        return process

    async def wait(self) -> SessionResult:
        """
        Consumes both output streams until the process exits.

        Returns:
            The finished `SessionResult`. The live session is released.
        """
        process, session, parser = self._process, self._session, self._parser
        if process is None or session is None or parser is None:
            raise RuntimeError("wait() called with no encoder session")

        try:
            await asyncio.gather(
                self._pump(process.stderr, parser.feed),
                self._pump(process.stdout, parser.feed_secondary),
            )
            returncode = await process.wait()
        finally:
            parser.finish()

        self._process = self._session = self._parser = None
        exit_status = ExitStatus.from_returncode(returncode)
        elapsed = session.elapsed_seconds()
        logger.debug(
            f"Encoder for {session.item.display_name} ended ({exit_status.describe()}) after {elapsed:.1f}s, "
            f"{parser.line_count} diagnostic lines"
        )
        return SessionResult(
            session=session,
            exit_status=exit_status,
            diagnostic_lines=tuple(parser.lines),
            ended_datetime=datetime.now(),
            elapsed_seconds=elapsed,
        )

    async def run(self, item: WorkItem) -> SessionResult:
        await self.start(item)
        return await self.wait()

    async def stop(self):
        """
        Stops the running encoder: quit token, then SIGKILL after the grace period.

        Safe to call when nothing is running and safe to call repeatedly; a
        concurrent second call waits on the stop already in progress.
        """
        if not self.is_running:
            return
        if self._stop_task is None or self._stop_task.done():
            self._stop_task = asyncio.ensure_future(self._stop(self._process))
        await asyncio.shield(self._stop_task)

    async def _stop(self, process: Any):
        started = time.monotonic()
        await self._send_quit(process)
        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_period)
            logger.info(f"Encoder exited gracefully in {time.monotonic() - started:.1f}s")
            return
        except asyncio.TimeoutError:
            logger.warning(f"Encoder did not exit within {self.grace_period:.0f}s, killing it")
        try:
            process.kill()
        except ProcessLookupError:
            pass  # exited between the timeout and the kill
        await process.wait()

    @staticmethod
    async def _send_quit(process: Any):
        stdin = process.stdin
        if stdin is None:
            return
        try:
            stdin.write(QUIT_TOKEN)
            await stdin.drain()
            stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"Encoder stdin already closed: {e}")

    @staticmethod
    async def _pump(stream: Optional[asyncio.StreamReader], handler: Callable[[str], None]):
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            if not data:
                break
            handler(decoder.decode(data))
        tail = decoder.decode(b"", final=True)
        if tail:
            handler(tail)
