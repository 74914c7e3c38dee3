"""
The supervision loop.

`Supervisor.supervise()` pulls work items from a work source, runs one
encoder session at a time through the `ProcessController`, judges each
finished session, and decides between moving on, backing off and
terminating:

    IDLE -> STARTING -> RUNNING -> COMPLETED | FAILED -> BACKOFF -> STARTING ... -> TERMINATED

- A clean exit at >= 98% completion is COMPLETED and resets the retry count.
- A clean exit below 98% is logged as a premature completion; the item is
  still considered done and the retry count is left alone.
- A signal, a nonzero exit code or a spawn failure is FAILED: the diagnosis is
  recorded, the retry count increments, and once it reaches `max_retries` the
  service terminates. Otherwise the loop sleeps for the backoff delay and
  continues with the *next* item.
- `request_shutdown()` interrupts whatever is in progress: a running encoder
  is stopped gracefully and a backoff sleep is cut short.

Ownership rule: the supervisor's state, the `HealthTracker` and the live
session are written only from the event loop running `supervise()`. Other
code may read `HealthTracker.snapshot()` but must not mutate them.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Optional, Protocol

from loguru import logger

from ..config.common import (
    EXIT_OK,
    EXIT_RETRIES_EXHAUSTED,
    IDLE_POLL_SECONDS,
    REPORT_SEPARATOR,
    SHUTDOWN_POLL_SECONDS,
)
from ..config.settings import StreamSettings
from ..domain.exceptions import (
    ExitCodeError,
    SessionFailure,
    ShutdownInterrupt,
    SignalTermination,
    SpawnError,
)
from ..domain.models import SessionOutcome, SessionResult, WorkItem, evaluate_session
from ..services.backoff import BackoffPolicy
from ..services.failure_classifier import FailureClassifier
from ..services.health_tracker import HealthTracker
from ..services.logging_service import ErrorLog, SessionLog
from ..services.overlay_service import OverlayChannel, OverlayData
from ..services.process_controller import ProcessController
from ..utils.format_utils import format_milliseconds, format_timedelta, format_uptime


class WorkSource(Protocol):
    def next(self) -> Optional[WorkItem]: ...


class SupervisorPhase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BACKOFF = "backoff"
    TERMINATED = "terminated"


@dataclass
class SupervisorState:
    phase: SupervisorPhase = SupervisorPhase.IDLE
    current_item: Optional[WorkItem] = None
    sessions_started: int = 0
    last_outcome: Optional[SessionOutcome] = None
    last_backoff_ms: Optional[int] = None
    exit_code: Optional[int] = None


class Supervisor:
    def __init__(
        self,
        work_source: WorkSource,
        settings: StreamSettings,
        controller: Optional[ProcessController] = None,
        tracker: Optional[HealthTracker] = None,
        overlay: Optional[OverlayChannel] = None,
        classifier: Optional[FailureClassifier] = None,
        backoff: Optional[BackoffPolicy] = None,
        error_log: Optional[ErrorLog] = None,
        session_log: Optional[SessionLog] = None,
        idle_poll_seconds: float = IDLE_POLL_SECONDS,
    ):
        self.work_source = work_source
        self.settings = settings
        self.controller = controller or ProcessController(
            settings, overlay_file=overlay.path if overlay else None
        )
        self.tracker = tracker or HealthTracker(settings.max_retries, settings.retry_base_delay_ms)
        self.overlay = overlay
        self.classifier = classifier or FailureClassifier()
        self.backoff = backoff or BackoffPolicy(settings.retry_base_delay_ms)
        self.error_log = error_log
        self.session_log = session_log
        self.idle_poll_seconds = idle_poll_seconds
        self.state = SupervisorState()
        self._shutdown: Optional[asyncio.Event] = None
        self._shutdown_requested = False

    # --- Public entry points ---
    def request_shutdown(self):
        """Asks the loop to terminate gracefully. Safe to call more than once."""
        if self._shutdown_requested:
            return
        self._shutdown_requested = True
        logger.info("Shutdown requested")
        if self._shutdown is not None:
            self._shutdown.set()

    async def supervise(self) -> int:
        """
        Runs until terminated.

        Returns:
            The process exit status: `EXIT_OK` after a shutdown request or an
            exhausted one-shot playlist, `EXIT_RETRIES_EXHAUSTED` when too many
            consecutive sessions failed.
        """
        if self.state.phase is SupervisorPhase.TERMINATED:
            raise RuntimeError("Supervisor has already terminated and cannot be restarted.")

        self._shutdown = asyncio.Event()
        if self._shutdown_requested:
            self._shutdown.set()

        self.tracker.start()
        health_task = self._start_health_checks()
        exit_code = EXIT_OK
        try:
            exit_code = await self._loop()
        finally:
            await self._terminate(health_task, exit_code)
        return exit_code

    # --- Main loop ---
    async def _loop(self) -> int:
        while not self._shutdown.is_set():
            item = self.work_source.next()
            if item is None:
                if not self.settings.loop_playlist:
                    logger.info("No more videos in playlist")
                    return EXIT_OK
                logger.warning(f"Playlist is empty, checking again in {self.idle_poll_seconds:.0f}s")
                if await self._sleep_or_shutdown(self.idle_poll_seconds):
                    break
                continue

            try:
                result = await self._run_session(item)
                self._evaluate(result)
            except ShutdownInterrupt as e:
                logger.info(f"{e}")
                break
            except (SpawnError, SessionFailure) as e:
                if not self._handle_failure(item, e):
                    return EXIT_RETRIES_EXHAUSTED
                delay_ms = self.backoff.delay_ms(self.tracker.retry_count)
                self.state.last_backoff_ms = delay_ms
                self._set_phase(SupervisorPhase.BACKOFF)
                logger.warning(
                    f"Moving to next video (retry {self.tracker.retry_count}/{self.settings.max_retries}), "
                    f"backoff {format_milliseconds(delay_ms)}"
                )
                if await self._sleep_or_shutdown(delay_ms / 1000):
                    break
        return EXIT_OK

    async def _run_session(self, item: WorkItem) -> SessionResult:
        self.state.current_item = item
        self.state.sessions_started += 1
        self.tracker.set_current_item(item.display_name)
        if self.overlay is not None and self.settings.overlay.enabled:
            self.overlay.update(OverlayData(video_name=item.display_name))

        logger.info(REPORT_SEPARATOR)
        logger.info(f"Starting: {item.display_name}")
        logger.info(f"   Path: {item.path}")
        logger.info(REPORT_SEPARATOR)

        self._set_phase(SupervisorPhase.STARTING)
        await self._interruptible(self.controller.start(item))
        self._set_phase(SupervisorPhase.RUNNING)
        return await self._interruptible(self.controller.wait())

    def _evaluate(self, result: SessionResult):
        """Judges a finished session; raises a `SessionFailure` subclass on failure."""
        outcome = evaluate_session(result.exit_status, result.completion_ratio)
        self.state.last_outcome = outcome
        session = result.session

        if outcome.is_failure:
            diagnosis = self.classifier.diagnose(result)
            self._log_session(result, outcome, diagnosis.cause.value)
            error_cls = SignalTermination if outcome is SessionOutcome.SIGNAL_TERMINATION else ExitCodeError
            raise error_cls(
                f"Stream failed: {result.item.display_name} ({result.exit_status.describe()})",
                diagnosis=diagnosis,
            )

        self._set_phase(SupervisorPhase.COMPLETED)
        self._log_session(result, outcome)
        if outcome is SessionOutcome.COMPLETED:
            self.tracker.reset_retry()
            logger.success(
                f"Completed: {result.item.display_name}, streamed {format_timedelta(result.elapsed_seconds)}"
            )
        else:
            logger.warning(
                f"Premature completion: {result.item.display_name} exited cleanly at "
                f"{session.progress_seconds:.2f}s / {session.total_duration_seconds:.2f}s "
                f"({result.completion_ratio * 100:.2f}%). Treating the item as done."
            )

    def _handle_failure(self, item: WorkItem, error: Exception) -> bool:
        """
        Records a failed attempt.

        Returns:
            True if the service may continue, False once the retry budget is spent.
        """
        self._set_phase(SupervisorPhase.FAILED)
        self.state.last_outcome = None if isinstance(error, SpawnError) else self.state.last_outcome
        diagnosis = getattr(error, "diagnosis", None)
        report = diagnosis.report if diagnosis is not None else f"{error}\nVideo: {item.path}"

        logger.error(f"Stream failed: {item.display_name}: {error}")
        logger.error("\n" + report)
        if self.error_log is not None:
            self.error_log.write(report)

        self.tracker.record_error(report)
        retries = self.tracker.increment_retry()
        if not self.tracker.should_retry():
            logger.critical(f"Max retries exceeded ({retries}/{self.settings.max_retries}), stopping service")
            return False
        return True

    def _log_session(self, result: SessionResult, outcome: SessionOutcome, cause: Optional[str] = None):
        if self.session_log is not None:
            self.session_log.write_result(result, outcome, cause)

    # --- Suspension points ---
    async def _interruptible(self, awaitable: Awaitable[Any]) -> Any:
        """
        Awaits an encoder operation unless a shutdown request arrives first.

        On shutdown the encoder is stopped (gracefully, then forcefully), the
        operation is allowed to wind down, and `ShutdownInterrupt` is raised.
        """
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        # A shutdown that lands in the same tick as the result still wins.
        if task in done and not self._shutdown.is_set():
            return task.result()

        while not task.done():
            await self.controller.stop()
            await asyncio.wait({task}, timeout=SHUTDOWN_POLL_SECONDS)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Encoder operation ended during shutdown: {task.exception()}")
        raise ShutdownInterrupt("Shutdown requested while the encoder was active")

    async def _sleep_or_shutdown(self, seconds: float) -> bool:
        """Sleeps for `seconds`; returns True if a shutdown request cut the sleep short."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=max(0.0, seconds))
            return True
        except asyncio.TimeoutError:
            return False

    # --- Health checks ---
    def _start_health_checks(self) -> Optional[asyncio.Task]:
        interval_ms = self.settings.health_check_interval_ms
        if interval_ms <= 0:
            return None
        logger.info(f"Health checks enabled (interval: {interval_ms}ms)")
        return asyncio.ensure_future(self._health_check_loop(interval_ms / 1000))

    async def _health_check_loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            health = self.tracker.health_check()
            logger.debug(
                f"Health check: healthy={health.healthy} uptime={format_uptime(health.uptime_ms)} "
                f"current={health.current_item} errors={health.error_count}"
            )
            if not health.healthy:
                last_error = " | ".join((health.last_error or "").splitlines()[:2])
                logger.warning(f"Unhealthy: last error: {last_error}")

    # --- Termination ---
    async def _terminate(self, health_task: Optional[asyncio.Task], exit_code: int):
        logger.info("Shutting down")
        self._set_phase(SupervisorPhase.TERMINATED)
        self.state.exit_code = exit_code
        await self.controller.stop()
        if health_task is not None:
            health_task.cancel()
            try:
                await health_task
            except asyncio.CancelledError:
                pass
        self.tracker.stop()
        self.tracker.set_current_item(None)
        if self.overlay is not None:
            self.overlay.clear()
        close = getattr(self.work_source, "close", None)
        if callable(close):
            close()

        status = self.tracker.snapshot()
        logger.info(
            f"Final status: uptime {format_uptime(status.uptime_ms)}, "
            f"errors {len(status.errors)}, retries {status.retry_count}"
        )

    def _set_phase(self, phase: SupervisorPhase):
        if self.state.phase is SupervisorPhase.TERMINATED:
            return
        logger.trace(f"Supervisor: {self.state.phase.value} -> {phase.value}")
        self.state.phase = phase
