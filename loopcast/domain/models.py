"""
Data models shared by the Loopcast services.

Ownership rules:
- A `WorkItem` is immutable and handed out by the playlist, one per session.
- A `ProcessSession` exists only while an encoder process is alive and is
  mutated exclusively by the `ProcessController` (through its `OutputParser`).
  When the process exits the controller hands a finished `SessionResult` to
  the supervisor and drops the live session.
- `RetryState`, the error history and the supervisor phase are written only by
  the supervisor's event loop. Health snapshots are immutable copies.
"""
import signal as signal_module
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config.common import COMPLETION_THRESHOLD


def completion_ratio(progress_seconds: float, total_duration_seconds: float) -> float:
    """
    Returns observed progress divided by the declared total duration.

    An unknown (zero) duration is treated as fully complete: without a
    reference length a session cannot be judged premature.
    """
    if total_duration_seconds > 0:
        return progress_seconds / total_duration_seconds
    return 1.0


@dataclass(frozen=True)
class WorkItem:
    path: Path
    display_name: str

    @classmethod
    def from_path(cls, path: Path) -> "WorkItem":
        return cls(path=Path(path), display_name=Path(path).name)


@dataclass
class InputMetadata:
    """Facts about the input, taken from the encoder's startup banner. Write-once per field."""

    container: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    resolution: Optional[str] = None  # "WIDTHxHEIGHT"
    fps: Optional[float] = None
    sample_rate_hz: Optional[int] = None

    def as_dict(self) -> Dict[str, object]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class ProcessSession:
    item: WorkItem
    started_at: float = field(default_factory=time.monotonic)
    started_datetime: datetime = field(default_factory=datetime.now)
    progress_seconds: float = 0.0
    total_duration_seconds: float = 0.0
    metadata: InputMetadata = field(default_factory=InputMetadata)

    @property
    def completion_ratio(self) -> float:
        return completion_ratio(self.progress_seconds, self.total_duration_seconds)

    def elapsed_seconds(self, now: Optional[float] = None) -> float:
        return (time.monotonic() if now is None else now) - self.started_at


@dataclass(frozen=True)
class ExitStatus:
    """How the encoder process ended: an exit code, or the signal that killed it."""

    exit_code: Optional[int] = None
    signal: Optional[int] = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "ExitStatus":
        # asyncio reports death-by-signal as a negative return code on POSIX.
        if returncode < 0:
            return cls(exit_code=None, signal=-returncode)
        return cls(exit_code=returncode, signal=None)

    @property
    def is_clean(self) -> bool:
        return self.signal is None and self.exit_code == 0

    @property
    def signal_name(self) -> Optional[str]:
        if self.signal is None:
            return None
        try:
            return signal_module.Signals(self.signal).name
        except ValueError:
            return f"signal {self.signal}"

    def describe(self) -> str:
        if self.signal is not None:
            return f"killed by {self.signal_name}"
        return f"exit code {self.exit_code}"


@dataclass(frozen=True)
class SessionResult:
    """The final state of one encoder session, produced when the process exits."""

    session: ProcessSession
    exit_status: ExitStatus
    diagnostic_lines: Tuple[str, ...] = ()
    ended_datetime: datetime = field(default_factory=datetime.now)
    elapsed_seconds: float = 0.0

    @property
    def item(self) -> WorkItem:
        return self.session.item

    @property
    def completion_ratio(self) -> float:
        return self.session.completion_ratio

    @property
    def diagnostic_text(self) -> str:
        return "\n".join(self.diagnostic_lines)


class SessionOutcome(str, Enum):
    """How the supervisor judges a finished session."""

    COMPLETED = "completed"
    PREMATURE_COMPLETION = "premature_completion"
    SIGNAL_TERMINATION = "signal_termination"
    EXIT_CODE_ERROR = "exit_code_error"

    @property
    def is_failure(self) -> bool:
        return self in (SessionOutcome.SIGNAL_TERMINATION, SessionOutcome.EXIT_CODE_ERROR)


def evaluate_session(exit_status: ExitStatus, ratio: float) -> SessionOutcome:
    """
    Judges a finished session.

    A signal or a nonzero exit code is a failure. A clean exit is `COMPLETED`
    when the completion ratio reaches the threshold (inclusive) and
    `PREMATURE_COMPLETION` otherwise.
    """
    if exit_status.signal is not None:
        return SessionOutcome.SIGNAL_TERMINATION
    if exit_status.exit_code != 0:
        return SessionOutcome.EXIT_CODE_ERROR
    if ratio >= COMPLETION_THRESHOLD:
        return SessionOutcome.COMPLETED
    return SessionOutcome.PREMATURE_COMPLETION


class FailureCause(str, Enum):
    """Probable cause of a failed session, in classifier rule order."""

    OUT_OF_MEMORY = "out_of_memory"
    CORRUPT_INPUT = "corrupt_input"
    HARDWARE_ENCODER = "hardware_encoder"
    NETWORK = "network"
    UNSUPPORTED_FORMAT = "unsupported_format"
    EARLY_TERMINATION = "early_termination"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FailureDiagnosis:
    cause: FailureCause
    probable_causes: Tuple[str, ...]
    report: str


@dataclass(frozen=True)
class ErrorRecord:
    timestamp: datetime
    message: str


@dataclass
class RetryState:
    count: int = 0
    cap: int = 10
    base_delay_ms: int = 5_000


@dataclass(frozen=True)
class HealthStatus:
    streaming: bool
    current_item: Optional[str]
    uptime_ms: int
    retry_count: int
    errors: Tuple[ErrorRecord, ...]

    @property
    def error_messages(self) -> List[str]:
        return [e.message for e in self.errors]


@dataclass(frozen=True)
class HealthCheckResult:
    healthy: bool
    uptime_ms: int
    current_item: Optional[str]
    error_count: int
    last_error: Optional[str] = None
