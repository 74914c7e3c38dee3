"""
Heuristic diagnosis of failed encoder sessions.

The classifier evaluates an ordered list of `(predicate, cause)` rules against
the exit status, the captured diagnostic tail and the completion ratio. The
first matching rule wins:

1. Killed by SIGKILL                      -> out of memory / killed by the OS
2. "invalid data found" / "corrupt"       -> corrupted input or incompatible codec
3. "nvenc" on an error line               -> hardware encoder fault
4. connection refused / unreachable / ... -> endpoint unreachable
5. "conversion failed"                    -> unsupported input format
6. completion ratio < 0.5                 -> early termination (filters, size, fps)
7. otherwise                              -> unknown

The resulting `FailureDiagnosis` carries the plain-language causes and a
rendered multi-line report for the logs.

The hardware marker only counts on lines an encoder component logged or that
carry an error keyword: an NVENC session also names h264_nvenc in its output
stream description and metadata, which says nothing about the failure.
"""
import re
import signal
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..config.common import (
    EARLY_TERMINATION_THRESHOLD,
    ERROR_KEYWORDS,
    REPORT_ERROR_LINES,
    REPORT_RAW_LINES,
    REPORT_SEPARATOR,
)
from ..domain.models import FailureCause, FailureDiagnosis, SessionResult
from ..utils.format_utils import format_timedelta

KILL_SIGNAL = getattr(signal, "SIGKILL", 9)

# Lowercase substrings searched in the diagnostic text.
CORRUPT_DATA_MARKERS = ("invalid data found", "corrupt")
HARDWARE_ENCODER_MARKERS = ("nvenc",)
NETWORK_MARKERS = (
    "connection refused",
    "connection reset",
    "connection timed out",
    "network is unreachable",
    "no route to host",
    "broken pipe",
    "failed to connect",
    "error opening output",
)
CONVERSION_FAILED_MARKERS = ("conversion failed",)

# Lines prefixed by the component that logged them, e.g. "[h264_nvenc @ 0x55d0]".
COMPONENT_LINE = re.compile(r"^\s*\[[\w:.-]+ @ (0x)?[0-9a-f]+\]")

CAUSE_TEXT: Dict[FailureCause, Tuple[str, ...]] = {
    FailureCause.OUT_OF_MEMORY: (
        "Out of memory: the encoder was killed by the OS (SIGKILL).",
        "Lower the video bitrate or resolution, or disable hardware acceleration.",
    ),
    FailureCause.CORRUPT_INPUT: (
        "Corrupted input file or incompatible codec.",
        "Re-encode or replace the file, or remove it from the media directory.",
    ),
    FailureCause.HARDWARE_ENCODER: (
        "Hardware encoder (NVENC) fault.",
        "Set HW_ACCEL=none to fall back to software encoding.",
    ),
    FailureCause.NETWORK: (
        "Network error: the streaming endpoint is unreachable or dropped the connection.",
        "Check connectivity, the server URL and the stream key.",
    ),
    FailureCause.UNSUPPORTED_FORMAT: (
        "Conversion failed: the input format is probably unsupported.",
        "Check the file with ffprobe and convert it to H.264/AAC MP4.",
    ),
    FailureCause.EARLY_TERMINATION: (
        "Early termination: the encoder stopped before reaching half of the input.",
        "Likely a filter-chain problem or a resolution/frame-rate mismatch with the source.",
    ),
    FailureCause.UNKNOWN: (
        "Unknown cause.",
        "Re-run with LOG_LEVEL=DEBUG to capture verbose encoder output.",
    ),
}


@dataclass(frozen=True)
class FailureContext:
    signal: Optional[int]
    exit_code: Optional[int]
    text: str  # lowercased diagnostic text
    error_text: str  # lowercased component and error-keyword lines only
    ratio: float


Predicate = Callable[[FailureContext], bool]


def _contains_any(markers: Sequence[str]) -> Predicate:
    return lambda ctx: any(marker in ctx.text for marker in markers)


def _errors_contain_any(markers: Sequence[str]) -> Predicate:
    return lambda ctx: any(marker in ctx.error_text for marker in markers)


def is_error_line(line: str) -> bool:
    lowered = line.lower()
    return bool(COMPONENT_LINE.match(lowered)) or any(k in lowered for k in ERROR_KEYWORDS)


RULES: List[Tuple[Predicate, FailureCause]] = [
    (lambda ctx: ctx.signal == KILL_SIGNAL, FailureCause.OUT_OF_MEMORY),
    (_contains_any(CORRUPT_DATA_MARKERS), FailureCause.CORRUPT_INPUT),
    (_errors_contain_any(HARDWARE_ENCODER_MARKERS), FailureCause.HARDWARE_ENCODER),
    (_contains_any(NETWORK_MARKERS), FailureCause.NETWORK),
    (_contains_any(CONVERSION_FAILED_MARKERS), FailureCause.UNSUPPORTED_FORMAT),
    (lambda ctx: ctx.ratio < EARLY_TERMINATION_THRESHOLD, FailureCause.EARLY_TERMINATION),
    (lambda ctx: True, FailureCause.UNKNOWN),
]


def classify(
    signal_number: Optional[int], exit_code: Optional[int], diagnostic_text: str, ratio: float
) -> FailureCause:
    """
    Returns the cause of the first matching rule.

    Args:
        signal_number: The signal that ended the encoder, if any.
        exit_code: The encoder's exit code, if it exited on its own.
        diagnostic_text: The captured diagnostic output, newline separated.
        ratio: The completion ratio reached before the failure.

    Returns:
        The diagnosed `FailureCause`.
    """
    text = diagnostic_text.lower()
    ctx = FailureContext(
        signal=signal_number,
        exit_code=exit_code,
        text=text,
        error_text="\n".join(line for line in text.splitlines() if is_error_line(line)),
        ratio=ratio,
    )
    for predicate, cause in RULES:
        if predicate(ctx):
            return cause
    return FailureCause.UNKNOWN


def error_lines(lines: Sequence[str], limit: int = REPORT_ERROR_LINES) -> List[str]:
    """The last `limit` lines containing an error keyword."""
    matching = [line for line in lines if any(k in line.lower() for k in ERROR_KEYWORDS)]
    return matching[-limit:] if limit > 0 else []


class FailureClassifier:
    """Diagnoses a failed `SessionResult` and renders the forensic report."""

    def __init__(self, error_line_limit: int = REPORT_ERROR_LINES, raw_line_limit: int = REPORT_RAW_LINES):
        self.error_line_limit = error_line_limit
        self.raw_line_limit = raw_line_limit

    def diagnose(self, result: SessionResult) -> FailureDiagnosis:
        status = result.exit_status
        # The banner's build configuration lists flags like --enable-nvenc; keep it out of matching.
        text = "\n".join(
            line for line in result.diagnostic_lines if not line.lstrip().startswith("configuration:")
        )
        cause = classify(status.signal, status.exit_code, text, result.completion_ratio)
        probable_causes = CAUSE_TEXT[cause]
        return FailureDiagnosis(
            cause=cause,
            probable_causes=probable_causes,
            report=self.render_report(result, probable_causes),
        )

    def render_report(self, result: SessionResult, probable_causes: Sequence[str]) -> str:
        session = result.session
        lines = [
            REPORT_SEPARATOR,
            f"Encoder failure: {result.item.display_name} ({result.exit_status.describe()})",
            REPORT_SEPARATOR,
            f"Video: {result.item.path}",
            f"Progress: {session.progress_seconds:.2f}s / {session.total_duration_seconds:.2f}s"
            f" ({result.completion_ratio * 100:.2f}%)",
            f"Elapsed: {format_timedelta(result.elapsed_seconds)}",
            f"Started: {session.started_datetime.isoformat(timespec='seconds')}",
        ]
        metadata = session.metadata.as_dict()
        if metadata:
            lines.append("Input: " + ", ".join(f"{k}={v}" for k, v in metadata.items()))

        lines.append("Probable causes:")
        lines += [f"  - {text}" for text in probable_causes]

        errors = error_lines(result.diagnostic_lines, self.error_line_limit)
        if errors:
            lines.append(f"Error lines (last {len(errors)}):")
            lines += [f"  | {line}" for line in errors]

        raw = list(result.diagnostic_lines)[-self.raw_line_limit:] if self.raw_line_limit > 0 else []
        if raw:
            lines.append(f"Last output (last {len(raw)} lines):")
            lines += [f"  | {line}" for line in raw]
        lines.append(REPORT_SEPARATOR)
        return "\n".join(lines)
