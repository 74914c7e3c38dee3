"""
Common configuration settings used throughout Loopcast.

This module centralizes the constants that govern process supervision (grace
periods, completion thresholds, retry caps), diagnostic reporting, logging and
process exit codes. It also locates the optional user configuration file
`config.user.yaml` at the project root; the file itself is parsed by
`loopcast.config.settings`.
"""
from pathlib import Path
from typing import Optional

# --- Project Paths ---


def resolve_project_root(package_dir: Path, cwd: Optional[Path] = None) -> Path:
    """
    Finds the directory holding `config.user.yaml`, `.env` and the default
    media, log and preview folders.

    Run from a source checkout, that is the checkout root (the directory with
    `pyproject.toml` above the package). Installed into site-packages there is
    no such file, so the current working directory is used instead.
    """
    checkout = package_dir.parent
    if (checkout / "pyproject.toml").is_file():
        return checkout
    return cwd if cwd is not None else Path.cwd()


PROJECT_ROOT = resolve_project_root(Path(__file__).resolve().parent.parent)
USER_CONFIG_PATH = PROJECT_ROOT / "config.user.yaml"
ENV_FILE_PATH = PROJECT_ROOT / ".env"


# --- Logging Configuration ---

# The format string for the Loguru logger.
LOGGER_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{process} - <level>{message}</level>"
)

# Rotating file sink written next to the forensic logs when a log directory is set.
LOG_FILE_NAME = "loopcast.log"
LOG_FILE_ROTATION = "10 MB"
LOG_FILE_RETENTION = 7

# Plain-text file receiving every rendered failure report.
ERROR_LOG_FILE_NAME = "error.txt"

# Daily YAML session history, one list entry per finished encoder session.
SESSION_LOG_PREFIX = "sessions_"


# --- Process Supervision ---

# Seconds to wait after the graceful quit token before killing the encoder.
STOP_GRACE_SECONDS = 5.0

# Written to the encoder's stdin to request a clean shutdown (FFmpeg's "q" key).
QUIT_TOKEN = b"q"

# Bytes requested per read from the encoder's output pipes.
READ_CHUNK_SIZE = 4096

# A clean exit at or above this ratio counts as a completed session.
COMPLETION_THRESHOLD = 0.98

# Failures below this ratio with no recognizable marker are "early termination".
EARLY_TERMINATION_THRESHOLD = 0.5

# The backoff delay never exceeds base delay multiplied by this factor.
BACKOFF_CAP_MULTIPLIER = 60

# Maximum number of error records kept by the health tracker.
ERROR_HISTORY_CAPACITY = 50

# Seconds between polls of an empty, looping playlist.
IDLE_POLL_SECONDS = 5.0

# Seconds between checks while waiting for an interrupted session to wind down.
SHUTDOWN_POLL_SECONDS = 0.1


# --- Diagnostic Reporting ---

# Number of diagnostic lines retained per session for classification and reports.
DIAGNOSTIC_TAIL_LINES = 1000

# Lines quoted in a failure report.
REPORT_ERROR_LINES = 15
REPORT_RAW_LINES = 10

# Lowercase keywords marking a diagnostic line as "error-ish".
ERROR_KEYWORDS = ("error", "failed", "invalid", "corrupt", "refused", "unable", "cannot")

# Separator used around console and file reports.
REPORT_SEPARATOR = "=" * 70


# --- Process Exit Codes ---

EXIT_OK = 0  # Shutdown requested, or a non-looping playlist ran out.
EXIT_RETRIES_EXHAUSTED = 1  # Too many consecutive failed sessions.
EXIT_STARTUP_ERROR = 2  # Invalid configuration or empty media directory.
