"""
This module provides the logging setup and the persistent forensic logs.

Console output goes through Loguru (`configure_logging`). On top of that, two
file logs survive restarts and can be inspected after a night of streaming:

- `ErrorLog` appends every rendered failure report to a plain text file.
- `SessionLog` appends one structured YAML entry per finished encoder session
  to a daily file, so outcomes, progress and durations can be analysed later.

Failures to write either file are reported through Loguru and never raised:
a full disk must not take the stream down.
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from loguru import logger

from ..config.common import (
    ERROR_LOG_FILE_NAME,
    LOG_FILE_NAME,
    LOG_FILE_RETENTION,
    LOG_FILE_ROTATION,
    LOGGER_FORMAT,
    SESSION_LOG_PREFIX,
)
from ..domain.models import SessionOutcome, SessionResult


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None):
    """
    (Re)configures the global Loguru logger.

    Args:
        level: Minimum level for all sinks.
        log_dir: If given, also log to a rotating file in this directory.
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOGGER_FORMAT)
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / LOG_FILE_NAME,
            level=level,
            format=LOGGER_FORMAT,
            rotation=LOG_FILE_ROTATION,
            retention=LOG_FILE_RETENTION,
            colorize=False,
        )


class Log:
    """
    A base class for the file logs.

    Handles the shared setup: resolving the log directory and making sure it
    exists.
    """

    # A decorative separator line used in text-based logs for better readability.
    linesep_marker: str = "=" * 50

    def __init__(self, log_dir: Path):
        self.log_file_path: Path  # To be defined by the subclass.
        self.log_dir: Path = Path(log_dir).resolve()
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def write(self, *args, **kwargs):
        raise NotImplementedError("Subclasses must implement the write() method.")


class ErrorLog(Log):
    """
    Appends human-readable error reports to a plain text file.

    Each call adds the given messages followed by a separator line, making
    the file a chronological record of failures.
    """

    def __init__(self, log_dir: Path, filename: str = ERROR_LOG_FILE_NAME):
        super().__init__(log_dir)
        self.log_file_path = self.log_dir / filename

    def write(self, *error_messages: str):
        """
        Writes one or more error messages to the log file.

        Args:
            *error_messages: Pieces of the error message; each goes on its own line.
        """
        if not error_messages:
            return

        stamp = datetime.now().isoformat(timespec="seconds")
        content_to_write = f"[{stamp}]\n" + "\n".join(error_messages) + "\n" + self.linesep_marker + "\n"

        try:
            with self.log_file_path.open("a", encoding="utf-8") as f:
                f.write(content_to_write)
        except OSError as e:
            # Fall back to the console so the report is not lost.
            logger.error(f"Failed to write to error log {self.log_file_path}: {e}")
            for msg in error_messages:
                logger.error(f"  - {msg}")


class SessionLog(Log):
    """
    Structured per-session history in a daily YAML file.

    Entries are appended as YAML list items, so the file stays a valid YAML
    list without being rewritten. Each entry gets a sequential `index`,
    continuing from whatever the file already holds.
    """

    def __init__(self, log_dir: Path):
        super().__init__(log_dir)
        self._date_str = ""
        self._next_index = 1
        self._roll_file()

    def _roll_file(self):
        date_str = datetime.now().strftime("%Y%m%d")
        if date_str == self._date_str:
            return
        self._date_str = date_str
        self.log_file_path = self.log_dir / f"{SESSION_LOG_PREFIX}{date_str}.yaml"
        self._next_index = len(self.read_entries()) + 1

    def read_entries(self) -> List[Dict]:
        if not self.log_file_path.is_file():
            return []
        try:
            with self.log_file_path.open("r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error reading session log {self.log_file_path}: {e}")
            return []
        return loaded if isinstance(loaded, list) else []

    def write(self, entry: Dict):
        if not isinstance(entry, dict):
            logger.error("SessionLog.write expects a dictionary as a log entry.")
            return
        self._roll_file()
        entry = {"index": self._next_index, **entry}
        try:
            with self.log_file_path.open("a", encoding="utf-8") as f:
                yaml.dump(
                    [entry],
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    allow_unicode=True,
                    width=220,
                )
            self._next_index += 1
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to write to session log {self.log_file_path}: {e}")

    def write_result(self, result: SessionResult, outcome: SessionOutcome, cause: Optional[str] = None):
        """
        Appends one finished session to the daily history.

        Args:
            result: The finished session with its exit status and progress.
            outcome: How the supervisor judged the session.
            cause: The diagnosed failure cause, for failed sessions only.
        """
        session = result.session
        entry = {
            "video": str(result.item.path),
            "display_name": result.item.display_name,
            "outcome": outcome.value,
            "exit_code": result.exit_status.exit_code,
            "signal": result.exit_status.signal_name,
            "progress_seconds": round(session.progress_seconds, 2),
            "total_duration_seconds": round(session.total_duration_seconds, 2),
            "completion_percent": round(result.completion_ratio * 100, 2),
            "elapsed_seconds": round(result.elapsed_seconds, 1),
            "started_datetime": session.started_datetime.strftime("%Y%m%d_%H:%M:%S"),
            "ended_datetime": result.ended_datetime.strftime("%Y%m%d_%H:%M:%S"),
            "input": session.metadata.as_dict() or None,
        }
        if cause:
            entry["failure_cause"] = cause
        self.write(entry)
