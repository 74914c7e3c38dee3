"""
Defines custom exception types for Loopcast.

The supervisor distinguishes failures that count against the retry budget
(`SpawnError`, `SignalTermination`, `ExitCodeError`) from an operator-initiated
`ShutdownInterrupt`, which never does. A clean exit with too little progress is
not an exception at all: it is the `PREMATURE_COMPLETION` session outcome and
is only logged as a warning.

All custom exceptions inherit from the base `LoopcastException`.
"""


class LoopcastException(Exception):
    """Base class for all custom exceptions in Loopcast."""

    pass


# --- Startup ---
class ConfigurationError(LoopcastException):
    """Raised when settings are missing, malformed or out of range."""

    pass


class PlaylistError(LoopcastException):
    """Raised when the media directory is missing or holds no playable files."""

    pass


class MediaProbeError(LoopcastException):
    """Raised when ffprobe cannot read a media file or finds no duration."""

    pass


# --- Encoder Sessions ---
class SpawnError(LoopcastException):
    """
    Raised when the encoder process could not be started.

    Covers a missing input file, a missing or non-executable encoder binary,
    and an attempt to start a second session while one is still alive. It is
    fatal for that attempt and counted as a failure.
    """

    pass


class SessionFailure(LoopcastException):
    """
    Base class for encoder sessions that ended in failure.

    Carries the `FailureDiagnosis` produced by the failure classifier so the
    rendered report travels with the exception.
    """

    def __init__(self, message: str, diagnosis=None):
        super().__init__(message)
        self.diagnosis = diagnosis


class SignalTermination(SessionFailure):
    """The encoder was terminated by a signal."""

    pass


class ExitCodeError(SessionFailure):
    """The encoder exited with a nonzero status."""

    pass


class ShutdownInterrupt(LoopcastException):
    """
    Raised inside the supervisor when a shutdown request interrupts an active
    session or a backoff sleep. Never counted against the retry budget.
    """

    pass


# --- Preview ---
class PreviewServerError(LoopcastException):
    """Raised when the local preview HTTP server cannot start, e.g. its port is taken."""

    pass
