"""
Incremental parser for the encoder's diagnostic stream.

FFmpeg writes its banner, stream descriptors, warnings and the periodic
`frame=... time=H:MM:SS.ss ...` status line to stderr. The status line is
rewritten in place with carriage returns, so both `\\r` and `\\n` terminate a
line here. Chunks arrive with no line alignment; an incomplete trailing line
is kept in a buffer until the next chunk (or `finish()`) completes it.

Extraction rules:
- Duration and container: taken from the first input header, never again.
- Video codec, resolution, fps / audio codec, sample rate: each field is set
  at most once, from input stream descriptors only. Output stream lines that
  follow "Output #N" are ignored.
- Progress: every `time=` marker updates `progress_seconds` (last value wins).
"""
import re
from collections import deque
from typing import Deque, List, Optional, Tuple

from loguru import logger

from ..config.common import DIAGNOSTIC_TAIL_LINES
from ..domain.media import parse_duration
from ..domain.models import ProcessSession

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")

DURATION_RE = re.compile(r"Duration:\s*(\d+:\d{2}:\d{2}(?:\.\d+)?)")
INPUT_HEADER_RE = re.compile(r"^\s*Input #\d+,\s*(.+?),\s*from\s")
OUTPUT_HEADER_RE = re.compile(r"^\s*Output #\d+")
VIDEO_STREAM_RE = re.compile(r"Stream #\d+:\d+.*?:\s*Video:\s*([^\s,]+)")
AUDIO_STREAM_RE = re.compile(r"Stream #\d+:\d+.*?:\s*Audio:\s*([^\s,]+)")
RESOLUTION_RE = re.compile(r"\b(\d{2,5})x(\d{2,5})\b")
FPS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*fps\b")
SAMPLE_RATE_RE = re.compile(r"(\d+)\s*Hz\b")
PROGRESS_RE = re.compile(r"time=\s*(-?)(\d+:\d{2}:\d{2}(?:\.\d+)?)")


class OutputParser:
    """
    Feeds diagnostic text into a live `ProcessSession`.

    Args:
        session: The session to update. The parser is its only writer while
                 the process is alive.
        tail_lines: How many complete lines to retain for failure reports.
    """

    def __init__(self, session: ProcessSession, tail_lines: int = DIAGNOSTIC_TAIL_LINES):
        self.session = session
        self.lines: Deque[str] = deque(maxlen=tail_lines)
        self.line_count = 0
        self._buffer = ""
        self._secondary_buffer = ""
        self._duration_found = False
        self._in_output_section = False

    # --- Feeding ---
    def feed(self, chunk: str):
        """Consumes a chunk of the primary (stderr) diagnostic stream."""
        lines, self._buffer = self._split(self._buffer + chunk)
        for line in lines:
            self._handle_line(line)

    def feed_secondary(self, chunk: str):
        """Consumes a chunk of the secondary (stdout) data stream. Logged, not mined."""
        lines, self._secondary_buffer = self._split(self._secondary_buffer + chunk)
        for line in lines:
            logger.trace(f"[ffmpeg stdout] {line}")

    def finish(self):
        """Flushes any buffered partial line once the stream has ended."""
        if self._buffer.strip():
            self._handle_line(self._buffer)
        self._buffer = ""
        if self._secondary_buffer.strip():
            logger.trace(f"[ffmpeg stdout] {self._secondary_buffer}")
        self._secondary_buffer = ""

    @staticmethod
    def _split(text: str) -> Tuple[List[str], str]:
        parts = _LINE_BREAK_RE.split(text)
        # A lone trailing "\r" may be the first half of "\r\n"; that only yields an empty line.
        return [p for p in parts[:-1] if p.strip()], parts[-1]

    # --- Extraction ---
    def _handle_line(self, line: str):
        self.lines.append(line)
        self.line_count += 1

        if "time=" in line:
            self._parse_progress(line)
            return
        if OUTPUT_HEADER_RE.match(line):
            self._in_output_section = True
            return
        if self._in_output_section:
            return

        header = INPUT_HEADER_RE.match(line)
        if header and self.session.metadata.container is None:
            self.session.metadata.container = header.group(1).strip()
            return
        if not self._duration_found and "Duration:" in line:
            self._parse_duration(line)
            return
        if "Stream #" in line:
            self._parse_stream(line)

    def _parse_duration(self, line: str):
        """
        Records the input duration from a banner line.

        Args:
            line: A line containing "Duration:". Zero or "N/A" leaves the total
                  unknown so a later input section can still provide it.
        """
        match = DURATION_RE.search(line)
        if not match:
            # "Duration: N/A" (live or broken input): leave the total unknown.
            return
        seconds = parse_duration(match.group(1))
        if seconds > 0:
            self.session.total_duration_seconds = seconds
            self._duration_found = True
            logger.debug(f"Input duration: {seconds:.2f}s")

    def _parse_stream(self, line: str):
        """
        Fills in codec, resolution, frame rate and sample rate from an input
        stream description. Fields already set are kept.

        Args:
            line: A "Stream #" line from an Input section.
        """
        metadata = self.session.metadata
        video = VIDEO_STREAM_RE.search(line)
        if video:
            if metadata.video_codec is None:
                metadata.video_codec = video.group(1)
            resolution = RESOLUTION_RE.search(line[video.end():])
            if resolution and metadata.resolution is None:
                metadata.resolution = f"{resolution.group(1)}x{resolution.group(2)}"
            fps = FPS_RE.search(line)
            if fps and metadata.fps is None:
                metadata.fps = _to_float(fps.group(1))
            return

        audio = AUDIO_STREAM_RE.search(line)
        if audio:
            if metadata.audio_codec is None:
                metadata.audio_codec = audio.group(1)
            rate = SAMPLE_RATE_RE.search(line)
            if rate and metadata.sample_rate_hz is None:
                metadata.sample_rate_hz = int(rate.group(1))

    def _parse_progress(self, line: str):
        """
        Updates the session progress from a status line.

        Args:
            line: A status line; the last "time=" value on it wins and
                  negative times count as zero.
        """
        matches = list(PROGRESS_RE.finditer(line))
        if not matches:
            return  # "time=N/A" before the first frame
        sign, timecode = matches[-1].groups()
        seconds = 0.0 if sign else parse_duration(timecode)
        self.session.progress_seconds = seconds


def _to_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None
