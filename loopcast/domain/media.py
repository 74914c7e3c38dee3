"""
Media helpers: timecode parsing and optional input probing.

`parse_duration` converts the timecodes FFmpeg prints ("00:05:00.00") into
seconds. `probe_media` wraps `ffmpeg.probe` (ffmpeg-python) so the playlist can
reject unreadable files before they ever reach the encoder.
"""
import re
from pathlib import Path
from typing import Optional, Tuple

import ffmpeg
from loguru import logger

from .exceptions import MediaProbeError
from .models import InputMetadata

_TIMECODE_RE = re.compile(r"(?:(\d+):)?(\d{1,2}):(\d{1,2}(?:\.\d+)?)")


def parse_duration(duration_str: str) -> float:
    """
    Parses a duration string into total seconds.

    Handles the two forms FFmpeg and ffprobe produce:
    1. A plain number of seconds (e.g., "3600.5").
    2. A timecode 'H:MM:SS.ss' (e.g., "01:00:00.50"); hours are optional.

    Args:
        duration_str: The string containing the duration to parse.

    Returns:
        The total duration in seconds. Returns 0.0 if parsing fails.
    """
    try:
        return float(duration_str)
    except (TypeError, ValueError):
        pass
    match = _TIMECODE_RE.fullmatch(str(duration_str).strip())
    if match:
        hours_str, minutes_str, seconds_str = match.groups()
        hours = int(hours_str) if hours_str else 0
        return float(hours * 3600 + int(minutes_str) * 60 + float(seconds_str))
    logger.warning(f"Could not parse duration string: {duration_str}")
    return 0.0


def _parse_frame_rate(rate: str) -> Optional[float]:
    try:
        num, _, den = rate.partition("/")
        value = float(num) / float(den) if den else float(num)
    except (ValueError, ZeroDivisionError):
        return None
    return round(value, 3) if value > 0 else None


def probe_media(path: Path) -> Tuple[float, InputMetadata]:
    """
    Probes a media file with ffprobe and summarizes it.

    Args:
        path: The media file to probe.

    Returns:
        A tuple of (duration in seconds, `InputMetadata`).

    Raises:
        MediaProbeError: If ffprobe fails or reports no usable duration.
    """
    try:
        probe = ffmpeg.probe(str(path))
    except ffmpeg.Error as e:
        stderr = e.stderr.decode("utf-8", errors="replace") if isinstance(e.stderr, bytes) else e.stderr
        raise MediaProbeError(f"ffprobe failed for {path}: {stderr}") from e
    except FileNotFoundError as e:
        raise MediaProbeError(f"ffprobe not available to probe {path}: {e}") from e

    fmt = probe.get("format", {})
    duration = parse_duration(fmt.get("duration", "0"))
    if duration <= 0:
        raise MediaProbeError(f"No duration found for {path}")

    metadata = InputMetadata(container=fmt.get("format_name"))
    for stream in probe.get("streams", []):
        codec_type = stream.get("codec_type")
        if codec_type == "video" and metadata.video_codec is None:
            metadata.video_codec = stream.get("codec_name")
            if stream.get("width") and stream.get("height"):
                metadata.resolution = f"{stream['width']}x{stream['height']}"
            metadata.fps = _parse_frame_rate(stream.get("avg_frame_rate", ""))
        elif codec_type == "audio" and metadata.audio_codec is None:
            metadata.audio_codec = stream.get("codec_name")
            if stream.get("sample_rate"):
                metadata.sample_rate_hz = int(stream["sample_rate"])
    return duration, metadata
