"""
Declarative assembly of the encoder's argument vector.

The functions here contain no supervision logic: given a work item's path,
the `StreamSettings` and the overlay side-channel file, they produce the
ordered argument list

    -re [hwaccel] -i INPUT
    -c:v CODEC -preset P -b:v B -maxrate B -bufsize 2B -r FPS -g 2FPS -pix_fmt yuv420p
    -vf scale[,pad][,drawtext]
    -c:a aac -b:a AB -ar 44100 -ac 2
    <muxer flags> DESTINATION

where the destination is an RTMP URL (flv) or a local HLS playlist.
"""
import os
import re
import shlex
import subprocess
from pathlib import Path
from typing import List, Optional

from ..config.settings import Destination, HwAccelMode, StreamSettings
from ..config.stream import (
    AUDIO_CHANNELS,
    AUDIO_ENCODER,
    AUDIO_SAMPLE_RATE,
    BUFFER_SIZE_FACTOR,
    FLV_FLAGS,
    HLS_FLAGS,
    HLS_LIST_SIZE,
    HLS_SEGMENT_SECONDS,
    HLS_START_NUMBER,
    KEYFRAME_INTERVAL_FACTOR,
    NVENC_VIDEO_ENCODER,
    OVERLAY_BOX_OPTIONS,
    OVERLAY_RELOAD_INTERVAL,
    PIXEL_FORMAT,
    REMOTE_OUTPUT_FORMAT,
    SOFTWARE_VIDEO_ENCODER,
    VAAPI_DEVICE,
)

_BITRATE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kKmM]?)\s*$")


def parse_bitrate_kbps(bitrate: str) -> int:
    """
    Converts an FFmpeg bitrate string to kbit/s.

    "3000k" -> 3000, "6M" -> 6000, "2500000" -> 2500.

    Raises:
        ValueError: If the string is not a recognizable bitrate.
    """
    match = _BITRATE_RE.match(str(bitrate))
    if not match:
        raise ValueError(f"Unrecognized bitrate: {bitrate!r}")
    value, unit = float(match.group(1)), match.group(2).lower()
    if unit == "m":
        return int(value * 1000)
    if unit == "k":
        return int(value)
    return int(value / 1000)


def calculate_buffer_size(bitrate: str) -> str:
    return f"{parse_bitrate_kbps(bitrate) * BUFFER_SIZE_FACTOR}k"


def escape_filter_value(value: str) -> str:
    """Escapes a value for use inside an FFmpeg filter option (e.g., a Windows path)."""
    return value.replace("\\", "/").replace(":", "\\:").replace("'", "\\'")


def build_video_filter(settings: StreamSettings, overlay_file: Optional[Path] = None) -> str:
    """
    Builds the `-vf` chain: scale, optional letterbox pad, optional drawtext overlay.

    The drawtext filter reads `overlay_file` and re-reads it every
    `OVERLAY_RELOAD_INTERVAL` frames, so the on-screen text can change while
    the encoder keeps running. It is only added when the overlay is enabled
    and the file exists.
    """
    width, height = settings.resolution_wh
    if settings.letterbox:
        chain = [
            f"scale={width}:{height}:force_original_aspect_ratio=decrease",
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        ]
    else:
        chain = [f"scale={width}:{height}"]

    overlay = settings.overlay
    if overlay.enabled and overlay_file is not None and overlay_file.exists():
        drawtext = (
            f"drawtext=textfile={escape_filter_value(str(overlay_file))}"
            f":reload={OVERLAY_RELOAD_INTERVAL}"
            f":{overlay.position}"
            f":fontsize={overlay.font_size}"
            f":fontcolor={overlay.color}"
        )
        if overlay.font_path:
            drawtext += f":fontfile={escape_filter_value(overlay.font_path)}"
        drawtext += f":{OVERLAY_BOX_OPTIONS}"
        chain.append(drawtext)
    return ",".join(chain)


def build_ffmpeg_args(
    input_path: Path, settings: StreamSettings, overlay_file: Optional[Path] = None
) -> List[str]:
    """
    Builds the full encoder argument list (without the executable itself).

    Args:
        input_path: The media file to stream.
        settings: The effective stream settings.
        overlay_file: The side-channel text file for the drawtext overlay.

    Returns:
        The ordered list of arguments.
    """
    args: List[str] = ["-re"]  # read input at its native frame rate

    # Decoder-side acceleration. NVENC is encode-only so the filter chain stays on the CPU.
    if settings.hw_accel is HwAccelMode.VIDEOTOOLBOX:
        args += ["-hwaccel", "videotoolbox"]
    elif settings.hw_accel is HwAccelMode.VAAPI:
        args += ["-hwaccel", "vaapi", "-vaapi_device", VAAPI_DEVICE]

    args += ["-i", str(input_path)]

    video_codec = NVENC_VIDEO_ENCODER if settings.hw_accel is HwAccelMode.NVENC else SOFTWARE_VIDEO_ENCODER
    args += [
        "-c:v", video_codec,
        "-preset", settings.preset,
        "-b:v", settings.video_bitrate,
        "-maxrate", settings.video_bitrate,
        "-bufsize", calculate_buffer_size(settings.video_bitrate),
        "-r", str(settings.fps),
        "-g", str(settings.fps * KEYFRAME_INTERVAL_FACTOR),
        "-pix_fmt", PIXEL_FORMAT,
        "-vf", build_video_filter(settings, overlay_file),
    ]

    args += [
        "-c:a", AUDIO_ENCODER,
        "-b:a", settings.audio_bitrate,
        "-ar", str(AUDIO_SAMPLE_RATE),
        "-ac", str(AUDIO_CHANNELS),
    ]

    if settings.destination is Destination.LOCAL_SEGMENTED:
        args += [
            "-f", "hls",
            "-hls_time", str(HLS_SEGMENT_SECONDS),
            "-hls_list_size", str(HLS_LIST_SIZE),
            "-hls_flags", HLS_FLAGS,
            "-start_number", str(HLS_START_NUMBER),
        ]
    else:
        args += ["-f", REMOTE_OUTPUT_FORMAT, "-flvflags", FLV_FLAGS]

    args.append(settings.output_target)
    return args


def format_command(cmd_list: List[str], redact: Optional[str] = None) -> str:
    """
    Renders a command list as a single shell-style string for logging.

    Args:
        cmd_list: The command and its arguments.
        redact: A secret (e.g., the stream key) to mask in the output.
    """
    if os.name == "nt":
        display_cmd_str = subprocess.list2cmdline(cmd_list)
    else:
        display_cmd_str = shlex.join(cmd_list)
    if redact:
        display_cmd_str = display_cmd_str.replace(redact, "****")
    return display_cmd_str
