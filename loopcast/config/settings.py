"""
Runtime settings for Loopcast.

`StreamSettings` is the enumerated configuration surface consumed by the
supervisor and the process controller. It is assembled by `load_settings()`
from four sources, lowest to highest precedence:

1. Built-in defaults (the dataclass field defaults below).
2. `config.user.yaml` at the project root, or an explicit `--config` file.
3. A `.env` file, read with python-dotenv.
4. The process environment.

All values are validated while loading; anything unusable raises
`ConfigurationError` so the service refuses to start rather than streaming
with a half-understood configuration.
"""
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import dotenv_values
from loguru import logger

from ..domain.exceptions import ConfigurationError
from .common import ENV_FILE_PATH, PROJECT_ROOT, USER_CONFIG_PATH
from .stream import DEFAULT_SERVER_URL, HLS_PLAYLIST_NAME, OVERLAY_FILE_NAME


class HwAccelMode(str, Enum):
    """Hardware acceleration hint passed to the encoder."""

    NONE = "none"
    VIDEOTOOLBOX = "videotoolbox"
    VAAPI = "vaapi"
    NVENC = "nvenc"


class Destination(str, Enum):
    """Where the encoder output goes."""

    LOCAL_SEGMENTED = "local-segmented"
    REMOTE_ENDPOINT = "remote-endpoint"


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class OverlaySettings:
    enabled: bool = True
    font_size: int = 24
    position: str = "x=10:y=10"
    color: str = "white"
    font_path: Optional[str] = None


@dataclass(frozen=True)
class StreamSettings:
    # Mode
    preview_mode: bool = False
    preview_dir: Path = PROJECT_ROOT / "preview"
    preview_port: int = 8080

    # Remote endpoint
    stream_key: str = ""
    server_url: str = DEFAULT_SERVER_URL

    # Video / audio
    video_bitrate: str = "3000k"
    audio_bitrate: str = "160k"
    resolution: str = "1920x1080"
    fps: int = 30
    preset: str = "veryfast"
    letterbox: bool = True
    hw_accel: HwAccelMode = HwAccelMode.NONE

    # Overlay
    overlay: OverlaySettings = field(default_factory=OverlaySettings)
    overlay_file: Path = PROJECT_ROOT / "overlays" / OVERLAY_FILE_NAME

    # Playlist
    video_dir: Path = PROJECT_ROOT / "videos"
    loop_playlist: bool = True
    shuffle_playlist: bool = False
    probe_inputs: bool = False

    # Supervision
    health_check_interval_ms: int = 30_000
    max_retries: int = 10
    retry_base_delay_ms: int = 5_000

    # Logging / tools
    log_dir: Optional[Path] = PROJECT_ROOT / "logs"
    log_level: str = "INFO"
    ffmpeg_path: str = "ffmpeg"

    @property
    def destination(self) -> Destination:
        return Destination.LOCAL_SEGMENTED if self.preview_mode else Destination.REMOTE_ENDPOINT

    @property
    def output_target(self) -> str:
        """The encoder's final positional argument: an RTMP URL or an HLS playlist path."""
        if self.destination is Destination.LOCAL_SEGMENTED:
            return str(self.preview_dir / HLS_PLAYLIST_NAME)
        return f"{self.server_url.rstrip('/')}/{self.stream_key}"

    @property
    def resolution_wh(self) -> tuple:
        width, height = self.resolution.lower().split("x")
        return int(width), int(height)


# Environment variable -> (settings field, parser name). Overlay fields are
# prefixed with "overlay." and routed into OverlaySettings.
ENV_KEYS: Dict[str, str] = {
    "PREVIEW_MODE": "preview_mode",
    "PREVIEW_DIR": "preview_dir",
    "PREVIEW_PORT": "preview_port",
    "TWITCH_STREAM_KEY": "stream_key",
    "TWITCH_SERVER": "server_url",
    "VIDEO_BITRATE": "video_bitrate",
    "AUDIO_BITRATE": "audio_bitrate",
    "RESOLUTION": "resolution",
    "FPS": "fps",
    "PRESET": "preset",
    "LETTERBOX": "letterbox",
    "HW_ACCEL": "hw_accel",
    "OVERLAY_ENABLED": "overlay.enabled",
    "OVERLAY_FONT_SIZE": "overlay.font_size",
    "OVERLAY_POSITION": "overlay.position",
    "OVERLAY_COLOR": "overlay.color",
    "OVERLAY_FONT": "overlay.font_path",
    "OVERLAY_FILE": "overlay_file",
    "VIDEO_DIR": "video_dir",
    "LOOP_PLAYLIST": "loop_playlist",
    "SHUFFLE_PLAYLIST": "shuffle_playlist",
    "PROBE_INPUTS": "probe_inputs",
    "HEALTH_CHECK_INTERVAL": "health_check_interval_ms",
    "MAX_RETRIES": "max_retries",
    "RETRY_BACKOFF_MS": "retry_base_delay_ms",
    "LOG_DIR": "log_dir",
    "LOG_LEVEL": "log_level",
    "FFMPEG_PATH": "ffmpeg_path",
}

_TRUE_WORDS = {"true", "1", "yes", "on"}
_FALSE_WORDS = {"false", "0", "no", "off"}


def parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ConfigurationError(f"{key}: expected a boolean, got {value!r}")


def parse_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{key}: expected an integer, got {value!r}")
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{key}: expected an integer, got {value!r}") from None


def _coerce(key: str, name: str, value: Any, template: Any) -> Any:
    """Converts a raw config value to the type of the field's default."""
    if name == "hw_accel":
        try:
            return HwAccelMode(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in HwAccelMode)
            raise ConfigurationError(f"{key}: must be one of {allowed}, got {value!r}") from None
    if name == "log_level":
        level = str(value).strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in LOG_LEVELS:
            raise ConfigurationError(f"{key}: must be one of {', '.join(LOG_LEVELS)}, got {value!r}")
        return level
    if name in ("font_path", "log_dir"):
        text = "" if value is None else str(value).strip()
        if not text:
            return None
        return Path(text).expanduser() if name == "log_dir" else text
    if isinstance(template, bool):
        return parse_bool(key, value)
    if isinstance(template, int):
        return parse_int(key, value)
    if isinstance(template, Path):
        return Path(str(value)).expanduser()
    return str(value).strip()


def read_env_file(path: Path) -> Dict[str, str]:
    """
    Parses a `.env` file into a dictionary.

    Quoting, `export` prefixes and comments follow python-dotenv. Keys without
    a value (`KEY` or `KEY=`) are dropped so they never mask a default.

    Args:
        path: The file to read. A missing file yields an empty mapping.

    Returns:
        A `{KEY: value}` mapping of the non-empty entries.
    """
    if not path.is_file():
        return {}
    return {key: value for key, value in dotenv_values(path, encoding="utf-8").items() if value}


def read_yaml_config(path: Path) -> Dict[str, Any]:
    """
    Loads a YAML settings file into a flat `{field: value}` mapping.

    Top-level keys are settings field names; an optional `overlay:` mapping
    holds the overlay fields. Unknown keys are reported and ignored.
    """
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse '{path}': {e}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(f"'{path}' must contain a mapping at the top level.")

    known = {f.name for f in fields(StreamSettings)}
    overlay_known = {f.name for f in fields(OverlaySettings)}
    flat: Dict[str, Any] = {}
    for key, value in raw.items():
        if key == "overlay" and isinstance(value, dict):
            for o_key, o_value in value.items():
                if o_key in overlay_known:
                    flat[f"overlay.{o_key}"] = o_value
                else:
                    logger.warning(f"Ignoring unknown overlay setting '{o_key}' in {path}")
        elif key in known:
            flat[key] = value
        else:
            logger.warning(f"Ignoring unknown setting '{key}' in {path}")
    return flat


def apply_overrides(
    settings: StreamSettings, overrides: Mapping[str, Any], source: str = "override"
) -> StreamSettings:
    """Returns a copy of `settings` with validated `{field: value}` overrides applied."""
    top: Dict[str, Any] = {}
    overlay_changes: Dict[str, Any] = {}
    for name, value in overrides.items():
        key = f"{source}:{name}"
        if name.startswith("overlay."):
            o_name = name.split(".", 1)[1]
            overlay_changes[o_name] = _coerce(key, o_name, value, getattr(settings.overlay, o_name))
        else:
            top[name] = _coerce(key, name, value, getattr(settings, name))
    if overlay_changes:
        top["overlay"] = replace(settings.overlay, **overlay_changes)
    return replace(settings, **top)


def validate_settings(settings: StreamSettings) -> StreamSettings:
    if not settings.preview_mode and not settings.stream_key:
        raise ConfigurationError(
            "TWITCH_STREAM_KEY is required for live streaming. Set PREVIEW_MODE=true to stream locally."
        )
    try:
        width, height = settings.resolution_wh
    except ValueError:
        raise ConfigurationError(f"RESOLUTION must look like WIDTHxHEIGHT, got {settings.resolution!r}") from None
    if width <= 0 or height <= 0:
        raise ConfigurationError(f"RESOLUTION must be positive, got {settings.resolution!r}")
    if settings.fps <= 0:
        raise ConfigurationError(f"FPS must be positive, got {settings.fps}")
    if not 1 <= settings.preview_port <= 65535:
        raise ConfigurationError(f"PREVIEW_PORT must be between 1 and 65535, got {settings.preview_port}")
    if settings.max_retries < 1:
        raise ConfigurationError(f"MAX_RETRIES must be at least 1, got {settings.max_retries}")
    if settings.retry_base_delay_ms < 0:
        raise ConfigurationError(f"RETRY_BACKOFF_MS must not be negative, got {settings.retry_base_delay_ms}")
    return settings


def load_settings(
    config_path: Optional[Path] = None,
    env_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> StreamSettings:
    """
    Builds the effective `StreamSettings` from all configuration sources.

    Args:
        config_path: An explicit YAML file. If None, `config.user.yaml` at the
                     project root is used when present.
        env_file: An explicit `.env` file. If None, `.env` at the project root
                  is used when present.
        environ: The environment mapping to read (defaults to `os.environ`).
        overrides: Final `{field: value}` overrides, e.g. from the command line.

    Returns:
        The validated settings.

    Raises:
        ConfigurationError: If an explicit file is missing or any value is invalid.
    """
    settings = StreamSettings()

    if config_path is not None and not config_path.is_file():
        raise ConfigurationError(f"Config file not found: {config_path}")
    yaml_path = config_path or USER_CONFIG_PATH
    if yaml_path.is_file():
        settings = apply_overrides(settings, read_yaml_config(yaml_path), source=yaml_path.name)
        logger.debug(f"Loaded settings from {yaml_path}")
    else:
        logger.debug(f"User config '{yaml_path}' not found. Using defaults and environment.")

    if env_file is not None and not env_file.is_file():
        raise ConfigurationError(f"Env file not found: {env_file}")
    env_values = read_env_file(env_file or ENV_FILE_PATH)
    env_values.update(os.environ if environ is None else environ)

    env_overrides = {
        name: env_values[key] for key, name in ENV_KEYS.items() if env_values.get(key, "") != ""
    }
    settings = apply_overrides(settings, env_overrides, source="env")
    if overrides:
        settings = apply_overrides(settings, overrides, source="cli")
    return validate_settings(settings)
