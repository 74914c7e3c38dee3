"""Tests for settings loading, precedence and validation."""

from pathlib import Path

import pytest
import yaml

from loopcast.config.settings import (
    Destination,
    HwAccelMode,
    StreamSettings,
    load_settings,
    parse_bool,
    read_env_file,
)
from loopcast.domain.exceptions import ConfigurationError


@pytest.fixture
def empty_env(tmp_path) -> Path:
    path = tmp_path / "empty.env"
    path.write_text("")
    return path


def write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


def test_defaults_require_a_stream_key(tmp_path, empty_env):
    config = write_yaml(tmp_path / "config.yaml", {})
    with pytest.raises(ConfigurationError, match="TWITCH_STREAM_KEY"):
        load_settings(config_path=config, env_file=empty_env, environ={})


def test_preview_mode_needs_no_stream_key(tmp_path, empty_env):
    config = write_yaml(tmp_path / "config.yaml", {"preview_mode": True})
    settings = load_settings(config_path=config, env_file=empty_env, environ={})
    assert settings.destination is Destination.LOCAL_SEGMENTED
    assert settings.output_target.endswith("stream.m3u8")


def test_environment_overrides_env_file_and_yaml(tmp_path):
    config = write_yaml(tmp_path / "config.yaml", {"preview_mode": True, "fps": 25, "preset": "fast"})
    env_file = tmp_path / ".env"
    env_file.write_text("FPS=50\nPRESET=medium\n")

    settings = load_settings(config_path=config, env_file=env_file, environ={"FPS": "60"})
    assert settings.fps == 60
    assert settings.preset == "medium"


def test_live_settings_from_environment(tmp_path, empty_env):
    config = write_yaml(tmp_path / "config.yaml", {})
    environ = {
        "TWITCH_STREAM_KEY": "live_abc",
        "TWITCH_SERVER": "rtmp://ingest.example.com/app/",
        "HW_ACCEL": "NVENC",
        "SHUFFLE_PLAYLIST": "yes",
        "MAX_RETRIES": "4",
        "RETRY_BACKOFF_MS": "250",
        "OVERLAY_ENABLED": "false",
        "LOG_LEVEL": "warn",
    }
    settings = load_settings(config_path=config, env_file=empty_env, environ=environ)
    assert settings.destination is Destination.REMOTE_ENDPOINT
    assert settings.output_target == "rtmp://ingest.example.com/app/live_abc"
    assert settings.hw_accel is HwAccelMode.NVENC
    assert settings.shuffle_playlist is True
    assert settings.max_retries == 4
    assert settings.retry_base_delay_ms == 250
    assert settings.overlay.enabled is False
    assert settings.log_level == "WARNING"


def test_empty_environment_values_are_ignored(tmp_path, empty_env):
    config = write_yaml(tmp_path / "config.yaml", {"preview_mode": True, "fps": 24})
    settings = load_settings(config_path=config, env_file=empty_env, environ={"FPS": ""})
    assert settings.fps == 24


def test_nested_overlay_section(tmp_path, empty_env):
    config = write_yaml(
        tmp_path / "config.yaml",
        {"preview_mode": True, "overlay": {"font_size": 32, "color": "yellow", "bogus": 1}},
    )
    settings = load_settings(config_path=config, env_file=empty_env, environ={})
    assert settings.overlay.font_size == 32
    assert settings.overlay.color == "yellow"
    assert settings.overlay.enabled is True


def test_command_line_overrides_win(tmp_path, empty_env):
    config = write_yaml(tmp_path / "config.yaml", {"video_dir": "/srv/a"})
    settings = load_settings(
        config_path=config,
        env_file=empty_env,
        environ={"VIDEO_DIR": "/srv/b"},
        overrides={"preview_mode": True, "video_dir": str(tmp_path / "c")},
    )
    assert settings.preview_mode is True
    assert settings.video_dir == tmp_path / "c"


@pytest.mark.parametrize(
    "environ",
    [
        {"FPS": "thirty"},
        {"FPS": "0"},
        {"RESOLUTION": "1080p"},
        {"MAX_RETRIES": "0"},
        {"HW_ACCEL": "cuda"},
        {"LOOP_PLAYLIST": "maybe"},
        {"LOG_LEVEL": "verbose"},
        {"PREVIEW_PORT": "70000"},
    ],
)
def test_invalid_values_are_rejected(tmp_path, empty_env, environ):
    config = write_yaml(tmp_path / "config.yaml", {"preview_mode": True})
    with pytest.raises(ConfigurationError):
        load_settings(config_path=config, env_file=empty_env, environ=environ)


def test_explicit_missing_files_are_errors(tmp_path, empty_env):
    with pytest.raises(ConfigurationError, match="Config file not found"):
        load_settings(config_path=tmp_path / "nope.yaml", env_file=empty_env, environ={})
    config = write_yaml(tmp_path / "config.yaml", {"preview_mode": True})
    with pytest.raises(ConfigurationError, match="Env file not found"):
        load_settings(config_path=config, env_file=tmp_path / "nope.env", environ={})


def test_yaml_must_be_a_mapping(tmp_path, empty_env):
    config = tmp_path / "config.yaml"
    config.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        load_settings(config_path=config, env_file=empty_env, environ={})


def test_read_env_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\n"
        "\n"
        "TWITCH_STREAM_KEY=live_a=b\n"
        "  PRESET = fast  \n"
        "export RESOLUTION=1280x720\n"
        "FPS=\"25\"  # inline comment\n"
        "EMPTY=\n"
        "KEY_ONLY\n"
    )
    assert read_env_file(env_file) == {
        "TWITCH_STREAM_KEY": "live_a=b",
        "PRESET": "fast",
        "RESOLUTION": "1280x720",
        "FPS": "25",
    }
    assert read_env_file(tmp_path / "missing.env") == {}


def test_quoted_env_file_values_build_a_clean_ingest_url(tmp_path):
    config = write_yaml(tmp_path / "config.yaml", {})
    env_file = tmp_path / ".env"
    env_file.write_text(
        "TWITCH_STREAM_KEY=\"live_abc\"\n"
        "export TWITCH_SERVER='rtmp://ingest.example.com/app'\n"
        "PREVIEW_PORT=9090\n"
    )
    settings = load_settings(config_path=config, env_file=env_file, environ={})
    assert settings.stream_key == "live_abc"
    assert settings.output_target == "rtmp://ingest.example.com/app/live_abc"
    assert settings.preview_port == 9090


def test_process_environment_overrides_quoted_env_file_value(tmp_path):
    config = write_yaml(tmp_path / "config.yaml", {})
    env_file = tmp_path / ".env"
    env_file.write_text("TWITCH_STREAM_KEY=\"from_file\"\n")
    settings = load_settings(config_path=config, env_file=env_file, environ={"TWITCH_STREAM_KEY": "from_env"})
    assert settings.stream_key == "from_env"


@pytest.mark.parametrize("value, expected", [("true", True), ("On", True), ("0", False), ("NO", False), (True, True)])
def test_parse_bool(value, expected):
    assert parse_bool("KEY", value) is expected


def test_resolution_wh():
    assert StreamSettings(resolution="1280x720").resolution_wh == (1280, 720)
