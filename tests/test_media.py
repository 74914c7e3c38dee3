"""Tests for timecode parsing and ffprobe-based input probing."""

import ffmpeg
import pytest

from loopcast.domain import media
from loopcast.domain.exceptions import MediaProbeError


@pytest.mark.parametrize(
    "text, seconds",
    [("3600.5", 3600.5), ("01:00:00.50", 3600.5), ("00:05:00.00", 300.0), ("4:59", 299.0), ("garbage", 0.0)],
)
def test_parse_duration(text, seconds):
    assert media.parse_duration(text) == pytest.approx(seconds)


def test_probe_media_summarizes_streams(monkeypatch, tmp_path):
    probe = {
        "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "300.000000"},
        "streams": [
            {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080, "avg_frame_rate": "30000/1001"},
            {"codec_type": "audio", "codec_name": "aac", "sample_rate": "48000"},
        ],
    }
    monkeypatch.setattr(media.ffmpeg, "probe", lambda path: probe)

    duration, metadata = media.probe_media(tmp_path / "a.mp4")

    assert duration == pytest.approx(300.0)
    assert metadata.container == "mov,mp4,m4a,3gp,3g2,mj2"
    assert metadata.video_codec == "h264"
    assert metadata.resolution == "1920x1080"
    assert metadata.fps == pytest.approx(29.97)
    assert metadata.audio_codec == "aac"
    assert metadata.sample_rate_hz == 48000


def test_probe_media_without_duration(monkeypatch, tmp_path):
    monkeypatch.setattr(media.ffmpeg, "probe", lambda path: {"format": {}, "streams": []})
    with pytest.raises(MediaProbeError, match="No duration"):
        media.probe_media(tmp_path / "a.mp4")


def test_probe_media_wraps_ffprobe_errors(monkeypatch, tmp_path):
    def failing_probe(path):
        raise ffmpeg.Error("ffprobe", b"", b"moov atom not found")

    monkeypatch.setattr(media.ffmpeg, "probe", failing_probe)
    with pytest.raises(MediaProbeError, match="moov atom not found"):
        media.probe_media(tmp_path / "a.mp4")
