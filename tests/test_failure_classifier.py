"""Tests for failure classification and the rendered report."""

import signal

import pytest

from loopcast.domain.models import ExitStatus, FailureCause, ProcessSession, SessionResult
from loopcast.services.failure_classifier import FailureClassifier, classify, error_lines

SIGKILL = getattr(signal, "SIGKILL", 9)


def make_result(work_item, lines, exit_code=1, signal_number=None, progress=42.0, duration=1800.0):
    session = ProcessSession(item=work_item, progress_seconds=progress, total_duration_seconds=duration)
    return SessionResult(
        session=session,
        exit_status=ExitStatus(exit_code=exit_code, signal=signal_number),
        diagnostic_lines=tuple(lines),
        elapsed_seconds=42.5,
    )


class TestClassify:
    def test_sigkill_takes_precedence_over_text(self):
        text = "Invalid data found when processing input\nConnection refused"
        assert classify(SIGKILL, None, text, 0.1) is FailureCause.OUT_OF_MEMORY

    def test_corrupt_input(self):
        assert classify(None, 1, "a.mp4: Invalid data found when processing input", 0.9) is FailureCause.CORRUPT_INPUT

    def test_corrupt_marker_is_case_insensitive(self):
        assert classify(None, 1, "[h264 @ 0x1] CORRUPT macroblock", 0.9) is FailureCause.CORRUPT_INPUT

    def test_hardware_encoder(self):
        text = "[h264_nvenc @ 0x55] OpenEncodeSessionEx failed: out of memory (10)"
        assert classify(None, 1, text, 0.9) is FailureCause.HARDWARE_ENCODER

    def test_nvenc_in_stream_description_is_not_a_hardware_fault(self):
        text = (
            "Output #0, flv, to 'rtmp://live.twitch.tv/app/key':\n"
            "  Metadata:\n"
            "    encoder         : Lavf60.16.100\n"
            "  Stream #0:0: Video: h264 (h264_nvenc), yuv420p, 1920x1080, q=2-31, 3000 kb/s, 30 fps\n"
            "    Metadata:\n"
            "      encoder         : Lavc60.31.102 h264_nvenc\n"
            "[tcp @ 0x55d0] Connection to tcp://live.twitch.tv:1935 failed: Connection refused\n"
        )
        assert classify(None, 1, text, 0.94) is FailureCause.NETWORK

    def test_nvenc_component_line_is_a_hardware_fault_without_keywords(self):
        text = "[h264_nvenc @ 0x55d0] No capable devices found\nConnection refused"
        assert classify(None, 1, text, 0.94) is FailureCause.HARDWARE_ENCODER

    @pytest.mark.parametrize(
        "line",
        [
            "rtmp://live.twitch.tv/app/key: Connection refused",
            "Error opening output rtmp://live.twitch.tv/app/key: I/O error",
            "av_interleaved_write_frame(): Broken pipe",
        ],
    )
    def test_network(self, line):
        assert classify(None, 1, line, 0.9) is FailureCause.NETWORK

    def test_conversion_failed(self):
        assert classify(None, 1, "Conversion failed!", 0.9) is FailureCause.UNSUPPORTED_FORMAT

    def test_early_termination(self):
        assert classify(None, 1, "some unrelated noise", 0.49) is FailureCause.EARLY_TERMINATION

    def test_unknown(self):
        assert classify(None, 1, "some unrelated noise", 0.5) is FailureCause.UNKNOWN


class TestFailureClassifier:
    def test_build_configuration_banner_is_not_evidence(self, work_item):
        lines = ["  configuration: --enable-gpl --enable-nvenc", "Exiting normally, received signal 2."]
        diagnosis = FailureClassifier().diagnose(make_result(work_item, lines, progress=1700.0))
        assert diagnosis.cause is FailureCause.UNKNOWN

    def test_oom_diagnosis_and_report(self, work_item):
        lines = ["  Duration: 00:30:00.00, start: 0.000000", "frame= 1260 time=00:00:42.00 bitrate=N/A"]
        result = make_result(work_item, lines, exit_code=None, signal_number=SIGKILL)
        diagnosis = FailureClassifier().diagnose(result)

        assert diagnosis.cause is FailureCause.OUT_OF_MEMORY
        assert "SIGKILL" in diagnosis.probable_causes[0]
        report = diagnosis.report
        assert str(work_item.path) in report
        assert "killed by SIGKILL" in report
        assert "42.00s / 1800.00s (2.33%)" in report
        assert "Elapsed: 00:00:42" in report
        assert "time=00:00:42.00" in report

    def test_report_quotes_error_lines(self, work_item):
        lines = ["harmless", "[tcp @ 0x1] Connection to tcp://x:1935 failed: Connection refused", "tail"]
        report = FailureClassifier().diagnose(make_result(work_item, lines)).report
        assert "Error lines (last 1):" in report
        assert "  | [tcp @ 0x1] Connection to tcp://x:1935 failed: Connection refused" in report


def test_error_lines_keeps_the_last_matches():
    lines = [f"error {i}" for i in range(20)] + ["fine"]
    assert error_lines(lines, limit=3) == ["error 17", "error 18", "error 19"]
    assert error_lines(lines, limit=0) == []


def test_nvenc_session_dropped_by_the_endpoint_is_a_network_failure(work_item):
    lines = [
        "Output #0, flv, to 'rtmp://live.twitch.tv/app/key':",
        "  Stream #0:0: Video: h264 (h264_nvenc), yuv420p, 1920x1080, 3000 kb/s, 30 fps",
        "      encoder         : Lavc60.31.102 h264_nvenc",
        "[tcp @ 0x55d0] Connection to tcp://live.twitch.tv:1935 failed: Connection refused",
    ]
    diagnosis = FailureClassifier().diagnose(make_result(work_item, lines, progress=1692.0))
    assert diagnosis.cause is FailureCause.NETWORK
