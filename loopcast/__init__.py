"""
Loopcast: a self-healing 24/7 streaming service.

Loopcast feeds a playlist of media files, one at a time, through an external
FFmpeg process to a remote RTMP endpoint or to a local HLS preview directory.
The package is organised in layers:

- `config`: static constants and the runtime `StreamSettings`.
- `domain`: data models (work items, sessions, health snapshots) and exceptions.
- `services`: the process controller, the diagnostic output parser, the failure
  classifier, backoff, health tracking and the thin collaborators (playlist,
  overlay file, persistent logs).
- `pipeline`: the `Supervisor` loop tying everything together.
- `utils`: FFmpeg argument assembly and formatting helpers.
"""

__version__ = "1.0.0"
