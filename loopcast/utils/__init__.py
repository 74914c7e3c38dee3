"""
Utilities package for Loopcast.

Modules:
    - ffmpeg_args.py: Declarative assembly of the encoder's argument vector
      from `StreamSettings`, plus a display-safe rendering of the command.
    - format_utils.py: Helpers that turn durations and uptimes into
      human-readable strings for logs and reports.
"""
