"""
Domain models and exceptions for Loopcast.

Modules:
    exceptions.py: The `LoopcastException` hierarchy, including the session
                   failure taxonomy (`SpawnError`, `SignalTermination`,
                   `ExitCodeError`, `ShutdownInterrupt`).
    models.py: Work items, the transient `ProcessSession`, exit statuses,
               failure diagnoses and the health snapshots.
    media.py: Timecode parsing and optional input probing via ffprobe.
"""
