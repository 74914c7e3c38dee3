"""
Services package for loopcast.

This package contains the "service layer" of the application. A service is a
class or a small set of functions that performs one well-defined task and is
coordinated by the supervisor in `loopcast.pipeline`.

- **Process Control (`ProcessController`):**
  Launches the encoder, pumps its output streams into the `OutputParser`, and
  stops it gracefully (quit token first, kill after a grace period).

- **Output Parsing (`OutputParser`):**
  Turns the encoder's diagnostic text into input metadata, the total duration
  and the latest progress position.

- **Failure Diagnosis (`FailureClassifier`):**
  Maps how a session ended, plus its diagnostic text, to a probable cause and
  renders a human-readable report.

- **Retry and Health (`BackoffPolicy`, `HealthTracker`):**
  Compute the delay between failed attempts and keep the retry counter, the
  bounded error history and the uptime clock.

- **Work Items and Overlay (`Playlist`, `OverlayChannel`):**
  Hand out the media files to stream and publish "Now Playing" text to the
  file the encoder's overlay filter re-reads.

- **Preview (`PreviewServer`):**
  Serves the local HLS output and a browser player page while streaming in
  preview mode.

- **Logging (`configure_logging`, `ErrorLog`, `SessionLog`):**
  Console and file logging, plus the persistent error reports (plain text)
  and per-session history (YAML).
"""
