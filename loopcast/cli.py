"""
Command-Line Interface (CLI) for Loopcast.

This module uses Python's `argparse` to define the command-line flags, merges
them over the file and environment configuration, wires the services
together and runs the supervisor on an asyncio event loop until it
terminates.
"""
import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from . import __version__
from .config.common import EXIT_STARTUP_ERROR, LOGGER_FORMAT
from .config.settings import LOG_LEVELS, StreamSettings, load_settings
from .domain.exceptions import ConfigurationError, PlaylistError, PreviewServerError
from .pipeline.supervisor import Supervisor
from .services.logging_service import ErrorLog, SessionLog, configure_logging
from .services.overlay_service import OverlayChannel
from .services.playlist_service import Playlist
from .services.preview_server import PreviewServer
from .services.process_controller import ProcessController


def get_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parses command-line arguments for Loopcast.

    Every flag is optional; anything not given on the command line comes from
    `config.user.yaml`, `.env` or the environment.

    Returns:
        argparse.Namespace: An object containing the parsed command-line
                            arguments as attributes.
    """
    parser = argparse.ArgumentParser(description="Loopcast: 24/7 playlist streaming with self-healing FFmpeg.")
    parser.add_argument(
        "--config", type=str, default=None, help="Path to a YAML settings file (default: config.user.yaml)."
    )
    parser.add_argument(
        "--env-file", type=str, default=None, help="Path to a .env file (default: .env at the project root)."
    )
    parser.add_argument(
        "--video-dir", type=str, default=None, help="Directory containing the videos to stream."
    )
    parser.add_argument(
        "--preview", action="store_true", help="Stream to a local HLS directory instead of the remote endpoint."
    )
    parser.add_argument(
        "--preview-port", type=int, default=None, help="Port of the local preview web page (default: 8080)."
    )
    parser.add_argument(
        "--log-level", type=str, default=None, choices=list(LOG_LEVELS), help="Set the logging level."
    )
    parser.add_argument(
        "--ffmpeg", type=str, default=None, help="Path to the ffmpeg executable."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Maps the parsed flags onto settings fields; unset flags are left out."""
    overrides: Dict[str, Any] = {}
    if args.video_dir:
        overrides["video_dir"] = args.video_dir
    if args.preview:
        overrides["preview_mode"] = True
    if args.preview_port is not None:
        overrides["preview_port"] = args.preview_port
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.ffmpeg:
        overrides["ffmpeg_path"] = args.ffmpeg
    return overrides


def log_configuration(settings: StreamSettings):
    logger.info(f"Mode: {'PREVIEW (local HLS)' if settings.preview_mode else 'LIVE (remote endpoint)'}")
    if settings.preview_mode:
        logger.info(f"Preview output: {settings.output_target}")
        logger.info(f"Preview port: {settings.preview_port}")
    else:
        logger.info(f"Server: {settings.server_url}")
    logger.info(f"Video directory: {settings.video_dir}")
    logger.info(f"Resolution: {settings.resolution} @ {settings.fps}fps, preset {settings.preset}")
    logger.info(f"Bitrate: video {settings.video_bitrate}, audio {settings.audio_bitrate}")
    logger.info(f"Hardware acceleration: {settings.hw_accel.value}")
    logger.info(f"Overlay: {'enabled' if settings.overlay.enabled else 'disabled'}")
    logger.info(f"Loop: {settings.loop_playlist}, shuffle: {settings.shuffle_playlist}")
    logger.info(f"Max retries: {settings.max_retries}, base backoff: {settings.retry_base_delay_ms}ms")


def build_supervisor(settings: StreamSettings, playlist: Playlist) -> Supervisor:
    """Creates the supervisor and its collaborators from the effective settings."""
    overlay = OverlayChannel(settings.overlay_file) if settings.overlay.enabled else None
    controller = ProcessController(settings, overlay_file=overlay.path if overlay else None)
    error_log = session_log = None
    if settings.log_dir is not None:
        error_log = ErrorLog(settings.log_dir)
        session_log = SessionLog(settings.log_dir)
    return Supervisor(
        playlist,
        settings,
        controller=controller,
        overlay=overlay,
        error_log=error_log,
        session_log=session_log,
    )


def build_preview_server(settings: StreamSettings) -> Optional[PreviewServer]:
    """Creates the local HLS preview server in preview mode; None when streaming live."""
    if not settings.preview_mode:
        return None
    return PreviewServer(settings.preview_dir, settings.preview_port)


async def serve(supervisor: Supervisor, preview: Optional[PreviewServer] = None) -> int:
    """
    Runs the supervisor with SIGINT/SIGTERM wired to a graceful shutdown.

    Args:
        supervisor: The configured supervisor.
        preview: An optional preview server, started before the first session
                 and stopped once the supervisor has terminated. A preview that
                 cannot start is reported and streaming goes on without it.

    Returns:
        The supervisor's exit status.
    """
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, supervisor.request_shutdown)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Cannot install a handler for {sig.name} on this platform")
    if preview is not None:
        try:
            await preview.start()
            logger.info(f"Open {preview.url} in your browser")
        except PreviewServerError as e:
            logger.error(f"{e}")
    try:
        return await supervisor.supervise()
    finally:
        if preview is not None:
            await preview.stop()
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function to start the streaming service.

    This function performs the following steps:
    1. Parses command-line arguments.
    2. Loads and validates the settings.
    3. Configures logging and prepares the output directories.
    4. Loads the playlist.
    5. Runs the supervisor, and the preview server in preview mode, until
       shutdown or until the retry budget is spent.

    Returns:
        The process exit status.
    """
    args = get_args(argv)

    try:
        settings = load_settings(
            config_path=Path(args.config) if args.config else None,
            env_file=Path(args.env_file) if args.env_file else None,
            overrides=cli_overrides(args),
        )
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        return EXIT_STARTUP_ERROR

    configure_logging(settings.log_level, settings.log_dir)
    logger.debug(f"Parsed arguments: {args}")
    log_configuration(settings)

    if settings.preview_mode:
        settings.preview_dir.mkdir(parents=True, exist_ok=True)
    if not settings.video_dir.exists():
        settings.video_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created video directory {settings.video_dir}; add videos there and restart.")

    playlist = Playlist(
        settings.video_dir,
        loop=settings.loop_playlist,
        shuffle=settings.shuffle_playlist,
        probe_inputs=settings.probe_inputs,
    )
    try:
        playlist.initialize()
    except PlaylistError as e:
        logger.critical(f"{e}")
        return EXIT_STARTUP_ERROR

    supervisor = build_supervisor(settings, playlist)
    exit_code = asyncio.run(serve(supervisor, build_preview_server(settings)))
    if exit_code == 0:
        logger.success("Loopcast stopped.")
    else:
        logger.error(f"Loopcast stopped with exit code {exit_code}.")
    return exit_code


def run():
    """Console-script entry point."""
    logger.remove()
    logger.add(sys.stderr, level="INFO", format=LOGGER_FORMAT)
    sys.exit(main())
