"""
Main entry point for the Loopcast application.

This script configures the initial logger and hands over to the command-line
interface, which loads the settings, builds the playlist and runs the
supervisor until it is told to stop.
"""

import sys

from loguru import logger

from loopcast.cli import main
from loopcast.config.common import LOGGER_FORMAT


# Configure the logger for initial setup.
# The level is overridden once the settings have been loaded.
logger.remove()
log_level = "DEBUG" if __debug__ else "INFO"
logger.add(sys.stderr, level=log_level, format=LOGGER_FORMAT)


if __name__ == "__main__":
    sys.exit(main())
