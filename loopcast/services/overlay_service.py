"""
The overlay side channel.

The encoder's drawtext filter re-reads a small text file at a fixed interval.
`OverlayChannel` owns that file: it writes "Now Playing" text when a new
session starts and clears it on shutdown. Writes go through a temporary file
and an atomic replace so the encoder never renders a half-written line.
"""
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from loguru import logger


@dataclass(frozen=True)
class OverlayData:
    video_name: str
    custom_text: Optional[str] = None


def format_overlay_text(data: OverlayData) -> str:
    parts = []
    if data.video_name:
        parts.append(f"Now Playing: {data.video_name}")
    if data.custom_text:
        parts.append(data.custom_text)
    return " | ".join(parts)


class OverlayChannel:
    """
    Owns the text file rendered by the encoder's drawtext filter.

    Args:
        path: The overlay text file. Its directory is created, and the file
              is created empty if missing so the encoder can open it.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self._write("")

    def update(self, data: Union[OverlayData, str]):
        """
        Replaces the overlay text atomically.

        Args:
            data: Structured "Now Playing" data, or the literal text to show.
        """
        text = format_overlay_text(data) if isinstance(data, OverlayData) else data
        self._write(text)

    def clear(self):
        """Blanks the overlay."""
        self._write("")

    def read(self) -> str:
        """
        Returns:
            str: The text currently shown by the encoder.
        """
        return self.path.read_text(encoding="utf-8")

    def _write(self, text: str):
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=".overlay_", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            logger.error(f"Error writing overlay file {self.path}: {e}")
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
