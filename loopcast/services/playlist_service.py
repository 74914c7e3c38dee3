"""
Provides the playlist that feeds work items to the supervisor.

The playlist scans one media directory (non-recursive) for supported video
files, sorted by filename or shuffled, and hands them out one at a time. It
notices files being added or removed by comparing the directory's modification
time before every `next()` call and rescanning when it changed.

When `probe_inputs` is enabled, each newly discovered file is checked with
ffprobe once; files it cannot read are skipped so a known-corrupt file does
not burn the retry budget.
"""
import random
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from ..config.stream import VIDEO_EXTENSIONS
from ..domain.exceptions import MediaProbeError, PlaylistError
from ..domain.media import probe_media
from ..domain.models import WorkItem


def is_supported_format(path: Path) -> bool:
    return path.suffix.lower() in VIDEO_EXTENSIONS


class Playlist:
    """
    A looping (or one-shot) sequence of `WorkItem`s backed by a directory.

    Attributes:
        video_dir (Path): The directory being served.
        loop (bool): Wrap around at the end instead of returning None.
        shuffle (bool): Shuffle on load and at every wrap-around.
        probe_inputs (bool): Reject files that ffprobe cannot read.
    """

    def __init__(
        self,
        video_dir: Path,
        loop: bool = True,
        shuffle: bool = False,
        probe_inputs: bool = False,
        rng: Optional[random.Random] = None,
    ):
        self.video_dir = Path(video_dir)
        self.loop = loop
        self.shuffle = shuffle
        self.probe_inputs = probe_inputs
        self._rng = rng or random.Random()
        self._items: List[WorkItem] = []
        self._index = 0
        self._dir_mtime: Optional[float] = None
        self._probe_results: Dict[Path, bool] = {}
        self._exhausted = False

    def initialize(self):
        """
        Performs the initial scan.

        Raises:
            PlaylistError: If the directory is missing or has no supported files.
        """
        if not self.video_dir.is_dir():
            raise PlaylistError(f"Video directory does not exist: {self.video_dir}")
        self._scan()
        if not self._items:
            raise PlaylistError(f"No video files found in {self.video_dir}")
        logger.info(f"Loaded {len(self._items)} video(s) from {self.video_dir}")
        for i, item in enumerate(self._items, start=1):
            logger.debug(f"  [{i}] {item.display_name}")

    def next(self) -> Optional[WorkItem]:
        """
        Returns the next item and advances the cursor.

        At the end of the list a looping playlist wraps (reshuffling if
        enabled); a one-shot playlist returns None from then on.
        """
        self._rescan_if_changed()
        if not self._items or self._exhausted:
            return None

        if self._index >= len(self._items):
            if not self.loop:
                self._exhausted = True
                logger.info("Reached end of playlist")
                return None
            self._wrap()

        item = self._items[self._index]
        self._index += 1
        return item

    def info(self) -> Dict[str, int]:
        return {
            "total": len(self._items),
            "current": self._index,
            "remaining": max(0, len(self._items) - self._index),
        }

    def close(self):
        logger.debug(f"Playlist for {self.video_dir} closed")

    # --- Internals ---
    def _wrap(self):
        self._index = 0
        if self.shuffle:
            self._rng.shuffle(self._items)
        logger.info("Reached end, looping playlist")

    def _rescan_if_changed(self):
        try:
            mtime = self.video_dir.stat().st_mtime
        except OSError as e:
            logger.warning(f"Cannot stat video directory {self.video_dir}: {e}")
            return
        if mtime != self._dir_mtime:
            logger.info(f"Directory change detected in {self.video_dir}, rescanning")
            self._scan()

    def _scan(self):
        try:
            self._dir_mtime = self.video_dir.stat().st_mtime
            candidates = sorted(
                (p for p in self.video_dir.iterdir() if p.is_file() and is_supported_format(p)),
                key=lambda p: p.name,
            )
        except OSError as e:
            logger.error(f"Error scanning {self.video_dir}: {e}")
            return

        items = [WorkItem.from_path(p) for p in candidates if self._accept(p)]
        if self.shuffle:
            self._rng.shuffle(items)
        self._items = items
        self._index = min(self._index, len(items))

    def _accept(self, path: Path) -> bool:
        if not self.probe_inputs:
            return True
        if path not in self._probe_results:
            try:
                duration, metadata = probe_media(path)
                logger.debug(f"Probed {path.name}: {duration:.1f}s {metadata.as_dict()}")
                self._probe_results[path] = True
            except MediaProbeError as e:
                logger.warning(f"Skipping unreadable video {path.name}: {e}")
                self._probe_results[path] = False
        return self._probe_results[path]
