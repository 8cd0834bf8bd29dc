"""
Decoded-track cache.
Keeps decoded tracks in memory and, optionally, in a durable directory so a
remount (or a restart) skips decoding.
"""

import hashlib
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from .models import Track

logger = logging.getLogger(__name__)


class TrackCache(ABC):
    """Get/put-by-key store for decoded tracks."""

    @abstractmethod
    def get(self, key: str) -> Optional[Track]:
        """Return the cached track or None."""

    @abstractmethod
    def put(self, key: str, track: Track) -> None:
        """Store ``track`` under ``key``."""


class MemoryTrackCache(TrackCache):
    """Process-local cache (instant on remount within the same session)."""

    def __init__(self):
        self._tracks: Dict[str, Track] = {}

    def get(self, key: str) -> Optional[Track]:
        return self._tracks.get(key)

    def put(self, key: str, track: Track) -> None:
        self._tracks[key] = track

    def clear(self):
        self._tracks.clear()

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, key: str) -> bool:
        return key in self._tracks


class DirectoryTrackCache(TrackCache):
    """
    Durable cache: one .npz file per key inside ``storage_dir``.
    """

    def __init__(self, storage_dir: Optional[str] = None):
        """
        Initialize track storage.

        Args:
            storage_dir: Directory for cache files. Defaults to
                ~/.cache/comp_console/tracks.
        """
        if storage_dir:
            self.storage_dir = Path(storage_dir)
        else:
            self.storage_dir = Path.home() / ".cache" / "comp_console" / "tracks"

        self.storage_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Track cache directory: {self.storage_dir}")

    def path_for(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.storage_dir / f"{digest}.npz"

    def get(self, key: str) -> Optional[Track]:
        filepath = self.path_for(key)
        if not filepath.exists():
            return None
        try:
            with np.load(filepath, allow_pickle=False) as data:
                track = Track(
                    samples=data["samples"],
                    sample_rate=int(data["sample_rate"]),
                    label=str(data["label"]),
                    source=key,
                )
            logger.debug(f"Cache hit: {key}")
            return track
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Unreadable cache entry {filepath}: {e}")
            return None

    def put(self, key: str, track: Track) -> None:
        filepath = self.path_for(key)
        tmp_path = filepath.with_suffix(".tmp")
        with open(tmp_path, "wb") as f:
            np.savez(
                f,
                samples=track.samples,
                sample_rate=np.int64(track.sample_rate),
                label=np.array(track.label),
            )
        os.replace(tmp_path, filepath)
        logger.debug(f"Cached {key} -> {filepath}")

    def delete(self, key: str) -> bool:
        filepath = self.path_for(key)
        if filepath.exists():
            filepath.unlink()
            logger.info(f"Deleted cache entry: {filepath}")
            return True
        return False


class TieredTrackCache(TrackCache):
    """Memory first, then durable storage (promoted into memory on hit)."""

    def __init__(self, memory: Optional[MemoryTrackCache] = None,
                 durable: Optional[TrackCache] = None):
        self.memory = memory if memory is not None else MemoryTrackCache()
        self.durable = durable

    def get(self, key: str) -> Optional[Track]:
        track = self.memory.get(key)
        if track is not None or self.durable is None:
            return track

        track = self.durable.get(key)
        if track is not None:
            self.memory.put(key, track)
        return track

    def put(self, key: str, track: Track) -> None:
        self.memory.put(key, track)
        if self.durable is None:
            return
        try:
            self.durable.put(key, track)
        except OSError as e:
            # Cache write failure is non-fatal
            logger.warning(f"Durable cache write failed for {key}: {e}")
