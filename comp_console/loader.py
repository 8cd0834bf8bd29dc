"""
Track loading: decode audio files into Tracks, through the track cache.
"""

import dataclasses
import logging
from math import gcd
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import soundfile as sf
from scipy.signal import resample_poly

from .cache import MemoryTrackCache, TrackCache
from .models import Track, TrackRef

logger = logging.getLogger(__name__)


class TrackLoadError(Exception):
    """A track could not be decoded (or no requested track could)."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class TrackLoader:
    """
    Decodes local audio files with soundfile.

    Only the first channel is kept. When ``target_sample_rate`` is set,
    tracks at another rate are resampled so both sides of a comparison
    share one rate.
    """

    def __init__(self, cache: Optional[TrackCache] = None,
                 target_sample_rate: Optional[int] = None):
        self.cache = cache if cache is not None else MemoryTrackCache()
        self.target_sample_rate = target_sample_rate

    def _cache_key(self, ref: TrackRef) -> str:
        if self.target_sample_rate:
            return f"{ref.source}@{self.target_sample_rate}"
        return ref.source

    def load(self, ref: TrackRef) -> Track:
        """
        Decode ``ref`` (or fetch it from the cache).

        Raises:
            TrackLoadError: missing, undecodable or empty file
        """
        label = ref.label or Path(ref.source).stem
        key = self._cache_key(ref)

        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"{label} (cached)")
            if cached.label != label:
                cached = dataclasses.replace(cached, label=label)
            return cached

        path = Path(ref.source)
        if not path.is_file():
            raise TrackLoadError(ref.source, "file not found")

        try:
            data, sample_rate = sf.read(str(path), dtype="float32", always_2d=True)
        except (RuntimeError, OSError) as e:
            raise TrackLoadError(ref.source, f"decode failed: {e}") from e

        if data.size == 0:
            raise TrackLoadError(ref.source, "no audio frames")

        samples = data[:, 0]
        target = self.target_sample_rate
        if target and sample_rate != target:
            g = gcd(target, sample_rate)
            samples = resample_poly(samples, target // g, sample_rate // g).astype(np.float32)
            logger.debug(f"Resampled {label} {sample_rate}Hz -> {target}Hz")
            sample_rate = target

        track = Track(samples=samples, sample_rate=sample_rate, label=label, source=ref.source)
        self.cache.put(key, track)
        logger.info(f"Decoded {label}: {track.duration:.2f}s @ {sample_rate}Hz")
        return track

    def load_pair(
        self,
        ref_a: Optional[TrackRef],
        ref_b: Optional[TrackRef],
    ) -> Tuple[Optional[Track], Optional[Track]]:
        """
        Load both sides of a comparison.

        A single failed track is logged and returned as None so the caller
        can run degraded.

        Raises:
            TrackLoadError: every requested track failed
        """
        results = []
        failures = []
        for ref in (ref_a, ref_b):
            if ref is None:
                results.append(None)
                continue
            try:
                results.append(self.load(ref))
            except TrackLoadError as e:
                logger.error(f"Track load failed: {e}")
                failures.append(e)
                results.append(None)

        requested = sum(ref is not None for ref in (ref_a, ref_b))
        if requested and len(failures) == requested:
            sources = ", ".join(e.source for e in failures)
            raise TrackLoadError(sources, "could not load audio")
        return results[0], results[1]
