"""
Time alignment between two recordings of the same material.

Two strategies, tried in order:
1. Silence trim - line up the first audible sample of each track and refine
   the match with a windowed cross-correlation. Accepted when the
   normalized correlation at the refined point clears a threshold.
2. Bidirectional coarse correlation - search a few seconds of each track
   across the first minute of the other at ~4kHz, keep the direction that
   scores higher and refine it at full resolution.

The offset is in seconds; positive means track B starts later than A.
"""

import logging
from math import gcd
from typing import Optional, Tuple

import numpy as np
from scipy.signal import correlate, resample_poly

from .config import AlignmentConfig
from .models import Track

logger = logging.getLogger(__name__)


def aligned_shifts(offset: float) -> Tuple[float, float]:
    """
    Per-track shifts (a_shift, b_shift) in seconds.

    Skipping a_shift seconds of A and b_shift seconds of B puts both tracks
    on a common timeline.
    """
    offset = offset or 0.0
    return max(0.0, -offset), max(0.0, offset)


def aligned_duration(
    track_a: Optional[Track],
    track_b: Optional[Track],
    offset: float = 0.0,
) -> float:
    """Length of the common timeline once both shifts are applied."""
    a_shift, b_shift = aligned_shifts(offset)
    if track_a is not None and track_b is not None:
        duration = min(track_a.duration - a_shift, track_b.duration - b_shift)
    elif track_a is not None:
        duration = track_a.duration - a_shift
    elif track_b is not None:
        duration = track_b.duration - b_shift
    else:
        duration = 0.0
    return max(0.0, duration)


def _first_above(data: np.ndarray, threshold: float) -> int:
    idx = np.flatnonzero(np.abs(data) > threshold)
    return int(idx[0]) if idx.size else 0


def _normalized_correlation(a: np.ndarray, b: np.ndarray) -> float:
    a = a.astype(np.float64)
    b = b.astype(np.float64)
    denom = np.sqrt(np.dot(a, a) * np.dot(b, b))
    return float(np.dot(a, b) / denom) if denom > 0 else 0.0


def _best_lag(pattern: np.ndarray, source: np.ndarray) -> Tuple[int, float]:
    """Position in ``source`` where ``pattern`` has the largest dot product (first wins)."""
    if len(pattern) == 0 or len(source) < len(pattern):
        return 0, float("-inf")
    scores = correlate(source.astype(np.float64), pattern.astype(np.float64), mode="valid")
    idx = int(np.argmax(scores))
    return idx, float(scores[idx])


def _refine(pattern: np.ndarray, search: np.ndarray, center: int, radius: int) -> int:
    """Best match of ``pattern`` within +/- radius samples of ``center``."""
    pat_len = len(pattern)
    lo = max(0, center - radius)
    hi = min(len(search) - pat_len, center + radius)
    if pat_len == 0 or hi < lo:
        return center
    lag, _ = _best_lag(pattern, search[lo:hi + pat_len])
    return lo + lag


def _coarse_search(
    pattern_track: np.ndarray,
    search_track: np.ndarray,
    pattern_start: int,
    factor: int,
    sample_rate: int,
    config: AlignmentConfig,
) -> Tuple[int, float]:
    """
    Downsampled search of one track's opening across the other.

    Returns (position in full-rate samples, score normalized by pattern length).
    """
    pat_samples = min(int(config.coarse_pattern_seconds * sample_rate),
                      len(pattern_track) - pattern_start)
    pat_len = max(0, pat_samples // factor)
    search_len = min(int(config.coarse_search_seconds * sample_rate), len(search_track)) // factor

    first = pattern_start // factor
    pattern = pattern_track[::factor][first:first + pat_len]
    source = search_track[::factor][:search_len]

    pos, best = _best_lag(pattern, source)
    score = best / pat_len if pat_len > 0 else 0.0
    return pos * factor, score


def _matched_samples(track: Track, sample_rate: int) -> np.ndarray:
    """``track`` samples at ``sample_rate`` (polyphase resampling if needed)."""
    if track.sample_rate == sample_rate:
        return track.samples
    g = gcd(sample_rate, track.sample_rate)
    logger.debug(f"Resampling {track.label or 'track'} {track.sample_rate}Hz -> {sample_rate}Hz")
    return resample_poly(track.samples, sample_rate // g, track.sample_rate // g).astype(np.float32)


def find_offset(
    track_a: Optional[Track],
    track_b: Optional[Track],
    config: Optional[AlignmentConfig] = None,
) -> float:
    """
    Estimate the offset of ``track_b`` relative to ``track_a`` in seconds.

    Never raises: missing tracks, near-equal durations and poor matches
    all produce a best-effort value (0.0 in the degenerate cases).
    """
    if track_a is None or track_b is None:
        return 0.0
    config = config or AlignmentConfig()

    if abs(track_a.duration - track_b.duration) < config.same_duration_tolerance:
        logger.debug("Durations match, assuming tracks are aligned")
        return 0.0

    sr = track_a.sample_rate
    if sr <= 0:
        return 0.0
    a = track_a.samples
    b = _matched_samples(track_b, sr)
    radius = int(config.refine_radius * sr)
    fine_len = int(config.pattern_seconds * sr)

    # Strategy 1: silence trim
    start_a = _first_above(a, config.silence_threshold)
    start_b = _first_above(b, config.silence_threshold)

    pat_len = max(0, min(fine_len, len(a) - start_a, len(b) - start_b))
    pattern = a[start_a:start_a + pat_len]
    refined_b = _refine(pattern, b, start_b, radius)
    score = _normalized_correlation(pattern, b[refined_b:refined_b + pat_len])

    if score > config.correlation_threshold:
        offset_samples = refined_b - start_a
        logger.debug(f"Silence-trim alignment accepted (corr={score:.3f}, "
                     f"offset={offset_samples} samples)")
    else:
        logger.debug(f"Silence-trim correlation {score:.3f} below "
                     f"{config.correlation_threshold}, trying coarse search")
        offset_samples = _coarse_offset(a, b, start_a, start_b, sr, radius, fine_len, config)

    if offset_samples == 0:
        return 0.0
    offset = offset_samples / sr
    logger.info(f"Alignment offset: {offset:+.4f}s")
    return offset


def _coarse_offset(
    a: np.ndarray,
    b: np.ndarray,
    start_a: int,
    start_b: int,
    sample_rate: int,
    radius: int,
    fine_len: int,
    config: AlignmentConfig,
) -> int:
    """Bidirectional coarse search, refined at full rate. Returns samples."""
    factor = max(1, sample_rate // config.coarse_rate)

    coarse_b, forward = _coarse_search(a, b, start_a, factor, sample_rate, config)
    coarse_a, reverse = _coarse_search(b, a, start_b, factor, sample_rate, config)
    logger.debug(f"Coarse scores: forward={forward:.5f} reverse={reverse:.5f} (factor {factor})")

    if forward >= reverse:
        pattern = a[start_a:start_a + min(fine_len, len(a) - start_a)]
        return _refine(pattern, b, coarse_b, radius) - start_a

    pattern = b[start_b:start_b + min(fine_len, len(b) - start_b)]
    return start_b - _refine(pattern, a, coarse_a, radius)
