"""
Beat Detector - Offline tempo and beat-grid estimation for one track.

Algorithm:
- Frame energy over short windows, positive energy flux as the onset signal
- Adaptive threshold (local mean of flux times a multiplier)
- Tempo histogram voting over inter-onset intervals, with half and double
  tempo votes to resist octave errors
- A fixed 4/4 grid anchored on the first onset
"""

import logging
import math
from collections import Counter
from typing import List, Optional

import numpy as np

from .config import BeatConfig
from .models import BeatGrid, Track

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def frame_energy(samples: np.ndarray, frame_size: int, hop_size: int) -> np.ndarray:
    """Mean-square energy of each frame (frames start every ``hop_size`` samples)."""
    if frame_size <= 0 or hop_size <= 0 or len(samples) < frame_size:
        return np.zeros(0, dtype=np.float64)
    num_frames = (len(samples) - frame_size) // hop_size
    if num_frames <= 0:
        return np.zeros(0, dtype=np.float64)

    squares = np.square(samples.astype(np.float64))
    cumulative = np.concatenate(([0.0], np.cumsum(squares)))
    starts = np.arange(num_frames) * hop_size
    return (cumulative[starts + frame_size] - cumulative[starts]) / frame_size


def onset_flux(energy: np.ndarray) -> np.ndarray:
    """Positive frame-to-frame energy change; the first frame has no flux."""
    flux = np.zeros_like(energy)
    if len(energy) > 1:
        flux[1:] = np.maximum(0.0, np.diff(energy))
    return flux


def adaptive_threshold(flux: np.ndarray, window: int, multiplier: float, epsilon: float) -> np.ndarray:
    """Local mean of flux over [f - window, f + window) times multiplier, plus epsilon."""
    n = len(flux)
    if n == 0:
        return np.zeros(0, dtype=np.float64)
    cumulative = np.concatenate(([0.0], np.cumsum(flux)))
    frames = np.arange(n)
    lo = np.maximum(0, frames - window)
    hi = np.minimum(n, frames + window)
    mean = (cumulative[hi] - cumulative[lo]) / (hi - lo)
    return mean * multiplier + epsilon


def detect_onsets(track: Track, config: Optional[BeatConfig] = None) -> List[float]:
    """Onset times in seconds."""
    config = config or BeatConfig()
    sr = track.sample_rate
    hop_size = int(sr * config.hop_seconds)
    frame_size = int(sr * config.frame_seconds)

    energy = frame_energy(track.samples, frame_size, hop_size)
    if len(energy) == 0:
        return []
    flux = onset_flux(energy)

    window = int(round(config.threshold_window_seconds / config.hop_seconds))
    threshold = adaptive_threshold(flux, window, config.threshold_multiplier,
                                   config.threshold_epsilon)

    min_gap = int(config.min_onset_gap * sr / hop_size)
    onsets = []
    last_onset = -min_gap
    for f in np.flatnonzero(flux > threshold):
        if f - last_onset >= min_gap:
            onsets.append(f * hop_size / sr)
            last_onset = f
    return onsets


def estimate_bpm(intervals: List[float], config: Optional[BeatConfig] = None) -> int:
    """
    Pick the dominant tempo from inter-onset intervals.

    Every interval votes for its tempo and for the half and double tempo
    (each only inside [min_bpm, max_bpm]). Ties go to the tempo with more
    direct votes, then to the slower tempo.
    """
    config = config or BeatConfig()
    votes: Counter = Counter()
    direct: Counter = Counter()

    for dt in intervals:
        bpm = _round_half_up(60.0 / dt)
        for candidate in (bpm, bpm * 2, _round_half_up(bpm / 2)):
            if config.min_bpm <= candidate <= config.max_bpm:
                votes[candidate] += 1
        if config.min_bpm <= bpm <= config.max_bpm:
            direct[bpm] += 1

    if not votes:
        return 120
    return min(votes, key=lambda bpm: (-votes[bpm], -direct[bpm], bpm))


def detect_beats(track: Optional[Track], config: Optional[BeatConfig] = None) -> Optional[BeatGrid]:
    """
    Derive a tempo and quantized beat grid from ``track``.

    Returns:
        BeatGrid, or None when the track has too few onsets or too few
        plausible inter-onset intervals.
    """
    if track is None:
        return None
    config = config or BeatConfig()

    onsets = detect_onsets(track, config)
    if len(onsets) < config.min_onsets:
        logger.debug(f"Only {len(onsets)} onsets in {track.label or 'track'}, no beat grid")
        return None

    intervals = [
        dt for dt in np.diff(onsets)
        if config.min_interval < dt < config.max_interval
    ]
    if len(intervals) < config.min_intervals:
        logger.debug(f"Only {len(intervals)} usable intervals, no beat grid")
        return None

    bpm = estimate_bpm(intervals, config)
    beat_interval = 60.0 / bpm

    # Walk back from the first onset towards zero
    steps = max(0, int(math.ceil(onsets[0] / beat_interval)) - 1)
    grid_start = onsets[0] - steps * beat_interval

    duration = track.duration
    count = max(0, int(math.ceil((duration - grid_start) / beat_interval)))
    beats = tuple(
        float(t) for t in grid_start + np.arange(count) * beat_interval
        if 0 <= t < duration
    )

    logger.info(f"Beat grid: {bpm} BPM, {len(beats)} beats, first downbeat {grid_start:.3f}s")
    return BeatGrid(
        bpm=bpm,
        beats=beats,
        first_downbeat=float(grid_start),
        beats_per_bar=config.beats_per_bar,
    )
