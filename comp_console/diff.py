"""
Drift map: where two aligned tracks diverge.

Bins hold the RMS of the sample-level difference between the tracks.
Addressing is by time, so tracks with different sample counts (or rates)
stay aligned bin for bin. Values are raw, not normalized, so a zoomed
recomputation can be drawn on the same scale as the full track.
"""

import logging
from typing import Optional

import numpy as np

from .alignment import aligned_duration as _aligned_duration
from .alignment import aligned_shifts
from .models import DiffSeries, Track

logger = logging.getLogger(__name__)


def compute_diff(
    track_a: Optional[Track],
    track_b: Optional[Track],
    bin_count: int,
    offset: float = 0.0,
    aligned_duration: Optional[float] = None,
    region_start: Optional[float] = None,
    region_end: Optional[float] = None,
) -> Optional[DiffSeries]:
    """
    Per-bin RMS difference between two tracks over a region.

    Args:
        track_a: First track
        track_b: Second track
        bin_count: Number of equal time slices
        offset: Alignment offset of B relative to A (seconds)
        aligned_duration: Length of the common timeline; derived from the
            tracks and offset when omitted
        region_start: Region start on the aligned timeline (default 0)
        region_end: Region end on the aligned timeline (default the
            aligned duration)

    Returns:
        DiffSeries, or None if a track is missing or the region is empty.
    """
    if track_a is None or track_b is None or bin_count <= 0:
        return None

    a_shift, b_shift = aligned_shifts(offset)
    if aligned_duration is None:
        aligned_duration = _aligned_duration(track_a, track_b, offset)

    start = region_start if region_start is not None else 0.0
    end = region_end if region_end is not None else aligned_duration
    if end - start <= 0:
        return None

    data_a, sr_a = track_a.samples, track_a.sample_rate
    data_b, sr_b = track_b.samples, track_b.sample_rate

    edges = start + (end - start) * np.arange(bin_count + 1) / bin_count
    a_idx = np.maximum(0, np.floor((edges + a_shift) * sr_a)).astype(np.int64)
    b_idx = np.maximum(0, np.floor((edges + b_shift) * sr_b)).astype(np.int64)

    bins = np.zeros(bin_count, dtype=np.float32)
    for i in range(bin_count):
        a_start = a_idx[i]
        b_start = b_idx[i]
        a_end = min(a_idx[i + 1], len(data_a))
        b_end = min(b_idx[i + 1], len(data_b))
        count = min(a_end - a_start, b_end - b_start)
        if count <= 0:
            continue
        delta = (data_a[a_start:a_start + count].astype(np.float64)
                 - data_b[b_start:b_start + count])
        bins[i] = np.sqrt(np.mean(delta * delta))

    max_value = float(bins.max()) if bin_count else 0.0
    logger.debug(f"Diff over {start:.2f}-{end:.2f}s: {bin_count} bins, max {max_value:.5f}")
    return DiffSeries(bins=bins, max=max_value, region_start=float(start), region_end=float(end))
