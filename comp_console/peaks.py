"""
Waveform envelope extraction for display.
"""

from typing import Optional

import numpy as np

from .models import PeakSeries, Track

DEFAULT_PEAK_BINS = 300


def extract_peaks(
    track: Track,
    bin_count: int = DEFAULT_PEAK_BINS,
    start: Optional[float] = None,
    end: Optional[float] = None,
) -> PeakSeries:
    """
    Reduce a region of ``track`` to ``bin_count`` peak magnitudes.

    Args:
        track: Source track
        bin_count: Number of output bins
        start: Region start in seconds (track-native time), default 0
        end: Region end in seconds, default end of track

    Returns:
        PeakSeries of max |sample| per bin. Samples left over after
        dividing the region into equal bins are ignored; an empty region
        (or one shorter than ``bin_count`` samples) yields all zeros.
    """
    bin_count = max(0, int(bin_count))
    data = track.samples
    sr = track.sample_rate

    s_start = int(np.floor(start * sr)) if start is not None else 0
    s_start = max(0, s_start)
    s_end = min(int(np.floor(end * sr)), len(data)) if end is not None else len(data)
    s_end = max(s_start, s_end)

    region_start = s_start / sr if sr else 0.0
    region_end = s_end / sr if sr else 0.0
    region_len = s_end - s_start
    if region_len <= 0 or bin_count == 0:
        return PeakSeries(np.zeros(bin_count, dtype=np.float32), region_start, region_end)

    bin_size = region_len // bin_count
    if bin_size == 0:
        return PeakSeries(np.zeros(bin_count, dtype=np.float32), region_start, region_end)

    blocks = data[s_start:s_start + bin_size * bin_count].reshape(bin_count, bin_size)
    peaks = np.abs(blocks).max(axis=1).astype(np.float32)
    return PeakSeries(peaks, region_start, region_end)
