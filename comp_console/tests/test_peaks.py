"""
Tests for waveform envelope extraction.
"""

import numpy as np
import pytest
from conftest import SR, make_track

from comp_console.peaks import DEFAULT_PEAK_BINS, extract_peaks


class TestExtractPeaks:
    """Max |sample| per bin over a region."""

    def test_default_bin_count(self, noise_track):
        peaks = extract_peaks(noise_track)
        assert len(peaks) == DEFAULT_PEAK_BINS

    def test_values_are_magnitudes(self):
        """Negative excursions count by absolute value."""
        data = np.zeros(1000, dtype=np.float32)
        data[5] = -0.9
        data[505] = 0.4
        peaks = extract_peaks(make_track(data, sr=1000), bin_count=2)

        assert peaks.values[0] == pytest.approx(0.9)
        assert peaks.values[1] == pytest.approx(0.4)

    def test_bounded_by_track_peak(self, noise_track):
        peaks = extract_peaks(noise_track, bin_count=50)
        assert peaks.max <= np.abs(noise_track.samples).max() + 1e-6
        assert np.all(peaks.values >= 0)

    def test_region_selects_samples(self):
        """Only samples inside [start, end) contribute."""
        data = np.zeros(10 * SR, dtype=np.float32)
        data[1 * SR] = 1.0   # outside region
        data[5 * SR] = 0.5   # inside region
        peaks = extract_peaks(make_track(data), bin_count=10, start=4.0, end=6.0)

        assert peaks.max == pytest.approx(0.5)
        assert peaks.start == pytest.approx(4.0)
        assert peaks.end == pytest.approx(6.0)

    def test_remainder_samples_ignored(self):
        """1003 samples into 10 bins: the last 3 samples never show up."""
        data = np.zeros(1003, dtype=np.float32)
        data[1001] = 1.0
        peaks = extract_peaks(make_track(data, sr=1000), bin_count=10)
        assert peaks.max == 0.0

    # --- Degenerate regions ---

    def test_empty_region_all_zeros(self, noise_track):
        peaks = extract_peaks(noise_track, bin_count=20, start=5.0, end=5.0)
        assert len(peaks) == 20
        assert not peaks.values.any()

    def test_empty_region_at_track_start(self, noise_track):
        peaks = extract_peaks(noise_track, bin_count=10, start=0.0, end=0.0)
        assert len(peaks) == 10
        assert not peaks.values.any()
        assert peaks.end == 0.0

    def test_fewer_samples_than_bins(self):
        peaks = extract_peaks(make_track(np.ones(5, dtype=np.float32), sr=1000), bin_count=10)
        assert len(peaks) == 10
        assert not peaks.values.any()

    def test_region_past_end_is_clipped(self, noise_track):
        peaks = extract_peaks(noise_track, bin_count=10, start=9.0, end=12.0)
        assert peaks.end == pytest.approx(noise_track.duration)
        assert peaks.max > 0
