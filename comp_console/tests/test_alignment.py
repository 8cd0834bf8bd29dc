"""
Tests for offset detection between two recordings.

Uses noise as program material: it correlates perfectly with itself and
hardly at all with anything else, so the expected offsets are exact.
"""

import numpy as np
import pytest
from conftest import SR, delayed, make_noise, make_track

from comp_console.alignment import aligned_duration, aligned_shifts, find_offset
from comp_console.config import AlignmentConfig

# ---------------------------------------------------------------------------
# Shifts and common duration
# ---------------------------------------------------------------------------


class TestAlignedShifts:

    def test_positive_offset_skips_b(self):
        assert aligned_shifts(1.5) == (0.0, 1.5)

    def test_negative_offset_skips_a(self):
        assert aligned_shifts(-0.5) == (0.5, 0.0)

    def test_zero(self):
        assert aligned_shifts(0.0) == (0.0, 0.0)


class TestAlignedDuration:

    def test_shorter_side_wins(self):
        a = make_track(make_noise(10.0))
        b = make_track(make_noise(8.0, seed=1))
        assert aligned_duration(a, b) == pytest.approx(8.0)

    def test_offset_applied(self):
        a = make_track(make_noise(10.0))
        b = make_track(make_noise(11.2, seed=1))
        assert aligned_duration(a, b, 1.2) == pytest.approx(10.0)

    def test_single_track(self):
        a = make_track(make_noise(10.0))
        assert aligned_duration(a, None) == pytest.approx(10.0)
        assert aligned_duration(None, None) == 0.0

    def test_never_negative(self):
        a = make_track(make_noise(1.0))
        b = make_track(make_noise(1.0, seed=1))
        assert aligned_duration(a, b, 5.0) == 0.0


# ---------------------------------------------------------------------------
# find_offset
# ---------------------------------------------------------------------------


class TestFindOffset:

    def test_identical_tracks_zero(self, noise_track):
        assert find_offset(noise_track, noise_track) == 0.0

    def test_missing_track_zero(self, noise_track):
        assert find_offset(noise_track, None) == 0.0
        assert find_offset(None, noise_track) == 0.0

    def test_near_equal_durations_short_circuit(self):
        """Durations within the tolerance are taken as aligned, whatever the content."""
        a = make_track(make_noise(10.0))
        b = make_track(make_noise(10.02, seed=7))
        assert find_offset(a, b) == 0.0

    def test_delayed_copy(self, noise_track):
        """B = 1.2s of silence + A."""
        b = make_track(delayed(noise_track.samples, 1.2))
        assert find_offset(noise_track, b) == pytest.approx(1.2, abs=0.01)

    def test_delayed_a_gives_negative_offset(self, noise_track):
        a = make_track(delayed(noise_track.samples, 0.75))
        assert find_offset(a, noise_track) == pytest.approx(-0.75, abs=0.01)

    def test_coarse_fallback_with_noisy_lead_in(self, noise_track):
        """
        A stray burst before the real start of B defeats the silence trim;
        the coarse search still finds the true offset.
        """
        lead_in = np.zeros(int(1.2 * SR), dtype=np.float32)
        lead_in[int(0.3 * SR):int(0.35 * SR)] = make_noise(0.05, seed=42, amplitude=0.5)
        b = make_track(np.concatenate([lead_in, noise_track.samples]))

        assert find_offset(noise_track, b) == pytest.approx(1.2, abs=0.01)

    def test_strict_preset_still_finds_clean_offset(self, noise_track):
        b = make_track(delayed(noise_track.samples, 0.5))
        config = AlignmentConfig(correlation_threshold=0.85, refine_radius=0.05)
        assert find_offset(noise_track, b, config) == pytest.approx(0.5, abs=0.01)

    def test_different_sample_rates(self):
        """B at twice A's rate is resampled before matching."""
        a_samples = make_noise(6.0, sr=4000, seed=3)
        b_samples = np.repeat(delayed(a_samples, 1.0, sr=4000), 2)
        a = make_track(a_samples, sr=4000)
        b = make_track(b_samples, sr=8000)

        assert find_offset(a, b) == pytest.approx(1.0, abs=0.01)
