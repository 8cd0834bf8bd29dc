"""
Tests for the audio output port: voice rendering and the offline mixer.
"""

import numpy as np
import pytest

from comp_console.models import ActiveTrack
from comp_console.playback import OfflineBackend, ScheduledSource, ScrubBurst
from comp_console.playback.backend import BurstVoice, LoopingVoice

# Samples equal their own index, so rendered output reads as positions
RAMP = np.arange(100, dtype=np.float32)


def _source(track=ActiveTrack.A, start=0.0, loop_start=0.0, loop_end=10.0, gain=1.0):
    return ScheduledSource(
        track=track,
        samples=RAMP,
        sample_rate=10,
        start=start,
        loop_start=loop_start,
        loop_end=loop_end,
        gain=gain,
    )


class TestLoopingVoice:

    def test_plays_from_start(self):
        voice = LoopingVoice(_source(start=1.0), output_rate=10)
        assert voice.render(5).tolist() == [10, 11, 12, 13, 14]

    def test_wraps_inside_loop(self):
        """Loop [2s, 4s] starting at 3.5s: 35..39 then back to 20."""
        voice = LoopingVoice(_source(start=3.5, loop_start=2.0, loop_end=4.0), output_rate=10)
        assert voice.render(10).tolist() == [35, 36, 37, 38, 39, 20, 21, 22, 23, 24]
        assert voice.render(3).tolist() == [25, 26, 27]

    def test_gain_applied(self):
        voice = LoopingVoice(_source(start=1.0, gain=0.5), output_rate=10)
        assert voice.render(2).tolist() == [5.0, 5.5]

    def test_rate_conversion_steps_through_source(self):
        """Source at 10Hz rendered at 20Hz repeats each sample."""
        voice = LoopingVoice(_source(start=1.0), output_rate=20)
        assert voice.render(4).tolist() == [10, 10, 11, 11]


class TestBurstVoice:

    def test_linear_fade(self):
        burst = ScrubBurst(samples=np.ones(100, dtype=np.float32), sample_rate=100,
                           start=0.0, duration=0.1, gain=0.8)
        voice = BurstVoice(burst, output_rate=100)
        out = voice.render(20)

        expected = 0.8 * (1.0 - np.arange(10) / 10)
        assert out[:10] == pytest.approx(expected)
        assert not out[10:].any()
        assert voice.done

    def test_burst_past_end_is_silent(self):
        burst = ScrubBurst(samples=np.ones(10, dtype=np.float32), sample_rate=100,
                           start=5.0, duration=0.05)
        assert not BurstVoice(burst, output_rate=100).render(5).any()


class TestOfflineBackend:

    def test_start_returns_clock_anchor(self):
        backend = OfflineBackend(clock=lambda: 42.0)
        assert backend.start_sources([_source()]) == 42.0
        assert backend.active_voices == 1

    def test_mix_follows_gains(self):
        backend = OfflineBackend(clock=lambda: 0.0)
        backend.start_sources([
            _source(ActiveTrack.A, start=1.0, gain=1.0),
            _source(ActiveTrack.B, start=5.0, gain=0.0),
        ])
        assert backend.render(2).tolist() == [10, 11]

        backend.set_gain(ActiveTrack.A, 0.0)
        backend.set_gain(ActiveTrack.B, 1.0)
        assert backend.gains == {ActiveTrack.A: 0.0, ActiveTrack.B: 1.0}
        # Both voices kept advancing together
        assert backend.render(2).tolist() == [52, 53]

    def test_stop_clears_voices(self):
        backend = OfflineBackend(clock=lambda: 0.0)
        backend.start_sources([_source()])
        backend.stop_sources()
        assert backend.active_voices == 0
        assert not backend.render(4).any()

    def test_burst_replaces_previous(self):
        backend = OfflineBackend(clock=lambda: 0.0)
        first = ScrubBurst(samples=RAMP, sample_rate=10, start=1.0)
        second = ScrubBurst(samples=RAMP, sample_rate=10, start=2.0)
        backend.play_burst(first)
        backend.play_burst(second)
        assert backend.last_burst is second
        assert backend.render(1)[0] == pytest.approx(20 * 0.8)

    def test_burst_expires(self):
        backend = OfflineBackend(sample_rate=100, clock=lambda: 0.0)
        backend.play_burst(ScrubBurst(samples=np.ones(100, dtype=np.float32),
                                      sample_rate=100, start=0.0, duration=0.08))
        backend.render(8)
        assert not backend.burst_active
