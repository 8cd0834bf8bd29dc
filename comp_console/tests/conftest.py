"""Shared pytest fixtures for the comp_console test suite.

Everything runs on synthetic signals and a mock transport clock, so no
audio files or output device are needed.
"""

import numpy as np
import pytest

from comp_console.models import Track
from comp_console.playback import OfflineBackend

SR = 8000


# ---------------------------------------------------------------------------
# Synthetic signals
# ---------------------------------------------------------------------------


def make_noise(seconds: float, sr: int = SR, seed: int = 0, amplitude: float = 0.3) -> np.ndarray:
    """Gaussian noise; audible from the very first sample."""
    rng = np.random.default_rng(seed)
    return (rng.standard_normal(int(seconds * sr)) * amplitude).astype(np.float32)


def make_clicks(
    seconds: float,
    interval: float,
    sr: int = SR,
    first: float = 0.25,
    click_seconds: float = 0.01,
    count: int = None,
) -> np.ndarray:
    """Silence with full-scale square clicks every ``interval`` seconds."""
    data = np.zeros(int(seconds * sr), dtype=np.float32)
    click_len = int(click_seconds * sr)
    positions = np.arange(first, seconds, interval)
    if count is not None:
        positions = positions[:count]
    for t in positions:
        start = int(round(t * sr))
        data[start:start + click_len] = 1.0
    return data


def delayed(samples: np.ndarray, seconds: float, sr: int = SR) -> np.ndarray:
    """``samples`` preceded by ``seconds`` of silence."""
    return np.concatenate([np.zeros(int(round(seconds * sr)), dtype=np.float32), samples])


def make_track(samples: np.ndarray, sr: int = SR, label: str = "") -> Track:
    return Track(samples=samples, sample_rate=sr, label=label)


# ---------------------------------------------------------------------------
# Transport clock
# ---------------------------------------------------------------------------


class MockClock:
    """Stand-in for time.monotonic(); only moves when advanced."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture()
def clock() -> MockClock:
    return MockClock()


@pytest.fixture()
def backend(clock) -> OfflineBackend:
    return OfflineBackend(clock=clock)


@pytest.fixture()
def noise_track() -> Track:
    return make_track(make_noise(10.0), label="A")


@pytest.fixture()
def click_track() -> Track:
    return make_track(make_clicks(10.0, 0.5), label="clicks")
