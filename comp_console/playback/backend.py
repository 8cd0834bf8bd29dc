"""
Audio output port for the playback scheduler.

The scheduler only talks to ``AudioBackend``. Backends provided here:
1. OfflineBackend - headless transport driven by a clock; renders on demand
2. SoundDeviceBackend - real output through one sounddevice OutputStream

Both mix every scheduled voice from one shared frame counter, so the two
sources of a session always advance together and can never drift apart.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from ..models import ActiveTrack

logger = logging.getLogger(__name__)


@dataclass
class ScheduledSource:
    """One looping track source of a playback session."""
    track: ActiveTrack
    samples: np.ndarray
    sample_rate: int
    start: float        # seconds into the buffer
    loop_start: float   # seconds into the buffer
    loop_end: float
    gain: float = 1.0


@dataclass
class ScrubBurst:
    """A short one-shot preview with a linear fade-out."""
    samples: np.ndarray
    sample_rate: int
    start: float            # seconds into the buffer
    duration: float = 0.08
    gain: float = 0.8


class LoopingVoice:
    """
    Renders a ScheduledSource at an output rate, wrapping inside its loop.

    Position is kept in source samples; a source at a different rate than
    the output is stepped (nearest sample).
    """

    def __init__(self, source: ScheduledSource, output_rate: int):
        self.track = source.track
        self.gain = source.gain
        self._samples = source.samples
        sr = source.sample_rate
        self._step = sr / output_rate if output_rate else 1.0
        self._loop_start = source.loop_start * sr
        self._loop_end = min(source.loop_end * sr, len(self._samples))
        self._loop_len = self._loop_end - self._loop_start
        self._pos = source.start * sr

    def _wrap(self, positions):
        if self._loop_len <= 0:
            return positions
        return np.where(
            positions >= self._loop_end,
            self._loop_start + np.mod(positions - self._loop_start, self._loop_len),
            positions,
        )

    def render(self, frames: int) -> np.ndarray:
        positions = self._wrap(self._pos + np.arange(frames) * self._step)
        idx = positions.astype(np.int64)
        out = np.zeros(frames, dtype=np.float32)
        valid = (idx >= 0) & (idx < len(self._samples))
        out[valid] = self._samples[idx[valid]] * self.gain

        self._pos = float(self._wrap(np.array([self._pos + frames * self._step]))[0])
        return out


class BurstVoice:
    """Renders a ScrubBurst; ``done`` once its duration has elapsed."""

    def __init__(self, burst: ScrubBurst, output_rate: int):
        sr = burst.sample_rate
        self._samples = burst.samples
        self._step = sr / output_rate if output_rate else 1.0
        self._pos = burst.start * sr
        self._gain = burst.gain
        self._total = max(1, int(round(burst.duration * output_rate)))
        self._rendered = 0

    @property
    def done(self) -> bool:
        return self._rendered >= self._total

    def render(self, frames: int) -> np.ndarray:
        out = np.zeros(frames, dtype=np.float32)
        n = min(frames, self._total - self._rendered)
        if n <= 0:
            return out

        idx = (self._pos + np.arange(n) * self._step).astype(np.int64)
        valid = (idx >= 0) & (idx < len(self._samples))
        # Linear fade from gain to silence across the whole burst
        ramp = self._gain * (1.0 - (self._rendered + np.arange(n)) / self._total)
        chunk = np.zeros(n, dtype=np.float32)
        chunk[valid] = self._samples[idx[valid]] * ramp[valid]
        out[:n] = chunk

        self._pos += n * self._step
        self._rendered += n
        return out


class AudioBackend(ABC):
    """Scheduling primitive used by PlaybackScheduler."""

    @abstractmethod
    def now(self) -> float:
        """Transport clock in seconds."""

    @abstractmethod
    def start_sources(self, sources: List[ScheduledSource]) -> float:
        """Start all ``sources`` together; returns the shared transport anchor."""

    @abstractmethod
    def stop_sources(self) -> None:
        """Stop and release every source of the current session."""

    @abstractmethod
    def set_gain(self, track: ActiveTrack, gain: float) -> None:
        """Re-route one running source without re-scheduling it."""

    @abstractmethod
    def play_burst(self, burst: ScrubBurst) -> None:
        """Play a one-shot preview, replacing any outstanding burst."""

    @abstractmethod
    def stop_burst(self) -> None:
        """Cancel the outstanding burst, if any."""

    def close(self) -> None:
        """Release device resources."""


class MixingBackend(AudioBackend):
    """
    Shared voice bookkeeping for backends that render samples themselves.

    Voice lists are swapped under a lock so the render thread always sees
    either the complete old session or the complete new one.
    """

    def __init__(self, sample_rate: Optional[int] = None):
        self.sample_rate = sample_rate
        self._lock = threading.Lock()
        self._voices: List[LoopingVoice] = []
        self._burst: Optional[BurstVoice] = None

    @property
    def active_voices(self) -> int:
        return len(self._voices)

    @property
    def burst_active(self) -> bool:
        return self._burst is not None and not self._burst.done

    def _output_rate(self, sample_rate: int) -> int:
        if self.sample_rate is None:
            self.sample_rate = sample_rate
        return self.sample_rate

    def start_sources(self, sources: List[ScheduledSource]) -> float:
        if not sources:
            return self.now()
        rate = self._output_rate(sources[0].sample_rate)
        voices = [LoopingVoice(source, rate) for source in sources]
        with self._lock:
            self._voices = voices
            anchor = self.now()
        logger.debug(f"Started {len(voices)} sources at {anchor:.4f}s")
        return anchor

    def stop_sources(self) -> None:
        with self._lock:
            self._voices = []

    def set_gain(self, track: ActiveTrack, gain: float) -> None:
        with self._lock:
            for voice in self._voices:
                if voice.track is track:
                    voice.gain = gain

    def play_burst(self, burst: ScrubBurst) -> None:
        voice = BurstVoice(burst, self._output_rate(burst.sample_rate))
        with self._lock:
            self._burst = voice

    def stop_burst(self) -> None:
        with self._lock:
            self._burst = None

    def mix(self, frames: int) -> np.ndarray:
        """Render the next ``frames`` output samples (mono)."""
        out = np.zeros(frames, dtype=np.float32)
        with self._lock:
            for voice in self._voices:
                out += voice.render(frames)
            if self._burst is not None:
                out += self._burst.render(frames)
                if self._burst.done:
                    self._burst = None
        return out


class OfflineBackend(MixingBackend):
    """
    Headless backend: nothing reaches a device.

    The transport clock comes from ``clock`` (``time.monotonic`` by
    default), so tests can drive playback with a fake clock. Audio can
    still be pulled with ``render``.
    """

    def __init__(self, sample_rate: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(sample_rate)
        self._clock = clock
        self.gains: Dict[ActiveTrack, float] = {}
        self.scheduled: List[ScheduledSource] = []
        self.start_calls = 0
        self.last_burst: Optional[ScrubBurst] = None

    def now(self) -> float:
        return self._clock()

    def start_sources(self, sources: List[ScheduledSource]) -> float:
        self.start_calls += 1
        self.scheduled = list(sources)
        self.gains = {source.track: source.gain for source in sources}
        return super().start_sources(sources)

    def stop_sources(self) -> None:
        self.scheduled = []
        self.gains = {}
        super().stop_sources()

    def set_gain(self, track: ActiveTrack, gain: float) -> None:
        if track in self.gains:
            self.gains[track] = gain
        super().set_gain(track, gain)

    def play_burst(self, burst: ScrubBurst) -> None:
        self.last_burst = burst
        super().play_burst(burst)

    def render(self, frames: int) -> np.ndarray:
        return self.mix(frames)


class SoundDeviceBackend(MixingBackend):
    """
    Output through a single sounddevice OutputStream.

    The stream callback mixes all voices; the transport clock is the number
    of frames rendered so far divided by the stream rate.
    """

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        device: Optional[int] = None,
        blocksize: int = 512,
        latency: str = "low",
    ):
        super().__init__(sample_rate)
        self.device = device
        self.blocksize = blocksize
        self.latency = latency
        self._stream = None
        self._frames_rendered = 0

    def now(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self._frames_rendered / self.sample_rate

    def _audio_callback(self, outdata, frames, time_info, status):
        if status:
            logger.debug(f"Output status: {status}")
        outdata[:, 0] = self.mix(frames)
        self._frames_rendered += frames

    def _ensure_stream(self):
        if self._stream is not None:
            return
        import sounddevice as sd

        try:
            self._stream = sd.OutputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                dtype=np.float32,
                blocksize=self.blocksize,
                latency=self.latency,
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as e:
            logger.error(f"Failed to open output stream: {e}")
            self._stream = None
            raise
        logger.info(f"Output stream started @ {self.sample_rate}Hz (device: {self.device})")

    def start_sources(self, sources: List[ScheduledSource]) -> float:
        if sources:
            self._output_rate(sources[0].sample_rate)
            self._ensure_stream()
        return super().start_sources(sources)

    def play_burst(self, burst: ScrubBurst) -> None:
        self._output_rate(burst.sample_rate)
        self._ensure_stream()
        super().play_burst(burst)

    def close(self) -> None:
        self.stop_sources()
        self.stop_burst()
        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.debug(f"Error stopping stream: {e}")
            self._stream = None
