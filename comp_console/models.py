"""
Data models for the comparison engine.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np


class ActiveTrack(Enum):
    A = "A"
    B = "B"

    @property
    def other(self) -> "ActiveTrack":
        return ActiveTrack.B if self is ActiveTrack.A else ActiveTrack.A


@dataclass(frozen=True, eq=False)
class Track:
    """
    One decoded channel of audio.

    Multi-channel input is reduced to channel 0 (the reference channel).
    The sample array is copied and made read-only so every analysis stage
    can borrow it safely.
    """
    samples: np.ndarray
    sample_rate: int
    label: str = ""
    source: Optional[str] = None

    def __post_init__(self):
        data = np.array(self.samples, dtype=np.float32)
        if data.ndim > 1:
            data = np.ascontiguousarray(data[:, 0])
        data.setflags(write=False)
        object.__setattr__(self, "samples", data)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @property
    def num_samples(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        """Length in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / self.sample_rate

    def __repr__(self) -> str:
        return (f"Track(label={self.label!r}, sample_rate={self.sample_rate}, "
                f"duration={self.duration:.3f}s)")


@dataclass(frozen=True)
class TrackRef:
    """Where a track comes from and how to label it."""
    source: str
    label: str = ""

    def to_dict(self) -> dict:
        return {"source": self.source, "label": self.label}

    @classmethod
    def from_dict(cls, data: dict) -> 'TrackRef':
        return cls(source=data["source"], label=data.get("label", ""))


@dataclass(frozen=True, eq=False)
class PeakSeries:
    """Fixed-length envelope (max |sample| per bin) of one track region."""
    values: np.ndarray
    start: float = 0.0   # seconds, track-native time
    end: float = 0.0

    def __len__(self) -> int:
        return len(self.values)

    @property
    def max(self) -> float:
        return float(self.values.max()) if len(self.values) else 0.0


@dataclass(frozen=True, eq=False)
class DiffSeries:
    """Per-bin RMS of the sample difference between two aligned tracks."""
    bins: np.ndarray
    max: float
    region_start: float = 0.0   # seconds, aligned timeline
    region_end: float = 0.0

    def __len__(self) -> int:
        return len(self.bins)

    def normalized(self, reference: Optional[float] = None) -> np.ndarray:
        """
        Scale bins into 0-1 against ``reference``.

        Zoomed recomputations pass the full-track max so both views share
        one scale.
        """
        ref = self.max if reference is None else reference
        if ref <= 0:
            return np.zeros_like(self.bins)
        return np.clip(self.bins / ref, 0.0, 1.0)


@dataclass(frozen=True)
class BeatGrid:
    """Quantized beat positions for one track."""
    bpm: int
    beats: Tuple[float, ...]
    first_downbeat: float
    beats_per_bar: int = 4

    @property
    def beat_interval(self) -> float:
        return 60.0 / self.bpm

    @property
    def bar_interval(self) -> float:
        return self.beat_interval * self.beats_per_bar

    def snap(self, seconds: float) -> float:
        """Return the beat closest to ``seconds`` (or ``seconds`` if the grid is empty)."""
        if not self.beats:
            return seconds
        beats = np.asarray(self.beats)
        idx = int(np.searchsorted(beats, seconds))
        candidates = [i for i in (idx - 1, idx) if 0 <= i < len(beats)]
        best = min(candidates, key=lambda i: (abs(beats[i] - seconds), i))
        return float(beats[best])

    def bar_number(self, seconds: float) -> int:
        """Zero-based bar containing ``seconds``, counted from the first downbeat."""
        return int(math.floor((seconds - self.first_downbeat) / self.bar_interval))

    def is_downbeat(self, index: int) -> bool:
        return index % self.beats_per_bar == 0

    def beats_between(self, start: float, end: float) -> Tuple[float, ...]:
        """Beats inside [start, end], for overlaying a (zoomed) view."""
        return tuple(t for t in self.beats if start <= t <= end)

    def to_dict(self) -> dict:
        return {
            "bpm": self.bpm,
            "beats": list(self.beats),
            "beats_per_bar": self.beats_per_bar,
            "first_downbeat": self.first_downbeat,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'BeatGrid':
        return cls(
            bpm=int(data["bpm"]),
            beats=tuple(float(t) for t in data.get("beats", [])),
            first_downbeat=float(data.get("first_downbeat", 0.0)),
            beats_per_bar=int(data.get("beats_per_bar", 4)),
        )


def _finite_or(value: Any, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


@dataclass(frozen=True)
class LoopRegion:
    """
    Loop bounds as fractions of the aligned duration.

    Always satisfies 0 <= start < end <= 1 and end - start >= min_gap when
    built through ``clamped``.
    """
    start: float = 0.0
    end: float = 1.0

    @classmethod
    def clamped(cls, start: Any, end: Any, min_gap: float = 0.02) -> 'LoopRegion':
        """Repair any pair of fractions into a valid region."""
        start = min(1.0, max(0.0, _finite_or(start, 0.0)))
        end = min(1.0, max(0.0, _finite_or(end, 1.0)))
        if start > end:
            start, end = end, start
        if end - start < min_gap:
            end = start + min_gap
            if end > 1.0:
                end = 1.0
                start = 1.0 - min_gap
        # Rounding can leave the span an ulp short of min_gap
        while end - start < min_gap:
            if end < 1.0:
                end = min(1.0, math.nextafter(end, 2.0))
            else:
                start = math.nextafter(start, -1.0)
        return cls(start, end)

    def with_start(self, fraction: float, min_gap: float = 0.02) -> 'LoopRegion':
        """Move the start handle; it may not come within min_gap of the end."""
        start = max(0.0, min(_finite_or(fraction, self.start), self.end - min_gap))
        return LoopRegion(start, self.end)

    def with_end(self, fraction: float, min_gap: float = 0.02) -> 'LoopRegion':
        """Move the end handle; it may not come within min_gap of the start."""
        end = min(1.0, max(_finite_or(fraction, self.end), self.start + min_gap))
        return LoopRegion(self.start, end)

    @property
    def span(self) -> float:
        return self.end - self.start

    def contains(self, fraction: float) -> bool:
        return self.start <= fraction <= self.end

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class ZoomRegion:
    """Sub-range of the duration that the view is re-based to, or unset."""
    start: float = 0.0
    end: float = 1.0
    active: bool = False

    @classmethod
    def unset(cls) -> 'ZoomRegion':
        return cls()

    @classmethod
    def of(cls, loop: LoopRegion) -> 'ZoomRegion':
        return cls(loop.start, loop.end, True)

    def to_view(self, fraction: float) -> float:
        """Full-duration fraction -> view fraction."""
        if not self.active:
            return fraction
        span = self.end - self.start
        if span <= 0:
            return 0.0
        return (fraction - self.start) / span

    def from_view(self, view_fraction: float) -> float:
        """View fraction -> full-duration fraction."""
        if not self.active:
            return view_fraction
        return self.start + view_fraction * (self.end - self.start)

    def is_visible(self, fraction: float, tolerance: float = 0.01) -> bool:
        view = self.to_view(fraction)
        return -tolerance <= view <= 1.0 + tolerance


@dataclass
class FeatureFlags:
    """Optional engine features."""
    scrubbing: bool = True
    beat_grid: bool = True
    drift_map: bool = True
    markers: bool = True

    def to_dict(self) -> dict:
        return {
            "scrubbing": self.scrubbing,
            "beat_grid": self.beat_grid,
            "drift_map": self.drift_map,
            "markers": self.markers,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'FeatureFlags':
        return cls(**{k: bool(v) for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class SessionSnapshot:
    """Serializable engine state, restorable into a new engine."""
    active_track: ActiveTrack = ActiveTrack.A
    loop_start: float = 0.0
    loop_end: float = 1.0
    is_zoomed: bool = False
    zoom_start: float = 0.0
    zoom_end: float = 1.0
    beat_grid_visible: bool = False
    drift_map_visible: bool = False
    markers: Tuple[float, ...] = ()
    last_playhead: float = 0.0

    def to_dict(self) -> dict:
        return {
            "active_track": self.active_track.value,
            "loop_start": self.loop_start,
            "loop_end": self.loop_end,
            "is_zoomed": self.is_zoomed,
            "zoom_start": self.zoom_start,
            "zoom_end": self.zoom_end,
            "beat_grid_visible": self.beat_grid_visible,
            "drift_map_visible": self.drift_map_visible,
            "markers": list(self.markers),
            "last_playhead": self.last_playhead,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionSnapshot':
        try:
            active = ActiveTrack(data.get("active_track", "A"))
        except ValueError:
            active = ActiveTrack.A
        markers = tuple(
            float(m) for m in data.get("markers", [])
            if isinstance(m, (int, float)) and not isinstance(m, bool) and math.isfinite(m)
        )
        return cls(
            active_track=active,
            loop_start=_finite_or(data.get("loop_start"), 0.0),
            loop_end=_finite_or(data.get("loop_end"), 1.0),
            is_zoomed=bool(data.get("is_zoomed", False)),
            zoom_start=_finite_or(data.get("zoom_start"), 0.0),
            zoom_end=_finite_or(data.get("zoom_end"), 1.0),
            beat_grid_visible=bool(data.get("beat_grid_visible", False)),
            drift_map_visible=bool(data.get("drift_map_visible", False)),
            markers=markers,
            last_playhead=max(0.0, _finite_or(data.get("last_playhead"), 0.0)),
        )


@dataclass
class EngineCallbacks:
    """Event hooks, fired synchronously at the matching transition."""
    on_play: Optional[Callable[[], None]] = None
    on_stop: Optional[Callable[[], None]] = None
    on_track_switch: Optional[Callable[[ActiveTrack], None]] = None
    on_seek: Optional[Callable[[float], None]] = None
    on_marker_place: Optional[Callable[[float], None]] = None
    on_marker_remove: Optional[Callable[[float], None]] = None


@dataclass
class EngineOptions:
    """Everything a mount point hands the engine at construction."""
    track_a: Optional[TrackRef] = None
    track_b: Optional[TrackRef] = None
    alignment: bool = False
    restrict_region: bool = False
    loop_start: float = 0.0
    loop_end: float = 1.0
    features: FeatureFlags = field(default_factory=FeatureFlags)
    snapshot: Optional[SessionSnapshot] = None
    callbacks: EngineCallbacks = field(default_factory=EngineCallbacks)
