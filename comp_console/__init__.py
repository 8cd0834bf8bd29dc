"""
Comp Console
A/B audio comparison: alignment, drift map, beat grid and looped playback.
"""

from .alignment import aligned_duration, find_offset
from .beat_detector import detect_beats
from .config import EngineConfig, load_config
from .diff import compute_diff
from .engine import CompEngine, format_time
from .loader import TrackLoadError, TrackLoader
from .models import (
    ActiveTrack,
    BeatGrid,
    EngineCallbacks,
    EngineOptions,
    FeatureFlags,
    LoopRegion,
    SessionSnapshot,
    Track,
    TrackRef,
)
from .peaks import extract_peaks

__all__ = [
    'CompEngine',
    'EngineConfig',
    'EngineOptions',
    'EngineCallbacks',
    'FeatureFlags',
    'SessionSnapshot',
    'ActiveTrack',
    'BeatGrid',
    'LoopRegion',
    'Track',
    'TrackRef',
    'TrackLoader',
    'TrackLoadError',
    'find_offset',
    'aligned_duration',
    'detect_beats',
    'compute_diff',
    'extract_peaks',
    'format_time',
    'load_config',
]
