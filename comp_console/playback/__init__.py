"""
Playback module for A/B comparison.
Provides the loop-aware scheduler and the audio output backends it drives.
"""

from .backend import (
    AudioBackend,
    OfflineBackend,
    ScheduledSource,
    ScrubBurst,
    SoundDeviceBackend,
)
from .scheduler import LoopHandle, PlaybackScheduler, PlaybackState

__all__ = [
    'AudioBackend',
    'OfflineBackend',
    'ScheduledSource',
    'ScrubBurst',
    'SoundDeviceBackend',
    'PlaybackScheduler',
    'PlaybackState',
    'LoopHandle',
]
