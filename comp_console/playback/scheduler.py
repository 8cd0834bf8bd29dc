"""
Playback scheduler for A/B comparison.
Keeps two track sources phase-locked inside a loop region and handles
seeking, track switching and scrub previews.
"""

import logging
import math
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..alignment import aligned_duration, aligned_shifts
from ..config import PlaybackConfig
from ..models import ActiveTrack, BeatGrid, EngineCallbacks, LoopRegion, Track
from .backend import AudioBackend, ScheduledSource, ScrubBurst

logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"


class LoopHandle(Enum):
    START = "start"
    END = "end"


class PlaybackScheduler:
    """
    Two-track looped playback engine.

    Both tracks are always scheduled together against one transport
    anchor; only their gains change when the active track switches, so a
    switch is instant and sample-accurate. Call update() regularly (e.g.
    every animation frame) to refresh the playhead.
    """

    def __init__(
        self,
        backend: AudioBackend,
        track_a: Optional[Track] = None,
        track_b: Optional[Track] = None,
        offset: float = 0.0,
        duration: Optional[float] = None,
        loop: Optional[LoopRegion] = None,
        active_track: ActiveTrack = ActiveTrack.A,
        config: Optional[PlaybackConfig] = None,
        callbacks: Optional[EngineCallbacks] = None,
    ):
        self.backend = backend
        self.track_a = track_a
        self.track_b = track_b
        self.offset = offset
        self.config = config or PlaybackConfig()
        self.callbacks = callbacks or EngineCallbacks()

        if duration is None:
            duration = aligned_duration(track_a, track_b, offset)
        self.duration: float = duration
        self.loop: LoopRegion = loop or LoopRegion()

        self.state: PlaybackState = PlaybackState.STOPPED
        self.active_track: ActiveTrack = active_track
        if self.track_for(active_track) is None and self.track_for(active_track.other) is not None:
            self.active_track = active_track.other

        # Transport timing
        self.last_playhead: float = 0.0
        self._anchor: Optional[float] = None   # Backend time when playback started
        self._start_offset: float = 0.0        # Position when playback started

    # === Properties ===

    @property
    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING

    @property
    def is_single_track(self) -> bool:
        return self.track_a is None or self.track_b is None

    @property
    def loop_start_sec(self) -> float:
        return self.loop.start * self.duration

    @property
    def loop_end_sec(self) -> float:
        return self.loop.end * self.duration

    def track_for(self, which: ActiveTrack) -> Optional[Track]:
        return self.track_a if which is ActiveTrack.A else self.track_b

    def shift_for(self, which: ActiveTrack) -> float:
        a_shift, b_shift = aligned_shifts(self.offset)
        return a_shift if which is ActiveTrack.A else b_shift

    # === Transport ===

    def play(self, offset: Optional[float] = None) -> bool:
        """
        Start both sources from ``offset`` seconds (default: loop start).

        Any running session is stopped first, so the previous sources are
        released before new ones are scheduled.
        """
        if self.track_a is None and self.track_b is None:
            logger.warning("No tracks loaded")
            return False

        self.backend.stop_burst()
        self.stop()

        start = self.loop_start_sec if offset is None else offset
        sources = self._build_sources(start)
        self._anchor = self.backend.start_sources(sources)
        self._start_offset = start
        self.state = PlaybackState.PLAYING

        logger.info(f"Playing from {start:.3f}s (loop {self.loop_start_sec:.3f}-"
                    f"{self.loop_end_sec:.3f}s, active {self.active_track.value})")
        self._notify(self.callbacks.on_play)
        return True

    def stop(self):
        """Stop playback, keeping the playhead for a later resume."""
        was_playing = self.is_playing
        if was_playing:
            self.last_playhead = self.position()

        self.backend.stop_sources()
        self._anchor = None
        self.state = PlaybackState.STOPPED

        if was_playing:
            logger.info(f"Stopped at {self.last_playhead:.3f}s")
            self._notify(self.callbacks.on_stop)

    def position(self) -> float:
        """Current playhead in seconds on the aligned timeline."""
        if not self.is_playing or self._anchor is None:
            return self.last_playhead

        loop_start = self.loop_start_sec
        loop_len = self.loop_end_sec - loop_start
        if loop_len <= 0:
            return loop_start

        elapsed = self.backend.now() - self._anchor
        raw = self._start_offset + elapsed
        if raw >= self.loop_end_sec:
            return loop_start + math.fmod(raw - loop_start, loop_len)
        return raw

    def update(self) -> float:
        """Poll the transport. Call this every frame."""
        if self.is_playing:
            self.last_playhead = self.position()
        return self.last_playhead

    def switch_track(self, track: ActiveTrack) -> bool:
        """Route output to ``track`` without interrupting playback."""
        track = ActiveTrack(track)
        if self.track_for(track) is None:
            return False

        self.active_track = track
        self._apply_gains()
        logger.debug(f"Active track: {track.value}")
        self._notify(self.callbacks.on_track_switch, track)
        return True

    def seek(self, fraction: float) -> float:
        """
        Move the playhead to ``fraction`` of the duration, kept inside the loop.

        Returns:
            The clamped target in seconds.
        """
        try:
            fraction = float(fraction)
        except (TypeError, ValueError):
            fraction = self.loop.start
        if not math.isfinite(fraction):
            fraction = self.loop.start

        target = max(self.loop_start_sec, min(fraction * self.duration, self.loop_end_sec))
        self.last_playhead = target
        if self.is_playing:
            self.play(target)

        logger.debug(f"Seeked to {target:.3f}s")
        self._notify(self.callbacks.on_seek, target)
        return target

    # === Loop ===

    def set_loop_region(self, start: float, end: float) -> LoopRegion:
        """
        Replace the loop bounds (fractions). While playing, playback is
        re-anchored at the current playhead clamped into the new bounds.
        """
        position = self.position() if self.is_playing else None
        self.loop = LoopRegion.clamped(start, end, self.config.min_loop_gap)

        if position is not None:
            self.play(max(self.loop_start_sec, min(position, self.loop_end_sec)))
        return self.loop

    def drag_loop_handle(
        self,
        handle: LoopHandle,
        fraction: float,
        beat_grid: Optional[BeatGrid] = None,
    ) -> LoopRegion:
        """Move one loop handle live, optionally snapping to the nearest beat."""
        if beat_grid is not None and self.duration > 0:
            fraction = beat_grid.snap(fraction * self.duration) / self.duration

        gap = self.config.min_loop_gap
        if LoopHandle(handle) is LoopHandle.START:
            loop = self.loop.with_start(fraction, gap)
        else:
            loop = self.loop.with_end(fraction, gap)
        return self.set_loop_region(loop.start, loop.end)

    # === Scrubbing ===

    def scrub_burst(self, position: float) -> bool:
        """Preview a few milliseconds of the active track at ``position`` (stopped only)."""
        if self.is_playing:
            return False
        track = self.track_for(self.active_track)
        if track is None:
            return False

        self.backend.stop_burst()
        self.backend.play_burst(ScrubBurst(
            samples=track.samples,
            sample_rate=track.sample_rate,
            start=position + self.shift_for(self.active_track),
            duration=self.config.scrub_burst_seconds,
            gain=self.config.scrub_gain,
        ))
        return True

    def cancel_scrub(self):
        self.backend.stop_burst()

    def close(self):
        """Stop everything and release the backend."""
        self.stop()
        self.backend.stop_burst()
        self.backend.close()

    def get_status(self) -> Dict[str, Any]:
        """Current transport status for display or logging."""
        return {
            "state": self.state.value,
            "position": self.position(),
            "duration": self.duration,
            "active_track": self.active_track.value,
            "loop": self.loop.to_dict(),
            "single_track": self.is_single_track,
        }

    # === Private Methods ===

    def _build_sources(self, start: float) -> List[ScheduledSource]:
        sources = []
        for which in (ActiveTrack.A, ActiveTrack.B):
            track = self.track_for(which)
            if track is None:
                continue
            shift = self.shift_for(which)
            sources.append(ScheduledSource(
                track=which,
                samples=track.samples,
                sample_rate=track.sample_rate,
                start=start + shift,
                loop_start=self.loop_start_sec + shift,
                loop_end=min(track.duration, self.loop_end_sec + shift),
                gain=1.0 if which is self.active_track else 0.0,
            ))
        return sources

    def _apply_gains(self):
        if not self.is_playing:
            return
        for which in (ActiveTrack.A, ActiveTrack.B):
            if self.track_for(which) is not None:
                self.backend.set_gain(which, 1.0 if which is self.active_track else 0.0)

    def _notify(self, callback: Optional[Callable], *args):
        if callback:
            callback(*args)
