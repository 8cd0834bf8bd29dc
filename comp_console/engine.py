"""
Comparison engine: one A/B session as seen by a UI mount point.

Runs the analysis once the tracks are decoded (alignment, envelopes, drift
map, beat grid), owns display state (zoom, markers, overlay toggles) and
forwards transport actions to the PlaybackScheduler. Nothing here draws;
callers read the exposed series and state and render them.
"""

import logging
import math
from typing import List, Optional, Tuple

import numpy as np

from .alignment import aligned_duration, aligned_shifts, find_offset
from .beat_detector import detect_beats
from .cache import DirectoryTrackCache, MemoryTrackCache, TieredTrackCache, TrackCache
from .config import EngineConfig
from .diff import compute_diff
from .loader import TrackLoader
from .models import (
    ActiveTrack,
    BeatGrid,
    DiffSeries,
    EngineOptions,
    LoopRegion,
    PeakSeries,
    SessionSnapshot,
    Track,
    ZoomRegion,
)
from .peaks import extract_peaks
from .playback import AudioBackend, LoopHandle, PlaybackScheduler, SoundDeviceBackend

logger = logging.getLogger(__name__)


def format_time(seconds: Optional[float]) -> str:
    """m:ss, with 0:00 for empty or invalid input."""
    if not seconds or not math.isfinite(seconds):
        return "0:00"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"


def _clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def default_cache(config: EngineConfig) -> TrackCache:
    """Memory cache, backed by a durable directory when one is configured."""
    if config.cache_dir:
        return TieredTrackCache(MemoryTrackCache(), DirectoryTrackCache(config.cache_dir))
    return MemoryTrackCache()


class CompEngine:
    """
    A/B comparison session.

    Outputs for the renderer: ``peaks()``, ``current_diff()`` /
    ``drift_levels()``, ``beat_grid``, ``playhead_fraction()``,
    ``time_label()``, ``is_playing`` and ``get_state()``. Events go through
    the callbacks in ``options.callbacks``.
    """

    def __init__(
        self,
        track_a: Optional[Track],
        track_b: Optional[Track],
        options: Optional[EngineOptions] = None,
        backend: Optional[AudioBackend] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.options = options or EngineOptions()
        self.config = config or EngineConfig()
        self.features = self.options.features
        self.callbacks = self.options.callbacks
        self.track_a = track_a
        self.track_b = track_b
        self.bins = self.config.peak_bins

        if self.options.alignment and track_a is not None and track_b is not None:
            self.offset = find_offset(track_a, track_b, self.config.alignment)
        else:
            self.offset = 0.0
        self.duration = aligned_duration(track_a, track_b, self.offset)

        # Full-duration envelopes
        self.peaks_a = self._region_peaks(ActiveTrack.A, 0.0, self.duration)
        self.peaks_b = self._region_peaks(ActiveTrack.B, 0.0, self.duration)

        # Drift map; its max is the normalization reference for every view
        self.diff: Optional[DiffSeries] = None
        self.diff_max = 0.0
        if self.features.drift_map and track_a is not None and track_b is not None:
            self.diff = compute_diff(track_a, track_b, self.bins, self.offset, self.duration)
            if self.diff is not None:
                self.diff_max = self.diff.max

        self._beat_grid: Optional[BeatGrid] = None
        self._beat_grid_computed = False
        self.beat_grid_visible = False
        self.drift_map_visible = False

        self.markers: Tuple[float, ...] = ()
        self.ghost_marker: Optional[float] = None

        self.zoom = ZoomRegion.unset()
        self.zoomed_peaks_a: Optional[PeakSeries] = None
        self.zoomed_peaks_b: Optional[PeakSeries] = None
        self.zoomed_diff: Optional[DiffSeries] = None

        if backend is None:
            playback = self.config.playback
            backend = SoundDeviceBackend(
                device=playback.output_device,
                blocksize=playback.blocksize,
                latency=playback.latency,
            )
        self.scheduler = PlaybackScheduler(
            backend,
            track_a=track_a,
            track_b=track_b,
            offset=self.offset,
            duration=self.duration,
            loop=LoopRegion.clamped(self.options.loop_start, self.options.loop_end,
                                    self.config.playback.min_loop_gap),
            config=self.config.playback,
            callbacks=self.callbacks,
        )

        logger.info(f"Session ready: {self.duration:.2f}s aligned, offset {self.offset:+.4f}s"
                    f"{' (single track)' if self.is_single_track else ''}")

        if self.options.snapshot is not None:
            self.restore(self.options.snapshot)

    @classmethod
    def load(
        cls,
        options: EngineOptions,
        loader: Optional[TrackLoader] = None,
        backend: Optional[AudioBackend] = None,
        config: Optional[EngineConfig] = None,
    ) -> "CompEngine":
        """
        Decode the referenced tracks and build an engine.

        Raises:
            TrackLoadError: none of the requested tracks could be loaded
        """
        config = config or EngineConfig()
        if loader is None:
            loader = TrackLoader(cache=default_cache(config),
                                 target_sample_rate=config.sample_rate)

        track_a, track_b = loader.load_pair(options.track_a, options.track_b)
        for ref, track in ((options.track_a, track_a), (options.track_b, track_b)):
            if ref is not None and track is None:
                logger.warning(f"Running without {ref.label or ref.source}")
        return cls(track_a, track_b, options, backend, config)

    # === Properties ===

    @property
    def is_playing(self) -> bool:
        return self.scheduler.is_playing

    @property
    def is_single_track(self) -> bool:
        return self.scheduler.is_single_track

    @property
    def active_track(self) -> ActiveTrack:
        return self.scheduler.active_track

    @property
    def loop(self) -> LoopRegion:
        return self.scheduler.loop

    @property
    def last_playhead(self) -> float:
        return self.scheduler.last_playhead

    @property
    def is_zoomed(self) -> bool:
        return self.zoom.active

    @property
    def beat_grid(self) -> Optional[BeatGrid]:
        """Beat grid of track A, computed on first access."""
        if not self._beat_grid_computed:
            self._beat_grid_computed = True
            if self.features.beat_grid and self.track_a is not None:
                self._beat_grid = detect_beats(self.track_a, self.config.beats)
        return self._beat_grid

    def track_for(self, which: ActiveTrack) -> Optional[Track]:
        return self.track_a if which is ActiveTrack.A else self.track_b

    # === Display data ===

    def peaks(self, which: ActiveTrack) -> Optional[PeakSeries]:
        """Envelope for the current view (zoomed when zoomed)."""
        if which is ActiveTrack.A:
            zoomed, full = self.zoomed_peaks_a, self.peaks_a
        else:
            zoomed, full = self.zoomed_peaks_b, self.peaks_b
        if self.is_zoomed and zoomed is not None:
            return zoomed
        return full

    def current_diff(self) -> Optional[DiffSeries]:
        if self.is_zoomed and self.zoomed_diff is not None:
            return self.zoomed_diff
        return self.diff

    def drift_levels(self) -> Optional[np.ndarray]:
        """Current drift bins scaled 0-1 against the full-track max."""
        diff = self.current_diff()
        if diff is None:
            return None
        return diff.normalized(self.diff_max)

    def visible_beats(self) -> Tuple[float, ...]:
        grid = self.beat_grid
        if grid is None:
            return ()
        return grid.beats_between(self.zoom.from_view(0.0) * self.duration,
                                  self.zoom.from_view(1.0) * self.duration)

    def visible_markers(self) -> List[Tuple[float, float]]:
        """(seconds, view fraction) for every marker inside the view."""
        if self.duration <= 0:
            return []
        return [
            (sec, self.zoom.to_view(sec / self.duration))
            for sec in self.markers
            if self.zoom.is_visible(sec / self.duration)
        ]

    def to_view(self, fraction: float) -> float:
        return self.zoom.to_view(fraction)

    def from_view(self, view_fraction: float) -> float:
        return self.zoom.from_view(view_fraction)

    def playhead_fraction(self) -> float:
        if self.duration <= 0:
            return 0.0
        return self.scheduler.position() / self.duration

    def playhead_view_fraction(self) -> float:
        return self.to_view(self.playhead_fraction())

    def time_label(self) -> str:
        return f"{format_time(self.scheduler.position())} / {format_time(self.duration)}"

    # === Transport ===

    def play(self, offset: Optional[float] = None) -> bool:
        self.ghost_marker = None
        return self.scheduler.play(offset)

    def stop(self):
        was_playing = self.is_playing
        self.scheduler.stop()
        if was_playing:
            self._show_ghost_marker()

    def toggle_play(self) -> bool:
        """Play/pause; resumes from the last playhead when it is inside the loop."""
        if self.is_playing:
            self.stop()
            return False
        if self.track_a is None and self.track_b is None:
            return False

        last = self.last_playhead
        inside = self.scheduler.loop_start_sec < last < self.scheduler.loop_end_sec
        return self.play(last if inside else None)

    def update(self) -> float:
        """Per-frame poll; returns the playhead in seconds."""
        return self.scheduler.update()

    def switch_track(self, track: ActiveTrack) -> bool:
        return self.scheduler.switch_track(track)

    def toggle_track(self) -> bool:
        if self.is_single_track:
            return False
        return self.switch_track(self.active_track.other)

    def seek(self, fraction: float) -> float:
        return self.scheduler.seek(fraction)

    # === Loop ===

    def set_loop_region(self, start: float, end: float) -> LoopRegion:
        return self.scheduler.set_loop_region(start, end)

    def drag_loop_handle(self, handle: LoopHandle, view_fraction: float) -> Optional[LoopRegion]:
        """
        Live loop-handle drag in view coordinates.

        Returns the new loop, or None when the region is locked.
        """
        if self.options.restrict_region:
            logger.info("Loop region is locked")
            return None
        fraction = self.from_view(_clamp01(view_fraction))
        grid = self.beat_grid if self.beat_grid_visible else None
        return self.scheduler.drag_loop_handle(handle, fraction, grid)

    # === Zoom ===

    def zoom_to_loop(self) -> bool:
        """
        Toggle zoom onto the loop region.

        Returns:
            True when the view is zoomed afterwards.
        """
        if self.is_zoomed:
            self.unzoom()
            return False
        if self.loop.span < self.config.playback.zoom_min_span:
            logger.debug(f"Loop span {self.loop.span:.4f} too small to zoom")
            return False

        self.zoom = ZoomRegion.of(self.loop)
        self._compute_zoomed()
        logger.info(f"Zoomed to {self.zoom.start * self.duration:.2f}-"
                    f"{self.zoom.end * self.duration:.2f}s")
        return True

    def unzoom(self):
        self.zoom = ZoomRegion.unset()
        self.zoomed_peaks_a = None
        self.zoomed_peaks_b = None
        self.zoomed_diff = None

    def zoom_to_diff_region(self, view_fraction: float) -> bool:
        """Loop and zoom a few seconds either side of a clicked drift-map spot."""
        if not self.drift_map_visible or self.diff is None or self.duration <= 0:
            return False

        seconds = self.from_view(_clamp01(view_fraction)) * self.duration
        padding = self.config.playback.diff_zoom_padding
        start = max(0.0, seconds - padding)
        end = min(self.duration, seconds + padding)

        self.set_loop_region(start / self.duration, end / self.duration)
        self.unzoom()
        return self.zoom_to_loop()

    # === Scrubbing ===

    def scrub_to(self, view_fraction: float) -> Optional[float]:
        """
        Pointer scrub over the waveform.

        Seeks (kept in the loop) and, when stopped, plays a short preview
        from the pointer position, which may lie outside the loop.
        Returns the new playhead in seconds, or None if scrubbing is off.
        """
        if not self.features.scrubbing or self.duration <= 0:
            return None

        fraction = self.from_view(_clamp01(view_fraction))
        if self.options.restrict_region:
            fraction = max(self.loop.start, min(fraction, self.loop.end))

        target = self.seek(fraction)
        if not self.is_playing:
            self.scheduler.scrub_burst(fraction * self.duration)
        return target

    def end_scrub(self):
        self.scheduler.cancel_scrub()
        if not self.is_playing:
            self._show_ghost_marker()

    # === Markers ===

    def pin_marker(self, seconds: float) -> bool:
        if not self.features.markers:
            return False
        if not math.isfinite(seconds) or not 0 <= seconds <= self.duration:
            return False
        if seconds in self.markers:
            return False

        self.ghost_marker = None
        self.markers = tuple(sorted(self.markers + (seconds,)))
        logger.debug(f"Marker placed at {seconds:.3f}s")
        if self.callbacks.on_marker_place:
            self.callbacks.on_marker_place(seconds)
        return True

    def pin_ghost_marker(self) -> bool:
        if self.ghost_marker is None:
            return False
        return self.pin_marker(self.ghost_marker)

    def remove_marker(self, seconds: float) -> bool:
        if seconds not in self.markers:
            return False

        remaining = list(self.markers)
        remaining.remove(seconds)
        self.markers = tuple(remaining)
        logger.debug(f"Marker removed at {seconds:.3f}s")
        if self.callbacks.on_marker_remove:
            self.callbacks.on_marker_remove(seconds)
        return True

    def drop_marker(self) -> bool:
        """Pin a marker at the playhead while playing."""
        if not self.is_playing:
            return False
        position = self.update()
        if position <= 0:
            return False
        return self.pin_marker(position)

    # === Overlays ===

    def set_beat_grid_visible(self, visible: bool) -> bool:
        self.beat_grid_visible = bool(visible) and self.features.beat_grid
        return self.beat_grid_visible

    def toggle_beat_grid(self) -> bool:
        return self.set_beat_grid_visible(not self.beat_grid_visible)

    def set_drift_map_visible(self, visible: bool) -> bool:
        self.drift_map_visible = bool(visible) and self.features.drift_map
        return self.drift_map_visible

    def toggle_drift_map(self) -> bool:
        return self.set_drift_map_visible(not self.drift_map_visible)

    # === Session state ===

    def get_state(self) -> SessionSnapshot:
        """Serializable snapshot of everything needed to resume this session."""
        return SessionSnapshot(
            active_track=self.active_track,
            loop_start=self.loop.start,
            loop_end=self.loop.end,
            is_zoomed=self.zoom.active,
            zoom_start=self.zoom.start,
            zoom_end=self.zoom.end,
            beat_grid_visible=self.beat_grid_visible,
            drift_map_visible=self.drift_map_visible,
            markers=self.markers,
            last_playhead=self.scheduler.position(),
        )

    def restore(self, snapshot: SessionSnapshot):
        """
        Apply a snapshot from a previous session.

        No track-switch or marker events fire. While playing, the loop change
        re-anchors playback inside the restored loop.
        """
        if self.track_for(snapshot.active_track) is not None:
            self.scheduler.active_track = snapshot.active_track

        self.set_beat_grid_visible(snapshot.beat_grid_visible)
        self.set_drift_map_visible(snapshot.drift_map_visible)

        if self.features.markers:
            self.markers = tuple(sorted(
                {sec for sec in snapshot.markers if 0 <= sec <= self.duration}
            ))

        self.scheduler.set_loop_region(snapshot.loop_start, snapshot.loop_end)

        self.unzoom()
        if snapshot.is_zoomed:
            zoom_start = _clamp01(snapshot.zoom_start)
            zoom_end = _clamp01(snapshot.zoom_end)
            if zoom_end > zoom_start:
                self.zoom = ZoomRegion(zoom_start, zoom_end, True)
                self._compute_zoomed()

        if not self.is_playing:
            self.scheduler.last_playhead = max(0.0, min(snapshot.last_playhead, self.duration))
        logger.info("Restored session state")

    def close(self):
        """Release playback resources."""
        self.scheduler.close()

    # === Private Methods ===

    def _region_peaks(self, which: ActiveTrack, start: float, end: float) -> Optional[PeakSeries]:
        track = self.track_for(which)
        if track is None:
            return None
        shift = aligned_shifts(self.offset)[0 if which is ActiveTrack.A else 1]
        return extract_peaks(track, self.bins, start + shift, end + shift)

    def _compute_zoomed(self):
        start = self.zoom.start * self.duration
        end = self.zoom.end * self.duration
        self.zoomed_peaks_a = self._region_peaks(ActiveTrack.A, start, end)
        self.zoomed_peaks_b = self._region_peaks(ActiveTrack.B, start, end)
        self.zoomed_diff = None
        if self.features.drift_map and self.track_a is not None and self.track_b is not None:
            # diff_max stays the full-track value so both views share one scale
            self.zoomed_diff = compute_diff(self.track_a, self.track_b, self.bins,
                                            self.offset, self.duration, start, end)

    def _show_ghost_marker(self):
        if self.features.markers and self.last_playhead > 0:
            self.ghost_marker = self.last_playhead
