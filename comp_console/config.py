"""
Comp Console configuration - analysis and playback tuning.

Provides:
- Type-safe configuration dataclasses for every analysis stage
- Named presets for stricter or more lenient matching
- Loading/saving from JSON/environment
"""

import json
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class AlignmentConfig:
    """Cross-correlation alignment configuration."""

    # Durations closer than this are assumed to be aligned already
    same_duration_tolerance: float = 0.05  # seconds

    # Silence-trim strategy
    silence_threshold: float = 0.01  # First sample above this is "audio start"
    pattern_seconds: float = 0.5  # Fine pattern length
    refine_radius: float = 0.1  # +/- seconds searched around a candidate
    correlation_threshold: float = 0.7  # Normalized correlation needed to accept

    # Coarse bidirectional fallback
    coarse_rate: int = 4000  # Effective sample rate after downsampling (Hz)
    coarse_pattern_seconds: float = 4.0
    coarse_search_seconds: float = 60.0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AlignmentConfig":
        """Create from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class BeatConfig:
    """Onset and tempo detection configuration."""

    frame_seconds: float = 0.02  # Energy window
    hop_seconds: float = 0.01  # Energy hop
    threshold_window_seconds: float = 1.0  # +/- window for the local flux mean
    threshold_multiplier: float = 1.5  # Adaptive threshold = mean * multiplier + epsilon
    threshold_epsilon: float = 0.0001
    min_onset_gap: float = 0.1  # seconds between onsets

    min_onsets: int = 4
    min_intervals: int = 2
    min_interval: float = 0.2  # 300 BPM
    max_interval: float = 2.0  # 30 BPM

    min_bpm: int = 60
    max_bpm: int = 200
    beats_per_bar: int = 4

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "BeatConfig":
        """Create from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class PlaybackConfig:
    """Loop, zoom and scrub behaviour."""

    min_loop_gap: float = 0.02  # Smallest loop, as a fraction of duration
    zoom_min_span: float = 0.02  # Loops narrower than this cannot be zoomed
    diff_zoom_padding: float = 2.0  # seconds either side of a clicked drift region

    scrub_burst_seconds: float = 0.08
    scrub_gain: float = 0.8

    # Output stream (sounddevice backend)
    output_device: Optional[int] = None
    blocksize: int = 512
    latency: str = "low"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PlaybackConfig":
        """Create from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


# Pre-tuned alignment profiles
PRESETS: Dict[str, AlignmentConfig] = {
    "default": AlignmentConfig(),
    "strict": AlignmentConfig(
        correlation_threshold=0.85,  # Only trust near-identical openings
        refine_radius=0.05,
    ),
    "lenient": AlignmentConfig(
        silence_threshold=0.02,  # Noisy lead-ins (vinyl rips, room tone)
        correlation_threshold=0.5,
        refine_radius=0.2,
        coarse_pattern_seconds=6.0,
    ),
}


def get_preset(name: str) -> AlignmentConfig:
    """Get a copy of a preset by name, returns 'default' if not found."""
    return replace(PRESETS.get(name.lower(), PRESETS["default"]))


def list_presets() -> List[str]:
    """List available preset names."""
    return list(PRESETS.keys())


@dataclass
class EngineConfig:
    """Complete engine configuration."""

    alignment: AlignmentConfig = field(default_factory=AlignmentConfig)
    beats: BeatConfig = field(default_factory=BeatConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)

    # Bins shared by peaks, drift map and beat overlay
    peak_bins: int = 300

    # Decode target; None keeps each file's native rate
    sample_rate: Optional[int] = None

    # Durable decoded-track cache
    cache_dir: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "alignment": self.alignment.to_dict(),
            "beats": self.beats.to_dict(),
            "playback": self.playback.to_dict(),
            "peak_bins": self.peak_bins,
            "sample_rate": self.sample_rate,
            "cache_dir": self.cache_dir,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        config = cls()
        if "alignment" in data:
            config.alignment = AlignmentConfig.from_dict(data["alignment"])
        if "beats" in data:
            config.beats = BeatConfig.from_dict(data["beats"])
        if "playback" in data:
            config.playback = PlaybackConfig.from_dict(data["playback"])
        config.peak_bins = int(data.get("peak_bins", 300))
        config.sample_rate = data.get("sample_rate")
        config.cache_dir = data.get("cache_dir")
        return config

    @classmethod
    def from_env(cls, base: Optional["EngineConfig"] = None) -> "EngineConfig":
        """Apply COMP_* environment overrides on top of ``base`` (or defaults)."""
        config = base if base is not None else cls()

        preset = os.environ.get("COMP_ALIGNMENT_PRESET")
        if preset:
            config.alignment = get_preset(preset)

        if "COMP_PEAK_BINS" in os.environ:
            config.peak_bins = int(os.environ["COMP_PEAK_BINS"])
        if "COMP_SAMPLE_RATE" in os.environ:
            config.sample_rate = int(os.environ["COMP_SAMPLE_RATE"])
        if "COMP_CACHE_DIR" in os.environ:
            config.cache_dir = os.environ["COMP_CACHE_DIR"]
        if "COMP_OUTPUT_DEVICE" in os.environ:
            config.playback.output_device = int(os.environ["COMP_OUTPUT_DEVICE"])
        return config

    def save(self, path: Path) -> None:
        """Save configuration to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Path) -> "EngineConfig":
        """Load configuration from JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data)


# Default config file location
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "comp_console" / "config.json"


def load_config(path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from file (or defaults), then apply environment overrides."""
    if path is None:
        path = DEFAULT_CONFIG_PATH
    return EngineConfig.from_env(EngineConfig.load(path))


def save_config(config: EngineConfig, path: Optional[Path] = None) -> None:
    """Save configuration to file."""
    if path is None:
        path = DEFAULT_CONFIG_PATH
    config.save(path)
