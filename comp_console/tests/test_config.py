"""
Tests for engine configuration: presets, JSON persistence and environment
overrides.
"""

from comp_console.config import (
    AlignmentConfig,
    BeatConfig,
    EngineConfig,
    PlaybackConfig,
    get_preset,
    list_presets,
    load_config,
    save_config,
)


class TestDefaults:

    def test_alignment_defaults(self):
        config = AlignmentConfig()
        assert config.silence_threshold == 0.01
        assert config.correlation_threshold == 0.7
        assert config.refine_radius == 0.1
        assert config.coarse_rate == 4000

    def test_beat_defaults(self):
        config = BeatConfig()
        assert config.threshold_multiplier == 1.5
        assert config.min_onset_gap == 0.1
        assert (config.min_bpm, config.max_bpm) == (60, 200)

    def test_playback_defaults(self):
        config = PlaybackConfig()
        assert config.min_loop_gap == 0.02
        assert config.scrub_burst_seconds == 0.08
        assert config.scrub_gain == 0.8


class TestPresets:

    def test_list_presets(self):
        assert set(list_presets()) == {"default", "strict", "lenient"}

    def test_unknown_preset_falls_back_to_default(self):
        assert get_preset("nope") == AlignmentConfig()

    def test_preset_lookup_is_case_insensitive(self):
        assert get_preset("STRICT").correlation_threshold == 0.85


class TestSerialization:

    def test_round_trip(self):
        config = EngineConfig(peak_bins=600, sample_rate=48000, cache_dir="/tmp/tracks")
        config.alignment.correlation_threshold = 0.8
        config.playback.output_device = 3

        restored = EngineConfig.from_dict(config.to_dict())
        assert restored.to_dict() == config.to_dict()

    def test_unknown_keys_ignored(self):
        config = EngineConfig.from_dict({"beats": {"min_bpm": 70, "bogus": 1}})
        assert config.beats.min_bpm == 70
        assert config.peak_bins == 300

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = EngineConfig(peak_bins=128)
        save_config(config, path)

        assert path.exists()
        assert load_config(path).peak_bins == 128

    def test_load_missing_file_gives_defaults(self, tmp_path):
        assert EngineConfig.load(tmp_path / "missing.json").to_dict() == EngineConfig().to_dict()


class TestEnvironment:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("COMP_ALIGNMENT_PRESET", "lenient")
        monkeypatch.setenv("COMP_PEAK_BINS", "512")
        monkeypatch.setenv("COMP_SAMPLE_RATE", "44100")
        monkeypatch.setenv("COMP_CACHE_DIR", "/var/cache/comp")
        monkeypatch.setenv("COMP_OUTPUT_DEVICE", "2")

        config = EngineConfig.from_env()
        assert config.alignment.correlation_threshold == 0.5
        assert config.peak_bins == 512
        assert config.sample_rate == 44100
        assert config.cache_dir == "/var/cache/comp"
        assert config.playback.output_device == 2

    def test_env_applies_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        EngineConfig(peak_bins=128, sample_rate=22050).save(path)
        monkeypatch.setenv("COMP_PEAK_BINS", "64")

        config = load_config(path)
        assert config.peak_bins == 64
        assert config.sample_rate == 22050
