from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from common import constants
from common.config import build_encoder_config, load_encoder_config
from common.errors import ConfigError


def test_default_config_is_valid() -> None:
    config = build_encoder_config()

    assert config.fallback_profile == "1080p 30fps"
    assert config.video_codec("libx265").software
    assert config.container(".MP4").muxer == "mp4"
    assert config.container("flv") is None
    assert config.audio_encoder("libopus").codec == "opus"


def test_config_is_immutable() -> None:
    config = build_encoder_config()

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.fallback_profile = "SD 30fps"
    with pytest.raises(TypeError):
        config.containers["flv"] = config.containers["mp4"]


def test_unknown_lookups_raise_config_error() -> None:
    config = build_encoder_config()

    with pytest.raises(ConfigError):
        config.video_codec("mpeg1")
    with pytest.raises(ConfigError):
        config.audio_encoder("vorbis")
    with pytest.raises(ConfigError):
        config.profile("8K 120fps")


def test_rate_ladder_needs_a_zero_tier() -> None:
    profiles = [p for p in constants.RATE_PROFILES if p["min_long_edge"] > 0]

    with pytest.raises(ConfigError, match="min_long_edge 0"):
        build_encoder_config({"rate_profiles": profiles, "fallback_profile": "1080p 30fps"})


def test_inverted_fps_range_is_rejected() -> None:
    profiles = [{"name": "SD", "min_long_edge": 0, "fps_min": 60, "fps_max": 30, "base_bitrate": 1}]

    with pytest.raises(ConfigError, match="fps_min"):
        build_encoder_config({"rate_profiles": profiles, "fallback_profile": "SD"})


def test_fallback_profile_must_exist() -> None:
    with pytest.raises(ConfigError, match="fallback_profile"):
        build_encoder_config({"fallback_profile": "missing"})


def test_container_default_audio_must_be_configured() -> None:
    containers = {"mka": {"muxer": "matroska", "video_codecs": [], "audio_codecs": ["flac"], "default_audio": "flac"}}

    with pytest.raises(ConfigError, match="default_audio"):
        build_encoder_config({"containers": containers})


def test_load_encoder_config_overlays_json_file(tmp_path: Path) -> None:
    config_file = tmp_path / "encoder.json"
    config_file.write_text(
        json.dumps(
            {
                "rate_profiles": [
                    {"name": "Any", "min_long_edge": 0, "fps_min": 0, "fps_max": 240, "base_bitrate": 5000000},
                ],
                "fallback_profile": "Any",
                "containers": {
                    "mp4": {
                        "muxer": "mp4",
                        "video_codecs": ["h264"],
                        "audio_codecs": ["aac"],
                        "default_audio": "aac",
                    },
                },
            }
        )
    )

    config = load_encoder_config(config_file)

    assert [p.name for p in config.rate_profiles] == ["Any"]
    assert not config.container("mp4").allows_video("hevc")
    assert config.container("mkv").allows_video("hevc")


def test_invalid_json_file_is_a_config_error(tmp_path: Path) -> None:
    config_file = tmp_path / "encoder.json"
    config_file.write_text("{not json")

    with pytest.raises(ConfigError):
        load_encoder_config(config_file)


def test_missing_config_file_is_a_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_encoder_config(tmp_path / "missing.json")
