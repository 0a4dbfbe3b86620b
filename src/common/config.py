"""
Validated, immutable encoder configuration.

The loosely typed tables in ``common.constants`` (optionally overlaid by a
JSON file) are checked once at startup and frozen into dataclasses. The
resolvers and the plan compiler receive an ``EncoderConfig`` explicitly, so
planning stays a pure function of the descriptor and the configuration.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from . import constants
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateProfile:
    """One rung of the bitrate ladder."""

    name: str
    min_long_edge: int
    fps_min: float
    fps_max: float
    base_bitrate: int


@dataclass(frozen=True)
class VideoCodecSpec:
    """A selectable video encoder and its capabilities."""

    key: str
    encoder: str
    family: str
    software: bool
    preset: str
    max_bit_depth: int
    pix_fmt_8bit: str
    pix_fmt_10bit: Optional[str]

    def pixel_format(self, bit_depth: int) -> str:
        if bit_depth >= 10 and self.pix_fmt_10bit:
            return self.pix_fmt_10bit
        return self.pix_fmt_8bit


@dataclass(frozen=True)
class AudioEncoderSpec:
    """An audio encoder usable for re-encoding."""

    name: str
    codec: str
    bitrate: str
    sample_rates: frozenset


@dataclass(frozen=True)
class ContainerSpec:
    """Compatibility rules for one output container."""

    name: str
    muxer: str
    video_codecs: frozenset
    audio_codecs: frozenset
    default_audio: str
    subtitles: bool
    hwaccel_hint: Optional[str]

    def allows_video(self, family: str) -> bool:
        return family in self.video_codecs

    def allows_audio(self, codec: str) -> bool:
        return codec in self.audio_codecs


@dataclass(frozen=True)
class EncoderConfig:
    """Everything the planner needs to know that does not come from the file itself."""

    rate_profiles: Tuple[RateProfile, ...]
    fallback_profile: str
    video_codecs: Mapping[str, VideoCodecSpec]
    audio_encoders: Mapping[str, AudioEncoderSpec]
    containers: Mapping[str, ContainerSpec]
    problematic_extensions: frozenset
    gpu_decodable_codecs: frozenset
    assumed_audio_bitrate: int = constants.ASSUMED_AUDIO_BITRATE

    def video_codec(self, key: str) -> VideoCodecSpec:
        try:
            return self.video_codecs[key]
        except KeyError:
            raise ConfigError(f"Unknown video codec '{key}'. Known codecs: {', '.join(sorted(self.video_codecs))}")

    def container(self, name: str) -> Optional[ContainerSpec]:
        """Look up a container by extension; ``None`` means unsupported."""
        return self.containers.get(name.lower().lstrip("."))

    def audio_encoder(self, name: str) -> AudioEncoderSpec:
        try:
            return self.audio_encoders[name]
        except KeyError:
            raise ConfigError(f"Unknown audio encoder '{name}'")

    def profile(self, name: str) -> RateProfile:
        for profile in self.rate_profiles:
            if profile.name == name:
                return profile
        raise ConfigError(f"Unknown rate profile '{name}'")


### Internal helper functions ###
def _require(entry: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in entry:
        raise ConfigError(f"Missing '{key}' in {where}")
    return entry[key]


def _build_profiles(raw_profiles: Any) -> Tuple[RateProfile, ...]:
    if not isinstance(raw_profiles, list) or not raw_profiles:
        raise ConfigError("rate_profiles must be a non-empty list")

    profiles = []
    for index, entry in enumerate(raw_profiles):
        where = f"rate_profiles[{index}]"
        try:
            profile = RateProfile(
                name=str(_require(entry, "name", where)),
                min_long_edge=int(_require(entry, "min_long_edge", where)),
                fps_min=float(_require(entry, "fps_min", where)),
                fps_max=float(_require(entry, "fps_max", where)),
                base_bitrate=int(_require(entry, "base_bitrate", where)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in {where}: {e}")

        if profile.min_long_edge < 0:
            raise ConfigError(f"{where}: min_long_edge must not be negative")
        if profile.fps_min > profile.fps_max:
            raise ConfigError(f"{where}: fps_min is greater than fps_max")
        if profile.base_bitrate <= 0:
            raise ConfigError(f"{where}: base_bitrate must be positive")
        profiles.append(profile)

    names = [p.name for p in profiles]
    if len(set(names)) != len(names):
        raise ConfigError("rate_profiles contains duplicate names")
    if not any(p.min_long_edge == 0 for p in profiles):
        raise ConfigError("rate_profiles needs a lowest tier with min_long_edge 0")

    return tuple(profiles)


def _build_video_codecs(raw_codecs: Mapping[str, Any]) -> Dict[str, VideoCodecSpec]:
    codecs = {}
    for key, entry in raw_codecs.items():
        where = f"video_codecs.{key}"
        max_bit_depth = int(entry.get("max_bit_depth", 8))
        pix_fmt_10bit = entry.get("pix_fmt_10bit")
        if max_bit_depth >= 10 and not pix_fmt_10bit:
            raise ConfigError(f"{where}: a 10-bit capable codec needs pix_fmt_10bit")
        codecs[key] = VideoCodecSpec(
            key=key,
            encoder=str(_require(entry, "encoder", where)),
            family=str(_require(entry, "family", where)),
            software=bool(_require(entry, "software", where)),
            preset=str(entry.get("preset", "")),
            max_bit_depth=max_bit_depth,
            pix_fmt_8bit=str(entry.get("pix_fmt_8bit", "yuv420p")),
            pix_fmt_10bit=pix_fmt_10bit,
        )
    if not codecs:
        raise ConfigError("video_codecs must not be empty")
    return codecs


def _build_audio_encoders(raw_encoders: Mapping[str, Any]) -> Dict[str, AudioEncoderSpec]:
    encoders = {}
    for name, entry in raw_encoders.items():
        where = f"audio_encoders.{name}"
        rates = _require(entry, "sample_rates", where)
        encoders[name] = AudioEncoderSpec(
            name=name,
            codec=str(_require(entry, "codec", where)),
            bitrate=str(_require(entry, "bitrate", where)),
            sample_rates=frozenset(int(rate) for rate in rates),
        )
    return encoders


def _build_containers(
        raw_containers: Mapping[str, Any],
        audio_encoders: Mapping[str, AudioEncoderSpec],
) -> Dict[str, ContainerSpec]:
    containers = {}
    for name, entry in raw_containers.items():
        where = f"containers.{name}"
        default_audio = str(_require(entry, "default_audio", where))
        if default_audio not in audio_encoders:
            raise ConfigError(f"{where}: default_audio '{default_audio}' is not a configured audio encoder")
        containers[name.lower().lstrip(".")] = ContainerSpec(
            name=name.lower().lstrip("."),
            muxer=str(_require(entry, "muxer", where)),
            video_codecs=frozenset(_require(entry, "video_codecs", where)),
            audio_codecs=frozenset(_require(entry, "audio_codecs", where)),
            default_audio=default_audio,
            subtitles=bool(entry.get("subtitles", False)),
            hwaccel_hint=entry.get("hwaccel_hint"),
        )
    return containers


def _read_overrides(config_file: Path) -> Dict[str, Any]:
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_file}: {e}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {config_file} is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a JSON object")
    return data


### Public functions ###
def build_encoder_config(overrides: Optional[Mapping[str, Any]] = None) -> EncoderConfig:
    """
    Validate the default tables, overlaid by ``overrides``, into an EncoderConfig.

    Lists in the overrides replace the defaults; mappings are merged key by key.

    Raises:
        ConfigError: If any table is missing required fields or is inconsistent
    """
    overrides = dict(overrides or {})

    raw_profiles = overrides.get("rate_profiles", constants.RATE_PROFILES)
    raw_codecs = {**constants.VIDEO_CODECS, **overrides.get("video_codecs", {})}
    raw_audio = {**constants.AUDIO_ENCODERS, **overrides.get("audio_encoders", {})}
    raw_containers = {**constants.CONTAINER_COMPATIBILITY, **overrides.get("containers", {})}

    profiles = _build_profiles(raw_profiles)
    audio_encoders = _build_audio_encoders(raw_audio)

    fallback = overrides.get("fallback_profile", constants.FALLBACK_RATE_PROFILE)
    if fallback not in {p.name for p in profiles}:
        raise ConfigError(f"fallback_profile '{fallback}' does not name a rate profile")

    try:
        assumed_audio_bitrate = int(overrides.get("assumed_audio_bitrate", constants.ASSUMED_AUDIO_BITRATE))
    except (TypeError, ValueError):
        raise ConfigError("assumed_audio_bitrate must be an integer")

    return EncoderConfig(
        rate_profiles=profiles,
        fallback_profile=fallback,
        video_codecs=MappingProxyType(_build_video_codecs(raw_codecs)),
        audio_encoders=MappingProxyType(audio_encoders),
        containers=MappingProxyType(_build_containers(raw_containers, audio_encoders)),
        problematic_extensions=frozenset(
            ext.lower() for ext in overrides.get("problematic_extensions", constants.PROBLEMATIC_EXTENSIONS)
        ),
        gpu_decodable_codecs=frozenset(overrides.get("gpu_decodable_codecs", constants.GPU_DECODABLE_CODECS)),
        assumed_audio_bitrate=assumed_audio_bitrate,
    )


def load_encoder_config(config_file: Optional[Path] = None) -> EncoderConfig:
    """Load the encoder configuration, reading JSON overrides from ``config_file`` if given."""
    if config_file is None and constants.CONFIG_FILE:
        config_file = Path(constants.CONFIG_FILE)

    overrides: Dict[str, Any] = {}
    if config_file is not None:
        overrides = _read_overrides(config_file)
        logger.info(f"Loaded configuration overrides from {config_file}")

    return build_encoder_config(overrides)
