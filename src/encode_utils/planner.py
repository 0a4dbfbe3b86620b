"""
Conversion plan compiler.

Merges a probed descriptor, the user's preferences and the configuration
into one immutable ``ConversionPlan`` per file: encoder and hardware path,
bitrate targets, audio handling, HDR carry-through, container and a
collision-safe output name. Plans are compiled right before execution and
never reused across files.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple, Union

from common.config import EncoderConfig
from common.constants import (
    DEFAULT_AUDIO_CODEC,
    DEFAULT_BITRATE_MODIFIER,
    DEFAULT_OUTPUT_CONTAINER,
    DEFAULT_VIDEO_CODEC,
    KEEP_CONTAINER,
    OUTPUT_SUFFIX,
    PRESERVE_AUDIO,
    PREVIEW_CLIP_SECONDS,
    PREVIEW_METRIC,
    PREVIEW_METRICS,
    PREVIEW_START,
    TEMP_SUFFIX,
    UNKNOWN,
)
from common.errors import ConfigError, PlanRejectionError

from .compatibility import AudioPlan, resolve_audio, resolve_video_container
from .probe import MediaDescriptor
from .rate_profiles import ResolvedRateParameters, resolve_rate_parameters

logger = logging.getLogger(__name__)


class HardwareAccel(Enum):
    """Decode path requested from the encoding engine."""

    CUDA = "cuda"
    D3D11VA = "d3d11va"
    SOFTWARE_DECODE = "software-decode"
    NONE_SOFTWARE_ENCODE = "none-software-encode"

    @property
    def hwaccel_flag(self) -> Optional[str]:
        if self in (HardwareAccel.CUDA, HardwareAccel.D3D11VA):
            return self.value
        return None


@dataclass(frozen=True)
class PreviewSettings:
    """Options for the short-clip quality preview."""

    enabled: bool = False
    clip_seconds: float = PREVIEW_CLIP_SECONDS
    start: Union[str, float] = PREVIEW_START
    metric: str = PREVIEW_METRIC


@dataclass(frozen=True)
class EncodePreferences:
    """User choices that apply to every file of a batch."""

    video_codec: str = DEFAULT_VIDEO_CODEC
    output_container: str = DEFAULT_OUTPUT_CONTAINER
    preserve_audio: bool = PRESERVE_AUDIO
    audio_codec: str = DEFAULT_AUDIO_CODEC
    bitrate_modifier: float = DEFAULT_BITRATE_MODIFIER
    skip_existing: bool = False
    hardware_decode: bool = True
    encoder_preset: Optional[str] = None
    target_bit_depth: Optional[int] = None
    output_dir: Optional[Path] = None
    preview: PreviewSettings = field(default_factory=PreviewSettings)

    @property
    def keeps_container(self) -> bool:
        return self.output_container.lower().lstrip(".") == KEEP_CONTAINER


@dataclass(frozen=True)
class ColorMetadata:
    """Source color signalling copied verbatim into HDR outputs."""

    primaries: str
    transfer: str
    space: str
    range: str


@dataclass(frozen=True)
class ConversionPlan:
    """Everything needed to encode one file. Never mutated after compilation."""

    source_path: Path
    output_path: Path
    temp_path: Path
    video_codec_key: str
    encoder: str
    hardware_accel: HardwareAccel
    is_software_encoder: bool
    target_bit_depth: int
    pixel_format: str
    rate: ResolvedRateParameters
    audio: AudioPlan
    container: str
    muxer: str
    preserve_subtitles: bool
    hdr_carry_through: bool
    encoder_preset: str
    duration_seconds: float = 0.0
    color: Optional[ColorMetadata] = None
    use_temp_output: bool = True


def validate_preferences(preferences: EncodePreferences, config: EncoderConfig) -> None:
    """
    Check batch-wide preferences before any file is planned.

    Raises:
        ConfigError: If a preference names something unknown or an explicit
            output container cannot hold the selected video codec
    """
    codec = config.video_codec(preferences.video_codec)
    config.audio_encoder(preferences.audio_codec)

    if preferences.bitrate_modifier <= 0:
        raise ConfigError("bitrate_modifier must be greater than 0")
    if preferences.target_bit_depth not in (None, 8, 10):
        raise ConfigError("target_bit_depth must be 8 or 10")

    if not preferences.keeps_container:
        check = resolve_video_container(preferences.output_container, codec.family, config)
        if not check.allowed:
            raise ConfigError(f"Cannot encode {codec.key} into the selected container: {check.reason}")

    preview = preferences.preview
    if preview.enabled:
        if preview.metric not in PREVIEW_METRICS:
            raise ConfigError(f"Unknown preview metric '{preview.metric}'")
        if preview.clip_seconds <= 0:
            raise ConfigError("Preview clip length must be positive")


def target_container_for(source: Path, preferences: EncodePreferences) -> str:
    """The output container extension (without dot) for ``source``."""
    if preferences.keeps_container:
        return source.suffix.lower().lstrip(".")
    return preferences.output_container.lower().lstrip(".")


def _candidate_output(
        source: Path,
        container: str,
        output_dir: Optional[Path],
        source_root: Optional[Path],
) -> Path:
    if output_dir is None:
        directory = source.parent
    else:
        try:
            relative_parent = source.parent.relative_to(source_root) if source_root else Path()
        except ValueError:
            relative_parent = Path()
        directory = output_dir / relative_parent
    return directory / f"{source.stem}.{container}"


def resolve_output_path(
        source: Path,
        preferences: EncodePreferences,
        batch_sources: Sequence[Path],
        source_root: Optional[Path] = None,
) -> Path:
    """
    Compute the collision-safe output path for ``source``.

    When the container changes and another file of the batch would produce
    the same output name, the source extension is folded into the name
    (``video.ts`` and ``video.m2ts`` become ``video_ts.mp4`` and
    ``video_m2ts.mp4``). An output that would overwrite its own source gets
    the ``_encoded`` suffix.

    Args:
        source: Source file
        preferences: Batch preferences (container, output directory)
        batch_sources: Every source file of the batch
        source_root: Root of the scanned tree, mirrored under the output directory
    """
    output_dir = preferences.output_dir
    container = target_container_for(source, preferences)
    candidate = _candidate_output(source, container, output_dir, source_root)
    changes_container = source.suffix.lower().lstrip(".") != container

    if changes_container:
        for other in batch_sources:
            if other == source:
                continue
            other_candidate = _candidate_output(other, target_container_for(other, preferences), output_dir, source_root)
            if other_candidate.name.lower() == candidate.name.lower() and other_candidate.parent == candidate.parent:
                source_ext = source.suffix.lower().lstrip(".")
                candidate = candidate.with_name(f"{source.stem}_{source_ext}.{container}")
                logger.info(f"Output name collision for {source.name}, using {candidate.name}")
                break

    if candidate.resolve() == source.resolve():
        candidate = candidate.with_name(f"{source.stem}{OUTPUT_SUFFIX}.{container}")

    return candidate


def _possible_outputs(source: Path, preferences: EncodePreferences, source_root: Optional[Path]) -> Set[Tuple[Path, str]]:
    container = target_container_for(source, preferences)
    candidate = _candidate_output(source, container, preferences.output_dir, source_root)
    source_ext = source.suffix.lower().lstrip(".")
    names = {
        candidate.name,
        f"{source.stem}_{source_ext}.{container}",
        f"{source.stem}{OUTPUT_SUFFIX}.{container}",
    }
    parent = candidate.parent.resolve()
    return {(parent, name.lower()) for name in names}


def exclude_planned_outputs(
        sources: Sequence[Path],
        preferences: EncodePreferences,
        source_root: Optional[Path] = None,
) -> List[Path]:
    """
    Drop scanned files that are the output of another file in the batch.

    When outputs are written beside their sources, a rerun finds the
    previous run's outputs in the source tree. Those are not sources: a file
    is dropped when its path is any name ``resolve_output_path`` can give
    another source (plain, collision-renamed or ``_encoded``).
    """
    outputs_by_source = {source: _possible_outputs(source, preferences, source_root) for source in sources}

    kept = []
    for path in sources:
        key = (path.parent.resolve(), path.name.lower())
        owner = next(
            (other for other, outputs in outputs_by_source.items() if other != path and key in outputs),
            None,
        )
        if owner is not None:
            logger.info(f"Skipping {path.name}: output of {owner.name}")
            continue
        kept.append(path)
    return kept


def _select_hardware_accel(descriptor: MediaDescriptor, software: bool, preferences: EncodePreferences,
                           config: EncoderConfig) -> HardwareAccel:
    if software:
        return HardwareAccel.NONE_SOFTWARE_ENCODE
    if not preferences.hardware_decode:
        return HardwareAccel.SOFTWARE_DECODE
    # Problematic sources always take the vendor-neutral decoder, whatever the codec
    if descriptor.extension in config.problematic_extensions:
        return HardwareAccel.D3D11VA
    if descriptor.video_codec not in config.gpu_decodable_codecs:
        return HardwareAccel.SOFTWARE_DECODE

    source_container = config.container(descriptor.extension)
    if source_container is not None and source_container.hwaccel_hint:
        return HardwareAccel(source_container.hwaccel_hint)
    return HardwareAccel.CUDA


def _select_bit_depth(descriptor: MediaDescriptor, max_bit_depth: int, requested: Optional[int]) -> int:
    if requested is not None:
        return min(requested, max_bit_depth)
    if descriptor.bit_depth >= 10 and max_bit_depth >= 10:
        return 10
    return 8


def compile_plan(
        descriptor: MediaDescriptor,
        preferences: EncodePreferences,
        config: EncoderConfig,
        batch_sources: Sequence[Path] = (),
        source_root: Optional[Path] = None,
) -> ConversionPlan:
    """
    Compile the conversion plan for one probed file.

    Args:
        descriptor: Probed source
        preferences: Batch preferences
        config: Validated encoder configuration
        batch_sources: Every source file of the batch, for collision-safe naming
        source_root: Root of the scanned tree

    Returns:
        The file's ConversionPlan

    Raises:
        PlanRejectionError: If the preserved container cannot hold the codec,
            or the output exists and skip-existing is enabled
    """
    source = descriptor.path.resolve()
    codec = config.video_codec(preferences.video_codec)
    container = target_container_for(source, preferences)

    check = resolve_video_container(container, codec.family, config)
    if not check.allowed:
        raise PlanRejectionError(check.reason or "incompatible container")
    container_spec = config.container(container)

    output_path = resolve_output_path(
        source,
        preferences,
        [p.resolve() for p in batch_sources],
        source_root.resolve() if source_root else None,
    ).resolve()
    if preferences.skip_existing and output_path.exists():
        raise PlanRejectionError(f"output already exists: {output_path}")

    hardware_accel = _select_hardware_accel(descriptor, codec.software, preferences, config)
    target_bit_depth = _select_bit_depth(descriptor, codec.max_bit_depth, preferences.target_bit_depth)

    color = None
    hdr = target_bit_depth >= 10 and descriptor.is_hdr
    if hdr:
        color = ColorMetadata(
            primaries=descriptor.color_primaries,
            transfer=descriptor.color_transfer,
            space=descriptor.color_space,
            range=descriptor.color_range,
        )

    fallback = None if descriptor.has_resolution else config.profile(config.fallback_profile)
    rate = resolve_rate_parameters(
        descriptor.max_dimension,
        descriptor.fps,
        config.rate_profiles,
        preferences.bitrate_modifier,
        descriptor.bitrate,
        fallback_profile=fallback,
    )

    audio = resolve_audio(descriptor, container, preferences.preserve_audio, config, preferences.audio_codec)

    plan = ConversionPlan(
        source_path=source,
        output_path=output_path,
        temp_path=output_path.with_name(output_path.name + TEMP_SUFFIX),
        video_codec_key=codec.key,
        encoder=codec.encoder,
        hardware_accel=hardware_accel,
        is_software_encoder=codec.software,
        target_bit_depth=target_bit_depth,
        pixel_format=codec.pixel_format(target_bit_depth),
        rate=rate,
        audio=audio,
        container=container,
        muxer=container_spec.muxer,
        preserve_subtitles=container_spec.subtitles,
        hdr_carry_through=hdr,
        encoder_preset=preferences.encoder_preset or codec.preset,
        duration_seconds=descriptor.duration_seconds,
        color=color,
    )

    logger.debug(
        f"Plan for {source.name}: {plan.encoder} ({plan.hardware_accel.value}), "
        f"{rate.profile_name} {rate.average_bitrate} bps, audio={audio.codec}/{audio.stream_map.value}, "
        f"{target_bit_depth}-bit{' HDR' if hdr else ''} -> {output_path.name}"
    )
    return plan


def describe_color(color: Optional[ColorMetadata]) -> str:
    """Short human-readable form of carried color metadata."""
    if color is None:
        return "sdr"
    parts = [value for value in (color.primaries, color.transfer, color.space, color.range) if value != UNKNOWN]
    return "/".join(parts) or "hdr"
