"""
Container compatibility resolution.

Checks the closed-world container matrix for video codecs and decides how
audio is carried into the output: copied as-is, or re-encoded, and whether
every audio stream or only the first one can be mapped.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from common.config import EncoderConfig
from .probe import AudioStreamDescriptor, MediaDescriptor

logger = logging.getLogger(__name__)

MAX_SAMPLE_RATE = 48000
AUDIO_COPY = "copy"


class StreamMapMode(Enum):
    """Which audio streams are mapped into the output."""

    ALL_AUDIO = "all"
    FIRST_AUDIO_ONLY = "first"


@dataclass(frozen=True)
class AudioPlan:
    """How the audio of one file is handled."""

    codec: str
    bitrate: Optional[str] = None
    sample_rate: Optional[int] = None
    stream_map: StreamMapMode = StreamMapMode.ALL_AUDIO

    @property
    def is_copy(self) -> bool:
        return self.codec == AUDIO_COPY


@dataclass(frozen=True)
class ContainerCheck:
    """Outcome of a container/video-codec check."""

    allowed: bool
    reason: Optional[str] = None


def resolve_video_container(container: str, codec_family: str, config: EncoderConfig) -> ContainerCheck:
    """Check a video codec family against the container's allow-list."""
    spec = config.container(container)
    if spec is None:
        return ContainerCheck(False, f"container '{container}' is not in the compatibility matrix")
    if not spec.allows_video(codec_family):
        return ContainerCheck(False, f"container '{spec.name}' does not support video codec '{codec_family}'")
    return ContainerCheck(True)


def choose_sample_rate(source_rate: Optional[int], supported_rates: frozenset) -> Optional[int]:
    """
    Pick the re-encode sample rate.

    Rates above 48 kHz drop to 48 kHz, supported rates are kept and anything
    else becomes 48 kHz. No source rate (no audio) gives None.
    """
    if not source_rate:
        return None
    if source_rate > MAX_SAMPLE_RATE:
        return MAX_SAMPLE_RATE
    if source_rate in supported_rates:
        return source_rate
    return MAX_SAMPLE_RATE


def _first_sample_rate(streams: Sequence[AudioStreamDescriptor]) -> Optional[int]:
    for stream in streams:
        if stream.sample_rate:
            return stream.sample_rate
    return None


def resolve_audio(
        descriptor: MediaDescriptor,
        container: str,
        preserve_audio: bool,
        config: EncoderConfig,
        configured_codec: str = "aac",
) -> AudioPlan:
    """
    Decide how audio is carried into ``container``.

    Undecodable streams always restrict the map to the first audio stream
    when re-encoding, independently of why re-encoding was chosen. ffmpeg
    cannot decode an unknown codec even as a re-encode source, so mapping it
    would abort the whole job.

    Args:
        descriptor: Probed source
        container: Target container extension
        preserve_audio: Whether copying the source audio was requested
        config: Encoder configuration holding the compatibility matrix
        configured_codec: Audio encoder used when audio is not preserved

    Returns:
        The AudioPlan for this file
    """
    spec = config.container(container)
    streams = descriptor.audio_streams

    has_undecodable = any(stream.is_undecodable for stream in streams)
    incompatible = [
        stream.codec
        for stream in streams
        if not stream.is_undecodable and (spec is None or not spec.allows_audio(stream.codec))
    ]

    if preserve_audio and not has_undecodable and not incompatible:
        return AudioPlan(codec=AUDIO_COPY, stream_map=StreamMapMode.ALL_AUDIO)

    if preserve_audio:
        encoder_name = spec.default_audio if spec else configured_codec
        logger.info(
            f"Re-encoding audio of {descriptor.path.name} to {encoder_name}: "
            f"incompatible={incompatible or 'none'}, undecodable={has_undecodable}"
        )
    else:
        encoder_name = configured_codec
        encoder = config.audio_encoder(configured_codec)
        if spec is not None and not spec.allows_audio(encoder.codec):
            encoder_name = spec.default_audio
            logger.info(
                f"Audio encoder {configured_codec} not allowed in {spec.name}, using {encoder_name}"
            )

    encoder = config.audio_encoder(encoder_name)
    stream_map = StreamMapMode.FIRST_AUDIO_ONLY if has_undecodable else StreamMapMode.ALL_AUDIO

    return AudioPlan(
        codec=encoder.name,
        bitrate=encoder.bitrate,
        sample_rate=choose_sample_rate(_first_sample_rate(streams), encoder.sample_rates),
        stream_map=stream_map,
    )

