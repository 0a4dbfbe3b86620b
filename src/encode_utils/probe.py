"""
Media descriptor builder.

This module turns raw ffprobe output into a typed ``MediaDescriptor``. The
prober is queried through field selectors (``format/duration``,
``v:0/width``, ``a:1/codec_name``); empty and ``N/A`` answers are treated as
"field unavailable" and resolved through fallback chains instead of failing
the file.
"""

import logging
import re
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import ffmpeg

from common.constants import (
    ASSUMED_AUDIO_BITRATE,
    DEFAULT_BIT_DEPTH,
    EIGHT_BIT_CODECS,
    ESTIMATE_FLOOR_RATIO,
    HDR_PRIMARIES,
    HDR_TRANSFERS,
    TEN_BIT_CODECS,
    UNDECODABLE_AUDIO_CODECS,
    UNKNOWN,
    VALID_BIT_DEPTHS,
)
from common.errors import ProbeError
from common.file_manager import get_file_size

logger = logging.getLogger(__name__)

_PIX_FMT_DEPTH = re.compile(r"p(\d{2})(?:le|be)?$")
_PACKED_DEPTH = re.compile(r"^p0(\d{2})")
_EIGHT_BIT_PIX_FMTS = re.compile(r"^(yuvj?4[0-4][0-4]p|nv12|nv21|gray|rgb24|bgr24|yuyv422|uyvy422|rgba|bgra)$")
_SELECTOR = re.compile(r"^(?P<section>format|[va](?::(?P<index>\d+))?)/(?P<field>[\w.]+)$")


class BitrateProvenance(Enum):
    """Where a descriptor's bitrate came from."""

    MEASURED = "measured"
    ESTIMATED = "estimated"


@dataclass(frozen=True)
class AudioStreamDescriptor:
    """One audio stream of a source file."""

    codec: str
    bitrate: Optional[int]
    channels: int
    sample_rate: Optional[int]

    @property
    def is_undecodable(self) -> bool:
        return self.codec.lower() in UNDECODABLE_AUDIO_CODECS


@dataclass(frozen=True)
class MediaDescriptor:
    """Normalized description of one source file."""

    path: Path
    width: int
    height: int
    fps: float
    duration_seconds: float
    video_codec: str
    pixel_format: str
    bit_depth: int
    bitrate: int
    bitrate_provenance: BitrateProvenance
    container_format: str
    file_size_bytes: int
    video_profile: str = UNKNOWN
    color_primaries: str = UNKNOWN
    color_transfer: str = UNKNOWN
    color_space: str = UNKNOWN
    color_range: str = UNKNOWN
    audio_streams: Tuple[AudioStreamDescriptor, ...] = field(default_factory=tuple)

    @property
    def max_dimension(self) -> int:
        """The longer edge, so portrait and landscape match the same tier."""
        return max(self.width, self.height)

    @property
    def has_resolution(self) -> bool:
        return self.width > 0 and self.height > 0

    @property
    def extension(self) -> str:
        return self.path.suffix.lower()

    @property
    def is_hdr(self) -> bool:
        return is_hdr_source(self.color_primaries, self.color_transfer)


class ProbeResult:
    """Answers field selectors against one ffprobe JSON document."""

    def __init__(self, data: Dict[str, Any]):
        self._format = data.get("format", {}) or {}
        streams = data.get("streams", []) or []
        self._streams = {
            "v": [s for s in streams if s.get("codec_type") == "video"],
            "a": [s for s in streams if s.get("codec_type") == "audio"],
        }

    def stream_count(self, kind: str) -> int:
        return len(self._streams.get(kind, []))

    def values(self, selector: str) -> List[str]:
        """
        Return the text values matching ``selector``.

        Selectors look like ``format/<field>``, ``v/<field>`` (every video
        stream) or ``a:1/<field>`` (one audio stream). Dotted fields reach
        into nested objects such as ``tags.BPS``. Missing, empty and ``N/A``
        values are dropped.
        """
        match = _SELECTOR.match(selector)
        if not match:
            raise ValueError(f"Invalid probe selector: {selector}")

        section = match.group("section")
        if section == "format":
            sources = [self._format]
        else:
            streams = self._streams[section[0]]
            index = match.group("index")
            if index is None:
                sources = streams
            else:
                position = int(index)
                sources = streams[position:position + 1]

        values = []
        for source in sources:
            value = _lookup(source, match.group("field"))
            if value is None:
                continue
            text = str(value).strip()
            if text and text.upper() != "N/A":
                values.append(text)
        return values

    def value(self, selector: str) -> Optional[str]:
        """First value for ``selector`` or None when the field is unavailable."""
        values = self.values(selector)
        return values[0] if values else None


class FFprobeProber:
    """Media prober backed by ffprobe through ffmpeg-python."""

    def __init__(self, cmd: str = "ffprobe", timeout: Optional[float] = 120):
        self.cmd = cmd
        self.timeout = timeout

    def probe(self, path: Path) -> ProbeResult:
        """Run ffprobe once and return a selector view of its output."""
        if not path.is_file():
            raise ProbeError(f"Source file does not exist: {path}")

        try:
            data = ffmpeg.probe(str(path), cmd=self.cmd, timeout=self.timeout)
        except ffmpeg.Error as exc:
            stderr = exc.stderr.decode("utf-8", errors="ignore") if isinstance(exc.stderr, bytes) else exc.stderr
            raise ProbeError(f"ffprobe failed for '{path}': {stderr}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ProbeError(f"ffprobe timed out for '{path}'") from exc
        except (OSError, ValueError) as exc:
            raise ProbeError(f"ffprobe did not complete for '{path}': {exc}") from exc

        return ProbeResult(data)


def is_hdr_source(color_primaries: str, color_transfer: str) -> bool:
    """Wide-gamut primaries or a PQ/HLG transfer mark a source as HDR."""
    return color_primaries.lower() in HDR_PRIMARIES or color_transfer.lower() in HDR_TRANSFERS


### Internal helper functions ###
def _lookup(source: Dict[str, Any], dotted: str) -> Any:
    value: Any = source
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _parse_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_frame_rate(value: Optional[str]) -> float:
    """Parse an ffprobe frame-rate ratio such as ``30000/1001`` into a decimal."""
    if not value or value in {"0/0", "N/A"}:
        return 0.0
    if "/" not in value:
        return _parse_float(value) or 0.0

    numerator, denominator = value.split("/", 1)
    num = _parse_float(numerator)
    den = _parse_float(denominator)
    if num is None or not den:
        return 0.0
    return num / den


def infer_bit_depth(
        bits_per_raw_sample: Optional[str],
        pixel_format: Optional[str],
        profile: Optional[str],
        codec: Optional[str],
) -> int:
    """
    Infer the video bit depth. The first rule that matches wins.

    1. explicit ``bits_per_raw_sample`` when it is a known depth
    2. pixel-format naming (``yuv420p10le``, ``p010le``, ``yuv420p``, ``nv12``)
    3. codec profile (``Main 10``, ``High 10``, ``Main 12``, ``Main``, ``High``)
    4. codec family (legacy 8-bit codecs, ProRes)
    5. 10
    """
    explicit = _parse_int(bits_per_raw_sample)
    if explicit in VALID_BIT_DEPTHS:
        return explicit

    if pixel_format:
        pix = pixel_format.lower()
        packed = _PACKED_DEPTH.match(pix)
        if packed and int(packed.group(1)) in VALID_BIT_DEPTHS:
            return int(packed.group(1))
        suffix = _PIX_FMT_DEPTH.search(pix)
        if suffix and int(suffix.group(1)) in VALID_BIT_DEPTHS:
            return int(suffix.group(1))
        if _EIGHT_BIT_PIX_FMTS.match(pix):
            return 8

    if profile:
        prof = profile.lower()
        for depth in (16, 14, 12, 10):
            if re.search(rf"\b{depth}\b", prof):
                return depth
        if prof in {"main", "high", "baseline", "constrained baseline", "simple", "advanced simple", "main still picture"}:
            return 8

    if codec:
        family = codec.lower()
        if family in EIGHT_BIT_CODECS:
            return 8
        if family in TEN_BIT_CODECS:
            return 10

    return DEFAULT_BIT_DEPTH


def estimate_bitrate(
        file_size_bytes: int,
        duration_seconds: float,
        assumed_audio_bitrate: int = ASSUMED_AUDIO_BITRATE,
) -> int:
    """
    Estimate the video bitrate from file size and duration.

    A flat audio allowance is subtracted from the total. When that leaves
    nothing (tiny or audio-heavy files) 90% of the total is used instead.
    Returns 0 when the duration is unknown.
    """
    if file_size_bytes <= 0 or duration_seconds <= 0:
        return 0

    total = file_size_bytes * 8 / duration_seconds
    estimate = total - assumed_audio_bitrate
    if estimate <= 0:
        estimate = total * ESTIMATE_FLOOR_RATIO
    return int(estimate)


def _audio_streams(result: ProbeResult) -> Tuple[AudioStreamDescriptor, ...]:
    streams = []
    for index in range(result.stream_count("a")):
        prefix = f"a:{index}"
        streams.append(
            AudioStreamDescriptor(
                codec=(result.value(f"{prefix}/codec_name") or UNKNOWN).lower(),
                bitrate=_parse_int(result.value(f"{prefix}/bit_rate")),
                channels=_parse_int(result.value(f"{prefix}/channels")) or 0,
                sample_rate=_parse_int(result.value(f"{prefix}/sample_rate")),
            )
        )
    return tuple(streams)


### Public functions ###
def build_descriptor(
        path: Path,
        result: ProbeResult,
        file_size_bytes: int,
        assumed_audio_bitrate: int = ASSUMED_AUDIO_BITRATE,
) -> MediaDescriptor:
    """Normalize a probe result into a MediaDescriptor."""
    width = _parse_int(result.value("v:0/width")) or 0
    height = _parse_int(result.value("v:0/height")) or 0
    if width <= 0 or height <= 0:
        logger.warning(f"Could not read resolution of {path.name}, static fallback parameters will be used")
        width, height = 0, 0

    fps = parse_frame_rate(result.value("v:0/avg_frame_rate"))
    if fps <= 0:
        fps = parse_frame_rate(result.value("v:0/r_frame_rate"))

    duration = _parse_float(result.value("v:0/duration")) or _parse_float(result.value("format/duration")) or 0.0

    bitrate = _parse_int(result.value("v:0/bit_rate")) or _parse_int(result.value("format/bit_rate"))
    if bitrate and bitrate > 0:
        provenance = BitrateProvenance.MEASURED
    else:
        bitrate = estimate_bitrate(file_size_bytes, duration, assumed_audio_bitrate)
        provenance = BitrateProvenance.ESTIMATED
        logger.debug(f"Estimated bitrate for {path.name}: {bitrate} bps")

    codec = (result.value("v:0/codec_name") or UNKNOWN).lower()
    pixel_format = result.value("v:0/pix_fmt") or UNKNOWN
    profile = result.value("v:0/profile") or UNKNOWN

    return MediaDescriptor(
        path=path,
        width=width,
        height=height,
        fps=fps,
        duration_seconds=duration,
        video_codec=codec,
        pixel_format=pixel_format,
        bit_depth=infer_bit_depth(
            result.value("v:0/bits_per_raw_sample"),
            result.value("v:0/pix_fmt"),
            result.value("v:0/profile"),
            result.value("v:0/codec_name"),
        ),
        bitrate=max(0, bitrate),
        bitrate_provenance=provenance,
        container_format=result.value("format/format_name") or UNKNOWN,
        file_size_bytes=file_size_bytes,
        video_profile=profile,
        color_primaries=(result.value("v:0/color_primaries") or UNKNOWN).lower(),
        color_transfer=(result.value("v:0/color_transfer") or UNKNOWN).lower(),
        color_space=(result.value("v:0/color_space") or UNKNOWN).lower(),
        color_range=(result.value("v:0/color_range") or UNKNOWN).lower(),
        audio_streams=_audio_streams(result),
    )


def probe_media(
        path: Path,
        prober: Optional[FFprobeProber] = None,
        assumed_audio_bitrate: int = ASSUMED_AUDIO_BITRATE,
) -> MediaDescriptor:
    """
    Probe a source file and build its descriptor.

    Args:
        path: Source media file
        prober: Prober to use, defaults to an FFprobeProber
        assumed_audio_bitrate: Audio allowance for size-based bitrate estimates

    Returns:
        The file's MediaDescriptor

    Raises:
        ProbeError: If the prober cannot run or its output is unusable
    """
    prober = prober or FFprobeProber()
    result = prober.probe(path)
    descriptor = build_descriptor(path, result, get_file_size(path), assumed_audio_bitrate)

    logger.debug(
        f"Probed {path.name}: {descriptor.width}x{descriptor.height}@{descriptor.fps:.3f} "
        f"{descriptor.video_codec} {descriptor.bit_depth}-bit, "
        f"{descriptor.bitrate} bps ({descriptor.bitrate_provenance.value}), "
        f"{len(descriptor.audio_streams)} audio stream(s)"
    )
    return descriptor
