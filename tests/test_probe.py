from __future__ import annotations

from pathlib import Path

import ffmpeg
import pytest

from common.errors import ProbeError
from conftest import FakeProber, make_payload
from encode_utils.probe import (
    BitrateProvenance,
    FFprobeProber,
    ProbeResult,
    build_descriptor,
    estimate_bitrate,
    infer_bit_depth,
    parse_frame_rate,
    probe_media,
)


def test_build_descriptor_reads_hdr_4k_source() -> None:
    payload = make_payload(
        width=3840,
        height=2160,
        avg_frame_rate="24000/1001",
        codec="hevc",
        pix_fmt="yuv420p10le",
        profile="Main 10",
        bit_rate="42000000",
        color={
            "color_primaries": "bt2020",
            "color_transfer": "smpte2084",
            "color_space": "bt2020nc",
            "color_range": "tv",
        },
        audio=[("truehd", "48000", 8, None), ("ac3", "48000", 6, "640000")],
    )

    descriptor = build_descriptor(Path("movie.mkv"), ProbeResult(payload), file_size_bytes=10_000)

    assert (descriptor.width, descriptor.height) == (3840, 2160)
    assert descriptor.max_dimension == 3840
    assert descriptor.fps == pytest.approx(23.976, rel=1e-4)
    assert descriptor.bit_depth == 10
    assert descriptor.bitrate == 42_000_000
    assert descriptor.bitrate_provenance is BitrateProvenance.MEASURED
    assert descriptor.is_hdr
    assert descriptor.color_space == "bt2020nc"
    assert [s.codec for s in descriptor.audio_streams] == ["truehd", "ac3"]
    assert descriptor.audio_streams[0].bitrate is None
    assert descriptor.audio_streams[1].channels == 6


def test_build_descriptor_falls_back_to_format_bitrate() -> None:
    payload = make_payload(bit_rate="N/A", format_bit_rate="7500000")

    descriptor = build_descriptor(Path("a.mkv"), ProbeResult(payload), file_size_bytes=1)

    assert descriptor.bitrate == 7_500_000
    assert descriptor.bitrate_provenance is BitrateProvenance.MEASURED


def test_build_descriptor_estimates_bitrate_from_size() -> None:
    payload = make_payload(bit_rate=None, format_bit_rate="N/A", duration="100.0")
    size = 100 * 1024 * 1024

    descriptor = build_descriptor(Path("a.mkv"), ProbeResult(payload), file_size_bytes=size)

    assert descriptor.bitrate == int(size * 8 / 100 - 256_000)
    assert descriptor.bitrate_provenance is BitrateProvenance.ESTIMATED


def test_estimate_bitrate_floors_at_ninety_percent_of_total() -> None:
    assert estimate_bitrate(file_size_bytes=1000, duration_seconds=1.0) == 7200


def test_estimate_bitrate_without_duration_is_unknown() -> None:
    assert estimate_bitrate(file_size_bytes=10_000_000, duration_seconds=0) == 0
    assert estimate_bitrate(file_size_bytes=0, duration_seconds=60) == 0


def test_build_descriptor_uses_zero_resolution_when_unreadable() -> None:
    payload = make_payload(width="N/A", height=1080)

    descriptor = build_descriptor(Path("a.mkv"), ProbeResult(payload), file_size_bytes=1)

    assert (descriptor.width, descriptor.height) == (0, 0)
    assert not descriptor.has_resolution


def test_build_descriptor_uses_r_frame_rate_when_average_missing() -> None:
    payload = make_payload(avg_frame_rate="0/0", r_frame_rate="60000/1001")

    descriptor = build_descriptor(Path("a.mkv"), ProbeResult(payload), file_size_bytes=1)

    assert descriptor.fps == pytest.approx(59.94, rel=1e-4)


def test_build_descriptor_uses_format_duration_when_stream_has_none() -> None:
    payload = make_payload(duration=None, format_duration="95.5")

    descriptor = build_descriptor(Path("a.mkv"), ProbeResult(payload), file_size_bytes=1)

    assert descriptor.duration_seconds == pytest.approx(95.5)


def test_portrait_source_uses_longer_edge() -> None:
    payload = make_payload(width=1080, height=1920)

    descriptor = build_descriptor(Path("a.mp4"), ProbeResult(payload), file_size_bytes=1)

    assert descriptor.max_dimension == 1920


@pytest.mark.parametrize(
    ("bits", "pix_fmt", "profile", "codec", "expected"),
    [
        ("12", "yuv420p", None, None, 12),
        ("0", "yuv420p10le", None, None, 10),
        (None, "p010le", None, None, 10),
        (None, "yuv444p12le", None, None, 12),
        (None, "yuv420p", "Main 10", "hevc", 8),
        (None, "nv12", None, None, 8),
        (None, None, "Main 10", "hevc", 10),
        (None, None, "High", "h264", 8),
        (None, "unknown", None, "prores", 10),
        (None, None, None, "mpeg2video", 8),
        (None, None, None, None, 10),
    ],
)
def test_infer_bit_depth_fallback_chain(bits, pix_fmt, profile, codec, expected) -> None:
    assert infer_bit_depth(bits, pix_fmt, profile, codec) == expected


def test_parse_frame_rate() -> None:
    assert parse_frame_rate("30000/1001") == pytest.approx(29.97, rel=1e-4)
    assert parse_frame_rate("25") == 25.0
    assert parse_frame_rate("0/0") == 0.0
    assert parse_frame_rate("30/0") == 0.0
    assert parse_frame_rate(None) == 0.0


def test_probe_result_selectors_drop_unavailable_values() -> None:
    payload = make_payload(audio=[("aac", "48000", 2, "N/A"), ("dts", "48000", 6, "1509000")])
    result = ProbeResult(payload)

    assert result.values("a/codec_name") == ["aac", "dts"]
    assert result.values("a/bit_rate") == ["1509000"]
    assert result.value("a:1/codec_name") == "dts"
    assert result.value("a:5/codec_name") is None
    assert result.value("format/format_name") == "matroska,webm"
    with pytest.raises(ValueError):
        result.values("video/width")


def test_ffprobe_prober_rejects_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ProbeError):
        FFprobeProber().probe(tmp_path / "missing.mkv")


def test_ffprobe_prober_wraps_ffprobe_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = tmp_path / "broken.mkv"
    source.write_bytes(b"garbage")

    def failing_probe(filename, cmd="ffprobe", **kwargs):
        raise ffmpeg.Error(cmd, b"", b"Invalid data found when processing input")

    monkeypatch.setattr(ffmpeg, "probe", failing_probe)

    with pytest.raises(ProbeError, match="Invalid data"):
        FFprobeProber().probe(source)


def test_probe_media_reads_size_from_disk(tmp_path: Path) -> None:
    source = tmp_path / "clip.mkv"
    source.write_bytes(b"\x00" * 5000)
    prober = FakeProber(default=make_payload(bit_rate=None, format_bit_rate=None, duration="1.0"))

    descriptor = probe_media(source, prober)

    assert descriptor.file_size_bytes == 5000
    assert descriptor.bitrate == int(5000 * 8 * 0.9)
    assert prober.calls == [source]
