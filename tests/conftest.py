from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from common.config import EncoderConfig, build_encoder_config
from common.errors import ProbeError
from encode_utils.executor import EncoderRun
from encode_utils.probe import AudioStreamDescriptor, BitrateProvenance, MediaDescriptor, ProbeResult


def make_payload(
    *,
    width: Any = 1920,
    height: Any = 1080,
    avg_frame_rate: str = "30/1",
    r_frame_rate: str | None = None,
    codec: str = "h264",
    pix_fmt: str | None = "yuv420p",
    profile: str | None = "High",
    bit_rate: str | None = "6000000",
    duration: str | None = "120.000000",
    format_bit_rate: str | None = "6500000",
    format_duration: str | None = None,
    format_name: str = "matroska,webm",
    bits_per_raw_sample: str | None = None,
    color: dict | None = None,
    audio: Iterable[tuple] = (("aac", "48000", 2, "192000"),),
) -> dict:
    """Build an ffprobe ``-show_format -show_streams`` JSON document."""
    video = {
        "index": 0,
        "codec_type": "video",
        "codec_name": codec,
        "width": width,
        "height": height,
        "avg_frame_rate": avg_frame_rate,
        "r_frame_rate": r_frame_rate or avg_frame_rate,
        "pix_fmt": pix_fmt,
        "profile": profile,
        "bit_rate": bit_rate,
        "duration": duration,
        "bits_per_raw_sample": bits_per_raw_sample,
    }
    video.update(color or {})

    streams = [{k: v for k, v in video.items() if v is not None}]
    for index, (audio_codec, sample_rate, channels, audio_bit_rate) in enumerate(audio, start=1):
        stream = {
            "index": index,
            "codec_type": "audio",
            "codec_name": audio_codec,
            "sample_rate": sample_rate,
            "channels": channels,
            "bit_rate": audio_bit_rate,
        }
        streams.append({k: v for k, v in stream.items() if v is not None})

    fmt = {
        "format_name": format_name,
        "duration": format_duration or duration,
        "bit_rate": format_bit_rate,
    }
    return {"streams": streams, "format": {k: v for k, v in fmt.items() if v is not None}}


def make_descriptor(path: Path, **overrides: Any) -> MediaDescriptor:
    values = {
        "path": path,
        "width": 1920,
        "height": 1080,
        "fps": 30.0,
        "duration_seconds": 120.0,
        "video_codec": "h264",
        "pixel_format": "yuv420p",
        "bit_depth": 8,
        "bitrate": 6_000_000,
        "bitrate_provenance": BitrateProvenance.MEASURED,
        "container_format": "matroska,webm",
        "file_size_bytes": 1024,
        "audio_streams": (AudioStreamDescriptor("aac", 192_000, 2, 48000),),
    }
    values.update(overrides)
    return MediaDescriptor(**values)


class FakeProber:
    """Answers probes from canned payloads keyed by file name."""

    def __init__(self, payloads: dict | None = None, default: dict | None = None, failures: Iterable[str] = ()):
        self.payloads = payloads or {}
        self.default = default or make_payload()
        self.failures = set(failures)
        self.calls: list[Path] = []

    def probe(self, path: Path) -> ProbeResult:
        self.calls.append(path)
        if path.name in self.failures:
            raise ProbeError(f"ffprobe failed for '{path}'")
        return ProbeResult(self.payloads.get(path.name, self.default))


class RecordingRunner:
    """Stands in for ffmpeg: records each command and the directory it ran in.

    On success it writes the ``.tmp`` output named at the end of the command
    and the statistics files a two-pass encoder leaves in its working
    directory.
    """

    def __init__(
        self,
        fail_on: Callable[[list[str]], int] | None = None,
        write_output: bool = True,
        stderr: str = "",
    ):
        self.fail_on = fail_on
        self.write_output = write_output
        self.stderr = stderr
        self.calls: list[tuple[list[str], Path]] = []
        self.stats_files: list[Path] = []

    def _write_stats(self, path: Path) -> None:
        path.write_text("stats")
        self.stats_files.append(path.resolve())

    @property
    def commands(self) -> list[list[str]]:
        return [cmd for cmd, _ in self.calls]

    def __call__(self, cmd: list[str], show_progress: bool = False) -> EncoderRun:
        self.calls.append((list(cmd), Path.cwd()))

        if "-passlogfile" in cmd:
            self._write_stats(Path(cmd[cmd.index("-passlogfile") + 1] + "-0.log"))
        if "-x265-params" in cmd:
            # libx265 resolves stats= against the working directory
            params = dict(item.split("=", 1) for item in cmd[cmd.index("-x265-params") + 1].split(":"))
            stats = Path(params["stats"])
            self._write_stats(stats)
            self._write_stats(stats.with_name(f"{stats.name}.cutree"))

        code = self.fail_on(cmd) if self.fail_on else 0
        if code:
            return EncoderRun(code, "Conversion failed!")

        if self.write_output and cmd[-1].endswith(".tmp"):
            Path(cmd[-1]).write_bytes(b"encoded")
        return EncoderRun(0, self.stderr)


@pytest.fixture
def config() -> EncoderConfig:
    return build_encoder_config()


@pytest.fixture
def media_tree(tmp_path: Path) -> Path:
    """A source directory with two small fake media files."""
    source = tmp_path / "media"
    (source / "season1").mkdir(parents=True)
    (source / "movie.mkv").write_bytes(b"\x00" * 4096)
    (source / "season1" / "episode.mkv").write_bytes(b"\x00" * 2048)
    return source
