from __future__ import annotations

from pathlib import Path

import pytest

from common.errors import ExecutionError
from conftest import make_descriptor
from encode_utils.executor import EncoderRun
from encode_utils.planner import EncodePreferences, PreviewSettings, compile_plan
from encode_utils.preview import (
    QualityPreview,
    build_extract_command,
    build_metric_command,
    parse_metric_score,
    resolve_clip_start,
)

VMAF_OUTPUT = "[libvmaf @ 0x55d0c8] VMAF score: 94.871234"
SSIM_OUTPUT = "[Parsed_ssim_0 @ 0x55] SSIM Y:0.981 (17.2) U:0.990 (20.1) V:0.991 (20.5) All:0.985123 (18.26)"
PSNR_OUTPUT = "[Parsed_psnr_0 @ 0x55] PSNR y:41.20 u:44.01 v:44.13 average:42.057 min:38.22 max:48.90"


@pytest.mark.parametrize(
    ("duration", "clip", "start", "expected"),
    [
        (600.0, 10.0, "middle", 300.0),
        (15.0, 10.0, "middle", 5.0),
        (5.0, 10.0, "middle", 0.0),
        (100.0, 10.0, 95.0, 90.0),
        (100.0, 10.0, 20.0, 20.0),
        (0.0, 10.0, "middle", 0.0),
    ],
)
def test_resolve_clip_start(duration, clip, start, expected) -> None:
    assert resolve_clip_start(duration, clip, start) == pytest.approx(expected)


@pytest.mark.parametrize(
    ("metric", "output", "expected"),
    [
        ("vmaf", VMAF_OUTPUT, 94.871234),
        ("ssim", SSIM_OUTPUT, 0.985123),
        ("psnr", PSNR_OUTPUT, 42.057),
    ],
)
def test_parse_metric_score(metric, output, expected) -> None:
    assert parse_metric_score(metric, f"frame=  250\n{output}\n") == pytest.approx(expected)


def test_parse_metric_score_without_summary_is_none() -> None:
    assert parse_metric_score("vmaf", "Error initializing filter 'libvmaf'") is None
    assert parse_metric_score("unknown", VMAF_OUTPUT) is None


def test_extract_command_copies_first_video_stream(tmp_path: Path) -> None:
    cmd = build_extract_command(tmp_path / "in.mkv", tmp_path / "ref.mkv", 300.0, 10.0)

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-ss") + 1] == "300.000"
    assert cmd[cmd.index("-t") + 1] == "10.000"
    assert cmd.index("-ss") < cmd.index("-i")
    assert cmd[cmd.index("-map") + 1] == "0:v:0"
    assert cmd[cmd.index("-c") + 1] == "copy"
    assert str(tmp_path / "ref.mkv") in cmd


def test_metric_command_scores_distorted_against_reference(tmp_path: Path) -> None:
    distorted = tmp_path / "enc.mkv"
    reference = tmp_path / "ref.mkv"

    cmd = build_metric_command("vmaf", distorted, reference)

    inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
    assert inputs == [str(distorted), str(reference)]
    assert "libvmaf" in cmd[cmd.index("-filter_complex") + 1]
    assert cmd[cmd.index("-f") + 1] == "null"


class ScriptedRunner:
    def __init__(self, returncodes=(0, 0, 0), stderr=VMAF_OUTPUT, error: Exception | None = None):
        self.returncodes = list(returncodes)
        self.stderr = stderr
        self.error = error
        self.commands: list[list[str]] = []

    def __call__(self, cmd, show_progress=False):
        self.commands.append(cmd)
        if self.error is not None:
            raise self.error
        for arg in cmd:
            if "preview_" in arg and arg.endswith(".mkv"):
                Path(arg).write_bytes(b"clip")
        return EncoderRun(self.returncodes.pop(0), self.stderr)


@pytest.fixture
def plan(tmp_path: Path, config):
    source = tmp_path / "movie.mkv"
    source.write_bytes(b"\x00" * 1024)
    return compile_plan(make_descriptor(source, duration_seconds=600.0), EncodePreferences(), config, [source])


def _preview(tmp_path: Path, runner, metric: str = "vmaf") -> QualityPreview:
    settings = PreviewSettings(enabled=True, clip_seconds=10.0, metric=metric)
    return QualityPreview(settings, tmp_path / "work", runner)


def test_preview_returns_score_and_cleans_clips(tmp_path: Path, plan) -> None:
    runner = ScriptedRunner()

    score = _preview(tmp_path, runner).run(plan)

    assert score == pytest.approx(94.871234)
    assert len(runner.commands) == 3
    assert list((tmp_path / "work").glob("preview_*")) == []


def test_preview_encodes_clip_with_plan_settings(tmp_path: Path, plan) -> None:
    runner = ScriptedRunner()

    _preview(tmp_path, runner).run(plan)

    encode = runner.commands[1]
    assert encode[encode.index("-c:v") + 1] == plan.encoder
    assert encode[encode.index("-b:v") + 1] == f"{plan.rate.as_kbps()[0]}k"
    assert "-an" in encode


def test_failed_extraction_returns_none_without_further_steps(tmp_path: Path, plan) -> None:
    runner = ScriptedRunner(returncodes=(1,))

    assert _preview(tmp_path, runner).run(plan) is None
    assert len(runner.commands) == 1


def test_unparsable_metric_output_returns_none(tmp_path: Path, plan) -> None:
    runner = ScriptedRunner(stderr="no summary here")

    assert _preview(tmp_path, runner).run(plan) is None


def test_runner_error_returns_none(tmp_path: Path, plan) -> None:
    runner = ScriptedRunner(error=ExecutionError(-1, "ffmpeg not found"))

    assert _preview(tmp_path, runner).run(plan) is None


def test_preview_never_changes_the_plan(tmp_path: Path, plan) -> None:
    before = plan

    _preview(tmp_path, ScriptedRunner(), metric="ssim").run(plan)

    assert plan == before
