"""
Quality preview guardrail.

Encodes a short clip of the source with the plan's video settings and
scores it against the untouched clip with a perceptual metric. The score is
advisory only: it is logged and reported, the plan is never changed and a
failed preview never fails the file.
"""

import logging
import re
import uuid
from pathlib import Path
from typing import Callable, List, Optional, Union

import ffmpeg

from common.constants import PREVIEW_PREFIX
from common.errors import ExecutionError
from common.file_manager import ensure_directory_exists, remove_matching

from .commands import build_clip_encode_command
from .planner import ConversionPlan, PreviewSettings

logger = logging.getLogger(__name__)

METRIC_FILTERS = {
    "vmaf": "libvmaf",
    "ssim": "ssim",
    "psnr": "psnr",
}

_SCORE_PATTERNS = {
    "vmaf": re.compile(r"VMAF score[:=]\s*([0-9]+(?:\.[0-9]+)?)"),
    "ssim": re.compile(r"SSIM\b.*?All:\s*([0-9]+(?:\.[0-9]+)?)"),
    "psnr": re.compile(r"PSNR\b.*?average:\s*([0-9]+(?:\.[0-9]+)?|inf)"),
}


def resolve_clip_start(duration_seconds: float, clip_seconds: float, start: Union[str, float]) -> float:
    """
    Return the clip start offset in seconds.

    ``"middle"`` means half the duration. When the clip would run past the
    end of the source the start backs off to ``max(0, duration - clip)``.
    """
    if isinstance(start, str):
        if start.strip().lower() == "middle":
            offset = duration_seconds / 2 if duration_seconds > 0 else 0.0
        else:
            offset = float(start)
    else:
        offset = float(start)

    offset = max(0.0, offset)
    if duration_seconds > 0 and offset + clip_seconds > duration_seconds:
        offset = max(0.0, duration_seconds - clip_seconds)
    return offset


def parse_metric_score(metric: str, output: str) -> Optional[float]:
    """Extract the summary score from metric engine output, None when absent."""
    pattern = _SCORE_PATTERNS.get(metric)
    if pattern is None:
        return None

    matches = pattern.findall(output)
    if not matches:
        return None
    # The summary line comes last
    return float(matches[-1])


def build_extract_command(
        source: Path,
        destination: Path,
        start: float,
        clip_seconds: float,
        ffmpeg_cmd: str = "ffmpeg",
) -> List[str]:
    """Cut the reference clip by stream copy, first video stream only."""
    stream = ffmpeg.input(str(source), ss=f"{start:.3f}", t=f"{clip_seconds:.3f}")
    return (
        stream["v:0"]
        .output(str(destination), c="copy")
        .global_args("-hide_banner", "-nostdin")
        .overwrite_output()
        .compile(cmd=ffmpeg_cmd)
    )


def build_metric_command(
        metric: str,
        distorted: Path,
        reference: Path,
        ffmpeg_cmd: str = "ffmpeg",
) -> List[str]:
    """Score ``distorted`` against ``reference`` into the null muxer."""
    filter_name = METRIC_FILTERS[metric]
    graph = ffmpeg.filter([ffmpeg.input(str(distorted)), ffmpeg.input(str(reference))], filter_name)
    return (
        ffmpeg.output(graph, "-", f="null")
        .global_args("-hide_banner", "-nostdin")
        .compile(cmd=ffmpeg_cmd)
    )


class QualityPreview:
    """Runs the short-clip quality preview for a plan."""

    def __init__(
            self,
            settings: PreviewSettings,
            work_dir: Path,
            runner: Callable,
            ffmpeg_cmd: str = "ffmpeg",
    ):
        self.settings = settings
        self.work_dir = work_dir.resolve()
        self.runner = runner
        self.ffmpeg_cmd = ffmpeg_cmd

    def run(self, plan: ConversionPlan) -> Optional[float]:
        """
        Encode and score one clip.

        Returns:
            The metric score, or None when any step fails or the score
            cannot be read
        """
        settings = self.settings
        start = resolve_clip_start(plan.duration_seconds, settings.clip_seconds, settings.start)
        token = uuid.uuid4().hex[:8]
        reference = self.work_dir / f"{PREVIEW_PREFIX}{token}_ref.mkv"
        distorted = self.work_dir / f"{PREVIEW_PREFIX}{token}_enc.mkv"

        logger.info(
            f"Preview for {plan.source_path.name}: {settings.clip_seconds:.0f}s clip at {start:.1f}s, "
            f"metric {settings.metric}"
        )

        try:
            ensure_directory_exists(self.work_dir)

            run = self.runner(
                build_extract_command(plan.source_path, reference, start, settings.clip_seconds, self.ffmpeg_cmd)
            )
            if run.returncode != 0:
                logger.warning(f"Preview clip extraction failed for {plan.source_path.name} (exit {run.returncode})")
                return None

            run = self.runner(build_clip_encode_command(plan, reference, distorted, self.ffmpeg_cmd))
            if run.returncode != 0:
                logger.warning(f"Preview clip encode failed for {plan.source_path.name} (exit {run.returncode})")
                return None

            run = self.runner(build_metric_command(settings.metric, distorted, reference, self.ffmpeg_cmd))
            if run.returncode != 0:
                logger.warning(f"Preview scoring failed for {plan.source_path.name} (exit {run.returncode})")
                return None

            score = parse_metric_score(settings.metric, run.stderr_tail)
            if score is None:
                logger.warning(f"Could not read {settings.metric} score for {plan.source_path.name}")
                return None

            logger.info(f"Preview {settings.metric.upper()} for {plan.source_path.name}: {score:.3f}")
            return score

        except ExecutionError as e:
            logger.warning(f"Preview skipped for {plan.source_path.name}: {e}")
            return None
        finally:
            remove_matching(self.work_dir, [f"{PREVIEW_PREFIX}{token}_*"])
