"""
Encoder command construction.

Builds the ffmpeg argument vectors for a compiled plan: the single-phase
hardware encode, both phases of a software two-pass encode, and the clip
encode used by the quality preview.
"""

import os
from pathlib import Path
from typing import List, Optional, Tuple

from common.constants import UNKNOWN

from .compatibility import StreamMapMode
from .planner import ConversionPlan

FASTSTART_MUXERS = {"mp4", "mov"}


def input_args(plan: ConversionPlan, source: Path, ffmpeg_cmd: str = "ffmpeg") -> List[str]:
    """Global options, hardware decode flags and the input."""
    args = [ffmpeg_cmd, "-hide_banner", "-nostdin", "-y"]
    flag = plan.hardware_accel.hwaccel_flag
    if flag:
        args += ["-hwaccel", flag]
    args += ["-i", str(source)]
    return args


def video_args(plan: ConversionPlan) -> List[str]:
    """Encoder, preset, VBR ladder, pixel format and carried HDR signalling."""
    average, max_rate, buffer_size = plan.rate.as_kbps()
    args = ["-c:v", plan.encoder]
    if plan.encoder_preset:
        args += ["-preset", plan.encoder_preset]
    args += [
        "-b:v", f"{average}k",
        "-maxrate", f"{max_rate}k",
        "-bufsize", f"{buffer_size}k",
        "-pix_fmt", plan.pixel_format,
    ]

    if plan.hdr_carry_through and plan.color is not None:
        for option, value in (
                ("-color_primaries", plan.color.primaries),
                ("-color_trc", plan.color.transfer),
                ("-colorspace", plan.color.space),
                ("-color_range", plan.color.range),
        ):
            if value and value != UNKNOWN:
                args += [option, value]
    return args


def stream_map_args(plan: ConversionPlan) -> List[str]:
    """Map the first video stream, the planned audio streams and subtitles if kept."""
    args = ["-map", "0:v:0"]
    if plan.audio.stream_map is StreamMapMode.FIRST_AUDIO_ONLY:
        args += ["-map", "0:a:0?"]
    else:
        args += ["-map", "0:a?"]
    if plan.preserve_subtitles:
        args += ["-map", "0:s?"]
    return args


def audio_args(plan: ConversionPlan) -> List[str]:
    audio = plan.audio
    if audio.is_copy:
        return ["-c:a", "copy"]

    args = ["-c:a", audio.codec]
    if audio.bitrate:
        args += ["-b:a", audio.bitrate]
    if audio.sample_rate:
        args += ["-ar", str(audio.sample_rate)]
    return args


def output_args(plan: ConversionPlan) -> List[str]:
    """Subtitle codec, muxer options and the temp output path."""
    args = []
    if plan.preserve_subtitles:
        args += ["-c:s", "copy"]
    args += ["-f", plan.muxer]
    if plan.muxer in FASTSTART_MUXERS:
        args += ["-movflags", "+faststart"]
    args.append(str(plan.temp_path))
    return args


def pass_args(plan: ConversionPlan, pass_number: int, passlog: Path) -> List[str]:
    """
    Rate-control pass options.

    libx265 keeps its statistics through ``-x265-params`` and resolves the
    stats path against the working directory, so only the file name is
    passed. Other encoders take an absolute ``-passlogfile`` prefix.
    """
    if plan.encoder == "libx265":
        return ["-x265-params", f"pass={pass_number}:stats={passlog.name}.log"]
    return ["-pass", str(pass_number), "-passlogfile", str(passlog)]


def build_single_pass_command(plan: ConversionPlan, ffmpeg_cmd: str = "ffmpeg") -> List[str]:
    """One invocation carrying the full stream map, video, audio and output."""
    return (
            input_args(plan, plan.source_path, ffmpeg_cmd)
            + stream_map_args(plan)
            + video_args(plan)
            + audio_args(plan)
            + output_args(plan)
    )


def build_two_pass_commands(
        plan: ConversionPlan,
        passlog: Path,
        ffmpeg_cmd: str = "ffmpeg",
) -> Tuple[List[str], List[str]]:
    """
    Build the analysis and final commands of a two-pass encode.

    Pass 1 encodes video only into the null muxer to collect statistics;
    pass 2 performs the real encode with audio and subtitles, reading the
    same statistics.
    """
    first = (
            input_args(plan, plan.source_path, ffmpeg_cmd)
            + ["-map", "0:v:0"]
            + video_args(plan)
            + pass_args(plan, 1, passlog)
            + ["-an", "-sn", "-f", "null", os.devnull]
    )
    second = (
            input_args(plan, plan.source_path, ffmpeg_cmd)
            + stream_map_args(plan)
            + video_args(plan)
            + pass_args(plan, 2, passlog)
            + audio_args(plan)
            + output_args(plan)
    )
    return first, second


def build_clip_encode_command(
        plan: ConversionPlan,
        clip: Path,
        destination: Path,
        ffmpeg_cmd: str = "ffmpeg",
        muxer: Optional[str] = "matroska",
) -> List[str]:
    """Encode a preview clip with the plan's video settings, single pass, no audio."""
    args = input_args(plan, clip, ffmpeg_cmd) + ["-map", "0:v:0"] + video_args(plan) + ["-an", "-sn"]
    if muxer:
        args += ["-f", muxer]
    args.append(str(destination))
    return args
