#!/usr/bin/env python3
"""
Batch Media Encoder: Plans and runs re-encodes for a tree of media files.

This script processes media files by:
- Scanning the source directory for video files
- Probing each file and compiling a conversion plan
- Optionally scoring a short preview clip of the planned encode
- Encoding through a crash-safe temp file and promoting it on success
- Reporting completed, skipped and failed files
"""

import argparse
import dataclasses
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

# Add src directory to Python path for imports
sys.path.insert(0, str(Path(__file__).parent))

from common import (
    DEFAULT_LOG_LEVEL,
    INPUT_FOLDER,
    LOG_DIR,
    OUTPUT_FOLDER,
    WORK_FOLDER,
    ConfigError,
    EncoderConfig,
    PlanRejectionError,
    ProbeError,
    ensure_directory_exists,
    get_available_space,
    load_encoder_config,
    scan_media_files,
    setup_logging,
)
from common.constants import (
    DEFAULT_AUDIO_CODEC,
    DEFAULT_BITRATE_MODIFIER,
    DEFAULT_OUTPUT_CONTAINER,
    DEFAULT_VIDEO_CODEC,
    OUTPUT_SETTLE_SECONDS,
    PREVIEW_CLIP_SECONDS,
    PREVIEW_METRIC,
    PREVIEW_METRICS,
    PREVIEW_START,
)
from encode_utils import (
    ConversionPlan,
    EncodePreferences,
    ExecutionEngine,
    ExecutionResult,
    ExecutionStatus,
    FailureKind,
    FFprobeProber,
    PreviewSettings,
    QualityPreview,
    cleanup_all_processes,
    compile_plan,
    describe_color,
    exclude_planned_outputs,
    probe_media,
    recover_interrupted_run,
    run_encoder,
    validate_preferences,
)


@dataclass
class BatchSummary:
    """Counters and per-file results of one batch run."""

    results: List[ExecutionResult] = field(default_factory=list)
    interrupted: bool = False

    def add(self, result: ExecutionResult) -> None:
        self.results.append(result)

    def _count(self, status: ExecutionStatus) -> int:
        return sum(1 for result in self.results if result.status is status)

    @property
    def completed(self) -> int:
        return self._count(ExecutionStatus.SUCCESS)

    @property
    def skipped(self) -> int:
        return self._count(ExecutionStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(ExecutionStatus.FAILED)

    @property
    def input_bytes(self) -> int:
        return sum(r.input_size_bytes for r in self.results if r.status is ExecutionStatus.SUCCESS)

    @property
    def output_bytes(self) -> int:
        return sum(r.output_size_bytes for r in self.results if r.status is ExecutionStatus.SUCCESS)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed or self.interrupted else 0


class BatchEncoder:
    """Plans and encodes every media file of a source tree, one at a time."""

    def __init__(
            self,
            preferences: Optional[EncodePreferences] = None,
            config: Optional[EncoderConfig] = None,
            dry_run: bool = False,
            log_level: str = DEFAULT_LOG_LEVEL,
            work_dir: Optional[Path] = None,
            show_progress: bool = False,
            prober: Optional[FFprobeProber] = None,
            runner: Optional[Callable] = None,
            settle_seconds: float = OUTPUT_SETTLE_SECONDS,
            install_signal_handlers: bool = True,
            log_dir: Optional[Path] = None,
            enable_console: bool = True,
    ):
        """
        Initialize the Batch Encoder.

        Args:
            preferences: Batch-wide encode preferences
            config: Validated encoder configuration, loaded from defaults if omitted
            dry_run: Plan every file and log the plans without encoding
            log_level: Logging level
            work_dir: Workspace for two-pass statistics and preview clips
            show_progress: Echo encoder progress lines to the console
            prober: Media prober, defaults to ffprobe
            runner: Encoder runner, defaults to running ffmpeg
            settle_seconds: Wait before reading the size of a finished output
            install_signal_handlers: Terminate child encoders on SIGINT/SIGTERM
            log_dir: Directory for log files
            enable_console: Whether to log to the console
        """
        self.preferences = preferences or EncodePreferences()
        self.config = config or load_encoder_config()
        self.dry_run = dry_run
        self.work_dir = (work_dir or Path(WORK_FOLDER)).resolve()
        self.prober = prober or FFprobeProber()
        self.runner = runner or run_encoder

        # Set up logging
        self.logger = setup_logging(
            log_level=log_level,
            log_dir=log_dir or Path(LOG_DIR),
            enable_console=enable_console,
        )

        self.engine = ExecutionEngine(
            self.work_dir,
            runner=self.runner,
            show_progress=show_progress,
            settle_seconds=settle_seconds,
        )
        self.preview = None
        if self.preferences.preview.enabled:
            self.preview = QualityPreview(self.preferences.preview, self.work_dir, self.runner)

        # Set up signal handlers for graceful shutdown
        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._signal_handler)
            try:
                signal.signal(signal.SIGTERM, self._signal_handler)
            except (AttributeError, OSError):
                pass

        self.logger.info(
            "Batch Encoder initialized",
            dry_run=dry_run,
            video_codec=self.preferences.video_codec,
            container=self.preferences.output_container,
        )

    def _signal_handler(self, signum, _frame):
        """Terminate running encoders and unwind the batch."""
        self.logger.info(f"Received signal {signum}, shutting down gracefully...")

        # Clean up all active subprocesses
        cleanup_all_processes()
        raise KeyboardInterrupt

    def run(self, source_dir: Union[str, Path, None] = None) -> BatchSummary:
        """
        Run the batch.

        Raises:
            ConfigError: If the preferences are invalid for the configuration
        """
        source_root = Path(source_dir or INPUT_FOLDER).resolve()
        validate_preferences(self.preferences, self.config)

        output_dir = self.preferences.output_dir.resolve() if self.preferences.output_dir else None
        if output_dir is not None and output_dir != self.preferences.output_dir:
            self.preferences = dataclasses.replace(self.preferences, output_dir=output_dir)

        self.logger.info(f"Starting batch encode from: {source_root}")
        summary = BatchSummary()

        try:
            self._recover(output_dir or source_root)

            exclude = [self.work_dir] + ([output_dir] if output_dir else [])
            scanned = list(scan_media_files(source_root, exclude=exclude))
            sources = exclude_planned_outputs(scanned, self.preferences, source_root)
            if not sources:
                self.logger.info("No files to process")
                return summary

            self.logger.info(f"Found {len(sources)} files to process")

            for index, source in enumerate(sources, start=1):
                self.logger.info(f"[{index}/{len(sources)}] {source.name}")
                summary.add(self.process_file(source, sources, source_root))

        except KeyboardInterrupt:
            summary.interrupted = True
            self.logger.info("Processing interrupted by user")
        finally:
            self._log_summary(summary)

        return summary

    def _recover(self, output_root: Path) -> None:
        if self.dry_run:
            self.logger.debug("DRY RUN: Skipping recovery of interrupted runs")
            return

        ensure_directory_exists(self.work_dir)
        removed = recover_interrupted_run([output_root], self.work_dir, self.config.containers.keys())
        for path in removed:
            self.logger.log_cleanup(path, "left by an interrupted run")

    def process_file(
            self,
            source: Path,
            batch_sources: Sequence[Path],
            source_root: Optional[Path] = None,
    ) -> ExecutionResult:
        """Probe, plan, optionally preview and encode one file."""
        try:
            descriptor = probe_media(source, self.prober, self.config.assumed_audio_bitrate)
        except ProbeError as e:
            self.logger.log_encode_step("probe", source, False, {"error": str(e)})
            return ExecutionResult.failed(source, FailureKind.PROBE_FAILED, str(e))

        self.logger.log_encode_step(
            "probe",
            source,
            True,
            {
                "resolution": f"{descriptor.width}x{descriptor.height}",
                "fps": round(descriptor.fps, 3),
                "bitrate": descriptor.bitrate,
                "bitrate_provenance": descriptor.bitrate_provenance.value,
                "bit_depth": descriptor.bit_depth,
            },
        )

        try:
            plan = compile_plan(descriptor, self.preferences, self.config, batch_sources, source_root)
        except PlanRejectionError as e:
            self.logger.info(f"Skipping {source.name}: {e.reason}")
            self.logger.log_encode_step("plan", source, True, {"skipped": e.reason})
            return ExecutionResult.skipped(source, e.reason)

        self.logger.log_encode_step("plan", source, True, self._plan_details(plan))

        if self.dry_run:
            self.logger.info(f"DRY RUN: Would encode {source} -> {plan.output_path}")
            return ExecutionResult(
                source_path=source,
                status=ExecutionStatus.SKIPPED,
                input_size_bytes=descriptor.file_size_bytes,
                failure_reason="dry run",
            )

        self._check_disk_space(plan, descriptor.file_size_bytes)

        score = None
        if self.preview is not None:
            score = self.preview.run(plan)
            self.logger.log_encode_step(
                "preview",
                source,
                score is not None,
                {"metric": self.preferences.preview.metric, "score": score},
            )

        result = self.engine.execute(plan)
        if score is not None:
            result = dataclasses.replace(result, preview_score=score)

        self.logger.log_encode_step(
            "encode",
            source,
            result.status is ExecutionStatus.SUCCESS,
            {
                "output": str(plan.output_path),
                "elapsed_seconds": round(result.elapsed_seconds, 1),
                "input_size": result.input_size_bytes,
                "output_size": result.output_size_bytes,
                "error": result.failure_reason,
            },
        )
        return result

    def _plan_details(self, plan: ConversionPlan) -> dict:
        return {
            "output": str(plan.output_path),
            "encoder": plan.encoder,
            "hardware_accel": plan.hardware_accel.value,
            "profile": plan.rate.profile_name,
            "average_bitrate": plan.rate.average_bitrate,
            "max_rate": plan.rate.max_rate,
            "buffer_size": plan.rate.buffer_size,
            "source_cap_applied": plan.rate.source_cap_applied,
            "bit_depth": plan.target_bit_depth,
            "audio": plan.audio.codec,
            "audio_map": plan.audio.stream_map.value,
            "color": describe_color(plan.color),
        }

    def _check_disk_space(self, plan: ConversionPlan, input_size: int) -> None:
        directory = plan.output_path.parent
        while not directory.exists() and directory != directory.parent:
            directory = directory.parent

        available = get_available_space(directory)
        if 0 < available < input_size:
            self.logger.warning(
                f"Low disk space for {plan.source_path.name}: "
                f"{available / 1024 / 1024:.0f} MB free, source is {input_size / 1024 / 1024:.0f} MB"
            )

    def _log_summary(self, summary: BatchSummary) -> None:
        saved = summary.input_bytes - summary.output_bytes
        self.logger.info(
            f"Batch encode completed - "
            f"Completed: {summary.completed}, "
            f"Skipped: {summary.skipped}, "
            f"Failed: {summary.failed}, "
            f"Input: {summary.input_bytes / 1024 / 1024:.1f} MB, "
            f"Output: {summary.output_bytes / 1024 / 1024:.1f} MB, "
            f"Saved: {saved / 1024 / 1024:.1f} MB"
        )
        for result in summary.results:
            if result.status is ExecutionStatus.FAILED:
                self.logger.error(
                    f"Failed: {result.source_path} ({result.failure_kind.value}): {result.failure_reason}"
                )


def parse_preview_start(value: str) -> Union[str, float]:
    """argparse type for --preview-start: ``middle`` or a number of seconds."""
    if value.strip().lower() == "middle":
        return "middle"
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected 'middle' or seconds, got '{value}'")
    if seconds < 0:
        raise argparse.ArgumentTypeError("preview start must not be negative")
    return seconds


def build_preferences(args: argparse.Namespace) -> EncodePreferences:
    """Translate parsed CLI arguments into batch preferences."""
    return EncodePreferences(
        video_codec=args.codec,
        output_container=args.container,
        preserve_audio=not args.no_preserve_audio,
        audio_codec=args.audio_codec,
        bitrate_modifier=args.bitrate_modifier,
        skip_existing=args.skip_existing,
        hardware_decode=not args.no_hw_decode,
        encoder_preset=args.preset,
        target_bit_depth=args.bit_depth,
        output_dir=Path(args.output_dir) if args.output_dir else None,
        preview=PreviewSettings(
            enabled=args.preview,
            clip_seconds=args.preview_seconds,
            start=args.preview_start,
            metric=args.preview_metric,
        ),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Batch media encoder - plans and runs re-encodes with ffmpeg",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
 Examples:
   %(prog)s                                    # Encode from the default source directory
   %(prog)s /path/to/media                    # Encode from a custom directory
   %(prog)s --codec libx265 --container mkv   # Two-pass software HEVC into Matroska
   %(prog)s --container keep --skip-existing  # Keep source containers, resume a batch
   %(prog)s --preview --preview-metric ssim   # Score a clip before each encode
   %(prog)s --dry-run                         # Show plans without encoding

   %(prog)s --log-level DEBUG                 # Enable debug logging
        """,
    )

    parser.add_argument(
        "source_dir",
        nargs="?",
        help=f"Source directory containing media files to encode (default: {INPUT_FOLDER})",
    )

    parser.add_argument(
        "--output-dir",
        default=OUTPUT_FOLDER,
        help="Write outputs under this directory, mirroring the source tree (default: beside each source)",
    )

    parser.add_argument(
        "--work-dir",
        help=f"Workspace for two-pass statistics and preview clips (default: {WORK_FOLDER})",
    )

    parser.add_argument(
        "--skip-existing",
        action="store_true",
        help="Skip files whose output already exists",
    )

    parser.add_argument(
        "--codec",
        default=DEFAULT_VIDEO_CODEC,
        help=f"Video encoder to use (default: {DEFAULT_VIDEO_CODEC})",
    )

    parser.add_argument(
        "--container",
        default=DEFAULT_OUTPUT_CONTAINER,
        help=f"Output container extension, or 'keep' for the source container (default: {DEFAULT_OUTPUT_CONTAINER})",
    )

    parser.add_argument(
        "--bitrate-modifier",
        type=float,
        default=DEFAULT_BITRATE_MODIFIER,
        help=f"Multiplier applied to the profile bitrate (default: {DEFAULT_BITRATE_MODIFIER})",
    )

    parser.add_argument(
        "--no-preserve-audio",
        action="store_true",
        help="Always re-encode audio instead of copying compatible streams",
    )

    parser.add_argument(
        "--audio-codec",
        default=DEFAULT_AUDIO_CODEC,
        help=f"Audio encoder used when audio is re-encoded (default: {DEFAULT_AUDIO_CODEC})",
    )

    parser.add_argument(
        "--preset",
        help="Encoder preset override (default: per codec)",
    )

    parser.add_argument(
        "--bit-depth",
        type=int,
        choices=[8, 10],
        help="Target bit depth override (default: follow the source)",
    )

    parser.add_argument(
        "--no-hw-decode",
        action="store_true",
        help="Decode in software even when hardware decoding is available",
    )

    parser.add_argument(
        "--preview",
        action="store_true",
        help="Encode and score a short clip before each file (advisory only)",
    )

    parser.add_argument(
        "--preview-seconds",
        type=float,
        default=PREVIEW_CLIP_SECONDS,
        help=f"Preview clip length in seconds (default: {PREVIEW_CLIP_SECONDS:g})",
    )

    parser.add_argument(
        "--preview-start",
        type=parse_preview_start,
        default=PREVIEW_START,
        help=f"Preview clip start, 'middle' or seconds (default: {PREVIEW_START})",
    )

    parser.add_argument(
        "--preview-metric",
        choices=list(PREVIEW_METRICS),
        default=PREVIEW_METRIC,
        help=f"Perceptual metric for the preview (default: {PREVIEW_METRIC})",
    )

    parser.add_argument(
        "--config",
        help="JSON file overriding the rate ladder, codec table or container matrix",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compile and log plans without encoding",
    )

    parser.add_argument(
        "--show-progress",
        action="store_true",
        help="Show encoder progress lines",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN", "ERROR"],
        default=DEFAULT_LOG_LEVEL,
        help="Logging level (default: INFO)",
    )

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    try:
        config = load_encoder_config(Path(args.config) if args.config else None)
        encoder = BatchEncoder(
            preferences=build_preferences(args),
            config=config,
            dry_run=args.dry_run,
            log_level=args.log_level,
            work_dir=Path(args.work_dir) if args.work_dir else None,
            show_progress=args.show_progress,
        )
        summary = encoder.run(args.source_dir)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(1)

    sys.exit(summary.exit_code)


if __name__ == "__main__":
    main()
