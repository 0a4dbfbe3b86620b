"""
Execution engine for compiled conversion plans.

Drives ffmpeg through either a two-pass software encode or a single-pass
hardware encode. Output is always written to ``<final>.tmp`` and only
renamed to the final name after a zero exit status, so an interrupted run
never leaves a half-written file under the final name. Leftovers from a
killed run are removed by ``recover_interrupted_run`` at the next start.
"""

import atexit
import logging
import os
import subprocess
import sys
import time
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Set

from common.constants import (
    OUTPUT_SETTLE_SECONDS,
    PASS_ARTIFACT_PATTERNS,
    PASSLOG_PREFIX,
    PROGRESS_MARKERS,
    STDERR_TAIL_LINES,
)
from common.errors import ExecutionError, FinalizationError
from common.file_manager import (
    FileOperationError,
    atomic_replace,
    ensure_directory_exists,
    find_leftover_temp_files,
    get_file_size,
    remove_file,
    remove_matching,
)

from .commands import build_single_pass_command, build_two_pass_commands
from .planner import ConversionPlan

logger = logging.getLogger(__name__)

# Global set to track all active subprocesses
_active_processes: Set[subprocess.Popen] = set()


def _register_process(process: subprocess.Popen) -> None:
    """Register a process for tracking and cleanup."""
    _active_processes.add(process)


def _unregister_process(process: subprocess.Popen) -> None:
    """Unregister a process from tracking."""
    _active_processes.discard(process)


def cleanup_all_processes() -> None:
    """Terminate all tracked subprocesses."""
    if _active_processes:
        logger.info(f"Cleaning up {len(_active_processes)} active processes...")
    for process in list(_active_processes):
        try:
            if process.poll() is None:  # Process is still running
                process.terminate()
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    logger.warning("Process didn't terminate, killing...")
                    process.kill()
                    process.wait()
        except OSError as e:
            logger.error(f"Error cleaning up process: {e}")
    _active_processes.clear()


# Register cleanup function for atexit
atexit.register(cleanup_all_processes)


class ExecutionStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class FailureKind(Enum):
    PROBE_FAILED = "ProbeFailed"
    PLAN_REJECTED = "PlanRejected"
    ENCODE_FAILED = "EncodeFailed"
    RENAME_FAILED = "RenameFailed"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one file."""

    source_path: Path
    status: ExecutionStatus
    input_size_bytes: int = 0
    output_size_bytes: int = 0
    elapsed_seconds: float = 0.0
    failure_kind: Optional[FailureKind] = None
    failure_reason: Optional[str] = None
    preview_score: Optional[float] = None

    @classmethod
    def skipped(cls, source: Path, reason: str) -> "ExecutionResult":
        return cls(
            source_path=source,
            status=ExecutionStatus.SKIPPED,
            input_size_bytes=get_file_size(source),
            failure_kind=FailureKind.PLAN_REJECTED,
            failure_reason=reason,
        )

    @classmethod
    def failed(cls, source: Path, kind: FailureKind, reason: str, elapsed: float = 0.0) -> "ExecutionResult":
        return cls(
            source_path=source,
            status=ExecutionStatus.FAILED,
            input_size_bytes=get_file_size(source),
            elapsed_seconds=elapsed,
            failure_kind=kind,
            failure_reason=reason,
        )


@dataclass(frozen=True)
class EncoderRun:
    """Exit status and the last lines of stderr from one encoder invocation."""

    returncode: int
    stderr_tail: str = ""


Runner = Callable[..., EncoderRun]


class EncoderStrategy:
    """How a plan is driven through the encoder."""

    name = "base"


@dataclass(frozen=True)
class TwoPhaseSoftware(EncoderStrategy):
    """Pass 1 collects rate-control statistics, pass 2 writes the output."""

    name = "two-phase-software"


@dataclass(frozen=True)
class SinglePhaseHardware(EncoderStrategy):
    """One invocation with the full stream map."""

    name = "single-phase-hardware"


def strategy_for(plan: ConversionPlan) -> EncoderStrategy:
    """Software encoders use two-pass rate control, hardware encoders a single pass."""
    if plan.is_software_encoder:
        return TwoPhaseSoftware()
    return SinglePhaseHardware()


def run_encoder(cmd: List[str], show_progress: bool = False) -> EncoderRun:
    """
    Run one encoder invocation and wait for it to exit.

    stderr is streamed line by line; lines starting with a progress marker
    are echoed to the console when ``show_progress`` is set. Only the exit
    status decides success.

    Raises:
        ExecutionError: If the encoder binary cannot be started
    """
    logger.debug(f"Running encoder: {' '.join(cmd)}")
    tail: deque = deque(maxlen=STDERR_TAIL_LINES)

    process = None
    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        _register_process(process)

        if process.stderr:
            for line in process.stderr:
                line = line.rstrip()
                if not line:
                    continue
                if line.startswith(PROGRESS_MARKERS):
                    if show_progress:
                        sys.stdout.write(f"\r{line}")
                        sys.stdout.flush()
                    continue
                tail.append(line)

        return_code = process.wait()
        if show_progress:
            sys.stdout.write("\n")
        return EncoderRun(returncode=return_code, stderr_tail="\n".join(tail))

    except OSError as e:
        raise ExecutionError(-1, f"Could not start encoder: {e}")
    except KeyboardInterrupt:
        logger.info("Encoding interrupted by user")
        if process:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        raise
    finally:
        # Unregister process from tracking
        if process:
            _unregister_process(process)


@contextmanager
def encode_workspace(directory: Path) -> Iterator[Path]:
    """
    Switch the working directory to ``directory`` for the duration of the block.

    The previous working directory is restored on every exit path, including
    exceptions. Paths used inside the block must already be absolute.
    """
    ensure_directory_exists(directory)
    previous = Path.cwd()
    os.chdir(directory)
    try:
        yield directory
    finally:
        os.chdir(previous)


def cleanup_pass_artifacts(work_dir: Path) -> List[Path]:
    """Delete rate-control statistics and encoder scratch files from the workspace."""
    removed = remove_matching(work_dir, PASS_ARTIFACT_PATTERNS)
    for path in removed:
        logger.debug(f"Removed pass artifact: {path}")
    return removed


def recover_interrupted_run(
        output_roots: Iterable[Path],
        work_dir: Path,
        container_names: Iterable[str],
) -> List[Path]:
    """
    Delete what an interrupted run leaves behind.

    A killed encode leaves a ``<final>.tmp`` output and, for two-pass
    encodes, statistics files in the workspace. Both are removed before a
    new run starts so the affected sources are processed again from scratch.

    Returns:
        The removed paths
    """
    containers = list(container_names)
    removed: List[Path] = []

    for root in output_roots:
        for leftover in find_leftover_temp_files(root, containers):
            if remove_file(leftover):
                removed.append(leftover)

    removed.extend(cleanup_pass_artifacts(work_dir))
    if removed:
        logger.info(f"Recovered from an interrupted run, removed {len(removed)} leftover file(s)")

    return removed


class ExecutionEngine:
    """Executes conversion plans one at a time."""

    def __init__(
            self,
            work_dir: Path,
            runner: Optional[Runner] = None,
            show_progress: bool = False,
            settle_seconds: float = OUTPUT_SETTLE_SECONDS,
            ffmpeg_cmd: str = "ffmpeg",
    ):
        """
        Initialize the engine.

        Args:
            work_dir: Dedicated workspace for two-pass statistics files
            runner: Callable running one encoder command, defaults to run_encoder
            show_progress: Echo encoder progress lines to the console
            settle_seconds: Wait before reading the size of a finished output
            ffmpeg_cmd: Encoder executable
        """
        self.work_dir = work_dir.resolve()
        self.runner = runner or run_encoder
        self.show_progress = show_progress
        self.settle_seconds = settle_seconds
        self.ffmpeg_cmd = ffmpeg_cmd

    def execute(self, plan: ConversionPlan) -> ExecutionResult:
        """
        Encode one plan and promote its output.

        Failures are reported in the result; the caller moves on to the next
        file. KeyboardInterrupt propagates and leaves the temp file for the
        next run's recovery.
        """
        start = time.monotonic()
        source = plan.source_path
        input_size = get_file_size(source)
        strategy = strategy_for(plan)

        logger.info(f"Encoding {source.name} -> {plan.output_path.name} ({strategy.name})")

        try:
            ensure_directory_exists(plan.output_path.parent)
            remove_file(plan.temp_path)

            if isinstance(strategy, TwoPhaseSoftware):
                self._run_two_phase(plan)
            elif isinstance(strategy, SinglePhaseHardware):
                self._run_single_phase(plan)
            else:
                raise TypeError(f"Unsupported encoder strategy: {strategy!r}")

            self._finalize(plan)

        except ExecutionError as e:
            remove_file(plan.temp_path)
            logger.error(f"Encoding failed for {source.name}: {e}")
            if e.diagnostics:
                logger.error(f"Encoder output for {source.name}:\n{e.diagnostics}")
            return ExecutionResult.failed(
                source, FailureKind.ENCODE_FAILED, str(e), time.monotonic() - start
            )
        except FinalizationError as e:
            remove_file(plan.temp_path)
            logger.error(f"Could not finalize {source.name}: {e}")
            return ExecutionResult.failed(
                source, FailureKind.RENAME_FAILED, str(e), time.monotonic() - start
            )
        except Exception as e:
            remove_file(plan.temp_path)
            logger.exception(f"Unexpected error while encoding {source.name}")
            return ExecutionResult.failed(
                source, FailureKind.ENCODE_FAILED, str(e), time.monotonic() - start
            )

        if self.settle_seconds > 0:
            time.sleep(self.settle_seconds)

        output_size = get_file_size(plan.output_path)
        elapsed = time.monotonic() - start
        logger.info(
            f"Encoded {source.name} in {elapsed:.1f}s: "
            f"{input_size / 1024 / 1024:.1f} MB -> {output_size / 1024 / 1024:.1f} MB"
        )
        return ExecutionResult(
            source_path=source,
            status=ExecutionStatus.SUCCESS,
            input_size_bytes=input_size,
            output_size_bytes=output_size,
            elapsed_seconds=elapsed,
        )

    def _check(self, run: EncoderRun, phase: str) -> None:
        if run.returncode != 0:
            raise ExecutionError(run.returncode, run.stderr_tail, phase)

    def _run_single_phase(self, plan: ConversionPlan) -> None:
        cmd = build_single_pass_command(plan, self.ffmpeg_cmd)
        self._check(self.runner(cmd, show_progress=self.show_progress), "single-pass encode")

    def _run_two_phase(self, plan: ConversionPlan) -> None:
        # Every path must be absolute before the working directory changes
        for path in (plan.source_path, plan.temp_path, plan.output_path):
            if not path.is_absolute():
                raise ValueError(f"Two-pass encoding needs absolute paths, got {path}")

        passlog = self.work_dir / f"{PASSLOG_PREFIX}_{uuid.uuid4().hex[:8]}"
        first, second = build_two_pass_commands(plan, passlog, self.ffmpeg_cmd)

        try:
            with encode_workspace(self.work_dir):
                logger.info(f"Pass 1/2 (analysis) for {plan.source_path.name}")
                self._check(self.runner(first, show_progress=self.show_progress), "pass 1")
                logger.info(f"Pass 2/2 (encode) for {plan.source_path.name}")
                self._check(self.runner(second, show_progress=self.show_progress), "pass 2")
        finally:
            cleanup_pass_artifacts(self.work_dir)

    def _finalize(self, plan: ConversionPlan) -> None:
        try:
            atomic_replace(plan.temp_path, plan.output_path)
        except FileOperationError as e:
            raise FinalizationError(str(e)) from e
