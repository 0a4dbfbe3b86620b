"""
Encode utilities package for the batch encoder.

This package contains probing, rate profile and compatibility resolution,
plan compilation, the quality preview and the execution engine.
"""

from .compatibility import AudioPlan, StreamMapMode, resolve_audio, resolve_video_container
from .executor import (
    EncoderRun,
    ExecutionEngine,
    ExecutionResult,
    ExecutionStatus,
    FailureKind,
    SinglePhaseHardware,
    TwoPhaseSoftware,
    cleanup_all_processes,
    encode_workspace,
    recover_interrupted_run,
    run_encoder,
    strategy_for,
)
from .planner import (
    ConversionPlan,
    EncodePreferences,
    HardwareAccel,
    PreviewSettings,
    compile_plan,
    describe_color,
    exclude_planned_outputs,
    resolve_output_path,
    validate_preferences,
)
from .preview import QualityPreview
from .probe import FFprobeProber, MediaDescriptor, probe_media
from .rate_profiles import ResolvedRateParameters, resolve_rate_parameters, select_rate_profile

__all__ = [
    "AudioPlan",
    "ConversionPlan",
    "EncodePreferences",
    "EncoderRun",
    "ExecutionEngine",
    "ExecutionResult",
    "ExecutionStatus",
    "FFprobeProber",
    "FailureKind",
    "HardwareAccel",
    "MediaDescriptor",
    "PreviewSettings",
    "QualityPreview",
    "ResolvedRateParameters",
    "SinglePhaseHardware",
    "StreamMapMode",
    "TwoPhaseSoftware",
    "cleanup_all_processes",
    "compile_plan",
    "describe_color",
    "exclude_planned_outputs",
    "encode_workspace",
    "probe_media",
    "recover_interrupted_run",
    "resolve_audio",
    "resolve_output_path",
    "resolve_rate_parameters",
    "resolve_video_container",
    "run_encoder",
    "select_rate_profile",
    "strategy_for",
    "validate_preferences",
]
