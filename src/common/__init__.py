"""
Common utilities package for the batch encoder.

This package contains the configuration, error types, logging and file
helpers shared by the planning and execution code.
"""

from .config import (
    AudioEncoderSpec,
    ContainerSpec,
    EncoderConfig,
    RateProfile,
    VideoCodecSpec,
    build_encoder_config,
    load_encoder_config,
)
from .constants import (
    DEFAULT_LOG_LEVEL,
    INPUT_FOLDER,
    LOG_DIR,
    OUTPUT_FOLDER,
    VIDEO_EXTENSIONS,
    WORK_FOLDER,
)
from .errors import (
    ConfigError,
    EncoderError,
    ExecutionError,
    FinalizationError,
    PlanRejectionError,
    ProbeError,
)
from .file_manager import (
    FileOperationError,
    atomic_replace,
    ensure_directory_exists,
    find_leftover_temp_files,
    get_available_space,
    get_file_size,
    remove_file,
    remove_matching,
    scan_media_files,
)
from .logger import setup_logging

__all__ = [
    # Config
    "AudioEncoderSpec",
    "ContainerSpec",
    "EncoderConfig",
    "RateProfile",
    "VideoCodecSpec",
    "build_encoder_config",
    "load_encoder_config",
    # Constants
    "DEFAULT_LOG_LEVEL",
    "INPUT_FOLDER",
    "LOG_DIR",
    "OUTPUT_FOLDER",
    "VIDEO_EXTENSIONS",
    "WORK_FOLDER",
    # Errors
    "ConfigError",
    "EncoderError",
    "ExecutionError",
    "FinalizationError",
    "PlanRejectionError",
    "ProbeError",
    # File manager
    "FileOperationError",
    "atomic_replace",
    "ensure_directory_exists",
    "find_leftover_temp_files",
    "get_available_space",
    "get_file_size",
    "remove_file",
    "remove_matching",
    "scan_media_files",
    # Logger
    "setup_logging",
]
