"""
Exception hierarchy for the batch encoder.

Every per-file failure maps to one of these types so the batch loop can
decide whether a file is skipped, failed, or whether the whole run must
stop (configuration problems only).
"""

from typing import Optional


class EncoderError(Exception):
    """Base class for all encoder errors."""

    pass


class ConfigError(EncoderError):
    """Invalid or inconsistent configuration, raised at load time."""

    pass


class ProbeError(EncoderError):
    """The media prober could not be run or returned unusable output."""

    pass


class PlanRejectionError(EncoderError):
    """A file cannot or should not be encoded; reported as skipped."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ExecutionError(EncoderError):
    """The encoding engine exited with a non-zero status."""

    def __init__(self, exit_code: int, diagnostics: str = "", phase: Optional[str] = None):
        label = f" during {phase}" if phase else ""
        super().__init__(f"Encoder exited with status {exit_code}{label}")
        self.exit_code = exit_code
        self.diagnostics = diagnostics
        self.phase = phase


class FinalizationError(EncoderError):
    """The encoded temp file could not be moved to its final name."""

    pass
