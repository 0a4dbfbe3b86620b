"""
Structured logging system for the batch encoder.

Console output stays human readable while the rotating log file gets one
JSON object per record, including any keyword fields attached to encoding
events (step, file, bitrates, failure reason). Library modules log through
``logging.getLogger(__name__)``; the handlers live on the root logger so
their records land in the same outputs.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import LOG_LEVELS

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else was passed as an extra
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update({key: value for key, value in vars(record).items() if key not in _RESERVED_ATTRS})
        return json.dumps(entry, default=str)


class EncoderLogger:
    """Logger facade used by the batch orchestrator."""

    def __init__(
            self,
            name: str = "batch_encoder",
            log_level: str = "INFO",
            log_dir: Optional[Path] = None,
            enable_console: bool = True,
            max_file_size: int = 10 * 1024 * 1024,  # 10MB
            backup_count: int = 5,
    ):
        """
        Install the console and rotating JSON file handlers.

        Calling this again replaces the handlers a previous instance
        installed; handlers added by anything else are left alone.

        Args:
            name: Logger name, also used for the log file name
            log_level: Log level (DEBUG, INFO, WARN, ERROR)
            log_dir: Directory for log files, default is ./.logs
            enable_console: Whether to enable console output
            max_file_size: Maximum log file size in bytes
            backup_count: Number of rotated files to keep
        """
        root = logging.getLogger()
        root.setLevel(LOG_LEVELS.get(log_level.upper(), logging.INFO))

        for handler in list(root.handlers):
            if getattr(handler, "_encoder_handler", False):
                root.removeHandler(handler)
                handler.close()

        handlers = []
        if enable_console:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
            handlers.append(console)

        log_dir = log_dir or Path.cwd() / ".logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = log_dir / f"{name}.log"

        rotating = logging.handlers.RotatingFileHandler(
            self.log_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding="utf-8",
        )
        rotating.setFormatter(JSONFormatter())
        handlers.append(rotating)

        for handler in handlers:
            handler._encoder_handler = True
            root.addHandler(handler)

        self.logger = logging.getLogger(name)

    def debug(self, message: str, **fields) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields) -> None:
        self._log(logging.ERROR, message, fields)

    def _log(self, level: int, message: str, fields: Dict[str, Any]) -> None:
        # Fields that collide with LogRecord attributes would make logging raise
        extra = {key: value for key, value in fields.items() if key not in _RESERVED_ATTRS}
        self.logger.log(level, message, extra=extra)

    def log_cleanup(self, path: Path, reason: str) -> None:
        """Log removal of a leftover temp output or pass artifact."""
        self.warning(f"Removed {path.name}: {reason}", cleanup_path=str(path), reason=reason)

    def log_encode_step(
            self,
            step: str,
            filepath: Path,
            success: bool,
            details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log one stage (probe, plan, preview, encode) of a file.

        Failed stages are logged at error level with the same fields.
        """
        fields = {"step": step, "filepath": str(filepath), "success": success}
        fields.update(details or {})

        if success:
            self.info(f"{step} ok: {filepath.name}", **fields)
        else:
            self.error(f"{step} failed: {filepath.name}", **fields)


# Global logger instance
_global_logger: Optional[EncoderLogger] = None


def setup_logging(
        log_level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_console: bool = True,
) -> EncoderLogger:
    """Set up the global logging system."""
    global _global_logger

    _global_logger = EncoderLogger(
        log_level=log_level,
        log_dir=log_dir or Path.cwd() / ".logs",
        enable_console=enable_console,
    )
    return _global_logger
