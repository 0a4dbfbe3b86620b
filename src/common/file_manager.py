"""
File manager for handling media file operations.

This module provides functions for scanning source trees, creating
directories, atomically promoting finished encodes and removing the
artifacts an interrupted run leaves behind.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Generator, Iterable, List, Optional

from .constants import TEMP_SUFFIX, VIDEO_EXTENSIONS
from .errors import EncoderError

logger = logging.getLogger(__name__)


class FileOperationError(EncoderError):
    """Exception for file operation failures."""

    pass


### Public functions ###
def get_file_size(filepath: Path) -> int:
    """Get file size in bytes, 0 if the file cannot be read."""
    try:
        return filepath.stat().st_size
    except OSError:
        return 0


def get_available_space(directory: Path) -> int:
    """Get available disk space in bytes for a directory."""
    try:
        stat = shutil.disk_usage(directory)
        return stat.free
    except OSError:
        return 0


def scan_media_files(
        directory: Path,
        recursive: bool = True,
        extensions: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[Path]] = None,
) -> Generator[Path, None, None]:
    """
    Scan a directory for media files.

    Args:
        directory: Directory to scan
        recursive: Whether to scan subdirectories
        extensions: Accepted extensions, defaults to VIDEO_EXTENSIONS
        exclude: Directories whose contents are never yielded

    Yields:
        Path objects for found media files, in sorted order
    """
    if not directory.exists():
        logger.warning(f"Directory does not exist: {directory}")
        return

    if not directory.is_dir():
        logger.error(f"Path is not a directory: {directory}")
        return

    accepted = {ext.lower() for ext in (extensions or VIDEO_EXTENSIONS)}
    excluded = [p.resolve() for p in (exclude or [])]
    pattern = "**/*" if recursive else "*"

    for path in sorted(directory.glob(pattern)):
        if not path.is_file() or path.suffix.lower() not in accepted:
            continue
        resolved = path.resolve()
        if any(resolved.is_relative_to(skip) for skip in excluded):
            continue
        yield path


def ensure_directory_exists(directory: Path) -> None:
    """Ensure a directory exists, creating it if necessary."""
    try:
        directory.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {directory}")
    except OSError as e:
        raise FileOperationError(f"Failed to create directory {directory}: {e}")


def atomic_replace(source: Path, destination: Path) -> None:
    """
    Move ``source`` onto ``destination`` in a single rename.

    Both paths must live on the same filesystem, which holds for a temp file
    written next to its final name.

    Raises:
        FileOperationError: If the rename fails
    """
    if not source.exists():
        raise FileOperationError(f"Source file does not exist: {source}")

    try:
        os.replace(source, destination)
        logger.info(f"Renamed file: {source} -> {destination}")
    except OSError as e:
        raise FileOperationError(f"Failed to rename {source} to {destination}: {e}")


def remove_file(filepath: Path) -> bool:
    """Delete a file if it exists. Returns True when something was removed."""
    try:
        filepath.unlink()
        logger.debug(f"Removed file: {filepath}")
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to remove file {filepath}: {e}")
        return False


def remove_matching(directory: Path, patterns: Iterable[str]) -> List[Path]:
    """Delete files in ``directory`` (not recursive) matching any glob pattern."""
    removed: List[Path] = []
    if not directory.is_dir():
        return removed

    for pattern in patterns:
        for path in directory.glob(pattern):
            if path.is_file() and remove_file(path):
                removed.append(path)
    return removed


def find_leftover_temp_files(directory: Path, container_names: Iterable[str]) -> List[Path]:
    """
    Find ``<name>.<container><TEMP_SUFFIX>`` files left by an interrupted encode.

    Only temp files whose inner extension is a known output container are
    returned, so unrelated ``.tmp`` files are never touched.
    """
    if not directory.is_dir():
        return []

    containers = {f".{name.lower()}" for name in container_names}
    leftovers = []
    for path in sorted(directory.glob(f"**/*{TEMP_SUFFIX}")):
        if path.is_file() and Path(path.stem).suffix.lower() in containers:
            leftovers.append(path)
    return leftovers
