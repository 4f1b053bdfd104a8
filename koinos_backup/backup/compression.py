"""
Archive creation for node backups.

Archives are produced by piping `tar` into `gzip`, the same tools an operator
would use by hand, so that any standard `tar -xzf` can read them back. The
exit status of each stage is checked on its own: a tar failure is not hidden
by gzip exiting cleanly at the end of the pipe.
"""

import os
import shutil
import logging
import subprocess
import tempfile
from datetime import datetime
from typing import List, Optional

from koinos_backup.errors import BackupError, StageFailureError, MissingPrerequisiteError


logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = '.tar.gz'
TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'


class CompressionError(StageFailureError):
    """Raised when the gzip stage fails."""

    def __init__(self, returncode: int, stderr: str = ''):
        super().__init__('compression', returncode, stderr)


class ArchiveError(StageFailureError):
    """Raised when the tar stage fails."""

    def __init__(self, returncode: int, stderr: str = ''):
        super().__init__('archive', returncode, stderr)


def _spawn(cmd: List[str], **kwargs) -> subprocess.Popen:
    """Start one pipeline stage."""
    try:
        return subprocess.Popen(cmd, **kwargs)
    except FileNotFoundError as e:
        raise MissingPrerequisiteError(f"Required executable not found: {cmd[0]} ({e})") from e
    except OSError as e:
        raise BackupError(f"Failed to start {cmd[0]}: {e}") from e


def build_archive(
    source_parent_dir: str,
    source_dir_name: str,
    exclude_patterns: List[str],
    compression_level: int,
    output_path: str
) -> str:
    """
    Create a gzip compressed tar archive of one directory.

    Paths inside the archive start with source_dir_name, i.e. they are
    relative to source_parent_dir.

    Args:
        source_parent_dir: Directory tar changes into before archiving
        source_dir_name: Name of the directory to archive, relative to source_parent_dir
        exclude_patterns: Patterns passed to tar as --exclude options
        compression_level: gzip level, validated by gzip itself
        output_path: Where the compressed archive is written

    Returns:
        output_path

    Raises:
        ArchiveError: If tar exits non-zero
        CompressionError: If gzip exits non-zero
        MissingPrerequisiteError: If tar or gzip is not installed
        BackupError: If the output file cannot be created or a stage cannot be started
    """
    tar_cmd = ['tar', '-cf', '-', '-C', source_parent_dir]
    tar_cmd.extend(f'--exclude={pattern}' for pattern in exclude_patterns)
    tar_cmd.append(source_dir_name)
    gzip_cmd = ['gzip', f'-{compression_level}']

    logger.debug(f"Running: {' '.join(tar_cmd)} | {' '.join(gzip_cmd)} > {output_path}")

    try:
        output = open(output_path, 'wb')
    except OSError as e:
        raise BackupError(f"Cannot create archive {output_path}: {e}") from e

    # stderr goes to temp files so a chatty stage can never block the pipe
    with output, \
            tempfile.TemporaryFile() as tar_err, \
            tempfile.TemporaryFile() as gzip_err:
        tar_proc = _spawn(tar_cmd, stdout=subprocess.PIPE, stderr=tar_err)

        try:
            gzip_proc = _spawn(gzip_cmd, stdin=tar_proc.stdout, stdout=output, stderr=gzip_err)
        except BackupError:
            tar_proc.kill()
            tar_proc.wait()
            raise
        finally:
            # gzip holds its own copy of the read end
            tar_proc.stdout.close()

        gzip_status = gzip_proc.wait()
        tar_status = tar_proc.wait()

        tar_err.seek(0)
        gzip_err.seek(0)
        tar_stderr = tar_err.read().decode(errors='replace')
        gzip_stderr = gzip_err.read().decode(errors='replace')

    # A gzip failure makes tar die of SIGPIPE, so report gzip first
    if gzip_status != 0:
        raise CompressionError(gzip_status, gzip_stderr)
    if tar_status != 0:
        raise ArchiveError(tar_status, tar_stderr)

    return output_path


def generate_archive_filename(backup_name: str, now: Optional[datetime] = None) -> str:
    """
    Generate a standardized archive filename.

    Format: {backup_name}_{YYYYMMDD_HHMMSS}.tar.gz in local time

    Args:
        backup_name: Backup name prefix
        now: Timestamp to use instead of the current local time

    Returns:
        Filename (without path)
    """
    timestamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return f"{backup_name}_{timestamp}{ARCHIVE_EXTENSION}"


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        MissingPrerequisiteError: If the file doesn't exist
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError as e:
        raise MissingPrerequisiteError(f"Archive not found: {archive_path}") from e


def get_dir_size(path: str) -> Optional[int]:
    """
    Total size in bytes of the regular files below path.

    Returns:
        Size in bytes, or None if path is not a directory
    """
    if not os.path.isdir(path):
        return None

    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                # Files can vanish while a live node is running
                continue
    return total


def get_available_space(path: str) -> int:
    """Free bytes on the filesystem holding path."""
    return shutil.disk_usage(path).free


def format_size(size_bytes: Optional[int]) -> str:
    """
    Format a byte count the way `du -h` does (e.g. 512B, 4.0K, 1.5G).

    None is rendered as N/A.
    """
    if size_bytes is None:
        return 'N/A'

    size = float(size_bytes)
    for unit in ('B', 'K', 'M', 'G', 'T'):
        if size < 1024 or unit == 'T':
            if unit == 'B':
                return f"{int(size)}B"
            return f"{size:.1f}{unit}"
        size /= 1024
