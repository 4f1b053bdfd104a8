"""
Checksum and metadata sidecars for backup archives.

Every archive gets two sidecar files next to it:
- <archive>.sha256: "<hex digest>  <archive filename>", checkable with
  `sha256sum -c` from the archive's directory
- <archive>.metadata: human readable description of the backup, never
  parsed back by these tools
"""

import os
import socket
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional

from koinos_backup.config import BackupOptions
from koinos_backup.errors import (
    BackupError,
    OperationResult,
    WarningKind,
    VerificationError,
    MissingPrerequisiteError
)
from .selection import included_entries, mode_label
from .compression import get_archive_size, format_size


logger = logging.getLogger(__name__)

CHECKSUM_SUFFIX = '.sha256'
METADATA_SUFFIX = '.metadata'

_CHUNK_SIZE = 1024 * 1024


def checksum_path(archive_path: str) -> str:
    return f"{archive_path}{CHECKSUM_SUFFIX}"


def metadata_path(archive_path: str) -> str:
    return f"{archive_path}{METADATA_SUFFIX}"


def file_sha256(path: str) -> str:
    """Hex encoded SHA-256 digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.hexdigest()


def write_checksum(archive_path: str) -> str:
    """
    Write the checksum sidecar for an archive.

    Returns:
        Path of the checksum file

    Raises:
        MissingPrerequisiteError: If the archive doesn't exist
        BackupError: If the archive cannot be read or the sidecar written
    """
    if not os.path.isfile(archive_path):
        raise MissingPrerequisiteError(f"Archive not found: {archive_path}")

    path = checksum_path(archive_path)
    try:
        line = f"{file_sha256(archive_path)}  {os.path.basename(archive_path)}\n"
        with open(path, 'w') as f:
            f.write(line)
    except OSError as e:
        raise BackupError(f"Failed to write checksum file {path}: {e}") from e
    return path


def read_checksum_line(archive_path: str) -> Optional[str]:
    """First line of the checksum sidecar, or None if there is no sidecar."""
    path = checksum_path(archive_path)
    if not os.path.isfile(path):
        return None
    try:
        with open(path, 'r') as f:
            return f.readline().rstrip('\n')
    except (OSError, UnicodeDecodeError) as e:
        raise BackupError(f"Cannot read checksum file {path}: {e}") from e


def verify_checksum(archive_path: str) -> str:
    """
    Check an archive against its checksum sidecar.

    The filename recorded in the sidecar is not used to locate the archive;
    older sidecars record the full path the archive was written to.

    Returns:
        The verified hex digest

    Raises:
        MissingPrerequisiteError: If the sidecar doesn't exist
        VerificationError: If the sidecar is malformed or the digest differs
    """
    line = read_checksum_line(archive_path)
    if line is None:
        raise MissingPrerequisiteError(f"Checksum file not found: {checksum_path(archive_path)}")

    parts = line.split(None, 1)
    expected = parts[0].lower() if parts else ''
    if len(expected) != 64 or any(c not in '0123456789abcdef' for c in expected):
        raise VerificationError(f"Malformed checksum file: {checksum_path(archive_path)}")

    try:
        actual = file_sha256(archive_path)
    except OSError as e:
        raise BackupError(f"Cannot read archive {archive_path}: {e}") from e
    if actual != expected:
        raise VerificationError(
            f"Checksum mismatch for {os.path.basename(archive_path)}: "
            f"expected {expected}, got {actual}"
        )
    return actual


def render_metadata(archive_path: str, options: BackupOptions, checksum_line: Optional[str],
                    created_at: Optional[datetime] = None, hostname: Optional[str] = None) -> str:
    """Build the text of the metadata sidecar."""
    created_at = created_at or datetime.now(timezone.utc)
    hostname = hostname or socket.gethostname()
    archive_name = os.path.basename(archive_path)

    entries = '\n'.join(
        f"{name:<20}- {description}" for name, description in included_entries(options.mode)
    )

    return f"""Koinos Node Backup Metadata
============================

Backup Information:
-------------------
Backup File: {archive_name}
Backup Date: {created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}
Backup Size: {format_size(get_archive_size(archive_path))}
Compression: gzip level {options.compression_level}

Source Information:
-------------------
Data Directory: {options.data_dir}
Hostname: {hostname}
Backup Mode: {mode_label(options.mode)}

Included Directories:
---------------------
{entries}

Excluded:
---------
Seed-Only Mode: {str(options.seed_only).lower()}
Logs: {str(options.exclude_logs).lower()}
Mempool: {str(options.exclude_mempool).lower()}

Restore Instructions:
---------------------
1. Restore archive: koinos-restore {archive_name} --verify --target {options.data_dir}
   (or by hand: mkdir -p {options.data_dir} && tar -xzf {archive_name} -C {options.data_dir} --strip-components=1)
2. Verify ownership: chown -R root:root {options.data_dir}
3. Start Koinos node: docker-compose up -d
4. Monitor logs: docker-compose logs -f

Checksum:
---------
{checksum_line if checksum_line is not None else 'Checksum file not found'}
"""


def write_metadata(archive_path: str, options: BackupOptions) -> OperationResult:
    """
    Write the metadata sidecar for an archive.

    A missing checksum sidecar is recorded in the file and reported as a
    warning.

    Returns:
        OperationResult whose value is the metadata file path

    Raises:
        BackupError: If the sidecar cannot be written
    """
    result = OperationResult()

    checksum_line = read_checksum_line(archive_path)
    if checksum_line is None:
        result.warn(
            WarningKind.MISSING_SIDECAR,
            f"Checksum file not found for {os.path.basename(archive_path)}",
            logger
        )

    path = metadata_path(archive_path)
    try:
        with open(path, 'w') as f:
            f.write(render_metadata(archive_path, options, checksum_line))
    except OSError as e:
        raise BackupError(f"Failed to write metadata file {path}: {e}") from e

    result.value = path
    return result


def finalize_artifact(archive_path: str, options: BackupOptions) -> OperationResult:
    """
    Write both sidecars for a freshly built archive.

    Returns:
        OperationResult whose value is a dict with 'checksum' and 'metadata' paths
    """
    logger.info("Creating SHA256 checksum...")
    checksum_file = write_checksum(archive_path)
    logger.info(f"Checksum saved to: {checksum_file}")

    logger.info("Creating metadata file...")
    result = write_metadata(archive_path, options)
    logger.info(f"Metadata saved to: {result.value}")

    result.value = {'checksum': checksum_file, 'metadata': result.value}
    return result
