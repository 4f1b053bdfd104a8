"""
Restore a Koinos node data directory from a backup archive.

Archives hold a single top-level directory (the basename of the data
directory they were made from). Its contents are extracted into the target
directory, so a backup can be restored to a different path than it was
taken from.
"""

import os
import logging
import subprocess
from datetime import datetime
from typing import Optional

from koinos_backup.config import RestoreOptions
from koinos_backup.errors import (
    BackupError,
    NotFoundError,
    OperationResult,
    StageFailureError,
    MissingPrerequisiteError,
    WarningKind
)
from .artifact import checksum_path, metadata_path, verify_checksum
from .compression import TIMESTAMP_FORMAT


logger = logging.getLogger(__name__)


def move_existing(target_dir: str, now: Optional[datetime] = None) -> str:
    """
    Rename an existing data directory out of the way.

    Returns:
        New path of the directory: <target_dir>_backup_<YYYYMMDD_HHMMSS>

    Raises:
        BackupError: If the rename fails
    """
    timestamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    moved_to = f"{target_dir.rstrip('/')}_backup_{timestamp}"

    if os.path.exists(moved_to):
        raise BackupError(f"Cannot back up existing data, path already exists: {moved_to}")

    try:
        os.rename(target_dir, moved_to)
    except OSError as e:
        raise BackupError(f"Failed to move {target_dir} to {moved_to}: {e}") from e

    return moved_to


def extract_archive(archive_path: str, target_dir: str):
    """
    Extract an archive's top-level directory contents into target_dir.

    Raises:
        StageFailureError: If tar exits non-zero
        MissingPrerequisiteError: If tar is not installed or target_dir cannot be created
    """
    try:
        os.makedirs(target_dir, exist_ok=True)
    except OSError as e:
        raise MissingPrerequisiteError(f"Cannot create target directory {target_dir}: {e}") from e

    cmd = [
        'tar', '-xzf', archive_path,
        '-C', target_dir,
        '--strip-components=1',
        '--no-same-owner'
    ]
    logger.debug(f"Running: {' '.join(cmd)}")

    try:
        completed = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except FileNotFoundError as e:
        raise MissingPrerequisiteError(f"Required executable not found: tar ({e})") from e
    except OSError as e:
        raise BackupError(f"Failed to start tar: {e}") from e

    if completed.returncode != 0:
        raise StageFailureError('extract', completed.returncode,
                                completed.stderr.decode(errors='replace'))


def normalize_ownership(target_dir: str, owner: Optional[str], result: OperationResult):
    """
    Best effort `chown -R owner target_dir`.

    Failure is recorded on result as a permission warning.
    """
    if not owner:
        logger.debug("No owner configured, leaving ownership unchanged")
        return

    logger.info("Setting proper permissions...")
    try:
        completed = subprocess.run(['chown', '-R', owner, target_dir],
                                   stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        result.warn(WarningKind.PERMISSION, f"Could not set ownership ({e})", logger)
        return

    if completed.returncode != 0:
        result.warn(WarningKind.PERMISSION, "Could not set ownership (may need sudo)", logger)


def _log_metadata(metadata_file: str):
    """Show the metadata sidecar, if there is a readable one."""
    if not os.path.isfile(metadata_file):
        return
    try:
        with open(metadata_file, 'r') as f:
            logger.info(f"Backup metadata:\n{f.read()}")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read metadata file {metadata_file}: {e}")


def restore(options: RestoreOptions, now: Optional[datetime] = None) -> OperationResult:
    """
    Restore a backup archive into a data directory.

    Args:
        options: Validated restore options
        now: Timestamp used to name a moved-aside data directory

    Returns:
        OperationResult whose value is a dict with 'target_dir' and
        'moved_to' (None unless existing data was moved aside)

    Raises:
        NotFoundError: If the archive doesn't exist
        VerificationError: If verification was requested and the checksum differs
        StageFailureError: If extraction fails
    """
    options.validate()
    archive_path = options.archive_path
    target_dir = os.path.normpath(options.target_dir)

    if not os.path.isfile(archive_path):
        raise NotFoundError(f"Backup file not found: {archive_path}")

    result = OperationResult(value={'target_dir': target_dir, 'moved_to': None})

    logger.info(f"Backup file: {archive_path}")
    logger.info(f"Target directory: {target_dir}")

    if options.verify:
        logger.info("Verifying backup checksum...")
        if os.path.isfile(checksum_path(archive_path)):
            verify_checksum(archive_path)
            logger.info("Checksum verification passed!")
        else:
            result.warn(WarningKind.MISSING_SIDECAR,
                        "Checksum file not found, skipping verification", logger)

    if options.backup_existing and os.path.isdir(target_dir):
        moved_to = move_existing(target_dir, now)
        result.value['moved_to'] = moved_to
        logger.info(f"Backed up existing data to: {moved_to}")

    logger.info("Extracting backup...")
    extract_archive(archive_path, target_dir)

    normalize_ownership(target_dir, options.owner, result)

    logger.info("Restore completed successfully!")

    _log_metadata(metadata_path(archive_path))

    return result
