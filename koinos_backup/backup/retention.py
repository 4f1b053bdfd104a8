"""
Retention policy enforcement for backups.

Old backups are found by name in the output directory, there is no index.
The archive and its two sidecars are swept independently by name pattern
and file age; they disappear together only because they are written at the
same time. A sidecar whose modification time changed later (for example a
rewritten metadata file) is pruned on its own schedule.
"""

import os
import glob
import time
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional

from koinos_backup.errors import OperationResult, WarningKind, MissingPrerequisiteError
from .compression import ARCHIVE_EXTENSION
from .artifact import CHECKSUM_SUFFIX, METADATA_SUFFIX


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

ARTIFACT_SUFFIXES = (ARCHIVE_EXTENSION, CHECKSUM_SUFFIX, METADATA_SUFFIX)


def file_age_days(mtime: float, now: float) -> int:
    """Age in whole days, rounded down like `find -mtime`."""
    return int((now - mtime) // SECONDS_PER_DAY)


class RetentionManager:
    """
    Manages retention of the backups written under one name prefix.
    """

    def __init__(self, output_dir: str, backup_name: str):
        """
        Initialize retention manager.

        Args:
            output_dir: Directory holding the backups
            backup_name: Backup name prefix
        """
        self.output_dir = output_dir
        self.backup_name = backup_name

    def _matching_files(self, suffix: str) -> List[str]:
        pattern = os.path.join(
            glob.escape(self.output_dir),
            f"{glob.escape(self.backup_name)}_*{suffix}"
        )
        return sorted(path for path in glob.glob(pattern) if os.path.isfile(path))

    def expired_files(self, keep_days: int, now: Optional[datetime] = None) -> List[str]:
        """
        List artifact files older than the retention window.

        Args:
            keep_days: Retention window in days, 0 keeps everything
            now: Reference time, defaults to the current time

        Returns:
            Paths of expired files, grouped by suffix
        """
        if keep_days <= 0:
            return []

        now_ts = now.timestamp() if now is not None else time.time()
        expired = []

        for suffix in ARTIFACT_SUFFIXES:
            for path in self._matching_files(suffix):
                try:
                    mtime = os.stat(path).st_mtime
                except FileNotFoundError:
                    continue
                if file_age_days(mtime, now_ts) > keep_days:
                    expired.append(path)

        return expired

    def cleanup(self, keep_days: int, now: Optional[datetime] = None) -> OperationResult:
        """
        Delete artifact files older than keep_days days.

        Args:
            keep_days: Retention window in days, 0 disables cleanup
            now: Reference time, defaults to the current time

        Returns:
            OperationResult whose value is the list of deleted paths
        """
        result = OperationResult(value=[])

        if keep_days <= 0:
            logger.debug("Retention disabled (keep days: 0), skipping cleanup")
            return result

        logger.info(f"Cleaning up backups older than {keep_days} days...")

        for path in self.expired_files(keep_days, now):
            try:
                os.remove(path)
                result.value.append(path)
                logger.info(f"Deleted old backup file: {os.path.basename(path)}")
            except FileNotFoundError:
                continue
            except OSError as e:
                result.warn(WarningKind.CLEANUP, f"Failed to delete {path}: {e}", logger)

        logger.info(f"Cleanup completed ({len(result.value)} files deleted)")
        return result

    def list_backups(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List archives for the prefix, oldest first.

        Args:
            limit: Only return the most recent `limit` archives

        Returns:
            List of dicts with 'path', 'name', 'modified', and 'size' keys
        """
        backups = []

        for path in self._matching_files(ARCHIVE_EXTENSION):
            try:
                stat = os.stat(path)
            except FileNotFoundError:
                continue
            backups.append({
                'path': path,
                'name': os.path.basename(path),
                'modified': datetime.fromtimestamp(stat.st_mtime),
                'size': stat.st_size
            })

        backups.sort(key=lambda b: (b['modified'], b['name']))
        if limit is not None:
            backups = backups[-limit:] if limit > 0 else []
        return backups


def cleanup(output_dir: str, backup_name: str, keep_days: int, now: Optional[datetime] = None) -> OperationResult:
    """
    Delete the backups under output_dir older than keep_days days.

    Raises:
        MissingPrerequisiteError: If output_dir doesn't exist and cleanup is enabled
    """
    if keep_days > 0 and not os.path.isdir(output_dir):
        raise MissingPrerequisiteError(f"Directory not found: {output_dir}")

    return RetentionManager(output_dir, backup_name).cleanup(keep_days, now)


def list_backups(output_dir: str, backup_name: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """List the archives under output_dir for a prefix, oldest first."""
    return RetentionManager(output_dir, backup_name).list_backups(limit)
