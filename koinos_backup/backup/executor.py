"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Validate options and the data directory
2. Prepare the output directory
3. Report directory sizes and free space
4. Create compressed archive
5. Write checksum and metadata sidecars
6. Enforce retention policy
7. List recent backups

The first hard error aborts the run. Files already written are left in
place; restore treats an archive without sidecars as unverifiable rather
than corrupt.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Optional

from koinos_backup.config import BackupOptions, Config
from koinos_backup.errors import OperationResult, MissingPrerequisiteError
from .selection import select_excludes, mode_label
from .compression import (
    build_archive,
    generate_archive_filename,
    get_archive_size,
    get_available_space,
    get_dir_size,
    format_size
)
from .artifact import finalize_artifact
from .retention import RetentionManager


logger = logging.getLogger(__name__)

# Entries whose size is reported before archiving
REPORTED_ENTRIES = (
    'block_store',
    'chain',
    'transaction_store',
    'account_history',
    'contract_meta_store',
    'p2p',
    'mempool',
    'logs',
)


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for one set of options.
    """

    def __init__(self, options: BackupOptions, now: Optional[datetime] = None):
        """
        Initialize backup executor.

        Args:
            options: Backup options for this run
            now: Start time used in the archive name, defaults to the current local time
        """
        self.options = options
        self.started_at = now
        self.data_dir = None
        self.archive_path = None
        self.logs = []

    def execute(self) -> OperationResult:
        """
        Execute the backup.

        Returns:
            OperationResult whose value is the archive path

        Raises:
            BackupError: Any hard failure, after it has been logged
        """
        self.started_at = self.started_at or datetime.now()
        self._log(f"Starting backup: {self.options.backup_name}")

        try:
            result = self._execute_workflow()
        except Exception as e:
            self._log(f"Backup failed: {e}", logging.ERROR)
            raise

        self._log("Backup process completed successfully!")
        return result

    def _execute_workflow(self) -> OperationResult:
        """Execute the main backup workflow steps."""
        options = self.options.validate()
        result = OperationResult()

        # Step 1: Validate directories
        self.data_dir = os.path.abspath(options.data_dir)
        if not os.path.isdir(self.data_dir):
            raise MissingPrerequisiteError(f"Directory not found: {options.data_dir}")

        # Step 2: Prepare output directory
        self._prepare_output_dir()

        if not os.path.isfile(os.path.join(self.data_dir, 'config.yml')):
            self._log(f"config.yml not found in {self.data_dir}", logging.WARNING)

        # Step 3: Report sizes
        self._log(f"Data directory: {self.data_dir}")
        self._log(f"Backup mode: {mode_label(options.mode)}")
        self._log(f"Compression level: {options.compression_level}")
        self._report_sizes()

        # Step 4: Create archive
        self.archive_path = self._create_archive()
        size = get_archive_size(self.archive_path)
        self._log("Backup created successfully!")
        self._log(f"Backup file: {self.archive_path}")
        self._log(f"Backup size: {format_size(size)}")

        # Step 5: Sidecars
        result.extend(finalize_artifact(self.archive_path, options))

        # Step 6: Retention
        retention = RetentionManager(options.output_dir, options.backup_name)
        result.extend(retention.cleanup(options.keep_days))

        # Step 7: Recent backups
        self._list_recent(retention)

        result.value = self.archive_path
        return result

    def _prepare_output_dir(self):
        """Create the output directory if it doesn't exist."""
        output_dir = self.options.output_dir
        if not os.path.isdir(output_dir):
            self._log(f"Creating output directory: {output_dir}")
            try:
                os.makedirs(output_dir, exist_ok=True)
            except OSError as e:
                raise MissingPrerequisiteError(f"Cannot create output directory {output_dir}: {e}") from e

    def _report_sizes(self):
        self._log("Directory sizes:")
        for name in REPORTED_ENTRIES:
            size = get_dir_size(os.path.join(self.data_dir, name))
            self._log(f"  {name + ':':<21}{format_size(size)}")

        try:
            free = get_available_space(self.options.output_dir)
            self._log(f"Available disk space: {format_size(free)}")
        except OSError as e:
            self._log(f"Could not determine available disk space: {e}", logging.WARNING)

    def _create_archive(self) -> str:
        """
        Create the compressed archive of the data directory.

        Returns:
            Path to created archive file

        Raises:
            StageFailureError: If tar or gzip fails
        """
        options = self.options
        filename = generate_archive_filename(options.backup_name, self.started_at)
        archive_path = os.path.join(options.output_dir, filename)

        excludes = select_excludes(options.mode, options.exclude_logs, options.exclude_mempool)
        self._log(f"Output file: {archive_path}")
        self._log(f"Excluding: {', '.join(excludes)}")
        self._log("Creating compressed archive...")

        return build_archive(
            os.path.dirname(self.data_dir),
            os.path.basename(self.data_dir),
            excludes,
            options.compression_level,
            archive_path
        )

    def _list_recent(self, retention: RetentionManager):
        backups = retention.list_backups(limit=Config.RECENT_BACKUPS_SHOWN)
        if not backups:
            self._log("No backups found", logging.WARNING)
            return

        self._log(f"Recent backups in {self.options.output_dir}:")
        for backup in backups:
            self._log(
                f"  {backup['name']}  {format_size(backup['size'])}  "
                f"{backup['modified'].strftime('%Y-%m-%d %H:%M:%S')}"
            )

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level used for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def execute_backup(options: BackupOptions, now: Optional[datetime] = None) -> OperationResult:
    """
    Run one backup with the given options.

    Returns:
        OperationResult whose value is the archive path
    """
    executor = BackupExecutor(options, now)
    return executor.execute()
