"""
Configuration for the Koinos node backup tools.

Config holds the defaults used by the command line tools. BackupOptions and
RestoreOptions are the immutable, validated settings of a single run; they
are built once at the command line boundary and passed explicitly to the
selector, archive builder, artifact writer, retention cleaner and restorer.
"""

from dataclasses import dataclass
from enum import Enum

from koinos_backup.errors import UsageError


class Config:
    """Default configuration"""

    # Node layout
    DATA_DIR = '/root/.koinos'
    RESTORE_TARGET = '/root/.koinos'
    RESTORE_OWNER = 'root:root'

    # Backup output
    OUTPUT_DIR = '/backup'
    BACKUP_NAME = 'koinos-backup'
    COMPRESSION_LEVEL = 6
    KEEP_DAYS = 7

    # Number of archives shown after a backup run
    RECENT_BACKUPS_SHOWN = 5

    # Scheduler
    SCHEDULE_CRON = '0 2 * * *'  # Daily at 2 AM
    SCHEDULER_TIMEZONE = 'UTC'
    SCHEDULER_MISFIRE_GRACE_TIME = 300


class BackupMode(Enum):
    SEED_ONLY = 'seed_only'
    FULL = 'full'


@dataclass(frozen=True)
class BackupOptions:
    data_dir: str = Config.DATA_DIR
    output_dir: str = Config.OUTPUT_DIR
    backup_name: str = Config.BACKUP_NAME
    compression_level: int = Config.COMPRESSION_LEVEL
    keep_days: int = Config.KEEP_DAYS
    mode: BackupMode = BackupMode.FULL
    exclude_logs: bool = False
    exclude_mempool: bool = False

    @property
    def seed_only(self) -> bool:
        return self.mode is BackupMode.SEED_ONLY

    def validate(self) -> 'BackupOptions':
        """
        Check the options without touching the filesystem.

        The compression level is not range checked here; gzip validates it.

        Returns:
            The options themselves, for chaining

        Raises:
            UsageError: If any option is invalid
        """
        if not self.data_dir:
            raise UsageError("Data directory must not be empty")
        if not self.output_dir:
            raise UsageError("Output directory must not be empty")
        if not self.backup_name:
            raise UsageError("Backup name must not be empty")
        if '/' in self.backup_name:
            raise UsageError(f"Backup name must not contain '/': {self.backup_name}")
        if not isinstance(self.compression_level, int) or isinstance(self.compression_level, bool):
            raise UsageError(f"Compression level must be an integer: {self.compression_level!r}")
        if not isinstance(self.keep_days, int) or isinstance(self.keep_days, bool):
            raise UsageError(f"Keep days must be an integer: {self.keep_days!r}")
        if self.keep_days < 0:
            raise UsageError(f"Keep days must be 0 or greater: {self.keep_days}")
        if not isinstance(self.mode, BackupMode):
            raise UsageError(f"Invalid backup mode: {self.mode!r}")
        return self


@dataclass(frozen=True)
class RestoreOptions:
    archive_path: str
    target_dir: str = Config.RESTORE_TARGET
    verify: bool = False
    backup_existing: bool = False
    owner: str = Config.RESTORE_OWNER

    def validate(self) -> 'RestoreOptions':
        """
        Check the options without touching the filesystem.

        Raises:
            UsageError: If any option is invalid
        """
        if not self.archive_path:
            raise UsageError("Backup file must be given")
        if not self.target_dir:
            raise UsageError("Target directory must not be empty")
        if self.target_dir.rstrip('/') == '':
            raise UsageError("Refusing to restore onto the filesystem root")
        return self
