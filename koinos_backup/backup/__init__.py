"""
Backup module for Koinos node data directories.

This module handles the core backup functionality including:
- Backup set selection (seed-only and full node modes)
- Compression (tar piped into gzip)
- Checksum and metadata sidecars
- Retention policy enforcement
- Restore
- Execution orchestration
"""

from .selection import select_excludes, included_entries, mode_label
from .compression import build_archive, generate_archive_filename
from .artifact import finalize_artifact, verify_checksum
from .retention import RetentionManager, cleanup, list_backups
from .restore import restore
from .executor import BackupExecutor, execute_backup

__all__ = [
    'select_excludes',
    'included_entries',
    'mode_label',
    'build_archive',
    'generate_archive_filename',
    'finalize_artifact',
    'verify_checksum',
    'RetentionManager',
    'cleanup',
    'list_backups',
    'restore',
    'BackupExecutor',
    'execute_backup'
]
