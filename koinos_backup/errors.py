"""
Error taxonomy and result types shared by the backup and restore tools.

Hard failures are exceptions that abort the run. Non-fatal conditions
(ownership changes that failed, missing sidecar files, files that could
not be pruned) are collected as warnings on an OperationResult instead.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List


class BackupError(Exception):
    """Base class for errors that abort a backup or restore run."""
    pass


class UsageError(BackupError):
    """Raised for bad or missing arguments."""
    pass


class MissingPrerequisiteError(BackupError):
    """Raised when a required directory, file or executable is absent."""
    pass


class NotFoundError(MissingPrerequisiteError):
    """Raised when the archive to restore does not exist."""
    pass


class StageFailureError(BackupError):
    """Raised when the archiving or compression sub-process fails."""

    def __init__(self, stage: str, returncode: int, stderr: str = ''):
        self.stage = stage
        self.returncode = returncode
        self.stderr = stderr.strip()
        message = f"{stage} stage failed with exit code {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class VerificationError(BackupError):
    """Raised when an archive does not match its checksum sidecar."""
    pass


class WarningKind(Enum):
    PERMISSION = 'permission'
    MISSING_SIDECAR = 'missing_sidecar'
    CLEANUP = 'cleanup'


@dataclass(frozen=True)
class BackupWarning:
    kind: WarningKind
    message: str

    def __str__(self):
        return self.message


@dataclass
class OperationResult:
    """Success value of an operation plus the non-fatal warnings it raised."""

    value: Any = None
    warnings: List[BackupWarning] = field(default_factory=list)

    def warn(self, kind: WarningKind, message: str, logger: logging.Logger = None):
        """Record a warning and log it."""
        self.warnings.append(BackupWarning(kind, message))
        if logger is not None:
            logger.warning(message)

    def extend(self, other: 'OperationResult'):
        """Merge another result's warnings into this one."""
        self.warnings.extend(other.warnings)

    def has_warning(self, kind: WarningKind) -> bool:
        return any(w.kind == kind for w in self.warnings)
