"""
Backup set selection.

Decides which top-level entries of a Koinos data directory are left out of
an archive. The policy is a denylist: anything not excluded here, including
directories added by future node versions, is backed up.
"""

from typing import List, Tuple

from koinos_backup.config import BackupMode


# Service caches and runtime lock artifacts never meant to round-trip
ALWAYS_EXCLUDED = (
    'grpc',
    'jsonrpc',
    'block_producer',
    '*.tmp',
    '*.lock',
    '*.pid',
)

# Query indices and transient state a seed node does not need
SEED_ONLY_EXCLUDED = (
    'account_history',
    'transaction_store',
    'contract_meta_store',
    'p2p',
    'logs',
    'mempool',
)

SEED_ENTRIES = (
    ('block_store/', 'Block data (REQUIRED FOR SEED)'),
    ('chain/', 'Chain state (REQUIRED FOR SEED)'),
    ('config.yml', 'Configuration (REQUIRED FOR SEED)'),
)

FULL_ENTRIES = (
    ('block_store/', 'Block data'),
    ('chain/', 'Chain state'),
    ('transaction_store/', 'Transaction index'),
    ('account_history/', 'Account history'),
    ('contract_meta_store/', 'Contract metadata'),
    ('p2p/', 'P2P data'),
    ('config.yml', 'Configuration'),
)


def select_excludes(mode: BackupMode, exclude_logs: bool = False, exclude_mempool: bool = False) -> List[str]:
    """
    Compute the exclude patterns for an archive.

    Names are not checked against the data directory; excluding an entry
    that does not exist is harmless.

    Args:
        mode: Backup mode
        exclude_logs: Leave out logs/ (FULL mode only)
        exclude_mempool: Leave out mempool/ (FULL mode only)

    Returns:
        Exclude patterns in the order they are handed to tar
    """
    excludes = []

    if mode is BackupMode.SEED_ONLY:
        # Seed nodes keep block_store, chain and config.yml only
        excludes.extend(SEED_ONLY_EXCLUDED)
    else:
        if exclude_logs:
            excludes.append('logs')
        if exclude_mempool:
            excludes.append('mempool')

    excludes.extend(ALWAYS_EXCLUDED)
    return excludes


def included_entries(mode: BackupMode) -> Tuple[Tuple[str, str], ...]:
    """Entries listed as included in the metadata sidecar, with descriptions."""
    if mode is BackupMode.SEED_ONLY:
        return SEED_ENTRIES
    return FULL_ENTRIES


def mode_label(mode: BackupMode) -> str:
    return 'SEED NODE ONLY' if mode is BackupMode.SEED_ONLY else 'FULL NODE'
