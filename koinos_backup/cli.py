"""
Command line entry points.

- koinos-backup: back up a node data directory
- koinos-restore: restore a data directory from a backup
- koinos-backup-scheduler: run koinos-backup on a cron schedule

Every entry point returns 0 on success, 2 on usage errors and 1 on any
other failure.
"""

import sys
import logging
import argparse
from typing import List, Optional

from koinos_backup import configure_logging, __version__
from koinos_backup.config import BackupMode, BackupOptions, Config, RestoreOptions
from koinos_backup.errors import BackupError, UsageError
from koinos_backup.backup.executor import execute_backup
from koinos_backup.backup.restore import restore
from koinos_backup import scheduler as scheduler_module


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

BACKUP_EPILOG = """
Example:
  koinos-backup -d /root/.koinos -o /backup -k 14 --exclude-logs
  koinos-backup --seed-only -o /backup  # Minimal seed node backup

Critical directories for SEED NODE:
  - block_store/        (Block data - REQUIRED)
  - chain/              (Chain state - REQUIRED)
  - config.yml          (Node configuration - REQUIRED)

Additional directories for FULL NODE:
  - transaction_store/  (Transaction index - for API queries)
  - account_history/    (Account history - for API queries)
  - contract_meta_store/ (Contract metadata - for API queries)
  - p2p/                (P2P peer data - regenerates automatically)

Optional directories (can be excluded):
  - mempool/            (Temporary transaction pool)
  - logs/               (Log files)

Never backed up: grpc/, jsonrpc/, block_producer/, *.tmp, *.lock, *.pid
"""

RESTORE_EPILOG = """
Example:
  koinos-restore koinos-backup_20241020_120000.tar.gz --verify --backup-existing
"""


def _add_logging_arguments(parser: argparse.ArgumentParser):
    parser.add_argument('--log-file', help='Also log to this rotating log file')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')


def _add_backup_arguments(parser: argparse.ArgumentParser):
    parser.add_argument('-d', '--data-dir', default=Config.DATA_DIR,
                        help=f'Koinos data directory (default: {Config.DATA_DIR})')
    parser.add_argument('-o', '--output', dest='output_dir', default=Config.OUTPUT_DIR,
                        help=f'Output directory for backup (default: {Config.OUTPUT_DIR})')
    parser.add_argument('-n', '--name', dest='backup_name', default=Config.BACKUP_NAME,
                        help=f'Backup name prefix (default: {Config.BACKUP_NAME})')
    parser.add_argument('-c', '--compress', dest='compression_level', type=int,
                        default=Config.COMPRESSION_LEVEL, metavar='LEVEL',
                        help=f'Compression level 0-9 (default: {Config.COMPRESSION_LEVEL})')
    parser.add_argument('-k', '--keep-days', type=int, default=Config.KEEP_DAYS, metavar='DAYS',
                        help=f'Keep backups for N days, 0 keeps all (default: {Config.KEEP_DAYS})')
    parser.add_argument('--seed-only', action='store_true',
                        help='Only backup essential data for seed node')
    parser.add_argument('--exclude-logs', action='store_true',
                        help='Exclude log files from backup')
    parser.add_argument('--exclude-mempool', action='store_true',
                        help='Exclude mempool data from backup')


def build_backup_parser(prog: str = 'koinos-backup') -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description='Create a backup of a Koinos node data directory that can be '
                    'used to bootstrap a new node without downloading blocks from scratch.',
        epilog=BACKUP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    _add_backup_arguments(parser)
    _add_logging_arguments(parser)
    return parser


def build_restore_parser(prog: str = 'koinos-restore') -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description='Restore a Koinos node from a backup created by koinos-backup.',
        epilog=RESTORE_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('backup_file', help='Backup archive (.tar.gz)')
    parser.add_argument('-t', '--target', dest='target_dir', default=Config.RESTORE_TARGET,
                        help=f'Target directory (default: {Config.RESTORE_TARGET})')
    parser.add_argument('-v', '--verify', action='store_true',
                        help='Verify backup checksum before restore')
    parser.add_argument('-b', '--backup-existing', action='store_true',
                        help='Backup existing data before restore')
    parser.add_argument('--owner', default=Config.RESTORE_OWNER,
                        help=f"Owner set on restored files, '' to skip (default: {Config.RESTORE_OWNER})")
    _add_logging_arguments(parser)
    return parser


def build_scheduler_parser(prog: str = 'koinos-backup-scheduler') -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description='Run Koinos node backups on a cron schedule.',
        epilog=BACKUP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    _add_backup_arguments(parser)
    parser.add_argument('--cron', default=Config.SCHEDULE_CRON,
                        help=f"Crontab expression (default: '{Config.SCHEDULE_CRON}')")
    parser.add_argument('--timezone', default=Config.SCHEDULER_TIMEZONE,
                        help=f'Timezone of the schedule (default: {Config.SCHEDULER_TIMEZONE})')
    _add_logging_arguments(parser)
    return parser


def backup_options_from_args(args: argparse.Namespace) -> BackupOptions:
    """
    Build validated backup options from parsed arguments.

    Raises:
        UsageError: If any option is invalid
    """
    options = BackupOptions(
        data_dir=args.data_dir,
        output_dir=args.output_dir,
        backup_name=args.backup_name,
        compression_level=args.compression_level,
        keep_days=args.keep_days,
        mode=BackupMode.SEED_ONLY if args.seed_only else BackupMode.FULL,
        exclude_logs=args.exclude_logs,
        exclude_mempool=args.exclude_mempool
    )
    return options.validate()


def restore_options_from_args(args: argparse.Namespace) -> RestoreOptions:
    """
    Build validated restore options from parsed arguments.

    Raises:
        UsageError: If any option is invalid
    """
    options = RestoreOptions(
        archive_path=args.backup_file,
        target_dir=args.target_dir,
        verify=args.verify,
        backup_existing=args.backup_existing,
        owner=args.owner
    )
    return options.validate()


def _parse(parser: argparse.ArgumentParser, argv: Optional[List[str]]):
    """Parse arguments, turning argparse's exits into return codes."""
    try:
        return parser.parse_args(argv), None
    except SystemExit as e:
        code = e.code if isinstance(e.code, int) else EXIT_USAGE
        return None, code


def backup_main(argv: Optional[List[str]] = None) -> int:
    parser = build_backup_parser()
    args, code = _parse(parser, argv)
    if args is None:
        return code

    configure_logging(args.debug, args.log_file)

    try:
        options = backup_options_from_args(args)
    except UsageError as e:
        parser.print_usage(sys.stderr)
        logger.error(str(e))
        return EXIT_USAGE

    try:
        result = execute_backup(options)
    except BackupError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    if result.warnings:
        logger.warning(f"Backup finished with {len(result.warnings)} warning(s)")
    return EXIT_OK


def restore_main(argv: Optional[List[str]] = None) -> int:
    parser = build_restore_parser()
    args, code = _parse(parser, argv)
    if args is None:
        return code

    configure_logging(args.debug, args.log_file)

    try:
        options = restore_options_from_args(args)
    except UsageError as e:
        parser.print_usage(sys.stderr)
        logger.error(str(e))
        return EXIT_USAGE

    try:
        result = restore(options)
    except BackupError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    if result.warnings:
        logger.warning(f"Restore finished with {len(result.warnings)} warning(s)")
    logger.info("You can now start your Koinos node")
    return EXIT_OK


def scheduler_main(argv: Optional[List[str]] = None) -> int:
    parser = build_scheduler_parser()
    args, code = _parse(parser, argv)
    if args is None:
        return code

    configure_logging(args.debug, args.log_file)

    try:
        options = backup_options_from_args(args)
        scheduler = scheduler_module.init_scheduler(options, args.cron, args.timezone)
    except UsageError as e:
        parser.print_usage(sys.stderr)
        logger.error(str(e))
        return EXIT_USAGE

    scheduler_module.start_scheduler(scheduler)
    return EXIT_OK


def run_backup():
    sys.exit(backup_main())


def run_restore():
    sys.exit(restore_main())


def run_scheduler():
    sys.exit(scheduler_main())
