#!/usr/bin/env python3
"""
Command-line interface for condamigrator

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

import os
import sys
import json
import signal
import argparse
import textwrap
import threading
import logging
from typing import List, Optional

from condamigrator import __version__
from condamigrator.main import (MigrationOrchestrator, migration_logging,
                                EXIT_FAILURE, EXIT_SUCCESS, LOG_FILE)
from condamigrator.utils.config import Config

logger = logging.getLogger(__name__)


def setup_argparse() -> argparse.ArgumentParser:
    """Set up command-line argument parser"""
    parser = argparse.ArgumentParser(
        prog="condamigrator",
        description="condamigrator - replace an Anaconda/Miniconda installation with Miniforge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              condamigrator                    # Back up, remove, install Miniforge, restore channels
              condamigrator --dry-run          # Show what would happen
              condamigrator --resume           # Continue after a failed or cancelled run
              condamigrator --status           # Show the stored migration state
              condamigrator --backup-dir D:\\backups --restore-environments

            Exit codes:
              0  migration completed
              1  fatal error, cancelled, or an earlier run needs --resume
              2  completed, but some environments or channels need attention
        """)
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--dry-run', action='store_true',
                        help='Show what the migration would do without changing anything')
    parser.add_argument('--resume', action='store_true',
                        help='Continue after the last completed step of an earlier run')
    parser.add_argument('--fresh', action='store_true',
                        help='Discard the stored migration state and start over')
    parser.add_argument('--status', action='store_true',
                        help='Print the stored migration state and exit')
    parser.add_argument('--backup-dir',
                        help='Directory to store backups (defaults to configured backup directory)')
    parser.add_argument('--install-dir',
                        help='Where to install Miniforge (default: ~/miniforge3)')
    parser.add_argument('--installer-url',
                        help='Installer URL; {asset} is replaced by the installer file name for this host')
    parser.add_argument('--timeout', type=int, metavar='SECONDS',
                        help='Maximum time the installer may run')
    parser.add_argument('--restore-environments', action='store_true', default=None,
                        help='Recreate exported environments in the new installation')
    parser.add_argument('--config', metavar='FILE',
                        help='Read configuration from FILE instead of ~/.config/condamigrator/config.json')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Show debug output')
    return parser


def handle_status(app: MigrationOrchestrator) -> int:
    """Handle --status"""
    if not app.checkpoint_store.exists():
        print("No migration has been started.")
        return EXIT_SUCCESS
    try:
        checkpoint = app.load_checkpoint()
    except (OSError, ValueError) as e:
        print(f"Error: checkpoint {app.checkpoint_store.path} is unreadable: {e}")
        return EXIT_FAILURE

    print(f"State: {checkpoint.describe()}")
    if checkpoint.manifest_path:
        print(f"Backup manifest: {checkpoint.manifest_path}")
    if checkpoint.old_installation:
        print(f"Old installation: {checkpoint.old_installation}")
    if checkpoint.new_tool_path:
        print(f"New conda: {checkpoint.new_tool_path}")
    print(json.dumps(checkpoint.history, indent=2))
    return EXIT_SUCCESS


def handle_dry_run(app: MigrationOrchestrator) -> int:
    """Handle --dry-run"""
    try:
        lines = app.plan()
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return EXIT_FAILURE
    print("Dry run - nothing will be changed:")
    for line in lines:
        print(f"  - {line}")
    return EXIT_SUCCESS


def install_cancel_handler(cancel_event: threading.Event) -> None:
    """First Ctrl-C requests a stop between steps; a second one interrupts"""
    def _handler(signum, frame):
        if cancel_event.is_set():
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        cancel_event.set()
        logger.warning("Cancellation requested; stopping after the current step. "
                       "Press Ctrl-C again to interrupt immediately.")

    signal.signal(signal.SIGINT, _handler)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application"""
    parser = setup_argparse()
    args = parser.parse_args(argv)

    if args.resume and args.fresh:
        parser.error("--resume and --fresh cannot be combined")

    config = Config(args.config)
    config.override(
        backup_dir=args.backup_dir,
        install_dir=args.install_dir,
        installer_url=args.installer_url,
        install_timeout=args.timeout,
        restore_environments=args.restore_environments,
    )

    log_file = os.path.join(config.get_data_dir(), LOG_FILE)
    with migration_logging(log_file, verbose=args.verbose):
        cancel_event = threading.Event()
        app = MigrationOrchestrator(config, cancel_event=cancel_event)

        if args.status:
            return handle_status(app)
        if args.dry_run:
            return handle_dry_run(app)

        install_cancel_handler(cancel_event)
        outcome = app.run(resume=args.resume, fresh=args.fresh)
        print(outcome.message)
        return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
