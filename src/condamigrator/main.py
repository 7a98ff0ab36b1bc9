#!/usr/bin/env python3
"""
Main application module for condamigrator - moves a machine from
Anaconda/Miniconda to Miniforge

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
import logging
import tempfile
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple

from . import __version__
from .errors import ErrorKind, MigrationError, StepResult
from .managers.backup import BackupManager
from .managers.discovery import EnvironmentDiscovery
from .managers.installer import Installer
from .managers.manifest import BackupManifest
from .managers.removal import RemovalManager
from .managers.restore import RestoreManager, RestoreReport
from .package_tools.base import CommandRunner, PackageToolClient
from .package_tools.conda import CondaClient
from .utils.config import Config
from .utils.fileio import expand_path
from .utils.host import HostInfo
from .utils.state import CheckpointStore, MigrationCheckpoint, MigrationState, STATE_ORDER

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
CHECKPOINT_FILE = "state.json"
LOG_FILE = "condamigrator.log"

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2


@contextmanager
def migration_logging(log_file: str, verbose: bool = False) -> Iterator[logging.Logger]:
    """Log to the console and an append-mode file for the duration of a run

    The handlers are flushed, closed and detached on every exit path.
    """
    package_logger = logging.getLogger("condamigrator")
    previous_level = package_logger.level
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)

    os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
    file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)

    package_logger.addHandler(console)
    package_logger.addHandler(file_handler)
    try:
        yield package_logger
    finally:
        for handler in (console, file_handler):
            handler.flush()
            package_logger.removeHandler(handler)
            handler.close()
        package_logger.setLevel(previous_level)


class MigrationOutcome:
    """Result of an orchestrator run"""

    def __init__(self, checkpoint: MigrationCheckpoint, exit_code: int, message: str,
                 cancelled: bool = False, partial_failures: Optional[List[str]] = None):
        self.checkpoint = checkpoint
        self.exit_code = exit_code
        self.message = message
        self.cancelled = cancelled
        self.partial_failures = partial_failures or []

    @property
    def state(self) -> MigrationState:
        return self.checkpoint.state

    def __str__(self) -> str:
        return self.message


class MigrationOrchestrator:
    """Runs Backup -> Remove -> Install -> Restore as a checkpointed state machine"""

    def __init__(self, config: Config,
                 host: Optional[HostInfo] = None,
                 discovery: Optional[EnvironmentDiscovery] = None,
                 backup: Optional[BackupManager] = None,
                 removal: Optional[RemovalManager] = None,
                 installer: Optional[Installer] = None,
                 restore: Optional[RestoreManager] = None,
                 client_factory: Optional[Callable[[str], PackageToolClient]] = None,
                 checkpoint_store: Optional[CheckpointStore] = None,
                 cancel_event: Optional[threading.Event] = None,
                 home_dir: Optional[str] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.host = host or HostInfo.detect()
        self.home_dir = home_dir or os.path.expanduser("~")
        self.discovery = discovery or EnvironmentDiscovery(logger=self.logger)
        self.backup = backup or BackupManager(config.get("config_paths"), logger=self.logger)
        self.removal = removal or RemovalManager(config.get("leftover_paths"), logger=self.logger)
        self.installer = installer or Installer(
            self.host,
            download_timeout=config.get("download_timeout"),
            install_timeout=config.get("install_timeout"),
            logger=self.logger,
        )
        self.restore = restore or RestoreManager(
            community_channel=config.get("community_channel"),
            default_channel=config.get("default_channel"),
            logger=self.logger,
        )
        self.client_factory = client_factory or self._default_client
        data_dir = config.get_data_dir()
        self.checkpoint_store = checkpoint_store or CheckpointStore(os.path.join(data_dir, CHECKPOINT_FILE))
        self.log_file = os.path.join(data_dir, LOG_FILE)
        self.cancel_event = cancel_event or threading.Event()
        self._restore_reports: List[Tuple[str, RestoreReport]] = []

    def _default_client(self, executable: str) -> PackageToolClient:
        runner = CommandRunner(timeout=self.config.get("tool_timeout"))
        return CondaClient(executable, runner, long_timeout=self.config.get("install_timeout"))

    @property
    def install_dir(self) -> str:
        return expand_path(self.config.get("install_dir"))

    def _steps(self) -> List[Tuple[MigrationState, str, Callable[[MigrationCheckpoint], StepResult]]]:
        return [
            (MigrationState.BACKED_UP, "backup", self._step_backup),
            (MigrationState.REMOVED, "remove", self._step_remove),
            (MigrationState.INSTALLED, "install", self._step_install),
            (MigrationState.RESTORED, "restore", self._step_restore),
        ]

    def load_checkpoint(self) -> MigrationCheckpoint:
        return self.checkpoint_store.load()

    def run(self, resume: bool = False, fresh: bool = False) -> MigrationOutcome:
        """Run (or resume) the migration

        Args:
            resume: Continue after the last completed step of an earlier run
            fresh: Discard any stored checkpoint and start over

        Returns:
            MigrationOutcome with the terminal state and the process exit code
        """
        self.logger.info(f"condamigrator {__version__} starting on {self.host}")
        self._restore_reports = []

        try:
            if fresh:
                self.checkpoint_store.clear()
            checkpoint = self.checkpoint_store.load()
        except (OSError, ValueError) as e:
            message = (f"Checkpoint {self.checkpoint_store.path} is unreadable: {e}. "
                       f"Inspect it, or pass --fresh to start over.")
            self.logger.error(message)
            return MigrationOutcome(MigrationCheckpoint(), EXIT_FAILURE, message)

        if checkpoint.last_completed == MigrationState.RESTORED and checkpoint.state != MigrationState.FAILED:
            message = "Migration already completed (state: restored). Pass --fresh to run it again."
            self.logger.info(message)
            return MigrationOutcome(checkpoint, EXIT_SUCCESS, message)

        if checkpoint.in_progress and not resume:
            message = (f"An earlier migration stopped at '{checkpoint.describe()}'. "
                       f"Re-run with --resume to continue from '{checkpoint.last_completed.value}'.")
            self.logger.error(message)
            return MigrationOutcome(checkpoint, EXIT_FAILURE, message)

        start = STATE_ORDER.index(checkpoint.last_completed)
        if start > 0:
            self.logger.info(f"Resuming after '{checkpoint.last_completed.value}'")

        for target, name, step in self._steps()[start:]:
            if self.cancel_event.is_set():
                message = (f"Migration cancelled. Last completed state: '{checkpoint.last_completed.value}'. "
                           f"Re-run with --resume to continue.")
                self.logger.warning(message)
                return MigrationOutcome(checkpoint, EXIT_FAILURE, message, cancelled=True)

            self.logger.info(f"Step {name}: starting")
            try:
                result = step(checkpoint)
            except MigrationError as e:
                result = StepResult.from_error(e)
            except OSError as e:
                result = StepResult.failure(ErrorKind.IO, str(e))

            if not result.ok:
                kind = result.kind.value if result.kind else None
                checkpoint.fail(name, result.message, kind)
                self.checkpoint_store.save(checkpoint)
                message = self._failure_message(checkpoint)
                self.logger.error(message)
                return MigrationOutcome(checkpoint, EXIT_FAILURE, message)

            checkpoint.advance(target)
            self.checkpoint_store.save(checkpoint)
            self.logger.info(f"Step {name}: done (state: {target.value})")

        return self._finish(checkpoint)

    def _failure_message(self, checkpoint: MigrationCheckpoint) -> str:
        lines = [
            f"Migration failed during {checkpoint.failed_step}: {checkpoint.cause}",
            f"Resume from '{checkpoint.last_completed.value}' with: condamigrator --resume",
        ]
        if checkpoint.manifest_path:
            lines.append(f"Backup manifest: {checkpoint.manifest_path}")
        lines.append(f"Log file: {self.log_file}")
        return "\n".join(lines)

    def _finish(self, checkpoint: MigrationCheckpoint) -> MigrationOutcome:
        partial = []
        manifest = self._load_manifest(checkpoint)
        if manifest.ok:
            for entry in manifest.value.failed_environments:
                partial.append(f"environment {entry.name} was not backed up: {entry.error}")
        for what, report in self._restore_reports:
            for failure in report.failed:
                partial.append(f"{what} {failure['name']} was not restored: {failure['error']}")

        if partial:
            for item in partial:
                self.logger.warning(item)
            message = (f"Migration finished with problems (state: {checkpoint.state.value}); "
                       f"{len(partial)} item(s) need attention. Backup manifest: {checkpoint.manifest_path}")
            self.logger.warning(message)
            return MigrationOutcome(checkpoint, EXIT_PARTIAL, message, partial_failures=partial)

        message = f"Migration finished (state: {checkpoint.state.value})"
        self.logger.info(message)
        return MigrationOutcome(checkpoint, EXIT_SUCCESS, message)

    def _load_manifest(self, checkpoint: MigrationCheckpoint) -> StepResult:
        path = checkpoint.manifest_path
        if not path or not os.path.isfile(path):
            return StepResult.failure(ErrorKind.NOT_FOUND, f"backup manifest not found: {path}")
        try:
            return StepResult.success(BackupManifest.load(path))
        except (OSError, ValueError) as e:
            return StepResult.failure(ErrorKind.IO, f"backup manifest {path} is unreadable: {e}")

    def _step_backup(self, checkpoint: MigrationCheckpoint) -> StepResult:
        installation = self.discovery.find_installation(self.config.get("install_candidates"))
        if not installation.ok:
            return StepResult.failure(installation.kind, f"nothing to migrate: {installation.message}")
        checkpoint.old_installation = installation.value

        envs_dir = self.discovery.find_environments_dir(self.config.get("envs_candidates"), installation.value)
        if not envs_dir.ok:
            self.logger.warning(f"{envs_dir.message}; raw environment copies will be skipped")

        executable = self.discovery.find_tool_executable(installation.value)
        if not executable.ok:
            return executable

        client = self.client_factory(executable.value)
        result = self.backup.run_backup(
            installation.value,
            envs_dir.value if envs_dir.ok else None,
            client,
            self.config.get_backup_dir(),
            home_dir=self.home_dir,
            hostname=self.host.hostname,
        )
        # Recorded even on failure so the partial backup can be found
        checkpoint.manifest_path = result.value
        return result

    def _step_remove(self, checkpoint: MigrationCheckpoint) -> StepResult:
        manifest = self._load_manifest(checkpoint)
        if not manifest.ok:
            return StepResult.failure(manifest.kind, f"refusing to remove without a backup: {manifest.message}")
        if not manifest.value.config_backup_ok:
            return StepResult.failure(ErrorKind.VERIFICATION_FAILED,
                                      "refusing to remove: configuration backup did not succeed")

        installation = checkpoint.old_installation or manifest.value.source_installation
        executable = self.discovery.find_tool_executable(installation)
        if not executable.ok:
            if os.path.exists(installation):
                return StepResult.failure(
                    ErrorKind.NOT_FOUND,
                    f"cannot deactivate: {executable.message}. Remove {installation} manually and resume",
                )
            self.logger.info(f"{installation} is already gone; cleaning up leftovers")
            for path in self.removal.leftover_paths:
                self.removal.delete_if_exists(expand_path(path))
            self.removal.remove_from_search_path(installation)
            return StepResult.success(installation)

        client = self.client_factory(executable.value)
        return self.removal.run_removal(manifest.value, client, installation)

    def _step_install(self, checkpoint: MigrationCheckpoint) -> StepResult:
        candidates = self.config.get("new_tool_candidates")
        install_dir = self.install_dir

        existing = self.installer.locate_new_tool(candidates, install_dir)
        if existing.ok:
            self.logger.info(f"A usable installation already exists at {install_dir}; skipping download")
            result = existing
        else:
            url = self.installer.installer_url(self.config.get("installer_url"))
            with tempfile.TemporaryDirectory(prefix="condamigrator-") as work_dir:
                result = self.installer.run_install(url, install_dir, work_dir, candidates)
            if not result.ok:
                return result

        checkpoint.new_tool_path = result.value
        shell = self.config.get("shell")
        if not shell or shell == "auto":
            shell = self.host.shell
        self.installer.initialize_shell_integration(self.client_factory(result.value), shell)
        return result

    def _step_restore(self, checkpoint: MigrationCheckpoint) -> StepResult:
        manifest = self._load_manifest(checkpoint)
        if not manifest.ok:
            return manifest

        tool_path = checkpoint.new_tool_path
        if not tool_path or not os.path.isfile(tool_path):
            located = self.installer.locate_new_tool(self.config.get("new_tool_candidates"), self.install_dir)
            if not located.ok:
                return located
            tool_path = located.value
            checkpoint.new_tool_path = tool_path

        client = self.client_factory(tool_path)
        reset = self.restore.reset_channels_to_default(client)
        if not reset.ok:
            report = RestoreReport()
            report.failed.append({'name': self.restore.community_channel, 'error': reset.message})
            self._restore_reports.append(("channel", report))

        self._restore_reports.append(("channel", self.restore.restore_channels(manifest.value.channels, client)))

        if self.config.get("restore_environments"):
            self._restore_reports.append(("environment", self.restore.restore_environments(manifest.value, client)))
        return StepResult.success()

    def plan(self) -> List[str]:
        """Describe what a run would do without changing anything"""
        lines = []
        checkpoint = self.checkpoint_store.load()
        if checkpoint.in_progress:
            lines.append(f"An earlier migration stopped at '{checkpoint.describe()}'; "
                         f"--resume would continue after '{checkpoint.last_completed.value}'")

        installation = self.discovery.find_installation(self.config.get("install_candidates"))
        if not installation.ok:
            lines.append(f"Nothing to migrate: {installation.message}")
            return lines
        lines.append(f"Would back up and remove the installation at {installation.value}")

        envs_dir = self.discovery.find_environments_dir(self.config.get("envs_candidates"), installation.value)
        lines.append(f"Environments directory: {envs_dir.value if envs_dir.ok else 'not found'}")

        executable = self.discovery.find_tool_executable(installation.value)
        if executable.ok:
            client = self.client_factory(executable.value)
            environments = self.backup.list_environments(client)
            if environments.ok:
                lines.append(f"Would back up {len(environments.value)} environments: "
                             f"{', '.join(environments.value) or '(none)'}")
            else:
                lines.append(f"Environment listing would fail: {environments.message}")
            channels = self.backup.capture_channel_list(client)
            lines.append(f"Would restore channels: {', '.join(channels) if channels else '(none)'}")
        else:
            lines.append(f"Backup would fail: {executable.message}")

        lines.append(f"Backup directory: {self.config.get_backup_dir()}")
        lines.append(f"Would delete leftovers: {', '.join(self.removal.leftover_paths)}")
        lines.append(f"Would install {self.installer.installer_url(self.config.get('installer_url'))} "
                     f"into {self.install_dir}")
        return lines
