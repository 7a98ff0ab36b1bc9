#!/usr/bin/env python3
"""
Backup of configuration, channels and environments before removal

Three layers of redundancy for environments: a declarative export per
environment, a raw copy of the environment folder when the export fails,
and a final bulk copy of the whole environments directory.
"""

import os
import re
import logging
import datetime
from typing import List, Optional

from ..errors import ErrorKind, MigrationError, StepResult
from ..package_tools.base import PackageToolClient
from ..utils.config import DEFAULTS
from ..utils.fileio import copy_path, expand_path
from ..utils.progress import ProgressTracker, OperationType
from .manifest import (BackupManifest, BackupMethod, ConfigCopyResult,
                       EnvironmentBackupEntry, manifest_path_for)

logger = logging.getLogger(__name__)


def _safe_name(name: str) -> str:
    """File-system friendly form of an environment name or path"""
    safe = re.sub(r'[^A-Za-z0-9._-]+', '_', name).strip('_')
    return safe or "environment"


class BackupManager:
    """Copies everything needed to rebuild the setup after removal"""

    def __init__(self, config_paths: Optional[List[str]] = None,
                 logger: Optional[logging.Logger] = None):
        self.config_paths = config_paths if config_paths is not None else list(DEFAULTS["config_paths"])
        self.logger = logger or logging.getLogger(__name__)

    def _resolve_config_path(self, template: str, home_dir: str) -> str:
        if template == "~" or template.startswith("~/") or template.startswith("~\\"):
            return os.path.normpath(os.path.join(home_dir, template[2:]))
        return expand_path(template)

    def backup_config_files(self, home_dir: str, dest_dir: str) -> List[ConfigCopyResult]:
        """Copy known configuration files and folders

        A missing file is a warning; a failed copy is recorded as FAILED and
        blocks removal later on.

        Args:
            home_dir: Home directory the ``~`` in configured paths refers to
            dest_dir: Directory receiving the copies, laid out relative to home

        Returns:
            One ConfigCopyResult per configured path
        """
        results = []

        for template in self.config_paths:
            source = self._resolve_config_path(template, home_dir)
            if not source:
                continue
            if not os.path.exists(source):
                self.logger.warning(f"Config path not present, skipping: {source}")
                results.append(ConfigCopyResult(source, None, ConfigCopyResult.MISSING))
                continue

            try:
                relative = os.path.relpath(source, home_dir)
            except ValueError:
                # Different drive on Windows
                relative = _safe_name(source)
            if relative.startswith(os.pardir):
                relative = _safe_name(source)
            destination = os.path.join(dest_dir, relative)

            try:
                copy_path(source, destination)
                self.logger.info(f"Backed up config: {source} -> {destination}")
                results.append(ConfigCopyResult(source, destination, ConfigCopyResult.COPIED))
            except (OSError, IOError) as e:
                self.logger.error(f"Failed to back up config {source}: {e}")
                results.append(ConfigCopyResult(source, destination, ConfigCopyResult.FAILED, str(e)))

        return results

    def capture_channel_list(self, client: PackageToolClient) -> Optional[List[str]]:
        """Read the configured channels in precedence order

        Returns:
            The channel list, or None when the tool could not report it
        """
        try:
            channels = client.show_channels()
        except MigrationError as e:
            self.logger.error(f"Could not capture channel list: {e.message}")
            return None
        self.logger.info(f"Captured {len(channels)} channels: {', '.join(channels) or '(none)'}")
        return channels

    def list_environments(self, client: PackageToolClient) -> StepResult:
        """List managed environments; failing to invoke the tool is fatal"""
        try:
            names = client.list_environments()
        except MigrationError as e:
            self.logger.error(f"Could not list environments: {e.message}")
            return StepResult.from_error(e)
        self.logger.info(f"Found {len(names)} environments: {', '.join(names) or '(none)'}")
        return StepResult.success(names)

    def export_environment(self, name: str, client: PackageToolClient, dest_file: str,
                           envs_dir: Optional[str] = None,
                           raw_dir: Optional[str] = None) -> EnvironmentBackupEntry:
        """Back up one environment, falling back to a raw folder copy

        Never raises: an environment that can be neither exported nor copied
        is returned as a FAILED entry.

        Args:
            name: Environment name (or path for unnamed environments)
            client: Client of the tool that owns the environment
            dest_file: Where the exported specification goes
            envs_dir: Environments root holding the raw folders
            raw_dir: Directory receiving raw copies, defaults to next to dest_file
        """
        export_error = None
        try:
            spec = client.export_environment(name)
            os.makedirs(os.path.dirname(dest_file) or ".", exist_ok=True)
            with open(dest_file, 'w') as f:
                f.write(spec)
            self.logger.info(f"Exported environment {name} to {dest_file}")
            return EnvironmentBackupEntry(name, BackupMethod.EXPORTED, dest_file)
        except MigrationError as e:
            export_error = e.message
        except (OSError, IOError) as e:
            export_error = str(e)
        self.logger.warning(f"Export of environment {name} failed, trying raw copy: {export_error}")

        if os.path.isabs(name):
            source = name
        elif envs_dir:
            source = os.path.join(envs_dir, name)
        else:
            source = None

        if not source or not os.path.isdir(source):
            message = f"export failed ({export_error}) and no environment folder found"
            self.logger.error(f"Could not back up environment {name}: {message}")
            return EnvironmentBackupEntry(name, BackupMethod.FAILED, None, message)

        raw_dir = raw_dir or os.path.join(os.path.dirname(dest_file), "raw")
        destination = os.path.join(raw_dir, _safe_name(name))
        try:
            copy_path(source, destination)
        except (OSError, IOError) as e:
            message = f"export failed ({export_error}) and raw copy failed ({e})"
            self.logger.error(f"Could not back up environment {name}: {message}")
            return EnvironmentBackupEntry(name, BackupMethod.FAILED, None, message)

        self.logger.info(f"Copied environment folder {source} to {destination}")
        return EnvironmentBackupEntry(name, BackupMethod.COPIED_RAW, destination, export_error)

    def bulk_copy_environments_dir(self, envs_dir: Optional[str], dest_dir: str) -> StepResult:
        """Copy the whole environments directory as a last safety net"""
        if not envs_dir or not os.path.isdir(envs_dir):
            self.logger.warning("No environments directory to copy")
            return StepResult.failure(ErrorKind.NOT_FOUND, "no environments directory")
        try:
            copy_path(envs_dir, dest_dir)
        except (OSError, IOError) as e:
            self.logger.error(f"Bulk copy of {envs_dir} failed: {e}")
            return StepResult.failure(ErrorKind.IO, str(e))
        self.logger.info(f"Copied environments directory {envs_dir} to {dest_dir}")
        return StepResult.success(dest_dir)

    def _create_session_dir(self, backup_root: str, now: datetime.datetime) -> str:
        base = os.path.join(backup_root, now.strftime("%Y%m%d_%H%M%S"))
        session_dir = base
        counter = 1
        while os.path.exists(session_dir):
            session_dir = f"{base}_{counter}"
            counter += 1
        os.makedirs(session_dir)
        return session_dir

    def run_backup(self, installation: str, envs_dir: Optional[str], client: PackageToolClient,
                   backup_root: str, home_dir: Optional[str] = None, hostname: str = "",
                   bulk_copy: bool = True) -> StepResult:
        """Run the whole backup and write the manifest

        The manifest is written even when a step fails, so a partial backup
        can still be inspected.

        Returns:
            StepResult whose value is the manifest path. It fails when the
            configuration backup or the environment listing failed, and with
            IO when the backup folder or the manifest cannot be written.
        """
        home_dir = home_dir or os.path.expanduser("~")
        now = datetime.datetime.now()
        try:
            session_dir = self._create_session_dir(backup_root, now)
        except OSError as e:
            self.logger.error(f"Could not create a backup folder in {backup_root}: {e}")
            return StepResult.failure(ErrorKind.IO, f"could not create backup folder in {backup_root}: {e}")
        manifest_path = manifest_path_for(session_dir)
        self.logger.info(f"Backing up {installation} to {session_dir}")

        manifest = BackupManifest(installation, envs_dir, timestamp=now, hostname=hostname)
        try:
            manifest.package_tool_version = client.version()
        except MigrationError as e:
            self.logger.warning(f"Could not read package tool version: {e.message}")

        # Configuration files
        manifest.config_dir = os.path.join(session_dir, "config")
        manifest.config_files = self.backup_config_files(home_dir, manifest.config_dir)

        # Channels
        channels = self.capture_channel_list(client)
        manifest.channel_capture_ok = channels is not None
        manifest.channels = channels or []
        channels_file = os.path.join(session_dir, "channels.txt")
        try:
            with open(channels_file, 'w') as f:
                f.writelines(f"{channel}\n" for channel in manifest.channels)
            manifest.channels_file = channels_file
        except OSError as e:
            # The manifest still carries the channel list
            self.logger.error(f"Could not write {channels_file}: {e}")

        # Environments
        listing = self.list_environments(client)
        manifest.environment_listing_ok = listing.ok
        if listing.ok:
            env_dir = os.path.join(session_dir, "environments")
            names = listing.value
            with ProgressTracker(OperationType.BACKUP, total=len(names),
                                 desc="Backing up environments", unit="envs") as progress:
                for name in names:
                    progress.set_status(name)
                    dest_file = os.path.join(env_dir, f"{_safe_name(name)}.yml")
                    entry = self.export_environment(name, client, dest_file, envs_dir,
                                                    raw_dir=os.path.join(session_dir, "raw"))
                    manifest.environments.append(entry)
                    progress.update(1)

        if bulk_copy and envs_dir:
            manifest.bulk_copy_path = os.path.join(session_dir, "envs")
            bulk = self.bulk_copy_environments_dir(envs_dir, manifest.bulk_copy_path)
            manifest.bulk_copy_ok = bulk.ok
            manifest.bulk_copy_error = None if bulk.ok else bulk.message

        try:
            manifest.save(manifest_path)
        except OSError as e:
            self.logger.error(f"Could not write backup manifest {manifest_path}: {e}")
            return StepResult.failure(ErrorKind.IO, f"could not write backup manifest {manifest_path}: {e}")
        self.logger.info(f"Backup summary: {manifest.summary()}")

        if not manifest.config_backup_ok:
            failed = [r.source for r in manifest.config_files if r.status == ConfigCopyResult.FAILED]
            return StepResult.failure(ErrorKind.IO, f"configuration backup failed for: {', '.join(failed)}",
                                      value=manifest_path)
        if not listing.ok:
            return StepResult.failure(listing.kind, f"could not list environments: {listing.message}",
                                      value=manifest_path)
        return StepResult.success(manifest_path)
