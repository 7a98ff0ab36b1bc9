#!/usr/bin/env python3
"""
Restore of channel configuration (and optionally environments) into the new installation
"""

import os
import logging
from typing import List, Dict, Any, Optional

from ..errors import MigrationError, StepResult
from ..package_tools.base import PackageToolClient
from ..utils.progress import ProgressTracker, OperationType
from .manifest import BackupManifest, BackupMethod

logger = logging.getLogger(__name__)


class RestoreReport:
    """Per-item outcome of a restore pass"""

    def __init__(self):
        self.restored: List[str] = []
        self.skipped: List[str] = []
        self.failed: List[Dict[str, Any]] = []

    @property
    def ok(self) -> bool:
        return not self.failed


class RestoreManager:
    """Re-applies backed-up configuration to the new installation

    conda's ``--add`` puts a channel first and ``--append`` puts it last.
    After the reset the community channel is the only entry, and captured
    channels are appended in their original order, so the final order is
    the community channel followed by the captured ones.
    """

    def __init__(self, community_channel: str = "conda-forge", default_channel: str = "defaults",
                 logger: Optional[logging.Logger] = None):
        self.community_channel = community_channel
        self.default_channel = default_channel
        self.logger = logger or logging.getLogger(__name__)

    def reset_channels_to_default(self, client: PackageToolClient) -> StepResult:
        """Remove the default channel and add the community channel"""
        try:
            client.remove_channel(self.default_channel)
            self.logger.info(f"Removed channel {self.default_channel}")
        except MigrationError as e:
            # conda refuses to remove a channel that is not configured
            self.logger.info(f"Channel {self.default_channel} was not configured: {e.message}")

        try:
            client.add_channel(self.community_channel)
        except MigrationError as e:
            self.logger.error(f"Could not add channel {self.community_channel}: {e.message}")
            return StepResult.from_error(e)
        self.logger.info(f"Added channel {self.community_channel}")
        return StepResult.success()

    def restore_channels(self, channels: List[str], client: PackageToolClient) -> RestoreReport:
        """Append captured channels in their original order

        Each channel is independent; a failure is logged and the rest continue.
        """
        report = RestoreReport()
        if not channels:
            self.logger.info("No captured channels to restore")
            return report

        seen = set()
        for channel in channels:
            if channel in (self.default_channel, self.community_channel) or channel in seen:
                self.logger.debug(f"Skipping channel {channel}")
                report.skipped.append(channel)
                continue
            seen.add(channel)
            try:
                client.append_channel(channel)
            except MigrationError as e:
                self.logger.error(f"Could not restore channel {channel}: {e.message}")
                report.failed.append({'name': channel, 'error': e.message})
                continue
            self.logger.info(f"Restored channel {channel}")
            report.restored.append(channel)

        return report

    def restore_environments(self, manifest: BackupManifest, client: PackageToolClient) -> RestoreReport:
        """Recreate exported environments in the new installation

        The base environment comes with the new installation and raw copies
        cannot be replayed, so only exported named environments are recreated.
        """
        report = RestoreReport()
        with ProgressTracker(OperationType.RESTORE, total=len(manifest.environments),
                             desc="Recreating environments", unit="envs") as progress:
            for entry in manifest.environments:
                progress.update(1, status=entry.name)
                if entry.method != BackupMethod.EXPORTED or entry.name == "base" or os.path.isabs(entry.name):
                    report.skipped.append(entry.name)
                    continue
                if not entry.path or not os.path.isfile(entry.path):
                    report.failed.append({'name': entry.name, 'error': f"specification file missing: {entry.path}"})
                    continue
                try:
                    client.create_environment(entry.path)
                except MigrationError as e:
                    self.logger.error(f"Could not recreate environment {entry.name}: {e.message}")
                    report.failed.append({'name': entry.name, 'error': e.message})
                    continue
                self.logger.info(f"Recreated environment {entry.name}")
                report.restored.append(entry.name)
        return report
