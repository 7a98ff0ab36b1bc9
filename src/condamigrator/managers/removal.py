#!/usr/bin/env python3
"""
Removal of the old installation
"""

import os
import logging
from typing import List, Optional

from ..errors import ErrorKind, MigrationError, StepResult
from ..package_tools.base import PackageToolClient
from ..utils.config import DEFAULTS
from ..utils.fileio import expand_paths, remove_path
from ..utils.search_path import UserSearchPath, remove_from_search_path
from .manifest import BackupManifest

logger = logging.getLogger(__name__)

# Variables conda's activation scripts set
_ACTIVATION_VARIABLES = [
    "CONDA_PREFIX",
    "CONDA_DEFAULT_ENV",
    "CONDA_PROMPT_MODIFIER",
    "CONDA_SHLVL",
    "CONDA_EXE",
    "CONDA_PYTHON_EXE",
    "_CE_CONDA",
    "_CE_M",
]


class RemovalManager:
    """Deactivates, deletes and unregisters the old installation"""

    def __init__(self, leftover_paths: Optional[List[str]] = None,
                 search_path: Optional[UserSearchPath] = None,
                 logger: Optional[logging.Logger] = None):
        self.leftover_paths = leftover_paths if leftover_paths is not None else list(DEFAULTS["leftover_paths"])
        self.search_path = search_path or UserSearchPath()
        self.logger = logger or logging.getLogger(__name__)

    def deactivate_active_environment(self, client: PackageToolClient,
                                      installation: Optional[str] = None) -> StepResult:
        """Deactivate any environment of the old installation

        Runs the tool's deactivation hook, then clears activation variables
        and installation entries from this process's environment so nothing
        launched afterwards runs inside the old installation.
        """
        try:
            client.deactivate()
        except MigrationError as e:
            self.logger.error(f"Could not deactivate the active environment: {e.message}")
            return StepResult.from_error(e)

        for variable in _ACTIVATION_VARIABLES:
            os.environ.pop(variable, None)
        for key in list(os.environ):
            if key.startswith("CONDA_PREFIX_"):
                os.environ.pop(key)
        if installation:
            os.environ["PATH"] = remove_from_search_path(installation, os.environ.get("PATH", ""))

        self.logger.info("Deactivated the active environment")
        return StepResult.success()

    def reverse_shell_integration(self, client: PackageToolClient) -> StepResult:
        """Undo the old tool's shell initialisation; failure is only logged"""
        try:
            client.reverse_shell_integration()
        except MigrationError as e:
            self.logger.warning(f"Could not reverse shell integration: {e.message}")
            return StepResult.from_error(e)
        self.logger.info("Reversed shell integration of the old installation")
        return StepResult.success()

    def delete_directory(self, path: str) -> StepResult:
        """Recursively delete the installation directory

        Fails with IO when files are locked or permissions prevent deletion.
        """
        if not os.path.exists(path):
            self.logger.info(f"{path} is already gone")
            return StepResult.success(path)
        try:
            remove_path(path)
        except OSError as e:
            self.logger.error(f"Could not delete {path}: {e}")
            return StepResult.failure(ErrorKind.IO, f"could not delete {path}: {e}")
        if os.path.exists(path):
            return StepResult.failure(ErrorKind.IO, f"{path} still exists after deletion")
        self.logger.info(f"Deleted {path}")
        return StepResult.success(path)

    def delete_if_exists(self, path: str) -> StepResult:
        """Delete a leftover file or folder; absence is not an error"""
        if not os.path.lexists(path):
            self.logger.debug(f"Leftover path not present: {path}")
            return StepResult.success(None)
        return self.delete_directory(path)

    def remove_from_search_path(self, old_path: str) -> StepResult:
        """Drop the installation from the persisted user search path"""
        try:
            self.search_path.remove(old_path)
        except OSError as e:
            self.logger.error(f"Could not update the user search path: {e}")
            return StepResult.failure(ErrorKind.IO, str(e))
        return StepResult.success()

    def run_removal(self, manifest: BackupManifest, client: PackageToolClient,
                    installation: str) -> StepResult:
        """Remove the old installation

        Only the deactivation and the deletion of the installation directory
        are fatal; leftovers and search path cleanup are logged and skipped.
        """
        if not manifest.config_backup_ok:
            return StepResult.failure(ErrorKind.VERIFICATION_FAILED,
                                      "configuration backup did not succeed; refusing to remove")

        result = self.deactivate_active_environment(client, installation)
        if not result.ok:
            return StepResult.failure(result.kind, f"deactivation failed: {result.message}")

        self.reverse_shell_integration(client)

        result = self.delete_directory(installation)
        if not result.ok:
            return result

        for path in expand_paths(self.leftover_paths):
            leftover = self.delete_if_exists(path)
            if not leftover.ok:
                self.logger.warning(f"Leftover not removed: {leftover.message}")

        self.remove_from_search_path(installation)
        return StepResult.success(installation)
