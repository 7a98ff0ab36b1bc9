#!/usr/bin/env python3
"""
Locate the installation being migrated and its environments directory
"""

import os
import logging
from typing import List, Optional

from ..errors import ErrorKind, StepResult
from ..utils.config import TOOL_EXECUTABLE_CANDIDATES
from ..utils.fileio import expand_paths

logger = logging.getLogger(__name__)


class EnvironmentDiscovery:
    """Checks ordered candidate paths; the first one that exists wins"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def _first_existing(self, paths: List[str], what: str, directory: bool = False) -> StepResult:
        for path in paths:
            if os.path.isdir(path) if directory else os.path.exists(path):
                self.logger.info(f"Found {what} at {path}")
                return StepResult.success(path)
            self.logger.debug(f"No {what} at {path}")
        return StepResult.failure(
            ErrorKind.NOT_FOUND,
            f"No {what} found (checked: {', '.join(paths) or 'nothing'})",
        )

    def find_installation(self, candidates: List[str]) -> StepResult:
        """Find the installation directory

        Args:
            candidates: Ordered path templates

        Returns:
            StepResult carrying the first existing path, or NOT_FOUND
        """
        return self._first_existing(expand_paths(candidates), "installation", directory=True)

    def find_environments_dir(self, candidates: List[str], installation: Optional[str] = None) -> StepResult:
        """Find the directory holding named environments

        Templates may refer to the installation with ``{install}``.
        """
        return self._first_existing(expand_paths(candidates, installation), "environments directory",
                                    directory=True)

    def find_tool_executable(self, installation: str,
                             candidates: Optional[List[str]] = None) -> StepResult:
        """Find the package tool's executable inside an installation"""
        paths = expand_paths(candidates or TOOL_EXECUTABLE_CANDIDATES, installation)
        return self._first_existing(paths, "conda executable")
