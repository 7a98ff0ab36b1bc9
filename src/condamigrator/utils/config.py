#!/usr/bin/env python3
"""
Configuration module for condamigrator

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
import copy
import json
import logging
from typing import Dict, Any, Optional

# Configure logging
logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_BACKUP_DIR = os.path.expanduser("~/condamigrator_backups")
DEFAULT_DATA_DIR = os.path.expanduser("~/.local/share/condamigrator")

# Configuration file location
CONFIG_DIR = os.path.expanduser("~/.config/condamigrator")
CONFIG_FILE = os.path.join(CONFIG_DIR, "config.json")

MINIFORGE_URL = "https://github.com/conda-forge/miniforge/releases/latest/download/{asset}"

# conda executable inside an installation prefix
TOOL_EXECUTABLE_CANDIDATES = [
    "{install}/condabin/conda",
    "{install}/bin/conda",
    "{install}/Scripts/conda.exe",
    "{install}/condabin/conda.bat",
]

DEFAULTS: Dict[str, Any] = {
    "backup_dir": DEFAULT_BACKUP_DIR,
    "data_dir": DEFAULT_DATA_DIR,
    # Old installation, first existing wins
    "install_candidates": [
        "~/anaconda3",
        "~/Anaconda3",
        "~/miniconda3",
        "~/Miniconda3",
        "%LOCALAPPDATA%/anaconda3",
        "%LOCALAPPDATA%/miniconda3",
        "%PROGRAMDATA%/anaconda3",
        "/opt/anaconda3",
        "/opt/miniconda3",
    ],
    "envs_candidates": [
        "{install}/envs",
        "~/.conda/envs",
    ],
    "config_paths": [
        "~/.condarc",
        "~/.conda/environments.txt",
        "~/.config/conda",
    ],
    "leftover_paths": [
        "~/.conda",
        "~/.continuum",
        "~/.anaconda",
        "~/.condarc",
    ],
    "install_dir": "~/miniforge3",
    "installer_url": MINIFORGE_URL,
    "new_tool_candidates": TOOL_EXECUTABLE_CANDIDATES,
    "community_channel": "conda-forge",
    "default_channel": "defaults",
    # Seconds
    "tool_timeout": 300,
    "install_timeout": 1800,
    "download_timeout": 60,
    "shell": "auto",
    "restore_environments": False,
}


class Config:
    """Configuration manager for condamigrator"""

    def __init__(self, config_file: Optional[str] = None):
        """Initialize the configuration manager

        Args:
            config_file: Alternate JSON file to read instead of the per-user one
        """
        self.config_file = os.path.expanduser(config_file) if config_file else CONFIG_FILE
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file layered over the defaults"""
        config = copy.deepcopy(DEFAULTS)

        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r') as f:
                    stored = json.load(f)
                if not isinstance(stored, dict):
                    raise ValueError("top-level JSON value is not an object")
                config.update(stored)
                logger.info(f"Loaded configuration from {self.config_file}")
            except (json.JSONDecodeError, ValueError, IOError) as e:
                logger.error(f"Error loading configuration: {e}")
                # Fall back to default config

        return config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value"""
        return self.config.get(key, default)

    def override(self, **values: Any) -> None:
        """Apply per-run overrides (e.g. from the command line) for this run only"""
        for key, value in values.items():
            if value is not None:
                self.config[key] = value

    def get_backup_dir(self) -> str:
        """Get the configured backup directory"""
        return os.path.expanduser(self.config.get("backup_dir", DEFAULT_BACKUP_DIR))

    def get_data_dir(self) -> str:
        """Directory holding the checkpoint file and the migration log"""
        return os.path.expanduser(self.config.get("data_dir", DEFAULT_DATA_DIR))
