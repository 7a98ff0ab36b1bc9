"""
Migration step managers for condamigrator.

Each manager owns one stage of the migration: discovery, backup, removal,
installation and restore.
"""

from .manifest import BackupMethod, ConfigCopyResult, EnvironmentBackupEntry, BackupManifest
from .discovery import EnvironmentDiscovery
from .backup import BackupManager
from .removal import RemovalManager
from .installer import Installer
from .restore import RestoreManager, RestoreReport

__all__ = [
    'BackupMethod',
    'ConfigCopyResult',
    'EnvironmentBackupEntry',
    'BackupManifest',
    'EnvironmentDiscovery',
    'BackupManager',
    'RemovalManager',
    'Installer',
    'RestoreManager',
    'RestoreReport',
]
