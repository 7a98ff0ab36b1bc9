#!/usr/bin/env python3
"""
Backup manifest: the record of what was backed up and how
"""

import os
import json
import logging
from enum import Enum
from datetime import datetime
from typing import List, Dict, Any, Optional

from .. import __version__
from ..utils.fileio import atomic_write_json

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
MANIFEST_FORMAT = 1


class BackupMethod(Enum):
    """How an environment ended up in the backup"""
    EXPORTED = "exported"
    COPIED_RAW = "copied_raw"
    FAILED = "failed"


class EnvironmentBackupEntry:
    """Backup result for a single environment"""

    def __init__(self, name: str, method: BackupMethod, path: Optional[str] = None,
                 error: Optional[str] = None):
        self.name = name
        self.method = method
        self.path = path
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'method': self.method.value,
            'path': self.path,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnvironmentBackupEntry':
        return cls(
            name=data.get('name', ''),
            method=BackupMethod(data.get('method', BackupMethod.FAILED.value)),
            path=data.get('path'),
            error=data.get('error'),
        )

    def __str__(self) -> str:
        return f"{self.name} [{self.method.value}]"


class ConfigCopyResult:
    """Result of copying one configuration file or folder"""

    COPIED = "copied"
    MISSING = "missing"
    FAILED = "failed"

    def __init__(self, source: str, destination: Optional[str], status: str,
                 error: Optional[str] = None):
        self.source = source
        self.destination = destination
        self.status = status
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'destination': self.destination,
            'status': self.status,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConfigCopyResult':
        return cls(
            source=data.get('source', ''),
            destination=data.get('destination'),
            status=data.get('status', cls.FAILED),
            error=data.get('error'),
        )


class BackupManifest:
    """Structured record of a backup session

    Written at the end of every backup, including partial ones. Removal
    refuses to start unless the configuration backup recorded here succeeded.
    """

    def __init__(self, source_installation: str, environments_dir: Optional[str] = None,
                 timestamp: Optional[datetime] = None, hostname: str = ""):
        self.format_version = MANIFEST_FORMAT
        self.tool_version = __version__
        self.timestamp = timestamp or datetime.now()
        self.hostname = hostname
        self.source_installation = source_installation
        self.environments_dir = environments_dir
        self.package_tool_version: Optional[str] = None
        self.config_dir: Optional[str] = None
        self.config_files: List[ConfigCopyResult] = []
        self.channels_file: Optional[str] = None
        self.channels: List[str] = []
        self.channel_capture_ok = False
        self.environments: List[EnvironmentBackupEntry] = []
        self.environment_listing_ok = False
        self.bulk_copy_path: Optional[str] = None
        self.bulk_copy_ok = False
        self.bulk_copy_error: Optional[str] = None

    @property
    def config_backup_ok(self) -> bool:
        """True when no configuration copy failed (missing files are fine)"""
        return all(result.status != ConfigCopyResult.FAILED for result in self.config_files)

    @property
    def failed_environments(self) -> List[EnvironmentBackupEntry]:
        return [entry for entry in self.environments if entry.method == BackupMethod.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'format_version': self.format_version,
            'tool_version': self.tool_version,
            'timestamp': self.timestamp.isoformat(),
            'hostname': self.hostname,
            'source_installation': self.source_installation,
            'environments_dir': self.environments_dir,
            'package_tool_version': self.package_tool_version,
            'config_backup': {
                'directory': self.config_dir,
                'files': [result.to_dict() for result in self.config_files],
                'ok': self.config_backup_ok,
            },
            'channels_file': self.channels_file,
            'channels': list(self.channels),
            'channel_capture_ok': self.channel_capture_ok,
            'environments': [entry.to_dict() for entry in self.environments],
            'environment_listing_ok': self.environment_listing_ok,
            'bulk_copy': {
                'path': self.bulk_copy_path,
                'ok': self.bulk_copy_ok,
                'error': self.bulk_copy_error,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupManifest':
        """Create a manifest from a dictionary"""
        timestamp = None
        if data.get('timestamp'):
            try:
                timestamp = datetime.fromisoformat(data['timestamp'])
            except (ValueError, TypeError) as e:
                logger.warning(f"Invalid manifest timestamp: {data['timestamp']} - {str(e)}")

        manifest = cls(
            source_installation=data.get('source_installation', ''),
            environments_dir=data.get('environments_dir'),
            timestamp=timestamp,
            hostname=data.get('hostname', ''),
        )
        manifest.format_version = data.get('format_version', MANIFEST_FORMAT)
        manifest.tool_version = data.get('tool_version', '')
        manifest.package_tool_version = data.get('package_tool_version')

        config_backup = data.get('config_backup') or {}
        manifest.config_dir = config_backup.get('directory')
        manifest.config_files = [ConfigCopyResult.from_dict(item) for item in config_backup.get('files', [])]

        manifest.channels_file = data.get('channels_file')
        manifest.channels = list(data.get('channels', []))
        manifest.channel_capture_ok = data.get('channel_capture_ok', False)
        manifest.environments = [EnvironmentBackupEntry.from_dict(item) for item in data.get('environments', [])]
        manifest.environment_listing_ok = data.get('environment_listing_ok', False)

        bulk_copy = data.get('bulk_copy') or {}
        manifest.bulk_copy_path = bulk_copy.get('path')
        manifest.bulk_copy_ok = bulk_copy.get('ok', False)
        manifest.bulk_copy_error = bulk_copy.get('error')
        return manifest

    def save(self, path: str) -> str:
        """Write the manifest atomically"""
        atomic_write_json(path, self.to_dict())
        logger.info(f"Wrote backup manifest to {path}")
        return path

    @classmethod
    def load(cls, path: str) -> 'BackupManifest':
        """Read a manifest; raises OSError or ValueError if it is missing or unreadable"""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def summary(self) -> str:
        exported = sum(1 for e in self.environments if e.method == BackupMethod.EXPORTED)
        copied = sum(1 for e in self.environments if e.method == BackupMethod.COPIED_RAW)
        copied_configs = sum(1 for r in self.config_files if r.status == ConfigCopyResult.COPIED)
        return (f"{len(self.environments)} environments ({exported} exported, {copied} copied, "
                f"{len(self.failed_environments)} failed), {copied_configs} config files, "
                f"{len(self.channels)} channels")


def manifest_path_for(session_dir: str) -> str:
    return os.path.join(session_dir, MANIFEST_FILE)
