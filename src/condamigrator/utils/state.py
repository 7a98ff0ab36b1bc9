#!/usr/bin/env python3
"""
Migration state checkpoint

The orchestrator records every state transition in a small JSON file so a
re-run can pick up after the last completed step instead of repeating
destructive ones.
"""

import os
import json
import logging
from enum import Enum
from datetime import datetime
from typing import List, Dict, Any, Optional

from .fileio import atomic_write_json

logger = logging.getLogger(__name__)


class MigrationState(Enum):
    """States of the migration state machine"""
    NOT_STARTED = "not_started"
    BACKED_UP = "backed_up"
    REMOVED = "removed"
    INSTALLED = "installed"
    RESTORED = "restored"
    FAILED = "failed"


# Successful states in the order the migration passes through them
STATE_ORDER = [
    MigrationState.NOT_STARTED,
    MigrationState.BACKED_UP,
    MigrationState.REMOVED,
    MigrationState.INSTALLED,
    MigrationState.RESTORED,
]


class MigrationCheckpoint:
    """Persisted migration progress"""

    def __init__(self, state: MigrationState = MigrationState.NOT_STARTED,
                 last_completed: MigrationState = MigrationState.NOT_STARTED,
                 failed_step: Optional[str] = None, cause: Optional[str] = None,
                 error_kind: Optional[str] = None, manifest_path: Optional[str] = None,
                 old_installation: Optional[str] = None, new_tool_path: Optional[str] = None,
                 updated_at: Optional[datetime] = None,
                 history: Optional[List[Dict[str, Any]]] = None):
        self.state = state
        self.last_completed = last_completed
        self.failed_step = failed_step
        self.cause = cause
        self.error_kind = error_kind
        self.manifest_path = manifest_path
        self.old_installation = old_installation
        self.new_tool_path = new_tool_path
        self.updated_at = updated_at
        self.history = history or []

    @property
    def in_progress(self) -> bool:
        """True when a migration was started but did not reach the end"""
        return self.last_completed not in (MigrationState.NOT_STARTED, MigrationState.RESTORED) \
            or self.state == MigrationState.FAILED

    def advance(self, state: MigrationState) -> None:
        """Record a successful transition"""
        self.state = state
        self.last_completed = state
        self.failed_step = None
        self.cause = None
        self.error_kind = None
        self._record(state.value)

    def fail(self, step: str, cause: str, error_kind: Optional[str] = None) -> None:
        """Record a terminal failure; last_completed stays the resume point"""
        self.state = MigrationState.FAILED
        self.failed_step = step
        self.cause = cause
        self.error_kind = error_kind
        self._record(MigrationState.FAILED.value, step=step, cause=cause)

    def _record(self, state: str, **details: Any) -> None:
        self.updated_at = datetime.now()
        entry = {'state': state, 'at': self.updated_at.isoformat()}
        entry.update(details)
        self.history.append(entry)

    def describe(self) -> str:
        if self.state == MigrationState.FAILED:
            return (f"failed during {self.failed_step}: {self.cause} "
                    f"(last completed: {self.last_completed.value})")
        return self.state.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'state': self.state.value,
            'last_completed': self.last_completed.value,
            'failed_step': self.failed_step,
            'cause': self.cause,
            'error_kind': self.error_kind,
            'manifest_path': self.manifest_path,
            'old_installation': self.old_installation,
            'new_tool_path': self.new_tool_path,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'history': self.history,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MigrationCheckpoint':
        """Create a checkpoint from a dictionary"""
        updated_at = None
        if data.get('updated_at'):
            try:
                updated_at = datetime.fromisoformat(data['updated_at'])
            except (ValueError, TypeError) as e:
                logger.warning(f"Invalid checkpoint timestamp: {data['updated_at']} - {str(e)}")

        return cls(
            state=MigrationState(data.get('state', MigrationState.NOT_STARTED.value)),
            last_completed=MigrationState(data.get('last_completed', MigrationState.NOT_STARTED.value)),
            failed_step=data.get('failed_step'),
            cause=data.get('cause'),
            error_kind=data.get('error_kind'),
            manifest_path=data.get('manifest_path'),
            old_installation=data.get('old_installation'),
            new_tool_path=data.get('new_tool_path'),
            updated_at=updated_at,
            history=data.get('history', []),
        )


class CheckpointStore:
    """Loads and saves the checkpoint file"""

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> MigrationCheckpoint:
        """Load the checkpoint, or a fresh one if none is stored

        Raises ValueError (json.JSONDecodeError) for a corrupt file; it is
        never read as "not started".
        """
        if not os.path.exists(self.path):
            return MigrationCheckpoint()
        with open(self.path, 'r') as f:
            data = json.load(f)
        checkpoint = MigrationCheckpoint.from_dict(data)
        logger.debug(f"Loaded checkpoint from {self.path}: {checkpoint.describe()}")
        return checkpoint

    def save(self, checkpoint: MigrationCheckpoint) -> None:
        atomic_write_json(self.path, checkpoint.to_dict())
        logger.debug(f"Saved checkpoint to {self.path}: {checkpoint.describe()}")

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
            logger.info(f"Removed checkpoint {self.path}")
