#!/usr/bin/env python3
"""
Progress tracking utilities for condamigrator

This handles terminal progress bars for long-running operations like
environment backups and the installer download.
"""

import sys
import logging
from typing import Optional, Union
from enum import Enum

from tqdm import tqdm

logger = logging.getLogger(__name__)


class OperationType(Enum):
    """Types of operations that can be tracked"""
    BACKUP = "backup"
    DOWNLOAD = "download"
    RESTORE = "restore"


class ProgressTracker:
    """Class to track and display progress of long-running operations"""

    def __init__(self,
                 operation_type: Union[str, OperationType],
                 total: Optional[int] = None,
                 desc: str = "",
                 unit: str = "items",
                 unit_scale: bool = False,
                 disable: Optional[bool] = None):
        """Initialize a progress tracker

        Args:
            operation_type: Type of operation being tracked (backup, download, etc.)
            total: Total number of items to process (None for indeterminate)
            desc: Description of the operation
            unit: Unit of items being processed (environments, bytes, etc.)
            unit_scale: Scale large counts (used for byte counts)
            disable: Hide the bar; defaults to hiding it when stderr is not a terminal
        """
        self.operation_type = operation_type.value if isinstance(operation_type, OperationType) else operation_type
        self.total = total
        self.desc = desc or f"Processing {self.operation_type}"
        self.current = 0
        if disable is None:
            disable = not sys.stderr.isatty()
        self.pbar = tqdm(
            total=total,
            desc=self.desc,
            unit=unit,
            unit_scale=unit_scale,
            disable=disable,
            leave=False,
        )

    def update(self, n: int = 1, status: str = "") -> None:
        """Update the progress tracker

        Args:
            n: Number of items to increment by
            status: Status text to display
        """
        self.current += n
        self.pbar.update(n)
        if status:
            self.pbar.set_postfix_str(status)

    def set_status(self, status: str) -> None:
        """Show status text without advancing"""
        self.pbar.set_postfix_str(status)

    def close(self, status: str = "Complete") -> None:
        """Close the progress tracker"""
        self.pbar.close()
        logger.debug(f"{self.desc}: {status} ({self.current} done)")

    def __enter__(self) -> 'ProgressTracker':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close("Failed" if exc_type else "Complete")
