#!/usr/bin/env python3
"""
Executable search path handling for condamigrator

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
import sys
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


def _normalize(entry: str, windows: bool) -> str:
    """Normalise a search path entry for comparison"""
    entry = entry.strip().strip('"')
    if windows:
        entry = entry.replace('/', '\\').rstrip('\\').lower()
    else:
        entry = entry.rstrip('/')
    return entry


def remove_from_search_path(old_path: str, current: str, separator: Optional[str] = None,
                            windows: Optional[bool] = None) -> str:
    """Remove an installation from a search path string

    Drops the entry equal to ``old_path`` and every entry below it
    (``old_path`` followed by a directory separator). Entries that merely
    start with the same characters, like ``/opt/anaconda3-old`` for
    ``/opt/anaconda3``, are kept. Order of the remaining entries is preserved.

    Args:
        old_path: Installation directory to remove
        current: Current search path value
        separator: Entry separator, defaults to os.pathsep
        windows: Compare case-insensitively with backslashes, defaults to the host

    Returns:
        The new search path value
    """
    if windows is None:
        windows = sys.platform == "win32"
    if separator is None:
        separator = ';' if windows else os.pathsep

    if not old_path or not current:
        return current

    target = _normalize(old_path, windows)
    dir_sep = '\\' if windows else '/'
    kept: List[str] = []
    removed: List[str] = []

    for entry in current.split(separator):
        normalized = _normalize(entry, windows)
        if normalized and (normalized == target or normalized.startswith(target + dir_sep)):
            removed.append(entry)
        else:
            kept.append(entry)

    if removed:
        logger.debug(f"Removed search path entries: {removed}")
    return separator.join(kept)


class UserSearchPath:
    """Reads and writes the persisted user-scope search path

    On Windows this is the ``Path`` value under ``HKEY_CURRENT_USER\\Environment``.
    Elsewhere there is no persisted user-scope value (shell rc files are handled by
    the package tool's own ``init --reverse``), so only this process's PATH changes.
    """

    def __init__(self, windows: Optional[bool] = None):
        self.windows = sys.platform == "win32" if windows is None else windows

    def read(self) -> str:
        if self.windows:
            import winreg
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, "Environment") as key:
                try:
                    value, _ = winreg.QueryValueEx(key, "Path")
                except FileNotFoundError:
                    value = ""
            return value
        return os.environ.get("PATH", "")

    def write(self, value: str) -> None:
        if self.windows:
            import winreg
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, "Environment", 0,
                                winreg.KEY_SET_VALUE) as key:
                winreg.SetValueEx(key, "Path", 0, winreg.REG_EXPAND_SZ, value)
        else:
            os.environ["PATH"] = value

    def remove(self, old_path: str) -> bool:
        """Remove an installation from the user search path

        Returns:
            Whether any entry was removed
        """
        if self.windows:
            # The registry value does not cover this process's inherited PATH
            os.environ["PATH"] = remove_from_search_path(old_path, os.environ.get("PATH", ""),
                                                         windows=True)

        current = self.read()
        updated = remove_from_search_path(old_path, current, windows=self.windows)
        if updated == current:
            logger.info(f"{old_path} is not on the user search path")
            return False
        self.write(updated)
        logger.info(f"Removed {old_path} from the user search path")
        return True
