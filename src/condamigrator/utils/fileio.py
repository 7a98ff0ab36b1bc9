#!/usr/bin/env python3
"""
Filesystem helpers: path templates, atomic JSON writes and copies
"""

import os
import re
import sys
import json
import stat
import shutil
import logging
import tempfile
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# $NAME, ${NAME} and %NAME% references
_VARIABLE_RE = re.compile(r'\$\{([A-Za-z_]\w*)\}|\$([A-Za-z_]\w*)|%([A-Za-z_]\w*)%')


def _referenced_variables(template: str) -> List[str]:
    return [next(name for name in match.groups() if name) for match in _VARIABLE_RE.finditer(template)]


def expand_path(template: str, install: Optional[str] = None) -> str:
    """Expand a candidate path template

    Templates may use ``~``, environment variables (``$HOME``, ``%LOCALAPPDATA%``)
    and the ``{install}`` placeholder for an installation prefix. A template
    that refers to an unset variable cannot match and expands to "".
    """
    if any(name not in os.environ for name in _referenced_variables(template)):
        return ""
    path = template
    if '{install}' in path:
        if not install:
            return ""
        path = path.replace('{install}', install)
    path = os.path.expandvars(os.path.expanduser(path))
    return os.path.normpath(path)


def expand_paths(templates: List[str], install: Optional[str] = None) -> List[str]:
    """Expand a list of templates, dropping ones that cannot be resolved"""
    expanded = []
    for template in templates:
        path = expand_path(template, install)
        if path:
            expanded.append(path)
    return expanded


def atomic_write_json(path: str, data: Dict[str, Any]) -> None:
    """Write JSON to path via a temporary file and rename

    A crash mid-write leaves either the old file or no file, never a partial one.
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def copy_path(source: str, destination: str) -> None:
    """Copy a file or a whole directory tree, keeping metadata"""
    if os.path.isdir(source):
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
    else:
        os.makedirs(os.path.dirname(destination) or ".", exist_ok=True)
        shutil.copy2(source, destination)


def _clear_readonly(func, path, _exc) -> None:
    """rmtree error handler: clear the read-only bit and retry once"""
    os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
    func(path)


def remove_path(path: str) -> None:
    """Remove a file, symlink or directory tree; raises OSError on failure"""
    if os.path.islink(path) or os.path.isfile(path):
        try:
            os.remove(path)
        except PermissionError:
            os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
            os.remove(path)
    elif os.path.isdir(path):
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=_clear_readonly)
        else:
            shutil.rmtree(path, onerror=_clear_readonly)
