#!/usr/bin/env python3
"""
conda command-line adapter

All knowledge of conda's command names and output formats lives here.
"""

import os
import sys
import json
import logging
from typing import List, Optional

from .base import PackageToolClient, CommandRunner
from ..errors import ToolInvocationError

logger = logging.getLogger(__name__)


def parse_channels(output: str) -> List[str]:
    """Parse the output of ``conda config --show channels``

    Accepts the ``--json`` form (``{"channels": [...]}``) as well as the
    plain YAML-like form::

        channels:
          - conda-forge
          - defaults
    """
    text = output.strip()
    if not text:
        return []

    if text.startswith('{'):
        data = json.loads(text)
        channels = data.get('channels') or []
        return [str(channel) for channel in channels]

    channels = []
    for line in text.splitlines():
        line = line.strip()
        if line.startswith('- '):
            channels.append(line[2:].strip())
    return channels


def parse_environment_list(output: str) -> List[str]:
    """Parse the output of ``conda env list``

    Comment and header lines are skipped; the first token of every other
    line is the environment name, or its path for environments without one::

        # conda environments:
        #
        base                  *  /home/user/anaconda3
        data                     /home/user/anaconda3/envs/data
                                 /srv/shared/env
    """
    names = []
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue
        token = stripped.split()[0]
        if token == '*':
            continue
        names.append(token)
    return names


class CondaClient(PackageToolClient):
    """Package tool client for conda-family installations"""

    def __init__(self, executable: str, runner: Optional[CommandRunner] = None,
                 long_timeout: Optional[float] = None):
        """
        Args:
            executable: Path to the conda executable (or just ``conda``)
            runner: Command runner, carrying the default per-command timeout
            long_timeout: Time limit for environment creation, which can take far longer
        """
        super().__init__(executable, runner)
        self.long_timeout = long_timeout

    def version(self) -> str:
        result = self._run_command(['--version'])
        return result.stdout.strip() or result.stderr.strip()

    def show_channels(self) -> List[str]:
        result = self._run_command(['config', '--show', 'channels', '--json'])
        try:
            return parse_channels(result.stdout)
        except (ValueError, AttributeError) as e:
            raise ToolInvocationError(f"Unreadable channel list from {self.executable}: {e}")

    def list_environments(self) -> List[str]:
        result = self._run_command(['env', 'list'])
        return parse_environment_list(result.stdout)

    def export_environment(self, name: str) -> str:
        selector = '--prefix' if os.path.isabs(name) else '--name'
        result = self._run_command(['env', 'export', selector, name])
        if not result.stdout.strip():
            raise ToolInvocationError(f"conda env export produced no output for {name}")
        return result.stdout

    def deactivate(self) -> None:
        # "conda deactivate" is a shell function; the shell hook is what a subprocess can run
        shell = 'shell.powershell' if sys.platform == 'win32' else 'shell.posix'
        self._run_command([shell, 'deactivate'])

    def reverse_shell_integration(self) -> None:
        self._run_command(['init', '--reverse', '--all'])

    def remove_channel(self, channel: str) -> None:
        self._run_command(['config', '--remove', 'channels', channel])

    def add_channel(self, channel: str) -> None:
        self._run_command(['config', '--add', 'channels', channel])

    def append_channel(self, channel: str) -> None:
        self._run_command(['config', '--append', 'channels', channel])

    def create_environment(self, spec_file: str) -> None:
        self._run_command(['env', 'create', '--file', spec_file], timeout=self.long_timeout)

    def init_shell(self, shell: str) -> None:
        self._run_command(['init', shell])
