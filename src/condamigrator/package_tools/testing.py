#!/usr/bin/env python3
"""
In-memory package tool client for tests

Mimics conda's channel semantics: ``--add`` puts a channel first,
``--append`` puts it last, and removing a channel that is not configured
is an error.
"""

from typing import Dict, Iterable, List, Optional

from .base import PackageToolClient
from ..errors import ToolInvocationError


class FakeToolClient(PackageToolClient):
    """PackageToolClient that keeps its state in memory"""

    def __init__(self, environments: Optional[List[str]] = None,
                 channels: Optional[List[str]] = None,
                 exports: Optional[Dict[str, str]] = None,
                 failing: Optional[Iterable[str]] = None,
                 executable: str = "conda",
                 tool_version: str = "conda 23.7.4"):
        """
        Args:
            environments: Names reported by list_environments
            channels: Initially configured channels
            exports: Environment name -> exported specification; others fail to export
            failing: Operations that raise, either ``"operation"`` or ``"operation:argument"``
        """
        super().__init__(executable)
        self.environments = list(environments or [])
        self.channels = list(channels or [])
        self.exports = dict(exports or {})
        self.failing = set(failing or [])
        self.tool_version = tool_version
        self.created: List[str] = []
        self.shells: List[str] = []
        self.calls: List[tuple] = []

    def _call(self, operation: str, argument: Optional[str] = None) -> None:
        self.calls.append((operation, argument) if argument is not None else (operation,))
        if operation in self.failing or f"{operation}:{argument}" in self.failing:
            raise ToolInvocationError(f"{self.executable} {operation} failed", exit_code=1)

    def version(self) -> str:
        self._call("version")
        return self.tool_version

    def show_channels(self) -> List[str]:
        self._call("show_channels")
        return list(self.channels)

    def list_environments(self) -> List[str]:
        self._call("list_environments")
        return list(self.environments)

    def export_environment(self, name: str) -> str:
        self._call("export_environment", name)
        if name not in self.exports:
            raise ToolInvocationError(f"cannot export {name}", exit_code=1)
        return self.exports[name]

    def deactivate(self) -> None:
        self._call("deactivate")

    def reverse_shell_integration(self) -> None:
        self._call("reverse_shell_integration")

    def remove_channel(self, channel: str) -> None:
        self._call("remove_channel", channel)
        if channel not in self.channels:
            raise ToolInvocationError(f"CondaKeyError: '{channel}' is not in the 'channels' key", exit_code=1)
        self.channels.remove(channel)

    def add_channel(self, channel: str) -> None:
        self._call("add_channel", channel)
        if channel in self.channels:
            self.channels.remove(channel)
        self.channels.insert(0, channel)

    def append_channel(self, channel: str) -> None:
        self._call("append_channel", channel)
        if channel in self.channels:
            self.channels.remove(channel)
        self.channels.append(channel)

    def create_environment(self, spec_file: str) -> None:
        self._call("create_environment", spec_file)
        self.created.append(spec_file)

    def init_shell(self, shell: str) -> None:
        self._call("init_shell", shell)
        self.shells.append(shell)
