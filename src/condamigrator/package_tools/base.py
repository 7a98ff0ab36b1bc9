#!/usr/bin/env python3
"""
Base package tool client and command runner interfaces
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Optional
import os
import sys
import subprocess
import logging

from ..errors import ToolInvocationError, CommandTimeoutError

logger = logging.getLogger(__name__)


def detached_process_options() -> Dict[str, object]:
    """Keyword arguments that keep a child out of the terminal's Ctrl-C

    Ctrl-C only requests cancellation between steps, so a running command
    must not receive the SIGINT the terminal sends to its process group.
    """
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


class CommandResult:
    """Captured output of a finished command"""

    def __init__(self, args: List[str], exit_code: int, stdout: str = "", stderr: str = ""):
        self.args = args
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def __str__(self) -> str:
        return f"{' '.join(self.args)} -> {self.exit_code}"


class CommandRunner:
    """Runs commands as blocking subprocesses with a time limit"""

    def __init__(self, timeout: Optional[float] = None, env: Optional[Dict[str, str]] = None):
        self.timeout = timeout
        self.env = env

    def run(self, args: List[str], timeout: Optional[float] = None) -> CommandResult:
        """Run a command and capture its output

        Args:
            args: Command line, executable first
            timeout: Seconds to wait, overriding the runner default

        Returns:
            The CommandResult, whatever the exit code

        Raises:
            ToolInvocationError: The command could not be launched
            CommandTimeoutError: The command did not finish in time
        """
        timeout = timeout if timeout is not None else self.timeout
        logger.debug(f"Running: {' '.join(args)}")
        try:
            result = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
                timeout=timeout,
                env=self.env if self.env is not None else os.environ.copy(),
                **detached_process_options(),
            )
        except subprocess.TimeoutExpired:
            raise CommandTimeoutError(f"{' '.join(args)} did not finish within {timeout} seconds")
        except OSError as e:
            raise ToolInvocationError(f"Could not run {args[0]}: {e}")
        return CommandResult(list(args), result.returncode, result.stdout, result.stderr)


class PackageToolClient(ABC):
    """Base class for package-environment tool adapters

    One method per logical operation. Implementations raise
    ToolInvocationError or CommandTimeoutError when the tool fails.
    """

    def __init__(self, executable: str, runner: Optional[CommandRunner] = None):
        self.executable = executable
        self.runner = runner or CommandRunner()

    def _run_command(self, args: List[str], check: bool = True,
                     timeout: Optional[float] = None) -> CommandResult:
        """Run a command using this tool"""
        cmd = [self.executable] + args
        result = self.runner.run(cmd, timeout=timeout)
        if check and not result.ok:
            message = result.stderr.strip() or result.stdout.strip() or "no output"
            logger.error(f"Error running {' '.join(cmd)}: exit code {result.exit_code}: {message}")
            raise ToolInvocationError(
                f"{' '.join(cmd)} exited with code {result.exit_code}: {message}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    @abstractmethod
    def version(self) -> str:
        """Version string reported by the tool"""
        pass

    @abstractmethod
    def show_channels(self) -> List[str]:
        """Configured channels in precedence order"""
        pass

    @abstractmethod
    def list_environments(self) -> List[str]:
        """Names of managed environments (paths for unnamed ones)"""
        pass

    @abstractmethod
    def export_environment(self, name: str) -> str:
        """Declarative specification of an environment"""
        pass

    @abstractmethod
    def deactivate(self) -> None:
        """Deactivate the active environment"""
        pass

    @abstractmethod
    def reverse_shell_integration(self) -> None:
        """Undo the tool's shell initialisation"""
        pass

    @abstractmethod
    def remove_channel(self, channel: str) -> None:
        """Remove a channel from the user configuration"""
        pass

    @abstractmethod
    def add_channel(self, channel: str) -> None:
        """Add a channel with the highest precedence"""
        pass

    @abstractmethod
    def append_channel(self, channel: str) -> None:
        """Add a channel with the lowest precedence"""
        pass

    @abstractmethod
    def create_environment(self, spec_file: str) -> None:
        """Create an environment from a declarative specification file"""
        pass

    @abstractmethod
    def init_shell(self, shell: str) -> None:
        """Initialise shell integration for the given shell"""
        pass
