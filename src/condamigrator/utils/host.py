#!/usr/bin/env python3
"""
Host detection: operating system, architecture and shell

Used to pick the Miniforge installer asset, its silent-install arguments and
the shell to initialise after installation.
"""

import os
import sys
import socket
import logging
import platform
from typing import List, Optional

import distro

logger = logging.getLogger(__name__)

# platform.machine() spellings mapped to the Miniforge asset names
_ARCH_NAMES = {
    'x86_64': 'x86_64',
    'amd64': 'x86_64',
    'aarch64': 'aarch64',
    'arm64': 'arm64',
    'ppc64le': 'ppc64le',
}


class HostInfo:
    """Information about the machine being migrated"""

    def __init__(self, system: str = "", machine: str = "", distro_name: str = "",
                 distro_version: str = "", hostname: str = "", shell: str = ""):
        self.system = system
        self.machine = machine
        self.distro_name = distro_name
        self.distro_version = distro_version
        self.hostname = hostname
        self.shell = shell

    @classmethod
    def detect(cls) -> 'HostInfo':
        """Detect the current host"""
        system = platform.system()
        distro_name = ""
        distro_version = ""
        if system == "Linux":
            distro_name = distro.name(pretty=True) or distro.id()
            distro_version = distro.version(best=True)
        elif system == "Darwin":
            distro_name = "macOS"
            distro_version = platform.mac_ver()[0]
        elif system == "Windows":
            distro_name = "Windows"
            distro_version = platform.version()

        info = cls(
            system=system,
            machine=platform.machine(),
            distro_name=distro_name,
            distro_version=distro_version,
            hostname=socket.gethostname(),
            shell=detect_shell(system),
        )
        logger.info(f"Detected host: {info}")
        return info

    @property
    def is_windows(self) -> bool:
        return self.system == "Windows"

    @property
    def installer_os(self) -> str:
        if self.system == "Darwin":
            return "MacOSX"
        return self.system

    @property
    def installer_arch(self) -> str:
        arch = _ARCH_NAMES.get(self.machine.lower(), self.machine)
        # Apple Silicon assets are named arm64, Linux ones aarch64
        if self.system == "Darwin" and arch == "aarch64":
            return "arm64"
        if self.system == "Linux" and arch == "arm64":
            return "aarch64"
        return arch

    def installer_asset(self, name: str = "Miniforge3") -> str:
        """File name of the installer for this host, e.g. Miniforge3-Linux-x86_64.sh"""
        extension = "exe" if self.is_windows else "sh"
        return f"{name}-{self.installer_os}-{self.installer_arch}.{extension}"

    def silent_install_args(self, prefix: str) -> List[str]:
        """Arguments for an unattended per-user install into prefix"""
        if self.is_windows:
            return [
                "/InstallationType=JustMe",
                "/RegisterPython=0",
                "/AddToPath=1",
                "/S",
                f"/D={prefix}",
            ]
        # -u lets a resumed run reuse a prefix left behind by an interrupted install
        return ["-b", "-u", "-p", prefix]

    def installer_command(self, installer_file: str, args: List[str]) -> List[str]:
        """Full command line that runs an installer file"""
        if self.is_windows:
            return [installer_file] + list(args)
        return ["bash", installer_file] + list(args)

    def __str__(self) -> str:
        return f"{self.distro_name} {self.distro_version} ({self.system} {self.machine}, shell={self.shell})"


def detect_shell(system: Optional[str] = None) -> str:
    """Name of the user's shell as understood by ``conda init``"""
    system = system or platform.system()
    if system == "Windows":
        return "powershell"
    shell = os.path.basename(os.environ.get("SHELL", ""))
    if shell in ("bash", "zsh", "fish", "tcsh", "xonsh"):
        return shell
    return "zsh" if sys.platform == "darwin" else "bash"
