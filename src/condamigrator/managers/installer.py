#!/usr/bin/env python3
"""
Download and silent installation of the replacement distribution
"""

import os
import logging
import subprocess
from typing import List, Optional

import requests

from ..errors import ErrorKind, MigrationError, StepResult
from ..package_tools.base import PackageToolClient, detached_process_options
from ..utils.fileio import expand_paths
from ..utils.host import HostInfo
from ..utils.progress import ProgressTracker, OperationType

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class Installer:
    """Fetches the installer over HTTPS and runs it unattended"""

    def __init__(self, host: HostInfo, download_timeout: float = 60,
                 install_timeout: Optional[float] = 1800,
                 session: Optional[requests.Session] = None,
                 logger: Optional[logging.Logger] = None):
        self.host = host
        self.download_timeout = download_timeout
        self.install_timeout = install_timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def installer_url(self, template: str) -> str:
        """Fill the host's installer asset name into a URL template"""
        return template.format(asset=self.host.installer_asset())

    def download(self, url: str, dest_file: str) -> StepResult:
        """Download the installer artifact

        Returns:
            StepResult with the file path; NETWORK on transport failures,
            VERIFICATION_FAILED when nothing usable landed on disk
        """
        self.logger.info(f"Downloading {url}")
        os.makedirs(os.path.dirname(os.path.abspath(dest_file)), exist_ok=True)
        try:
            resp = self.session.get(url, stream=True, timeout=self.download_timeout,
                                    allow_redirects=True)
            resp.raise_for_status()
            total_size = int(resp.headers.get("content-length", 0)) or None

            with ProgressTracker(OperationType.DOWNLOAD, total=total_size,
                                 desc="Downloading installer", unit="B",
                                 unit_scale=True) as progress:
                with open(dest_file, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            progress.update(len(chunk))
        except requests.RequestException as e:
            self.logger.error(f"Download failed: {e}")
            return StepResult.failure(ErrorKind.NETWORK, f"download of {url} failed: {e}")
        except (OSError, IOError) as e:
            self.logger.error(f"Could not write {dest_file}: {e}")
            return StepResult.failure(ErrorKind.IO, f"could not write {dest_file}: {e}")

        if not os.path.isfile(dest_file) or os.path.getsize(dest_file) == 0:
            return StepResult.failure(ErrorKind.VERIFICATION_FAILED,
                                      f"downloaded installer {dest_file} is missing or empty")
        self.logger.info(f"Saved installer to {dest_file} ({os.path.getsize(dest_file)} bytes)")
        return StepResult.success(dest_file)

    def run_silent_install(self, installer_file: str, args: List[str],
                           timeout: Optional[float] = None) -> StepResult:
        """Run the installer and wait for it to finish

        Returns:
            StepResult with the exit code; TIMED_OUT when the installer hangs,
            TOOL_INVOCATION when it cannot start or exits non-zero
        """
        timeout = timeout if timeout is not None else self.install_timeout
        cmd = self.host.installer_command(installer_file, args)
        self.logger.info(f"Running installer: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
                timeout=timeout,
                **detached_process_options(),
            )
        except subprocess.TimeoutExpired:
            self.logger.error(f"Installer did not finish within {timeout} seconds")
            return StepResult.failure(ErrorKind.TIMED_OUT, f"installer did not finish within {timeout} seconds")
        except OSError as e:
            self.logger.error(f"Could not start installer: {e}")
            return StepResult.failure(ErrorKind.TOOL_INVOCATION, f"could not start installer: {e}")

        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            self.logger.error(f"Installer exited with code {result.returncode}: {detail}")
            return StepResult.failure(ErrorKind.TOOL_INVOCATION,
                                      f"installer exited with code {result.returncode}",
                                      value=result.returncode)
        self.logger.info("Installer finished successfully")
        return StepResult.success(result.returncode)

    def locate_new_tool(self, candidates: List[str], install_dir: Optional[str] = None) -> StepResult:
        """Check that the installation produced a tool executable

        Installers can report success without leaving a usable binary, so
        this check is always made.
        """
        for path in expand_paths(candidates, install_dir):
            if os.path.isfile(path):
                self.logger.info(f"Found new package tool at {path}")
                return StepResult.success(path)
        self.logger.error("No package tool executable found after installation")
        return StepResult.failure(ErrorKind.VERIFICATION_FAILED, "executable missing post-install")

    def initialize_shell_integration(self, client: PackageToolClient, shell_kind: str) -> StepResult:
        """Run the new tool's ``init`` for the user's shell; failure is only logged"""
        try:
            client.init_shell(shell_kind)
        except MigrationError as e:
            self.logger.warning(f"Shell integration for {shell_kind} failed: {e.message}")
            return StepResult.from_error(e)
        self.logger.info(f"Initialised shell integration for {shell_kind}")
        return StepResult.success()

    def run_install(self, url: str, install_dir: str, work_dir: str,
                    tool_candidates: List[str]) -> StepResult:
        """Download, install and verify; returns the new tool's path"""
        installer_file = os.path.join(work_dir, self.host.installer_asset())
        try:
            result = self.download(url, installer_file)
            if not result.ok:
                return result

            result = self.run_silent_install(installer_file, self.host.silent_install_args(install_dir))
            if not result.ok:
                return result
        finally:
            if os.path.exists(installer_file):
                try:
                    os.remove(installer_file)
                except OSError as e:
                    self.logger.warning(f"Could not remove {installer_file}: {e}")

        return self.locate_new_tool(tool_candidates, install_dir)
