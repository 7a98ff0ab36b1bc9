#!/usr/bin/env python3
"""
Tests for the migration orchestrator
"""

import os
import json
import shutil
import logging
import tempfile
import threading
import unittest
from unittest import mock

from condamigrator.errors import ErrorKind, StepResult
from condamigrator.main import (MigrationOrchestrator, migration_logging,
                                EXIT_SUCCESS, EXIT_FAILURE, EXIT_PARTIAL)
from condamigrator.managers.installer import Installer
from condamigrator.managers.manifest import BackupManifest
from condamigrator.managers.removal import RemovalManager
from condamigrator.package_tools.testing import FakeToolClient
from condamigrator.utils.config import Config
from condamigrator.utils.host import HostInfo
from condamigrator.utils.search_path import UserSearchPath
from condamigrator.utils.state import MigrationState


class OrchestratorTestCase(unittest.TestCase):
    """A fake home with an Anaconda installation and a fake package tool"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.home = os.path.join(self.temp_dir, "home")
        self.installation = os.path.join(self.home, "anaconda3")
        self.install_dir = os.path.join(self.temp_dir, "miniforge3")
        os.makedirs(os.path.join(self.installation, "bin"))
        os.makedirs(os.path.join(self.installation, "envs", "data", "conda-meta"))
        with open(os.path.join(self.installation, "bin", "conda"), 'w') as f:
            f.write("#!/bin/sh\n")
        self.condarc = os.path.join(self.home, ".condarc")
        with open(self.condarc, 'w') as f:
            f.write("channels:\n  - bioconda\n  - defaults\n")

        env_patcher = mock.patch.dict(os.environ, {"CONDA_PREFIX": self.installation})
        env_patcher.start()
        self.addCleanup(env_patcher.stop)

        self.config = Config(os.path.join(self.temp_dir, "config.json"))
        self.config.override(
            data_dir=os.path.join(self.temp_dir, "data"),
            backup_dir=os.path.join(self.temp_dir, "backups"),
            install_dir=self.install_dir,
            install_candidates=[os.path.join(self.temp_dir, "missing"), self.installation],
            envs_candidates=["{install}/envs"],
            config_paths=["~/.condarc"],
            leftover_paths=[self.condarc, os.path.join(self.home, ".conda")],
            shell="bash",
        )
        self.host = HostInfo(system="Linux", machine="x86_64", distro_name="Ubuntu",
                             distro_version="22.04", hostname="box", shell="bash")

        self.old_client = FakeToolClient(
            environments=["base", "data"],
            channels=["bioconda", "defaults"],
            exports={"base": "name: base\n", "data": "name: data\n"},
        )
        self.new_client = FakeToolClient(channels=["defaults"])
        self.search_path = mock.Mock(spec=UserSearchPath)
        self.installer = Installer(self.host, session=mock.Mock())
        self.install_result = None
        self.cancel_event = threading.Event()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def client_factory(self, executable):
        if executable.startswith(self.install_dir):
            return self.new_client
        return self.old_client

    def fake_install(self, url, install_dir, work_dir, candidates):
        if self.install_result is not None:
            return self.install_result
        tool = os.path.join(install_dir, "bin", "conda")
        os.makedirs(os.path.dirname(tool), exist_ok=True)
        with open(tool, 'w') as f:
            f.write("#!/bin/sh\n")
        return StepResult.success(tool)

    def make_orchestrator(self):
        app = MigrationOrchestrator(
            self.config,
            host=self.host,
            removal=RemovalManager(self.config.get("leftover_paths"), search_path=self.search_path),
            installer=self.installer,
            client_factory=self.client_factory,
            cancel_event=self.cancel_event,
            home_dir=self.home,
        )
        patcher = mock.patch.object(self.installer, 'run_install', side_effect=self.fake_install)
        patcher.start()
        self.addCleanup(patcher.stop)
        return app


class TestMigrationRun(OrchestratorTestCase):
    """Test complete and failed runs"""

    def test_full_migration(self):
        """Test a clean run reaches restored with conda-forge first"""
        app = self.make_orchestrator()

        outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_SUCCESS, outcome.message)
        self.assertEqual(outcome.state, MigrationState.RESTORED)
        self.assertFalse(os.path.exists(self.installation))
        self.assertFalse(os.path.exists(self.condarc))
        self.assertNotIn("CONDA_PREFIX", os.environ)
        self.search_path.remove.assert_called_once_with(self.installation)
        self.assertEqual(self.new_client.channels, ["conda-forge", "bioconda"])
        self.assertEqual(self.new_client.shells, ["bash"])

        checkpoint = app.load_checkpoint()
        self.assertEqual(checkpoint.state, MigrationState.RESTORED)
        self.assertEqual([h['state'] for h in checkpoint.history],
                         ["backed_up", "removed", "installed", "restored"])
        manifest = BackupManifest.load(checkpoint.manifest_path)
        self.assertTrue(os.path.isfile(os.path.join(manifest.config_dir, ".condarc")))
        self.assertEqual(manifest.channels, ["bioconda", "defaults"])

    def test_single_base_environment(self):
        """Test the smallest migration: base only, conda-forge already captured"""
        self.old_client.environments = ["base"]
        self.old_client.channels = ["conda-forge"]
        app = self.make_orchestrator()

        outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_SUCCESS, outcome.message)
        self.assertEqual(outcome.state, MigrationState.RESTORED)
        manifest = BackupManifest.load(outcome.checkpoint.manifest_path)
        self.assertEqual([entry.name for entry in manifest.environments], ["base"])
        self.assertEqual(len(manifest.config_files), 1)
        self.assertEqual(manifest.channels, ["conda-forge"])
        self.assertIn("conda-forge", self.new_client.channels)
        self.assertEqual(self.new_client.channels, ["conda-forge"])

    def test_unwritable_backup_root_fails_backup(self):
        """Test an I/O error during backup becomes a failed checkpoint, not a crash"""
        backup_root = os.path.join(self.temp_dir, "backups")
        with open(backup_root, 'w') as f:
            f.write("")
        app = self.make_orchestrator()

        outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_FAILURE)
        self.assertEqual(outcome.checkpoint.failed_step, "backup")
        self.assertEqual(outcome.checkpoint.error_kind, ErrorKind.IO.value)
        self.assertIn("backup", outcome.message)
        stored = app.load_checkpoint()
        self.assertEqual(stored.state, MigrationState.FAILED)
        self.assertEqual(stored.last_completed, MigrationState.NOT_STARTED)
        self.assertTrue(os.path.isdir(self.installation))

    def test_unexpected_io_error_in_step_is_recorded(self):
        app = self.make_orchestrator()

        with mock.patch.object(app.backup, 'run_backup', side_effect=OSError("No space left on device")):
            outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_FAILURE)
        stored = app.load_checkpoint()
        self.assertEqual(stored.failed_step, "backup")
        self.assertEqual(stored.error_kind, ErrorKind.IO.value)
        self.assertIn("No space left on device", stored.cause)

    def test_nothing_to_migrate(self):
        self.config.override(install_candidates=[os.path.join(self.temp_dir, "missing")])
        app = self.make_orchestrator()

        outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_FAILURE)
        self.assertEqual(outcome.state, MigrationState.FAILED)
        self.assertEqual(outcome.checkpoint.failed_step, "backup")
        self.assertEqual(outcome.checkpoint.error_kind, ErrorKind.NOT_FOUND.value)
        self.assertEqual(self.old_client.calls, [])

    def test_config_backup_failure_never_deletes(self):
        """Test a failed configuration backup stops before removal"""
        app = self.make_orchestrator()

        with mock.patch('condamigrator.managers.backup.copy_path', side_effect=OSError("disk full")), \
                mock.patch.object(app.removal, 'delete_directory') as mock_delete:
            outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_FAILURE)
        self.assertEqual(outcome.checkpoint.failed_step, "backup")
        self.assertEqual(outcome.checkpoint.last_completed, MigrationState.NOT_STARTED)
        self.assertTrue(os.path.isfile(outcome.checkpoint.manifest_path))
        mock_delete.assert_not_called()
        self.assertTrue(os.path.isdir(self.installation))
        self.assertNotIn(("deactivate",), self.old_client.calls)

    def test_deactivation_failure_keeps_installation(self):
        self.old_client.failing.add("deactivate")
        app = self.make_orchestrator()

        outcome = app.run()

        self.assertEqual(outcome.checkpoint.failed_step, "remove")
        self.assertEqual(outcome.checkpoint.last_completed, MigrationState.BACKED_UP)
        self.assertTrue(os.path.isdir(self.installation))

    def test_failed_environment_backup_is_partial(self):
        """Test a lost environment gives exit code 2 after a complete run"""
        self.old_client.environments.append("ghost")
        app = self.make_orchestrator()

        outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_PARTIAL)
        self.assertEqual(outcome.state, MigrationState.RESTORED)
        self.assertEqual(len(outcome.partial_failures), 1)
        self.assertIn("ghost", outcome.partial_failures[0])

    def test_failed_channel_restore_is_partial(self):
        self.new_client.failing.add("append_channel:bioconda")
        app = self.make_orchestrator()

        outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_PARTIAL)
        self.assertIn("bioconda", outcome.partial_failures[0])

    def test_environments_restored_when_enabled(self):
        self.config.override(restore_environments=True)
        app = self.make_orchestrator()

        outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_SUCCESS, outcome.message)
        self.assertEqual([os.path.basename(p) for p in self.new_client.created], ["data.yml"])


class TestResume(OrchestratorTestCase):
    """Test checkpointing and resume"""

    def test_resume_after_failed_install(self):
        """Test a resumed run skips backup and removal"""
        self.install_result = StepResult.failure(ErrorKind.NETWORK, "download failed: unreachable")
        app = self.make_orchestrator()

        first = app.run()

        self.assertEqual(first.exit_code, EXIT_FAILURE)
        self.assertEqual(first.checkpoint.failed_step, "install")
        self.assertEqual(first.checkpoint.last_completed, MigrationState.REMOVED)
        self.assertEqual(first.checkpoint.error_kind, ErrorKind.NETWORK.value)
        self.assertIn("--resume", first.message)

        refused = app.run()
        self.assertEqual(refused.exit_code, EXIT_FAILURE)
        self.assertIn("--resume", refused.message)

        self.install_result = None
        resumed = app.run(resume=True)

        self.assertEqual(resumed.exit_code, EXIT_SUCCESS, resumed.message)
        self.assertEqual(resumed.state, MigrationState.RESTORED)
        self.assertEqual(self.old_client.calls.count(("list_environments",)), 1)
        self.assertEqual(self.old_client.calls.count(("deactivate",)), 1)
        self.assertEqual(self.new_client.channels, ["conda-forge", "bioconda"])

    def test_existing_installation_skips_download(self):
        """Test a tool already present in the install directory is reused"""
        tool = os.path.join(self.install_dir, "bin", "conda")
        os.makedirs(os.path.dirname(tool))
        with open(tool, 'w') as f:
            f.write("")
        app = self.make_orchestrator()

        outcome = app.run()

        self.assertEqual(outcome.state, MigrationState.RESTORED)
        self.installer.run_install.assert_not_called()
        self.assertEqual(outcome.checkpoint.new_tool_path, tool)

    def test_completed_migration_is_not_repeated(self):
        app = self.make_orchestrator()
        app.run()
        calls = len(self.new_client.calls)

        outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_SUCCESS)
        self.assertIn("already completed", outcome.message)
        self.assertEqual(len(self.new_client.calls), calls)

    def test_fresh_discards_checkpoint(self):
        self.install_result = StepResult.failure(ErrorKind.NETWORK, "unreachable")
        app = self.make_orchestrator()
        app.run()

        outcome = app.run(fresh=True)

        # The old installation is gone, so a fresh run has nothing to migrate
        self.assertEqual(outcome.checkpoint.failed_step, "backup")
        self.assertEqual(len(outcome.checkpoint.history), 1)

    def test_corrupt_checkpoint(self):
        """Test an unreadable checkpoint is never treated as not started"""
        app = self.make_orchestrator()
        os.makedirs(os.path.dirname(app.checkpoint_store.path), exist_ok=True)
        with open(app.checkpoint_store.path, 'w') as f:
            f.write("{not json")

        outcome = app.run()

        self.assertEqual(outcome.exit_code, EXIT_FAILURE)
        self.assertIn("unreadable", outcome.message)
        self.assertEqual(self.old_client.calls, [])

    def test_cancel_between_steps(self):
        """Test cancellation stops at the next step boundary"""
        app = self.make_orchestrator()
        step_backup = app._step_backup

        def backup_then_cancel(checkpoint):
            result = step_backup(checkpoint)
            self.cancel_event.set()
            return result

        app._step_backup = backup_then_cancel

        outcome = app.run()

        self.assertTrue(outcome.cancelled)
        self.assertEqual(outcome.exit_code, EXIT_FAILURE)
        self.assertEqual(outcome.checkpoint.last_completed, MigrationState.BACKED_UP)
        self.assertTrue(os.path.isdir(self.installation))
        with open(app.checkpoint_store.path) as f:
            self.assertEqual(json.load(f)['last_completed'], "backed_up")

    def test_plan_changes_nothing(self):
        app = self.make_orchestrator()

        lines = app.plan()

        self.assertTrue(any(self.installation in line for line in lines))
        self.assertTrue(any("data" in line for line in lines))
        self.assertTrue(os.path.isdir(self.installation))
        self.assertFalse(app.checkpoint_store.exists())


class TestMigrationLogging(unittest.TestCase):
    """Test migration_logging"""

    def test_handlers_are_removed_on_error(self):
        temp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, temp_dir)
        log_file = os.path.join(temp_dir, "logs", "run.log")
        package_logger = logging.getLogger("condamigrator")
        before = list(package_logger.handlers)

        with self.assertRaises(RuntimeError):
            with migration_logging(log_file):
                logging.getLogger("condamigrator.main").info("step backup: starting")
                raise RuntimeError("boom")

        self.assertEqual(package_logger.handlers, before)
        with open(log_file) as f:
            self.assertIn("step backup: starting", f.read())


if __name__ == '__main__':
    unittest.main()
