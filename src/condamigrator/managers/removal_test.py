#!/usr/bin/env python3
"""
Tests for the removal manager
"""

import os
import shutil
import tempfile
import unittest
from unittest import mock

from condamigrator.errors import ErrorKind
from condamigrator.managers.manifest import BackupManifest, ConfigCopyResult
from condamigrator.managers.removal import RemovalManager
from condamigrator.package_tools.testing import FakeToolClient
from condamigrator.utils.search_path import UserSearchPath


class TestRemovalManager(unittest.TestCase):
    """Test RemovalManager"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.installation = os.path.join(self.temp_dir, "anaconda3")
        os.makedirs(os.path.join(self.installation, "envs", "data"))
        self.conda_dir = os.path.join(self.temp_dir, ".conda")
        os.makedirs(self.conda_dir)
        self.condarc = os.path.join(self.temp_dir, ".condarc")
        with open(self.condarc, 'w') as f:
            f.write("channels: []\n")
        self.search_path = mock.Mock(spec=UserSearchPath)
        self.manager = RemovalManager(
            leftover_paths=[self.conda_dir, self.condarc, os.path.join(self.temp_dir, ".continuum")],
            search_path=self.search_path,
        )
        self.manifest = BackupManifest(self.installation)
        self.manifest.config_files = [ConfigCopyResult(self.condarc, "/b/.condarc", ConfigCopyResult.COPIED)]

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_run_removal_deletes_everything(self):
        """Test installation and leftovers are gone and the search path is updated"""
        client = FakeToolClient()

        result = self.manager.run_removal(self.manifest, client, self.installation)

        self.assertTrue(result.ok)
        self.assertFalse(os.path.exists(self.installation))
        self.assertFalse(os.path.exists(self.conda_dir))
        self.assertFalse(os.path.exists(self.condarc))
        self.search_path.remove.assert_called_once_with(self.installation)
        self.assertIn(("deactivate",), client.calls)

    def test_deactivation_failure_is_fatal(self):
        """Test nothing is deleted when deactivation fails"""
        client = FakeToolClient(failing=["deactivate"])

        with mock.patch.object(self.manager, 'delete_directory') as mock_delete:
            result = self.manager.run_removal(self.manifest, client, self.installation)

        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.TOOL_INVOCATION)
        mock_delete.assert_not_called()
        self.assertTrue(os.path.exists(self.installation))

    def test_failed_config_backup_blocks_removal(self):
        """Test deletion is never attempted without a good configuration backup"""
        self.manifest.config_files[0].status = ConfigCopyResult.FAILED
        client = FakeToolClient()

        with mock.patch.object(self.manager, 'delete_directory') as mock_delete:
            result = self.manager.run_removal(self.manifest, client, self.installation)

        self.assertFalse(result.ok)
        mock_delete.assert_not_called()
        self.assertEqual(client.calls, [])

    def test_reverse_integration_failure_is_not_fatal(self):
        client = FakeToolClient(failing=["reverse_shell_integration"])

        result = self.manager.run_removal(self.manifest, client, self.installation)

        self.assertTrue(result.ok)
        self.assertFalse(os.path.exists(self.installation))

    @mock.patch('condamigrator.managers.removal.remove_path')
    def test_delete_directory_failure(self, mock_remove):
        """Test a locked installation reports an IO error"""
        mock_remove.side_effect = PermissionError("file in use")

        result = self.manager.delete_directory(self.installation)

        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.IO)
        self.assertIn("file in use", result.message)

    def test_delete_if_exists_is_idempotent(self):
        missing = os.path.join(self.temp_dir, "missing")
        self.assertTrue(self.manager.delete_if_exists(missing).ok)
        self.assertTrue(self.manager.delete_if_exists(self.condarc).ok)
        self.assertTrue(self.manager.delete_if_exists(self.condarc).ok)
        self.assertFalse(os.path.exists(self.condarc))

    def test_deactivation_clears_activation_variables(self):
        """Test the process environment no longer points at the old installation"""
        env = {
            "CONDA_PREFIX": self.installation,
            "CONDA_SHLVL": "1",
            "CONDA_PREFIX_1": self.installation,
            "PATH": os.pathsep.join([os.path.join(self.installation, "bin"), "/usr/bin"]),
        }
        with mock.patch.dict(os.environ, env):
            result = self.manager.deactivate_active_environment(FakeToolClient(), self.installation)

            self.assertTrue(result.ok)
            self.assertNotIn("CONDA_PREFIX", os.environ)
            self.assertNotIn("CONDA_PREFIX_1", os.environ)
            self.assertEqual(os.environ["PATH"], "/usr/bin")


if __name__ == '__main__':
    unittest.main()
