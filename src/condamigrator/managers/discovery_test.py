#!/usr/bin/env python3
"""
Tests for installation discovery
"""

import os
import shutil
import tempfile
import unittest
from unittest import mock

from condamigrator.errors import ErrorKind
from condamigrator.managers.discovery import EnvironmentDiscovery


class TestEnvironmentDiscovery(unittest.TestCase):
    """Test EnvironmentDiscovery"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.discovery = EnvironmentDiscovery()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _mkdir(self, *parts):
        path = os.path.join(self.temp_dir, *parts)
        os.makedirs(path, exist_ok=True)
        return path

    def test_first_existing_candidate_wins(self):
        """Test later candidates are ignored even when they exist"""
        first = self._mkdir("anaconda3")
        self._mkdir("miniconda3")
        candidates = [
            os.path.join(self.temp_dir, "missing"),
            first,
            os.path.join(self.temp_dir, "miniconda3"),
        ]

        result = self.discovery.find_installation(candidates)

        self.assertTrue(result.ok)
        self.assertEqual(result.value, first)

    def test_not_found(self):
        result = self.discovery.find_installation([os.path.join(self.temp_dir, "nope")])

        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.NOT_FOUND)

    def test_unresolvable_templates_are_skipped(self):
        """Test templates with unset variables never match"""
        installation = self._mkdir("anaconda3")
        with mock.patch.dict(os.environ, {}, clear=False):
            os.environ.pop("CONDAMIGRATOR_UNSET", None)
            result = self.discovery.find_installation(["$CONDAMIGRATOR_UNSET/anaconda3", installation])

        self.assertEqual(result.value, installation)

    def test_environments_dir_uses_install_placeholder(self):
        """Test {install} expands to the discovered installation"""
        installation = self._mkdir("anaconda3")
        envs = self._mkdir("anaconda3", "envs")

        result = self.discovery.find_environments_dir(["{install}/envs", "~/.conda/envs"], installation)

        self.assertEqual(result.value, envs)

    def test_find_tool_executable(self):
        installation = self._mkdir("anaconda3")
        self._mkdir("anaconda3", "bin")
        conda = os.path.join(installation, "bin", "conda")
        with open(conda, 'w') as f:
            f.write("#!/bin/sh\n")

        result = self.discovery.find_tool_executable(installation)

        self.assertEqual(result.value, conda)


if __name__ == '__main__':
    unittest.main()
