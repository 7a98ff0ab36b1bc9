#!/usr/bin/env python3
"""
Tests for search path handling
"""

import os
import unittest
from unittest import mock

from condamigrator.utils.search_path import remove_from_search_path, UserSearchPath


class TestRemoveFromSearchPath(unittest.TestCase):
    """Test remove_from_search_path"""

    def test_removes_exact_entry_and_children(self):
        """Test the installation and its subdirectories are removed"""
        current = ":".join([
            "/usr/bin",
            "/home/u/anaconda3",
            "/home/u/anaconda3/bin",
            "/home/u/anaconda3/condabin/",
            "/usr/local/bin",
        ])

        result = remove_from_search_path("/home/u/anaconda3", current, separator=":", windows=False)

        self.assertEqual(result, "/usr/bin:/usr/local/bin")

    def test_keeps_entries_sharing_a_prefix(self):
        """Test entries that only start with the same characters survive"""
        current = ":".join([
            "/home/u/anaconda3-old/bin",
            "/home/u/anaconda3/bin",
            "/home/u/anaconda3backup",
            "/opt/tools/home/u/anaconda3",
        ])

        result = remove_from_search_path("/home/u/anaconda3", current, separator=":", windows=False)

        self.assertEqual(result.split(":"), [
            "/home/u/anaconda3-old/bin",
            "/home/u/anaconda3backup",
            "/opt/tools/home/u/anaconda3",
        ])

    def test_windows_is_case_insensitive(self):
        """Test Windows comparison ignores case and slash direction"""
        current = r"C:\Windows;C:\Users\u\Anaconda3;c:/users/u/anaconda3/Scripts;C:\Users\u\Anaconda3.bak"

        result = remove_from_search_path(r"C:\Users\u\anaconda3", current, windows=True)

        self.assertEqual(result, r"C:\Windows;C:\Users\u\Anaconda3.bak")

    def test_unchanged_when_absent(self):
        """Test a path without the installation is returned unchanged"""
        current = "/usr/bin:/bin"
        self.assertEqual(remove_from_search_path("/opt/anaconda3", current, separator=":", windows=False),
                         current)

    def test_empty_entries_are_preserved(self):
        """Test empty segments are not touched"""
        current = "/usr/bin::/opt/anaconda3/bin"
        self.assertEqual(remove_from_search_path("/opt/anaconda3", current, separator=":", windows=False),
                         "/usr/bin:")


class TestUserSearchPath(unittest.TestCase):
    """Test UserSearchPath on POSIX"""

    def test_remove_updates_process_path(self):
        """Test removal rewrites PATH for this process"""
        with mock.patch.dict(os.environ, {"PATH": os.pathsep.join(["/opt/anaconda3/bin", "/usr/bin"])}):
            store = UserSearchPath(windows=False)

            self.assertTrue(store.remove("/opt/anaconda3"))
            self.assertEqual(os.environ["PATH"], "/usr/bin")
            self.assertFalse(store.remove("/opt/anaconda3"))


if __name__ == '__main__':
    unittest.main()
