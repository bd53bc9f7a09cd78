#!/usr/bin/env python3
"""
Test error handling scenarios for crlf.py.
"""

import logging
import os
import shutil
import stat
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

# Add parent directory to path to import crlf module
sys.path.insert(0, str(Path(__file__).parent.parent))
import crlf  # pylint: disable=wrong-import-position
from line_endings import LineEnding, LineEndingIOError  # pylint: disable=wrong-import-position

# Disable logging for tests
crlf.logger.setLevel(logging.CRITICAL)


class TestErrorHandling(unittest.TestCase):
    def setUp(self) -> None:
        # Create a temporary directory
        self.test_dir = tempfile.mkdtemp()

        # Create test files
        self.test_file = os.path.join(self.test_dir, "test.txt")
        with open(self.test_file, "wb") as f:
            f.write(b"test\r\ncontent\r\n")

    def tearDown(self) -> None:
        # Clean up the temporary directory
        shutil.rmtree(self.test_dir)

    def test_measure_nonexistent_file(self) -> None:
        """Test measuring a file that doesn't exist."""
        with self.assertRaises(FileNotFoundError):
            crlf.measure_file("/nonexistent/file.txt")

    def test_convert_nonexistent_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            crlf.convert_file("/nonexistent/file.txt", LineEnding.LF)

    def test_measure_files_counts_errors(self) -> None:
        """Test that missing files are counted, not raised."""
        missing = os.path.join(self.test_dir, "missing.txt")
        results, error_count = crlf.measure_files([self.test_file, missing])

        self.assertEqual(error_count, 1)
        self.assertIn(self.test_file, results)
        self.assertNotIn(missing, results)

    def test_measure_read_error(self) -> None:
        """Test that a read error from the core reaches the caller."""
        with patch("crlf.measure", side_effect=LineEndingIOError("Read error")):
            results, error_count = crlf.measure_files([self.test_file])
        self.assertEqual(results, {})
        self.assertEqual(error_count, 1)

    def test_convert_keeps_existing_bak_file(self) -> None:
        """Test that a user's own .bak file next to the target is left alone."""
        user_backup = self.test_file + ".bak"
        with open(user_backup, "wb") as f:
            f.write(b"USER DATA\n")

        result = crlf.convert_file(self.test_file, LineEnding.LF)
        self.assertTrue(result)

        with open(user_backup, "rb") as f:
            self.assertEqual(f.read(), b"USER DATA\n")
        with open(self.test_file, "rb") as f:
            self.assertEqual(f.read(), b"test\ncontent\n")
        self.assertEqual(sorted(os.listdir(self.test_dir)), ["test.txt", "test.txt.bak"])

    def test_convert_file_and_bak_together(self) -> None:
        """Test converting a file and its .bak sibling in one parallel run."""
        user_backup = self.test_file + ".bak"
        with open(user_backup, "wb") as f:
            f.write(b"old\r\nversion\r\n")

        changed, error_count = crlf.convert_files(
            [self.test_file, user_backup], LineEnding.LF, max_workers=2
        )

        self.assertEqual(changed, [self.test_file, user_backup])
        self.assertEqual(error_count, 0)
        with open(user_backup, "rb") as f:
            self.assertEqual(f.read(), b"old\nversion\n")
        with open(self.test_file, "rb") as f:
            self.assertEqual(f.read(), b"test\ncontent\n")

    def test_convert_replace_error_keeps_original(self) -> None:
        """Test that the original file is untouched when the swap fails."""
        with patch("os.replace", side_effect=OSError("Replace error")):
            with self.assertRaises(OSError):
                crlf.convert_file(self.test_file, LineEnding.LF)

        with open(self.test_file, "rb") as f:
            self.assertEqual(f.read(), b"test\r\ncontent\r\n")
        # The temporary file is cleaned up
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_convert_cleanup_error(self) -> None:
        """Test that the swap error is reported when cleanup also fails."""
        with patch("os.replace", side_effect=OSError("Replace error")):
            with patch("os.remove", side_effect=OSError("Remove error")):
                with self.assertRaises(OSError) as ctx:
                    crlf.convert_file(self.test_file, LineEnding.LF)

        self.assertIn("Replace error", str(ctx.exception))
        with open(self.test_file, "rb") as f:
            self.assertEqual(f.read(), b"test\r\ncontent\r\n")

    def test_convert_keeps_permissions(self) -> None:
        """Test that the rewritten file keeps the original mode bits."""
        os.chmod(self.test_file, 0o640)
        crlf.convert_file(self.test_file, LineEnding.LF)
        self.assertEqual(stat.S_IMODE(os.stat(self.test_file).st_mode), 0o640)

    def test_convert_files_counts_errors(self) -> None:
        missing = os.path.join(self.test_dir, "missing.txt")
        changed, error_count = crlf.convert_files([missing, self.test_file], LineEnding.LF)

        self.assertEqual(changed, [self.test_file])
        self.assertEqual(error_count, 1)

    def test_unexpected_worker_error_propagates(self) -> None:
        """Test that non I/O errors are not swallowed by the worker loop."""
        with patch("crlf.measure_file", side_effect=ValueError("Bug")):
            with self.assertRaises(ValueError):
                crlf.measure_files([self.test_file])

    def test_find_files_invalid_pattern(self) -> None:
        """Test find_files with an unbalanced bracket pattern."""
        result = crlf.find_files(os.path.join(self.test_dir, "[invalid"))
        # Should return empty list but not crash
        self.assertEqual(result, [])

    def test_list_git_files(self) -> None:
        """Test parsing the git grep output."""
        completed = MagicMock(returncode=0, stdout=b"a.txt\nsrc/b.py\n\n")
        with patch("subprocess.run", return_value=completed) as run:
            files = crlf.list_git_files()

        self.assertEqual(files, ["a.txt", "src/b.py"])
        command = run.call_args[0][0]
        self.assertEqual(command[:3], ["git", "grep", "-I"])
        # The default pattern is handed to git as a plain star
        self.assertEqual(command[-2:], ["--", "*"])

    def test_list_git_files_custom_pattern(self) -> None:
        completed = MagicMock(returncode=0, stdout=b"src/b.py\n")
        with patch("subprocess.run", return_value=completed) as run:
            crlf.list_git_files("*.py")
        self.assertEqual(run.call_args[0][0][-1], "*.py")

    def test_list_git_files_no_match(self) -> None:
        """git grep exits with 1 when nothing matched."""
        completed = MagicMock(returncode=1, stdout=b"")
        with patch("subprocess.run", return_value=completed):
            self.assertEqual(crlf.list_git_files(), [])

    def test_list_git_files_failure(self) -> None:
        """Test a non-zero git exit code."""
        completed = MagicMock(returncode=128, stdout=b"")
        with patch("subprocess.run", return_value=completed):
            with self.assertRaises(crlf.FileListError) as ctx:
                crlf.list_git_files()
        self.assertIn("128", str(ctx.exception))

    def test_list_git_files_git_missing(self) -> None:
        with patch("subprocess.run", side_effect=FileNotFoundError("git")):
            with self.assertRaises(crlf.FileListError):
                crlf.list_git_files()

    def test_list_git_files_in_repository(self) -> None:
        """Test against a real repository when git is available."""
        if shutil.which("git") is None:
            self.skipTest("git is not installed")

        subprocess.run(["git", "init", "-q"], cwd=self.test_dir, check=True)
        with open(os.path.join(self.test_dir, "binary.bin"), "wb") as f:
            f.write(b"\x00\x01\x02\x03")

        original_cwd = os.getcwd()
        os.chdir(self.test_dir)
        try:
            files = crlf.list_git_files()
        finally:
            os.chdir(original_cwd)

        self.assertEqual(files, ["test.txt"])


if __name__ == "__main__":
    unittest.main()
