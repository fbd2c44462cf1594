"""Tests for the git progress checkpoint. git itself is never run."""

import subprocess
import unittest
import unittest.mock as mock
from pathlib import Path

from maintained_apps.models.schema import Platform
from maintained_apps.report.checkpoint import commit_progress, should_commit

PATCH_RUN = "maintained_apps.report.checkpoint.subprocess.run"
PATCH_POPEN = "maintained_apps.report.checkpoint.subprocess.Popen"


def done(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestShouldCommit(unittest.TestCase):
    def test_schedule(self):
        self.assertEqual([n for n in range(0, 8) if should_commit(n, 3)], [1, 3, 6])

    def test_every_zero_only_first(self):
        self.assertEqual([n for n in range(0, 5) if should_commit(n, 0)], [1])


class TestCommitProgress(unittest.TestCase):
    path = Path("data/app_security_info.json")

    def test_commit_and_background_push(self):
        results = [done(), done(stdout=" M data/app_security_info.json"), done(), done()]
        with mock.patch(PATCH_RUN, side_effect=results) as run, mock.patch(PATCH_POPEN) as popen:
            self.assertTrue(commit_progress(self.path, Platform.MACOS, 10, 40))

        commit_cmd = run.call_args_list[3].args[0]
        self.assertEqual(commit_cmd[:3], ["git", "commit", "-m"])
        self.assertEqual(commit_cmd[3], "Update macOS app security info - 10/40 apps processed")
        self.assertEqual(popen.call_args.args[0], ["git", "push"])

    def test_not_a_repository(self):
        with mock.patch(PATCH_RUN, return_value=done(returncode=128)) as run, mock.patch(PATCH_POPEN) as popen:
            self.assertFalse(commit_progress(self.path, Platform.WINDOWS, 1, 2))
        self.assertEqual(run.call_count, 1)
        popen.assert_not_called()

    def test_nothing_to_commit(self):
        with mock.patch(PATCH_RUN, side_effect=[done(), done(stdout="")]), mock.patch(PATCH_POPEN) as popen:
            self.assertFalse(commit_progress(self.path, Platform.WINDOWS, 1, 2))
        popen.assert_not_called()

    def test_git_missing_is_a_warning(self):
        with mock.patch(PATCH_RUN, side_effect=FileNotFoundError("git")):
            self.assertFalse(commit_progress(self.path, Platform.MACOS, 1, 1))


if __name__ == "__main__":
    unittest.main()
