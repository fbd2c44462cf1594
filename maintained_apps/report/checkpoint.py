"""Commit collection progress to git so long runs survive a killed CI job."""

from __future__ import annotations

import subprocess
from pathlib import Path

from ..errors import preview
from ..models.schema import Platform

_PLATFORM_LABELS = {Platform.MACOS: "macOS", Platform.WINDOWS: "Windows"}


def _git(*args: str, timeout: int = 60) -> subprocess.CompletedProcess:
    return subprocess.run(["git", *args], capture_output=True, text=True, timeout=timeout)


def should_commit(recorded: int, every: int) -> bool:
    """True after the first recorded entry and every *every* entries after that."""
    if recorded <= 0:
        return False
    return recorded == 1 or (every > 0 and recorded % every == 0)


def commit_progress(path: Path, platform: Platform, processed: int, total: int) -> bool:
    """Commit *path* and push in the background. Returns True if a commit was made.

    Failures are reported as warnings; progress on disk is unaffected.
    """
    try:
        if _git("rev-parse", "--git-dir").returncode != 0:
            return False
        status = _git("status", "--porcelain", str(path))
        if status.returncode != 0:
            print(f"  [warn] git status failed: {preview(status.stderr)}", flush=True)
            return False
        if not status.stdout.strip():
            return False

        added = _git("add", str(path))
        if added.returncode != 0:
            print(f"  [warn] git add failed: {preview(added.stderr)}", flush=True)
            return False
        label = _PLATFORM_LABELS.get(platform, platform.value)
        message = f"Update {label} app security info - {processed}/{total} apps processed"
        committed = _git("commit", "-m", message)
        if committed.returncode != 0:
            print(f"  [warn] git commit failed: {preview(committed.stderr or committed.stdout)}", flush=True)
            return False

        subprocess.Popen(
            ["git", "push"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        print(f"  [warn] git checkpoint failed: {exc}", flush=True)
        return False
    print(f"  [saved] committed progress ({processed}/{total})", flush=True)
    return True
