"""macOS-specific subprocess and filesystem helpers."""

import plistlib
import shutil
import subprocess
from pathlib import Path

from ..base import CommandResult

QUARANTINE_ATTR = "com.apple.quarantine"


def run(cmd: list[str], timeout: int = 600, input_text: str | None = None) -> CommandResult:
    """Run a command and return its exit code and decoded output.

    Never raises: a missing binary yields returncode -1 and a timeout -2, with
    the reason in ``stderr``.
    """
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            timeout=timeout,
            input=input_text.encode("utf-8") if input_text is not None else None,
        )
    except FileNotFoundError as exc:
        return CommandResult(-1, "", f"{cmd[0]}: not found ({exc})")
    except subprocess.TimeoutExpired:
        return CommandResult(-2, "", f"{cmd[0]}: timed out after {timeout}s")
    return CommandResult(
        result.returncode,
        result.stdout.decode("utf-8", errors="replace").strip(),
        result.stderr.decode("utf-8", errors="replace").strip(),
    )


def read_plist(path: Path) -> dict:
    """Read a plist file; {} if missing or unreadable."""
    try:
        with open(path, "rb") as fh:
            data = plistlib.load(fh)
    except (OSError, plistlib.InvalidFileException, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def copy_bundle(src: Path, dest: Path) -> CommandResult:
    """Copy an app bundle keeping resource forks and extended attributes.

    ``ditto`` preserves bundle metadata that a byte copy would lose (and with
    it the signature). ``cp -pR`` is the fallback.
    """
    result = run(["ditto", str(src), str(dest)])
    if result.ok:
        return result
    return run(["cp", "-pR", str(src), str(dest)])


def strip_quarantine(path: Path) -> CommandResult:
    """Recursively remove the "downloaded from the internet" marker."""
    return run(["xattr", "-dr", QUARANTINE_ATTR, str(path)], timeout=120)


def remove_path(path: Path) -> bool:
    """Delete *path*, escalating to ``sudo rm -rf`` for root-owned files."""
    if not path.exists() and not path.is_symlink():
        return True
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True
    except OSError:
        pass
    print("  [uninstall] using sudo to remove protected files...", flush=True)
    return run(["sudo", "rm", "-rf", str(path)], timeout=300).ok


def install_package(pkg_path: Path, target: str = "/") -> CommandResult:
    return run(["sudo", "installer", "-pkg", str(pkg_path), "-target", target], timeout=1800)
