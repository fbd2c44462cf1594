"""Subprocess helpers for the Windows drivers and the Authenticode inspector."""

import subprocess
import sys

from ..base import CommandResult

_CREATE_NO_WINDOW = 0x08000000

# Tool output may be UTF-8 (with or without BOM) or the ANSI code page.
_ENCODINGS = ("utf-8-sig", "cp1252")

_POWERSHELL = ["powershell", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command"]
_UTF8_CONSOLE = "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8; "


def decode_output(raw: bytes) -> str:
    for encoding in _ENCODINGS:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            pass
    return raw.decode("utf-8", errors="replace")


def ps_quote(value: str) -> str:
    """Single-quoted PowerShell literal; embedded quotes are doubled."""
    return "'{}'".format(value.replace("'", "''"))


def run(cmd: list[str], timeout: int = 600) -> CommandResult:
    """Run *cmd* without a console window.

    Never raises: a missing binary yields returncode -1 and a timeout -2.
    """
    extra = {"creationflags": _CREATE_NO_WINDOW} if sys.platform == "win32" else {}
    try:
        proc = subprocess.run(cmd, capture_output=True, timeout=timeout, **extra)
    except FileNotFoundError as exc:
        return CommandResult(-1, "", f"{cmd[0]}: not found ({exc})")
    except subprocess.TimeoutExpired:
        return CommandResult(-2, "", f"{cmd[0]}: timed out after {timeout}s")
    return CommandResult(proc.returncode, decode_output(proc.stdout).strip(), decode_output(proc.stderr).strip())


def run_powershell(script: str, timeout: int = 120) -> str:
    """Run *script* with UTF-8 console output and return its stdout.

    Raises RuntimeError when PowerShell exits non-zero.
    """
    outcome = run([*_POWERSHELL, _UTF8_CONSOLE + script], timeout=timeout)
    if outcome.returncode:
        raise RuntimeError(outcome.stderr or f"PowerShell exited with code {outcome.returncode}")
    return outcome.stdout
