"""Santa-based signing inspection for macOS app bundles.

``santactl fileinfo --json`` is tried first; when it yields nothing usable the
free-text form is parsed instead. Santa may not have scanned a freshly copied
binary yet, so the whole pass is retried with growing waits.
"""

from __future__ import annotations

import json
import time
from pathlib import Path

from ..errors import ParseError, UnsignedOrUninspectableError, preview
from ..installers.macos import _utils
from ..retry import retry_call
from .base import MACOS_FIELDS, SigningInspector, key_values

_JSON_KEYS = {
    "SHA-256": "sha256",
    "CDHash": "code_directory_hash",
    "Signing ID": "signing_identifier",
    "Team ID": "team_identifier",
}

_NESTED_JSON_KEYS = {
    "SigningID": "signing_identifier",
    "TeamID": "team_identifier",
}

_TEXT_KEYS = {
    "sha-256": "sha256",
    "sha256": "sha256",
    "cdhash": "code_directory_hash",
    "signing id": "signing_identifier",
    "signingid": "signing_identifier",
    "team id": "team_identifier",
    "teamid": "team_identifier",
}


def has_signing_data(fields: dict) -> bool:
    return any(fields.get(name) for name in MACOS_FIELDS)


def resolve_executable(path: Path) -> Path:
    """Return the main executable of an ``.app`` bundle (or *path* itself)."""
    if not path.is_dir():
        return path
    macos_dir = path / "Contents" / "MacOS"
    info = _utils.read_plist(path / "Contents" / "Info.plist")
    exe_name = info.get("CFBundleExecutable")
    if isinstance(exe_name, str) and exe_name:
        candidate = macos_dir / exe_name
        if candidate.is_file():
            return candidate

    try:
        entries = sorted(macos_dir.iterdir())
    except OSError:
        entries = []
    for entry in entries:
        if entry.is_file() and not entry.name.startswith(".") and entry.suffix != ".plist":
            return entry
    raise UnsignedOrUninspectableError(f"no executable found in {path.name}")


def parse_structured(output: str) -> dict[str, str]:
    """Parse ``santactl fileinfo --json`` output.

    Santa prints a list of records; only the first is used. A record carrying
    nothing but advisory keys (``Rule`` and friends) yields ``{}``.
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError as exc:
        raise ParseError(f"invalid santactl JSON: {exc}") from exc
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ParseError(f"unexpected santactl JSON of type {type(data).__name__}")
    if not data:
        return {}
    record = data[0]
    if not isinstance(record, dict):
        raise ParseError("santactl JSON record is not an object")

    fields: dict[str, str] = {}
    for key, name in _JSON_KEYS.items():
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            fields[name] = value.strip()

    signing = record.get("SigningInfo")
    if isinstance(signing, dict):
        for key, name in _NESTED_JSON_KEYS.items():
            value = signing.get(key)
            if name not in fields and isinstance(value, str) and value.strip():
                fields[name] = value.strip()
    return fields


def parse_free_text(output: str) -> dict[str, str]:
    """Parse the human-readable ``santactl fileinfo`` layout (first value wins)."""
    fields: dict[str, str] = {}
    for key, value in key_values(output):
        name = _TEXT_KEYS.get(key)
        if name and value and name not in fields:
            fields[name] = value
    return fields


class MacOSSigningInspector(SigningInspector):
    name = "santa"

    sleep = staticmethod(time.sleep)

    def inspect(self, path: Path) -> dict[str, str]:
        binary = resolve_executable(path)
        attempts = max(1, self.config.inspect_attempts)
        reasons: list[str] = []

        def attempt() -> dict[str, str]:
            reasons.clear()
            fields = self._structured(binary, reasons)
            if has_signing_data(fields):
                return fields
            return self._free_text(binary, reasons)

        def announce(number: int, wait: float) -> None:
            print(
                f"  [inspect] no signing data yet, attempt {number}/{attempts} in {wait:.0f}s...",
                flush=True,
            )

        fields = retry_call(
            attempt,
            attempts=attempts,
            delay=self.config.inspect_delay,
            backoff=self.config.inspect_backoff,
            accept=has_signing_data,
            sleep=self.sleep,
            on_retry=announce,
        )
        if not has_signing_data(fields):
            raise UnsignedOrUninspectableError(
                f"no signing data for {binary.name} after {attempts} attempts",
                reasons=reasons,
            )
        return fields

    def _structured(self, binary: Path, reasons: list[str]) -> dict[str, str]:
        result = _utils.run([self.config.santactl, "fileinfo", "--json", str(binary)], timeout=120)
        if not result.ok:
            reasons.append(f"json: exit {result.returncode} {preview(result.stderr, 120)}".rstrip())
            return {}
        if not result.stdout:
            reasons.append("json: empty output")
            return {}
        try:
            fields = parse_structured(result.stdout)
        except ParseError as exc:
            reasons.append(f"json: {exc}")
            return {}
        if not fields:
            reasons.append(f"json: no signing fields in {preview(result.stdout, 120)}")
        return fields

    def _free_text(self, binary: Path, reasons: list[str]) -> dict[str, str]:
        result = _utils.run([self.config.santactl, "fileinfo", str(binary)], timeout=120)
        if not result.ok:
            reasons.append(f"text: exit {result.returncode} {preview(result.stderr, 120)}".rstrip())
            return {}
        fields = parse_free_text(result.stdout)
        if not has_signing_data(fields):
            reasons.append(f"text: no signing fields in {preview(result.stdout, 120) or 'empty output'}")
        return fields
