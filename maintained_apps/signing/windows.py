"""Authenticode inspection for Windows executables and installers.

Three independent tools are tried in order: PowerShell's
Get-AuthenticodeSignature, ``signtool verify`` and ``certutil -verify``.
The first that yields a subject or a thumbprint wins.
"""

from __future__ import annotations

import hashlib
import json
import shutil
import time
from pathlib import Path
from typing import Callable, Optional

from ..errors import ParseError, UnsignedOrUninspectableError, preview
from ..installers.windows import _utils
from ..retry import retry_call
from .base import SigningInspector, key_values, normalize_key

_PS_TEMPLATE = (
    "$sig = Get-AuthenticodeSignature -FilePath {path}; "
    "if (-not $sig -or -not $sig.SignerCertificate) {{ "
    "[Console]::Error.WriteLine('No certificate found'); exit 1 }}; "
    "$cert = $sig.SignerCertificate; "
    "$stamp = if ($sig.TimeStamperCertificate) {{ $sig.TimeStamperCertificate.Subject }} else {{ '' }}; "
    "[pscustomobject]@{{ Subject = $cert.Subject; Issuer = $cert.Issuer; "
    "SerialNumber = $cert.SerialNumber; Thumbprint = $cert.Thumbprint; "
    "TimeStamper = $stamp; Status = [string]$sig.Status }} | ConvertTo-Json -Compress"
)

_PS_KEYS = {
    "Subject": "publisher_subject",
    "Issuer": "issuer_subject",
    "SerialNumber": "serial_number",
    "Thumbprint": "certificate_thumbprint",
    "TimeStamper": "signing_timestamp",
}

_SIGNTOOL_KEYS = {
    "issued to": "publisher_subject",
    "subject": "publisher_subject",
    "issued by": "issuer_subject",
    "issuer": "issuer_subject",
    "serial number": "serial_number",
    "sha1 hash": "certificate_thumbprint",
    "thumbprint": "certificate_thumbprint",
    "the signature is timestamped": "signing_timestamp",
}

_CERTUTIL_KEYS = {
    "subject": "publisher_subject",
    "issuer": "issuer_subject",
    "serial number": "serial_number",
    "serial": "serial_number",
    "cert hash(sha1)": "certificate_thumbprint",
    "thumbprint": "certificate_thumbprint",
}


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(chunk_size), b""):
            digest.update(block)
    return digest.hexdigest()


def has_certificate(fields: dict) -> bool:
    return bool(fields.get("publisher_subject") or fields.get("certificate_thumbprint"))


def parse_powershell(output: str) -> dict[str, str]:
    """Parse the ConvertTo-Json object emitted by the PowerShell query."""
    start = output.find("{")
    if start == -1:
        raise ParseError(f"no JSON object in PowerShell output: {preview(output, 120)}")
    try:
        data = json.loads(output[start:])
    except json.JSONDecodeError as exc:
        raise ParseError(f"invalid PowerShell JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError("PowerShell JSON is not an object")
    fields = {}
    for key, name in _PS_KEYS.items():
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            fields[name] = value.strip()
    return fields


def parse_signtool(output: str) -> dict[str, str]:
    """Parse ``signtool verify /pa /v``.

    The signing chain is printed root first, so later certificates overwrite
    earlier ones and the leaf wins. The timestamping chain that follows
    ``Timestamp Verified by`` is ignored for certificate fields.
    """
    fields: dict[str, str] = {}
    in_timestamp_chain = False
    for key, value in key_values(output):
        if key.startswith("timestamp verified by"):
            in_timestamp_chain = True
            continue
        name = _SIGNTOOL_KEYS.get(key)
        if not name or not value:
            continue
        if name == "signing_timestamp":
            fields[name] = value
        elif not in_timestamp_chain:
            fields[name] = value
    return fields


def parse_certutil(output: str) -> dict[str, str]:
    """Parse ``certutil -verify -v``; first value wins, the timestamp is on the next line."""
    fields: dict[str, str] = {}
    lines = output.splitlines()
    for index, line in enumerate(lines):
        stripped = line.strip()
        if "time stamp" in stripped.lower() and index + 1 < len(lines):
            following = lines[index + 1].strip()
            if following:
                fields["signing_timestamp"] = following
        if ":" not in stripped:
            continue
        key, value = stripped.split(":", 1)
        name = _CERTUTIL_KEYS.get(normalize_key(key))
        value = value.strip()
        if not name or not value or name in fields:
            continue
        if name == "certificate_thumbprint":
            value = value.replace(" ", "")
        fields[name] = value
    return fields


class WindowsSigningInspector(SigningInspector):
    name = "authenticode"

    sleep = staticmethod(time.sleep)

    def inspect(self, path: Path) -> dict[str, str]:
        if not path.is_file():
            raise UnsignedOrUninspectableError(f"file not found: {path}")
        fields = {"sha256": sha256_file(path)}

        strategies: list[tuple[str, Callable[[Path], dict[str, str]]]] = [
            ("PowerShell", self.via_powershell),
            ("signtool", self.via_signtool),
            ("certutil", self.via_certutil),
        ]
        reasons = []
        for label, strategy in strategies:
            try:
                found = strategy(path)
            except (ParseError, RuntimeError) as exc:
                reasons.append(f"{label}: {exc}")
                continue
            if has_certificate(found):
                print(f"  [inspect] signature read via {label}", flush=True)
                fields.update(found)
                return fields
            reasons.append(f"{label}: no certificate fields")

        if self.config.allow_unsigned:
            print(f"  [warn] no signature on {path.name}, recording hash only", flush=True)
            return fields
        raise UnsignedOrUninspectableError("all signature extraction methods failed", reasons=reasons)

    # ── strategies ────────────────────────────────────────────────────────────

    def via_powershell(self, path: Path) -> dict[str, str]:
        script = _PS_TEMPLATE.format(path=_utils.ps_quote(str(path)))
        output = retry_call(
            lambda: _utils.run_powershell(script),
            attempts=max(1, self.config.inspect_attempts),
            delay=self.config.inspect_delay,
            backoff=self.config.inspect_backoff,
            accept=lambda out: bool(out and out.strip()),
            retry_on=(RuntimeError,),
            sleep=self.sleep,
        )
        if not output or not output.strip():
            raise ParseError("empty output from PowerShell")
        return parse_powershell(output)

    def via_signtool(self, path: Path) -> dict[str, str]:
        signtool = self._signtool()
        if signtool is None:
            raise RuntimeError("signtool.exe not found")
        result = _utils.run([signtool, "verify", "/pa", "/v", str(path)], timeout=120)
        if not result.ok:
            raise RuntimeError(f"signtool verify failed: {preview(result.output, 200) or result.returncode}")
        return parse_signtool(result.stdout)

    def via_certutil(self, path: Path) -> dict[str, str]:
        result = _utils.run(["certutil", "-verify", "-v", str(path)], timeout=120)
        if not result.ok:
            raise RuntimeError(f"certutil verify failed: {preview(result.output, 200) or result.returncode}")
        return parse_certutil(result.stdout)

    def _signtool(self) -> Optional[str]:
        for candidate in self.config.signtool_paths:
            if Path(candidate).is_file():
                return candidate
        return shutil.which("signtool")
