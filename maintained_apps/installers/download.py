"""Download installer artifacts and work out what kind of container they are.

Kind resolution is three-tiered because source URLs are unreliable:
  1. HTTP Content-Type (or the Content-Disposition filename)
  2. a known suffix in the URL path, ignoring version-number "suffixes"
  3. a magic-byte check of the downloaded file, which wins on conflict
"""

from __future__ import annotations

import os
import re
import urllib.parse
from pathlib import Path
from typing import Optional

import requests

from ..errors import DownloadError, EmptyArtifactError
from .base import ArtifactKind, InstallerArtifact


_CONTENT_TYPES = {
    "application/x-apple-diskimage":          ArtifactKind.DMG,
    "application/x-diskcopy":                 ArtifactKind.DMG,
    "application/vnd.apple.installer+xml":    ArtifactKind.PKG,
    "application/x-newton-compatible-pkg":    ArtifactKind.PKG,
    "application/x-xar":                      ArtifactKind.PKG,
    "application/zip":                        ArtifactKind.ZIP,
    "application/x-zip-compressed":           ArtifactKind.ZIP,
    "application/x-msi":                      ArtifactKind.MSI,
    "application/x-ms-installer":             ArtifactKind.MSI,
    "application/x-msdownload":               ArtifactKind.EXE,
    "application/vnd.microsoft.portable-executable": ArtifactKind.EXE,
    "application/x-dosexec":                  ArtifactKind.EXE,
}

_SUFFIXES = {kind.value: kind for kind in ArtifactKind}

_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
_ZIP_MAGICS = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
_UDIF_TRAILER_LEN = 512

_FILENAME_RE = re.compile(r"""filename\*?=(?:UTF-8'')?["']?([^"';]+)""", re.IGNORECASE)


# ── kind detection ────────────────────────────────────────────────────────────

def kind_from_content_type(content_type: str | None) -> Optional[ArtifactKind]:
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    return _CONTENT_TYPES.get(mime)


def _kind_from_name(name: str) -> Optional[ArtifactKind]:
    if "." not in name:
        return None
    suffix = name.rsplit(".", 1)[1]
    # "App-1.2.3" has a "suffix" of "3": a version number, not an extension.
    if not suffix or suffix[0].isdigit():
        return None
    return _SUFFIXES.get(suffix.lower())


def kind_from_url(url: str) -> Optional[ArtifactKind]:
    """Return the kind named by the URL path, or None.

    Segments are checked from last to first so mirror-style URLs such as
    ``/files/App.dmg/download`` still resolve.
    """
    path = urllib.parse.unquote(urllib.parse.urlparse(url).path)
    for segment in reversed([s for s in path.split("/") if s]):
        kind = _kind_from_name(segment)
        if kind is not None:
            return kind
    return None


def kind_from_disposition(disposition: str | None) -> Optional[ArtifactKind]:
    if not disposition:
        return None
    m = _FILENAME_RE.search(disposition)
    if not m:
        return None
    return _kind_from_name(urllib.parse.unquote(m.group(1)).strip())


def sniff_kind(path: Path) -> Optional[ArtifactKind]:
    """Identify the container from its magic bytes; None if unrecognised."""
    size = path.stat().st_size
    with open(path, "rb") as fh:
        head = fh.read(8)
        if head.startswith(b"xar!"):
            return ArtifactKind.PKG
        if head.startswith(_ZIP_MAGICS):
            return ArtifactKind.ZIP
        if head.startswith(_OLE_MAGIC):
            return ArtifactKind.MSI
        if head.startswith(b"MZ"):
            return ArtifactKind.EXE
        if size >= _UDIF_TRAILER_LEN:
            fh.seek(size - _UDIF_TRAILER_LEN)
            if fh.read(4) == b"koly":
                return ArtifactKind.DMG
    return None


def declared_kind(url: str, headers: dict | None) -> Optional[ArtifactKind]:
    headers = headers or {}
    return (
        kind_from_content_type(headers.get("Content-Type"))
        or kind_from_disposition(headers.get("Content-Disposition"))
        or kind_from_url(url)
    )


# ── download ──────────────────────────────────────────────────────────────────

def _artifact_path(scratch_dir: Path, slug: str, kind: Optional[ArtifactKind]) -> Path:
    stem = slug.replace("/", "_").replace("\\", "_")
    return scratch_dir / (stem + (kind.suffix if kind else ".bin"))


def acquire(
    url: str,
    slug: str,
    scratch_dir: Path,
    *,
    session: requests.Session | None = None,
    timeout: float = 300,
    chunk_size: int = 1024 * 1024,
    user_agent: str | None = None,
) -> InstallerArtifact:
    """Stream *url* into the scratch directory and return the tagged artifact.

    Raises:
        DownloadError: transport failure or non-2xx status.
        EmptyArtifactError: zero bytes were written.
    """
    http = session or requests.Session()
    headers = {"User-Agent": user_agent} if user_agent else {}
    scratch_dir.mkdir(parents=True, exist_ok=True)

    try:
        with http.get(url, stream=True, timeout=timeout, headers=headers) as resp:
            if not 200 <= resp.status_code < 300:
                raise DownloadError(f"failed to download {url}: HTTP {resp.status_code}")
            kind = declared_kind(resp.url or url, resp.headers)
            target = _artifact_path(scratch_dir, slug, kind)
            written = 0
            with open(target, "wb") as out:
                for chunk in resp.iter_content(chunk_size=chunk_size):
                    if chunk:
                        out.write(chunk)
                        written += len(chunk)
    except requests.RequestException as exc:
        raise DownloadError(f"failed to download {url}: {exc}") from exc
    except OSError as exc:
        raise DownloadError(f"failed to write installer for {slug}: {exc}") from exc

    if written == 0:
        target.unlink(missing_ok=True)
        raise EmptyArtifactError(f"downloaded file for {slug} is empty")

    artifact = InstallerArtifact(local_path=target, declared_kind=kind)
    artifact.detected_kind = sniff_kind(target)

    if artifact.detected_kind is not None and artifact.detected_kind != kind:
        retagged = _artifact_path(scratch_dir, slug, artifact.detected_kind)
        os.replace(target, retagged)
        artifact.local_path = retagged
        declared = kind.value if kind else "unknown"
        print(
            f"  [download] content is {artifact.detected_kind.value}, "
            f"not {declared}; re-tagged as {retagged.name}",
            flush=True,
        )

    return artifact
