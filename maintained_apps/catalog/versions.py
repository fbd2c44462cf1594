"""Track upstream catalog versions and keep a history of version changes.

``track_versions`` rebuilds the catalog file from the upstream apps list and
per-app manifests, then appends any detected changes to the history file
(newest ``upstream.history_limit`` entries kept).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Optional

import requests
from pydantic import ValidationError

from ..errors import CatalogError, PersistError
from ..models.schema import Catalog, CatalogEntry, VersionChange, VersionHistory
from ..report.result_store import atomic_write_text, utc_now
from .loader import load_catalog


def _get_json(session: requests.Session, url: str, timeout: float = 30):
    resp = session.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


def fetch_app_version(session: requests.Session, base_url: str, slug: str) -> tuple[str, str]:
    """Return (version, installer_url) of the newest release in ``<base>/<slug>.json``."""
    data = _get_json(session, f"{base_url.rstrip('/')}/{slug}.json")
    releases = data.get("versions") if isinstance(data, dict) else None
    if not releases:
        raise ValueError("no versions found")
    latest = releases[0]
    return str(latest.get("version") or ""), str(latest.get("installer_url") or "")


def fetch_catalog(config: dict, session: Optional[requests.Session] = None) -> list[CatalogEntry]:
    """Build catalog entries from the upstream apps list.

    A failing app manifest leaves that entry with an empty version and no
    installer URL; a failing apps list is a CatalogError.
    """
    upstream = config["upstream"]
    http = session or requests.Session()
    try:
        listing = _get_json(http, upstream["apps_json_url"])
    except (requests.RequestException, ValueError) as exc:
        raise CatalogError(f"failed to fetch apps list: {exc}") from exc

    apps = listing.get("apps", []) if isinstance(listing, dict) else []
    entries = []
    for app in apps:
        slug = app.get("slug", "")
        name = app.get("name", "")
        platform = app.get("platform", "")
        try:
            version, installer_url = fetch_app_version(http, upstream["app_base_url"], slug)
        except (requests.RequestException, ValueError) as exc:
            print(f"  [warn] failed to get version for {slug}: {exc}", flush=True)
            version, installer_url = "", ""
        else:
            print(f"  [ok] {name} ({platform}): {version}", flush=True)
        entries.append(
            CatalogEntry(slug=slug, name=name, platform=platform, version=version, installer_url=installer_url)
        )
    return entries


def versions_equal(old: list[CatalogEntry], new: list[CatalogEntry]) -> bool:
    old_map = {entry.slug: entry.version for entry in old}
    new_map = {entry.slug: entry.version for entry in new}
    return old_map == new_map


def detect_changes(
    old: Optional[list[CatalogEntry]],
    new: list[CatalogEntry],
    now: str,
) -> list[VersionChange]:
    """Version bumps and newly added apps, sorted by slug.

    With no previous catalog (first run) nothing is reported. Entries whose
    version is empty on either side are not treated as changes.
    """
    if old is None:
        return []
    old_map = {entry.slug: entry for entry in old}
    changes = []
    for entry in sorted(new, key=lambda e: e.slug):
        if not entry.version:
            continue
        previous = old_map.get(entry.slug)
        if previous is not None and (not previous.version or previous.version == entry.version):
            continue
        changes.append(
            VersionChange(
                date=now,
                app_name=entry.name,
                slug=entry.slug,
                platform=entry.platform,
                old_version=previous.version if previous is not None else "",
                new_version=entry.version,
                installer_url=entry.installer_url or "",
            )
        )
    return changes


def load_history(path: Path) -> VersionHistory:
    if not path.exists():
        return VersionHistory()
    try:
        return VersionHistory.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as exc:
        print(f"  [warn] could not read version history {path}, starting fresh: {exc}", flush=True)
        return VersionHistory()


def append_history(path: Path, changes: list[VersionChange], limit: int) -> VersionHistory:
    history = load_history(path)
    history.changes.extend(changes)
    if limit > 0 and len(history.changes) > limit:
        history.changes = history.changes[-limit:]
    atomic_write_text(path, json.dumps(history.model_dump(by_alias=True), indent=2, ensure_ascii=False) + "\n")
    return history


def track_versions(
    config: dict,
    session: Optional[requests.Session] = None,
    clock: Callable[[], str] = utc_now,
) -> bool:
    """Refresh the catalog file from upstream. Returns True when versions changed."""
    data_dir = Path(config["data_dir"])
    catalog_path = data_dir / config["catalog_file"]
    history_path = data_dir / config["version_history_file"]

    previous: Optional[list[CatalogEntry]] = None
    if catalog_path.exists():
        try:
            previous = load_catalog(catalog_path).apps
        except CatalogError as exc:
            print(f"  [warn] ignoring unreadable catalog: {exc}", flush=True)

    entries = fetch_catalog(config, session)
    now = clock()
    catalog = Catalog(last_updated=now, apps=entries)
    atomic_write_text(
        catalog_path,
        json.dumps(catalog.model_dump(by_alias=True), indent=2, ensure_ascii=False) + "\n",
    )

    if previous is not None and versions_equal(previous, entries):
        print(f"[versions] {catalog_path}: no changes", flush=True)
        return False

    print(f"[versions] updated {catalog_path}", flush=True)
    changes = detect_changes(previous, entries, now)
    for change in changes:
        label = f"{change.old_version} -> {change.new_version}" if change.old_version else f"new ({change.new_version})"
        print(f"  [change] {change.app_name}: {label}", flush=True)
    if changes:
        try:
            append_history(history_path, changes, int(config["upstream"]["history_limit"]))
        except PersistError as exc:
            print(f"  [warn] failed to record version changes: {exc}", flush=True)
    return True
