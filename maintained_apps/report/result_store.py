"""Security-info store: merge fresh records with carried-forward ones, write atomically.

The store file looks like::

    {
      "lastUpdated": "2026-02-27T08:00:00Z",
      "apps": [ {"slug": "...", "sha256": "...", ...}, ... ]
    }

Records are sorted by slug so that re-runs produce stable diffs.
"""

from __future__ import annotations

import datetime
import json
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from ..errors import PersistError
from ..models.schema import SecurityInfoStore, SecurityRecord


def utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def merge(
    existing: Iterable[SecurityRecord],
    fresh: Iterable[SecurityRecord],
    still_valid_slugs: set[str],
) -> list[SecurityRecord]:
    """Fresh records win; existing ones survive only while their slug is still valid."""
    merged: dict[str, SecurityRecord] = {}
    for record in existing:
        if record.slug in still_valid_slugs:
            merged[record.slug] = record
    for record in fresh:
        merged[record.slug] = record
    return [merged[slug] for slug in sorted(merged)]


def atomic_write_text(path: Path, text: str) -> None:
    """Write *text* to a temp file beside *path*, fsync, then rename over it.

    Raises PersistError on any filesystem failure; the target is then untouched.
    The temp file never outlives a failed or interrupted write.
    """
    tmp_name: Optional[str] = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        raise PersistError(f"could not write {path}: {exc}") from exc
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


def load_store(path: Path) -> SecurityInfoStore:
    """Read the store; a missing file is an empty store, a corrupt one is fatal."""
    if not path.exists():
        return SecurityInfoStore()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return SecurityInfoStore.model_validate(raw)
    except (OSError, ValueError, ValidationError) as exc:
        raise PersistError(f"could not read security info from {path}: {exc}") from exc


def write_store(path: Path, store: SecurityInfoStore) -> None:
    payload = {
        "lastUpdated": store.last_updated,
        "apps": [record.to_json_dict() for record in store.apps],
    }
    atomic_write_text(path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def _records_json(records: Iterable[SecurityRecord]) -> list[dict]:
    return [record.to_json_dict() for record in records]


class ResultStore:
    """Owns the on-disk store for one collector run."""

    def __init__(self, path: Path, clock: Callable[[], str] = utc_now):
        self.path = path
        self.clock = clock
        self.existing = load_store(path)
        self._on_disk = _records_json(self.existing.apps)

    def persist(self, fresh: Iterable[SecurityRecord], still_valid_slugs: set[str]) -> bool:
        """Merge and write; returns False when the records did not change.

        Skipping the unchanged write keeps ``lastUpdated`` stable, so a re-run
        against an unchanged catalog leaves the file byte-identical.
        """
        merged = merge(self.existing.apps, fresh, still_valid_slugs)
        as_json = _records_json(merged)
        if as_json == self._on_disk:
            return False
        write_store(self.path, SecurityInfoStore(last_updated=self.clock(), apps=merged))
        self._on_disk = as_json
        return True
