"""Read the catalog and work out which entries need collecting."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping

from pydantic import ValidationError

from ..errors import CatalogError
from ..models.schema import Catalog, CatalogEntry, Platform, SecurityRecord


def load_catalog(path: Path) -> Catalog:
    """Parse the catalog file; any problem is a CatalogError."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise CatalogError(f"catalog not found: {path}") from exc
    except (OSError, ValueError) as exc:
        raise CatalogError(f"could not read catalog {path}: {exc}") from exc
    try:
        return Catalog.model_validate(raw)
    except ValidationError as exc:
        raise CatalogError(f"invalid catalog {path}: {exc}") from exc


def is_stale(entry: CatalogEntry, records: Mapping[str, SecurityRecord]) -> bool:
    record = records.get(entry.slug)
    return record is None or record.version != entry.version


def stale_entries(
    catalog: Catalog,
    records: Mapping[str, SecurityRecord],
    platform: Platform,
) -> list[CatalogEntry]:
    """Entries for *platform* with an installer URL and no record at their declared version."""
    return [
        entry
        for entry in catalog.apps
        if entry.target_platform is platform
        and entry.installer_url
        and is_stale(entry, records)
    ]
