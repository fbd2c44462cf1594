"""Pydantic v2 schema definitions for the catalog and security-info files.

Attribute names are Python-style; the aliases are the keys already used by the
JSON files under ``data/`` (and by the dashboard generators that read them).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Platform(str, Enum):
    MACOS = "macos"
    WINDOWS = "windows"


# Upstream catalogs call macOS "darwin".
_PLATFORM_ALIASES = {
    "darwin": Platform.MACOS,
    "macos": Platform.MACOS,
    "mac": Platform.MACOS,
    "windows": Platform.WINDOWS,
    "win32": Platform.WINDOWS,
}


def normalize_platform(value: str | None) -> Optional[Platform]:
    """Map a raw catalog platform string to a ``Platform``, or None if unknown."""
    if not value:
        return None
    return _PLATFORM_ALIASES.get(value.strip().lower())


# ── Catalog ───────────────────────────────────────────────────────────────────

class CatalogEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slug: str
    name: str = ""
    platform: str = ""
    version: str = ""
    installer_url: Optional[str] = Field(default=None, alias="installerUrl")

    @property
    def target_platform(self) -> Optional[Platform]:
        return normalize_platform(self.platform)


class Catalog(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_updated: str = Field(default="", alias="lastUpdated")
    apps: list[CatalogEntry] = []

    @model_validator(mode="after")
    def _unique_slugs(self) -> "Catalog":
        seen: set[str] = set()
        dupes = []
        for entry in self.apps:
            if entry.slug in seen:
                dupes.append(entry.slug)
            seen.add(entry.slug)
        if dupes:
            raise ValueError(f"duplicate slugs in catalog: {sorted(set(dupes))}")
        return self

    def slugs(self) -> set[str]:
        return {entry.slug for entry in self.apps}


# ── Security info ─────────────────────────────────────────────────────────────

class SecurityRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    slug: str
    name: str = ""
    version: str = ""
    sha256: Optional[str] = None
    # macOS
    code_directory_hash: Optional[str] = Field(default=None, alias="cdhash")
    signing_identifier: Optional[str] = Field(default=None, alias="signingId")
    team_identifier: Optional[str] = Field(default=None, alias="teamId")
    # Windows (Authenticode)
    publisher_subject: Optional[str] = Field(default=None, alias="publisher")
    issuer_subject: Optional[str] = Field(default=None, alias="issuer")
    serial_number: Optional[str] = Field(default=None, alias="serialNumber")
    certificate_thumbprint: Optional[str] = Field(default=None, alias="thumbprint")
    signing_timestamp: Optional[str] = Field(default=None, alias="timestamp")
    collected_at: str = Field(default="", alias="lastUpdated")
    sub_entries: list["SecurityRecord"] = Field(default_factory=list, alias="apps")

    def to_json_dict(self) -> dict[str, Any]:
        """Serialise with wire keys, omitting unset signing fields and empty suites."""
        data = self.model_dump(by_alias=True, exclude_none=True, exclude={"sub_entries"})
        if self.sub_entries:
            data["apps"] = [sub.to_json_dict() for sub in self.sub_entries]
        return data


SecurityRecord.model_rebuild()


class SecurityInfoStore(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_updated: str = Field(default="", alias="lastUpdated")
    apps: list[SecurityRecord] = []

    def by_slug(self) -> dict[str, SecurityRecord]:
        return {record.slug: record for record in self.apps}


# ── Version history ───────────────────────────────────────────────────────────

class VersionChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: str
    app_name: str = Field(default="", alias="appName")
    slug: str
    platform: str = ""
    old_version: str = Field(default="", alias="oldVersion")
    new_version: str = Field(default="", alias="newVersion")
    installer_url: str = Field(default="", alias="installerUrl")


class VersionHistory(BaseModel):
    changes: list[VersionChange] = []
