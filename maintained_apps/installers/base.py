"""Base types shared by every installer driver."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ..config.collector_config import CollectorConfig
from ..models.schema import CatalogEntry, Platform


class ArtifactKind(str, Enum):
    DMG = "dmg"
    PKG = "pkg"
    ZIP = "zip"
    MSI = "msi"
    EXE = "exe"

    @property
    def suffix(self) -> str:
        return "." + self.value


@dataclass
class InstallerArtifact:
    local_path: Path
    declared_kind: Optional[ArtifactKind] = None
    detected_kind: Optional[ArtifactKind] = None

    @property
    def kind(self) -> Optional[ArtifactKind]:
        """Content sniffing wins over URL / Content-Type when both are known."""
        return self.detected_kind or self.declared_kind


@dataclass
class InstalledTarget:
    path: Path
    platform: Platform
    # Additional signable binaries when the installer is a suite.
    sub_paths: list[Path] = field(default_factory=list)
    # Which location tier found the target, for progress output and tests.
    strategy: str = ""
    # True when the target lives in the applications directory and must be removed.
    materialized: bool = False


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class InstallerDriver(ABC):
    """One installer variant: open the artifact, locate the app, tear down.

    ``install`` runs the whole sequence and always calls ``cleanup`` so mounts
    and extraction directories never outlive a single entry.
    """

    name: str = "base"
    platform: Platform = Platform.MACOS

    def __init__(self, config: CollectorConfig, entry: CatalogEntry):
        self.config = config
        self.entry = entry

    @abstractmethod
    def open(self, artifact: InstallerArtifact) -> Path:
        """Mount, extract or install *artifact*; return the root to search."""
        ...

    @abstractmethod
    def locate_app(self, root: Path) -> InstalledTarget:
        """Find the signable bundle or executable below *root*."""
        ...

    def cleanup(self) -> None:
        """Release anything ``open`` acquired. Must be safe to call twice."""

    def uninstall(self, target: InstalledTarget) -> None:
        """Remove what the install left behind outside the scratch directory."""

    def install(self, artifact: InstallerArtifact) -> InstalledTarget:
        try:
            root = self.open(artifact)
            return self.locate_app(root)
        finally:
            self.cleanup()


def listing(root: Path, limit: int = 20) -> list[str]:
    """Return up to *limit* relative paths below *root* for error messages."""
    contents: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in dirnames + sorted(filenames):
            rel = os.path.relpath(os.path.join(dirpath, name), root)
            contents.append(rel)
            if len(contents) >= limit:
                return contents
    return contents
