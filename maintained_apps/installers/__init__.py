"""Installer acquisition and per-variant installer drivers."""

from __future__ import annotations

from typing import Optional

from ..config.collector_config import CollectorConfig
from ..errors import UnsupportedArtifactKindError
from ..models.schema import CatalogEntry, Platform
from .base import ArtifactKind, InstallerDriver


def driver_for(
    kind: Optional[ArtifactKind],
    platform: Platform,
    config: CollectorConfig,
    entry: CatalogEntry,
) -> InstallerDriver:
    """Return the driver for *kind* on *platform*."""
    if platform is Platform.MACOS:
        from .macos.archive import ArchiveDriver
        from .macos.disk_image import DiskImageDriver
        from .macos.package import PackageInstallerDriver
        table = {
            ArtifactKind.DMG: DiskImageDriver,
            ArtifactKind.PKG: PackageInstallerDriver,
            ArtifactKind.ZIP: ArchiveDriver,
        }
    else:
        from .windows.drivers import ExeDriver, MsiDriver, WindowsArchiveDriver
        table = {
            ArtifactKind.MSI: MsiDriver,
            ArtifactKind.EXE: ExeDriver,
            ArtifactKind.ZIP: WindowsArchiveDriver,
        }

    driver_cls = table.get(kind) if kind is not None else None
    if driver_cls is None:
        label = kind.value if kind is not None else "unknown"
        raise UnsupportedArtifactKindError(
            f"unsupported installer type for {platform.value}: {label}"
        )
    return driver_cls(config, entry)
