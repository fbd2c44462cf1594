"""Installer package (.pkg) driver built on ``installer``."""

from __future__ import annotations

from pathlib import Path

from ...errors import InstallError
from ..base import InstallerArtifact, InstalledTarget
from .bundle import MacOSDriver


class PackageInstallerDriver(MacOSDriver):
    name = "macos.package-installer"

    def open(self, artifact: InstallerArtifact) -> Path:
        if not artifact.local_path.is_file():
            raise InstallError(f"package not found: {artifact.local_path}")
        return artifact.local_path

    def locate_app(self, root: Path) -> InstalledTarget:
        # For packages the "root" is the package file itself.
        return self.install_package_file(root)
