"""Zip archive driver.

``ditto -x -k`` keeps the resource forks and extended attributes stored in the
archive; plain ``unzip`` is the fallback.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from ...errors import InstallError, preview
from ..base import InstallerArtifact, InstalledTarget
from . import _utils
from .bundle import MacOSDriver


class ArchiveDriver(MacOSDriver):
    name = "macos.archive"

    def __init__(self, config, entry):
        super().__init__(config, entry)
        self.extract_dir = config.scratch_dir / "extracted"

    def open(self, artifact: InstallerArtifact) -> Path:
        shutil.rmtree(self.extract_dir, ignore_errors=True)
        self.extract_dir.mkdir(parents=True, exist_ok=True)

        archive = str(artifact.local_path)
        result = _utils.run(["ditto", "-x", "-k", archive, str(self.extract_dir)])
        if not result.ok:
            fallback = _utils.run(["unzip", "-q", "-o", archive, "-d", str(self.extract_dir)])
            if not fallback.ok:
                reason = preview(fallback.stderr) or preview(result.stderr) or "unknown error"
                raise InstallError(f"failed to extract ZIP: {reason}")
        return self.extract_dir

    def locate_app(self, root: Path) -> InstalledTarget:
        return self.install_from_tree(root)

    def cleanup(self) -> None:
        shutil.rmtree(self.extract_dir, ignore_errors=True)
