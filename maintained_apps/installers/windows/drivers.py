"""Windows installer drivers.

Nothing is installed system-wide: MSIs get an administrative extract into the
scratch directory, zips are expanded there, and EXE installers are inspected
as-is (most are self-extracting and signed themselves).
"""

from __future__ import annotations

import shutil
from pathlib import Path

from ...errors import ArtifactLocationError, InstallError, preview
from ...models.schema import Platform
from ..base import InstallerArtifact, InstalledTarget, InstallerDriver, listing
from . import _utils
from .locate import find_main_executable

STRATEGY_INSTALLER_ITSELF = "installer-itself"
STRATEGY_EXTRACTED = "extracted"


class WindowsDriver(InstallerDriver):
    platform = Platform.WINDOWS

    def __init__(self, config, entry):
        super().__init__(config, entry)
        self.extract_dir = config.scratch_dir / "extracted"

    @property
    def app_name(self) -> str:
        return self.entry.name or self.entry.slug.split("/")[0]

    def _fresh_extract_dir(self) -> Path:
        shutil.rmtree(self.extract_dir, ignore_errors=True)
        self.extract_dir.mkdir(parents=True, exist_ok=True)
        return self.extract_dir

    def _target(self, path: Path, strategy: str) -> InstalledTarget:
        return InstalledTarget(path=path, platform=self.platform, strategy=strategy)

    def cleanup(self) -> None:
        # The extracted tree is inspected after install() returns; the
        # orchestrator wipes the scratch directory once the entry is done.
        pass


class MsiDriver(WindowsDriver):
    name = "windows.msi"

    def open(self, artifact: InstallerArtifact) -> Path:
        extract = self._fresh_extract_dir()
        result = _utils.run(
            ["msiexec", "/a", str(artifact.local_path), "/qn", f"TARGETDIR={extract}"],
            timeout=1800,
        )
        if not result.ok:
            print(
                f"  [warn] administrative extract failed ({result.returncode}); "
                f"inspecting the MSI itself",
                flush=True,
            )
            return artifact.local_path
        return extract

    def locate_app(self, root: Path) -> InstalledTarget:
        if root.is_file():
            return self._target(root, STRATEGY_INSTALLER_ITSELF)
        exe = find_main_executable(root, self.app_name)
        if exe is None:
            raise ArtifactLocationError("no executable found in extracted MSI", listing=listing(root))
        return self._target(exe, STRATEGY_EXTRACTED)


class ExeDriver(WindowsDriver):
    name = "windows.exe"

    def open(self, artifact: InstallerArtifact) -> Path:
        if not artifact.local_path.is_file():
            raise InstallError(f"installer not found: {artifact.local_path}")
        return artifact.local_path

    def locate_app(self, root: Path) -> InstalledTarget:
        return self._target(root, STRATEGY_INSTALLER_ITSELF)


class WindowsArchiveDriver(WindowsDriver):
    name = "windows.archive"

    def open(self, artifact: InstallerArtifact) -> Path:
        extract = self._fresh_extract_dir()
        try:
            _utils.run_powershell(
                f"Expand-Archive -Path {_utils.ps_quote(str(artifact.local_path))} "
                f"-DestinationPath {_utils.ps_quote(str(extract))} -Force",
                timeout=900,
            )
        except RuntimeError as exc:
            raise InstallError(f"failed to extract ZIP: {preview(str(exc))}") from exc
        return extract

    def locate_app(self, root: Path) -> InstalledTarget:
        exe = find_main_executable(root, self.app_name)
        if exe is None:
            raise ArtifactLocationError("no executable found in ZIP", listing=listing(root))
        return self._target(exe, STRATEGY_EXTRACTED)
