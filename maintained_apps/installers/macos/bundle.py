"""Behaviour shared by the macOS drivers: materialise, normalise, uninstall."""

from __future__ import annotations

import time
from pathlib import Path

from ...errors import ArtifactLocationError, InstallError, preview
from ...models.schema import Platform
from ..base import InstalledTarget, InstallerDriver, listing
from . import _utils
from .locate import STRATEGY_MOST_RECENT, find_app_bundle, find_embedded_package, find_installed_app


class MacOSDriver(InstallerDriver):
    platform = Platform.MACOS

    # Overridden in tests to skip real waits.
    sleep = staticmethod(time.sleep)

    @property
    def app_name(self) -> str:
        return self.entry.name or self.entry.slug.split("/")[0]

    # ── install steps ─────────────────────────────────────────────────────────

    def materialize(self, bundle: Path) -> Path:
        """Copy *bundle* into the applications directory, replacing any old copy."""
        apps_dir = self.config.applications_dir
        dest = apps_dir / bundle.name
        if (dest.exists() or dest.is_symlink()) and not _utils.remove_path(dest):
            raise InstallError(f"could not remove existing {dest}")
        apps_dir.mkdir(parents=True, exist_ok=True)
        result = _utils.copy_bundle(bundle, dest)
        if not result.ok:
            raise InstallError(f"failed to copy {bundle.name}: {preview(result.output)}")
        return dest

    def normalize(self, path: Path) -> None:
        result = _utils.strip_quarantine(path)
        if not result.ok:
            print(f"  [warn] could not clear quarantine on {path.name}: {preview(result.stderr)}", flush=True)

    def install_package_file(self, pkg: Path) -> InstalledTarget:
        """Run the package installer, then find what it installed."""
        print(f"  [install] running package installer for {pkg.name}...", flush=True)
        result = _utils.install_package(pkg)
        if not result.ok:
            raise InstallError(f"failed to install {pkg.name}: {preview(result.output) or result.returncode}")

        # The installer exiting does not mean the filesystem view is final.
        self.sleep(self.config.settle_seconds)

        path, strategy = find_installed_app(
            self.config.applications_dir,
            self.app_name,
            recent_minutes=self.config.recent_app_minutes,
        )
        if strategy == STRATEGY_MOST_RECENT:
            print(f"  [warn] matched {path.name} only by modification time", flush=True)
        self.normalize(path)
        return InstalledTarget(
            path=path,
            platform=self.platform,
            strategy=f"package/{strategy}",
            materialized=True,
        )

    def install_from_tree(self, root: Path) -> InstalledTarget:
        """Handle a mounted image or extracted archive.

        An embedded installer package takes precedence over any bundle; else
        the bundle search tiers run and every located bundle is copied out.
        """
        pkg = find_embedded_package(root)
        if pkg is not None:
            print(f"  [install] found embedded installer {pkg.name}", flush=True)
            return self.install_package_file(pkg)

        found = find_app_bundle(root, self.app_name, max_depth=self.config.search_depth)
        if found is None:
            raise ArtifactLocationError(
                "could not find .app bundle or .pkg installer",
                listing=listing(root),
            )
        primary, others, strategy = found

        # No target reaches the caller on failure, so copies are undone here.
        copied: list[Path] = []
        try:
            for bundle in [primary, *others]:
                copied.append(self.materialize(bundle))
                self.normalize(copied[-1])
        except BaseException:
            for path in copied:
                if not _utils.remove_path(path):
                    print(f"  [warn] could not remove {path.name} after a failed install", flush=True)
            raise

        return InstalledTarget(
            path=copied[0],
            platform=self.platform,
            sub_paths=copied[1:],
            strategy=strategy,
            materialized=True,
        )

    # ── teardown ──────────────────────────────────────────────────────────────

    def uninstall(self, target: InstalledTarget) -> None:
        if not target.materialized:
            return
        for path in [target.path, *target.sub_paths]:
            if not _utils.remove_path(path):
                print(f"  [warn] some files of {path.name} may remain", flush=True)
