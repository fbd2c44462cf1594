"""Disk image (.dmg) driver built on ``hdiutil``.

Mounting tries, in order:
  1. attach at a designated mount point inside the scratch directory (retried)
  2. attach and let hdiutil pick the mount point, reading it from -plist output
  3. attach with -verbose to tell a license prompt from a real I/O failure;
     a license prompt is answered by piping "Y" to hdiutil
The image is always detached in ``cleanup``; images a killed earlier run left
mounted in the scratch directory are detached before the next attach.
"""

from __future__ import annotations

import os
import plistlib
import shutil
from pathlib import Path
from typing import Optional

import psutil

from ...errors import MountError, preview
from ...retry import retry_call
from ..base import InstallerArtifact, InstalledTarget
from . import _utils
from .bundle import MacOSDriver

_SYSTEM_VOLUME_NAMES = {
    "macintosh hd",
    "macintosh hd - data",
    "data",
    "recovery",
    "preboot",
    "vm",
    "update",
    "xarts",
    "iscpreboot",
    "hardware",
}

_LICENSE_PHRASES = (
    "license agreement",
    "software license",
    "agree to the terms",
    "do you agree",
    "[y/n]",
)


def is_system_volume(mount_point: str) -> bool:
    name = Path(mount_point).name.lower()
    if not name or mount_point == "/":
        return True
    return name in _SYSTEM_VOLUME_NAMES or name.startswith("com.apple.")


def mentions_license(output: str) -> bool:
    lowered = output.lower()
    return any(phrase in lowered for phrase in _LICENSE_PHRASES)


def parse_attach_output(output: str) -> list[str]:
    """Return the mount points hdiutil reported, plist or tab-separated text.

    A license prompt may precede the plist, so parsing starts at ``<?xml``.
    """
    mounts: list[str] = []
    start = output.find("<?xml")
    if start != -1:
        try:
            obj = plistlib.loads(output[start:].encode("utf-8"))
        except Exception:  # noqa: BLE001
            obj = None
        if isinstance(obj, dict):
            for ent in obj.get("system-entities") or []:
                if isinstance(ent, dict):
                    mp = ent.get("mount-point")
                    if isinstance(mp, str) and mp:
                        mounts.append(mp)
        if mounts:
            return [m for m in mounts if not is_system_volume(m)]

    # Text form: /dev/disk4s1 <tab> Apple_HFS <tab> /Volumes/Name
    for line in output.splitlines():
        fields = [f.strip() for f in line.split("\t") if f.strip()]
        if len(fields) >= 2 and fields[-1].startswith("/"):
            mounts.append(fields[-1])
    return [m for m in mounts if not is_system_volume(m)]


class DiskImageDriver(MacOSDriver):
    name = "macos.disk-image"

    volumes_root = Path("/Volumes")

    def __init__(self, config, entry):
        super().__init__(config, entry)
        self.mount_point: Optional[Path] = None
        self._attached = False

    # ── mount ─────────────────────────────────────────────────────────────────

    def open(self, artifact: InstallerArtifact) -> Path:
        dmg = artifact.local_path
        if not dmg.is_file():
            raise MountError(f"disk image not found: {dmg}")
        if dmg.stat().st_size == 0:
            raise MountError(f"disk image is empty: {dmg}")
        self.mount_point = self._mount(dmg)
        return self.mount_point

    def _attach(self, dmg: Path, *extra: str, input_text: str | None = None) -> _utils.CommandResult:
        cmd = ["hdiutil", "attach", str(dmg), "-nobrowse", "-noautoopen", *extra]
        return _utils.run(cmd, timeout=600, input_text=input_text)

    def _mount(self, dmg: Path) -> Path:
        designated = self.config.scratch_dir / "mnt"
        self._detach_stale_mounts()
        shutil.rmtree(designated, ignore_errors=True)
        designated.mkdir(parents=True, exist_ok=True)
        before = self._mounted_volumes()
        errors: list[str] = []

        first = retry_call(
            lambda: self._attach(dmg, "-mountpoint", str(designated), "-quiet"),
            attempts=max(1, self.config.mount_attempts),
            delay=self.config.mount_retry_delay,
            accept=lambda r: r.ok,
            sleep=self.sleep,
        )
        if first.ok:
            self._attached = True
            return designated
        errors.append(first.stderr)

        second = self._attach(dmg, "-plist")
        if second.ok:
            return self._resolve(second.stdout, before)
        errors.append(second.stderr)

        verbose = self._attach(dmg, "-verbose")
        if verbose.ok:
            return self._resolve(verbose.stdout, before)
        errors.append(verbose.stderr)

        if mentions_license(verbose.output) or mentions_license(second.output):
            print("  [install] license agreement detected, accepting...", flush=True)
            accepted = self._attach(dmg, "-plist", input_text="Y\n")
            if accepted.ok:
                return self._resolve(accepted.stdout, before)
            errors.append(accepted.stderr)

        reason = next((preview(e) for e in errors if e and e.strip()), "")
        raise MountError(
            f"failed to mount {dmg.name}: {reason or 'unknown error (check DMG file integrity)'}"
        )

    def _resolve(self, output: str, before: set[str]) -> Path:
        """Work out where the image landed, never picking a system volume."""
        self._attached = True
        reported = parse_attach_output(output)
        if reported:
            self.mount_point = Path(reported[0])
            return self.mount_point

        appeared = sorted(
            m for m in self._mounted_volumes() - before if not is_system_volume(m)
        )
        if appeared:
            self.mount_point = Path(appeared[0])
            return self.mount_point

        latest = self._latest_volume()
        if latest is not None:
            self.mount_point = latest
            return latest
        raise MountError("disk image attached but its mount point could not be determined")

    @staticmethod
    def _mounts_under(root: Path) -> set[str]:
        # The mount table reports resolved paths (/tmp is /private/tmp on macOS).
        prefixes = tuple({str(p).rstrip(os.sep) + os.sep for p in (root, root.resolve())})
        try:
            parts = psutil.disk_partitions(all=True)
        except Exception:  # noqa: BLE001
            return set()
        return {p.mountpoint for p in parts if p.mountpoint.startswith(prefixes)}

    def _mounted_volumes(self) -> set[str]:
        return self._mounts_under(self.volumes_root)

    def _detach_stale_mounts(self) -> None:
        """Detach images a killed earlier run left mounted in the scratch directory."""
        for mp in sorted(self._mounts_under(self.config.scratch_dir)):
            print(f"  [install] detaching stale mount {mp}", flush=True)
            self._detach(mp)

    def _latest_volume(self) -> Optional[Path]:
        latest: Optional[Path] = None
        latest_mtime = 0.0
        try:
            candidates = list(self.volumes_root.iterdir())
        except OSError:
            return None
        for vol in candidates:
            if is_system_volume(str(vol)) or not vol.is_dir():
                continue
            mtime = vol.stat().st_mtime
            if mtime > latest_mtime:
                latest, latest_mtime = vol, mtime
        return latest

    # ── locate / teardown ─────────────────────────────────────────────────────

    def locate_app(self, root: Path) -> InstalledTarget:
        return self.install_from_tree(root)

    def cleanup(self) -> None:
        if not self._attached or self.mount_point is None:
            return
        self._detach(str(self.mount_point))
        self._attached = False

    def _detach(self, mp: str) -> None:
        result = _utils.run(["hdiutil", "detach", mp, "-quiet"], timeout=120)
        if not result.ok:
            result = _utils.run(["hdiutil", "detach", mp, "-quiet", "-force"], timeout=120)
        if not result.ok:
            print(f"  [warn] could not detach {mp}: {preview(result.stderr)}", flush=True)
