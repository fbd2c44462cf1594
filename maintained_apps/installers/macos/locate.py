"""Find application bundles in mounted images, extracted archives and /Applications.

Every search is a list of tiers tried in order; the tier that succeeded is
returned alongside the path so callers (and tests) can tell a strong match
from a heuristic last resort.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Optional

from ...errors import ArtifactLocationError

APP_SUFFIX = ".app"
PKG_SUFFIXES = (".pkg", ".mpkg")
SEARCH_SUBDIRS = ("Applications", "Contents", "Install", "Installers")

STRATEGY_WALK = "walk"
STRATEGY_NAME_GUESS = "name-guess"
STRATEGY_SUBDIRECTORY = "subdirectory"
STRATEGY_EXACT_NAME = "exact-name"
STRATEGY_KEYWORD = "keyword"
STRATEGY_MOST_RECENT = "most-recent"


# ── name handling ─────────────────────────────────────────────────────────────

def name_variants(app_name: str) -> list[str]:
    """Bundle stems an app called *app_name* is commonly shipped as."""
    variants = [
        app_name,
        app_name.replace(" ", ""),
        app_name.replace(" ", "_"),
        app_name.replace(" ", "-"),
    ]
    words = app_name.split()
    if len(words) > 1:
        variants.append(words[0])
    return _dedupe(variants)


def installed_name_variants(app_name: str) -> list[str]:
    """Like ``name_variants`` plus the vendor-suffix trims seen after pkg installs."""
    variants = name_variants(app_name)
    for suffix in (" Pro DC", " DC", " Pro"):
        if app_name.endswith(suffix):
            variants.append(app_name[: -len(suffix)])
    words = app_name.split()
    if len(words) > 2:
        variants.append(" ".join(words[:2]))
        variants.append("".join(words[:2]))
    return _dedupe(variants)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _normalize(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def match_score(bundle_stem: str, app_name: str) -> int:
    """Score how well a bundle name matches the catalog name (0 = no signal)."""
    stem = bundle_stem.lower()
    name = app_name.lower()
    if _normalize(stem) == _normalize(name):
        return 100
    words = name.split()
    score = sum(1 for word in words if len(word) > 2 and word in stem)
    if words and stem.startswith(words[0]):
        score += 2
    return score


# ── tree walking ──────────────────────────────────────────────────────────────

def _inside_bundle(path: Path, root: Path) -> bool:
    rel = path.relative_to(root)
    return any(part.endswith(APP_SUFFIX) for part in rel.parts[:-1])


def find_embedded_package(root: Path) -> Optional[Path]:
    """Return the first installer package below *root* that is not app-internal.

    A ``.pkg`` inside an ``.app`` is an embedded helper of that app, not the
    installer the image ships.
    """
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        here = Path(dirpath)
        # Bundle-style packages are directories; never descend into them.
        for name in list(dirnames):
            if name.lower().endswith(PKG_SUFFIXES):
                candidate = here / name
                if not _inside_bundle(candidate, root):
                    return candidate
                dirnames.remove(name)
        for name in sorted(filenames):
            if name.lower().endswith(PKG_SUFFIXES):
                candidate = here / name
                if not _inside_bundle(candidate, root):
                    return candidate
    return None


def walk_bundles(root: Path, max_depth: Optional[int] = None) -> list[Path]:
    """Return top-level ``.app`` directories below *root*.

    Bundles are not descended into, hidden directories and symlinks are
    skipped (disk images usually carry an ``Applications`` symlink).
    """
    bundles: list[Path] = []
    if not root.is_dir():
        return bundles
    base_depth = len(root.parts)
    for dirpath, dirnames, _ in os.walk(root):
        here = Path(dirpath)
        depth = len(here.parts) - base_depth
        keep = []
        for name in sorted(dirnames):
            full = here / name
            if name.startswith(".") or full.is_symlink():
                continue
            if name.endswith(APP_SUFFIX):
                bundles.append(full)
                continue
            keep.append(name)
        if max_depth is not None and depth + 1 >= max_depth:
            keep = []
        dirnames[:] = keep
    return bundles


def choose_bundle(bundles: list[Path], app_name: str) -> tuple[Path, list[Path]]:
    """Pick the primary bundle; the rest become suite members.

    Raises ArtifactLocationError when two or more candidates tie for the best
    score: guessing would record the wrong binary's signature.
    """
    if len(bundles) == 1:
        return bundles[0], []
    scored = [(match_score(b.name[: -len(APP_SUFFIX)], app_name), b) for b in bundles]
    best = max(score for score, _ in scored)
    top = [b for score, b in scored if score == best]
    if len(top) > 1:
        raise ArtifactLocationError(
            f"ambiguous application bundles for {app_name!r}",
            listing=[b.name for b in top],
        )
    primary = top[0]
    return primary, [b for b in bundles if b != primary]


def find_app_bundle(
    root: Path,
    app_name: str,
    max_depth: int = 4,
) -> Optional[tuple[Path, list[Path], str]]:
    """Locate the app bundle under *root*: (primary, suite members, strategy)."""
    bundles = walk_bundles(root, max_depth=max_depth)
    if bundles:
        primary, others = choose_bundle(bundles, app_name)
        return primary, others, STRATEGY_WALK

    for stem in name_variants(app_name):
        candidate = root / (stem + APP_SUFFIX)
        if candidate.is_dir():
            return candidate.resolve(), [], STRATEGY_NAME_GUESS

    for sub in SEARCH_SUBDIRS:
        bundles = walk_bundles(root / sub)
        if bundles:
            primary, others = choose_bundle(bundles, app_name)
            return primary, others, STRATEGY_SUBDIRECTORY

    return None


# ── installed apps ────────────────────────────────────────────────────────────

def find_installed_app(
    apps_dir: Path,
    app_name: str,
    recent_minutes: float = 5,
) -> tuple[Path, str]:
    """Find what a package installer put in *apps_dir*.

    Tiers: exact name variants, keyword/prefix scoring, then (last resort)
    the most recently modified bundle. Installers do not report where they
    put things, so the last tier is a heuristic and is labelled as such.
    """
    for stem in installed_name_variants(app_name):
        candidate = apps_dir / (stem + APP_SUFFIX)
        if candidate.exists():
            return candidate, STRATEGY_EXACT_NAME

    bundles = walk_bundles(apps_dir, max_depth=2)

    best: Optional[Path] = None
    best_score = 0
    for bundle in bundles:
        score = match_score(bundle.name[: -len(APP_SUFFIX)], app_name)
        if score > best_score:
            best, best_score = bundle, score
    if best is not None:
        return best, STRATEGY_KEYWORD

    cutoff = time.time() - recent_minutes * 60
    recent = []
    for bundle in bundles:
        try:
            mtime = bundle.stat().st_mtime
        except OSError:
            continue
        if mtime >= cutoff:
            recent.append((mtime, bundle))
    if recent:
        recent.sort(key=lambda item: item[0], reverse=True)
        return recent[0][1], STRATEGY_MOST_RECENT

    raise ArtifactLocationError(
        f"could not find installed app for {app_name!r} in {apps_dir}",
        listing=[b.name for b in bundles][:10],
    )
