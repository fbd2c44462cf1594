"""Pick the main executable out of an extracted Windows installer."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from ...errors import ArtifactLocationError

# Executables that ship next to the real app but are never the app.
_HELPER_HINTS = ("unins", "uninstall", "update", "crash", "helper", "elevate", "setup")


def _normalize(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def executable_score(exe_name: str, app_name: str) -> int:
    stem = _normalize(Path(exe_name).stem)
    name = _normalize(app_name)
    score = 0
    if stem and stem == name:
        score = 100
    elif stem and name and (name in stem or stem in name):
        score = 50
    else:
        score = sum(1 for word in app_name.lower().split() if len(word) > 2 and word in stem)
    if any(hint in stem for hint in _HELPER_HINTS):
        score -= 5
    return score


def find_executables(root: Path) -> list[Path]:
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            if name.lower().endswith(".exe"):
                found.append(Path(dirpath) / name)
    return found


def find_main_executable(root: Path, app_name: str) -> Optional[Path]:
    """Return the best-matching .exe below *root*, or None if there are none.

    Raises ArtifactLocationError when several executables tie for the best
    score and nothing in their names says which one is the app.
    """
    exes = find_executables(root)
    if not exes:
        return None
    if len(exes) == 1:
        return exes[0]
    scored = [(executable_score(exe.name, app_name), exe) for exe in exes]
    best = max(score for score, _ in scored)
    top = [exe for score, exe in scored if score == best]
    if len(top) > 1:
        raise ArtifactLocationError(
            f"ambiguous executables for {app_name!r}",
            listing=[str(exe.relative_to(root)) for exe in top][:10],
        )
    return top[0]
