"""Collector configuration.

The YAML file is looked up in this order, and the first one found is used:
the ``--config`` argument, ``$MAINTAINED_APPS_CONFIG``, then
``maintained-apps.yaml`` in the working directory. Whatever it sets is merged
over ``_DEFAULTS``; with no file the defaults are used as they are.

String values may reference environment variables Windows-style, e.g.
``scratch_dir: "%TEMP%\\fleet-app-install"``. ``%TEMP%``, ``%USERNAME%`` and
``%COMPUTERNAME%`` resolve on every OS; unknown names are left as written.

``build_collector_config`` then narrows the mapping to one platform as a typed
``CollectorConfig``, which is what the orchestrator, drivers and inspectors get.
"""

from __future__ import annotations

import copy
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..models.schema import Platform

_CONFIG_ENV = "MAINTAINED_APPS_CONFIG"
_LOCAL_CONFIG_NAME = "maintained-apps.yaml"

_DEFAULTS: dict[str, Any] = {
    "data_dir":             "data",
    "catalog_file":         "app_versions.json",
    "security_info_file":   "app_security_info.json",
    "version_history_file": "version_history.json",
    "macos": {
        "scratch_dir":      "/tmp/fleet-app-install",
        "applications_dir": "/Applications",
        "santactl":         "santactl",
    },
    "windows": {
        "scratch_dir":    "C:\\temp\\fleet-app-install",
        "allow_unsigned": False,
        "signtool_paths": [
            "C:\\Program Files (x86)\\Windows Kits\\10\\bin\\x64\\signtool.exe",
            "C:\\Program Files (x86)\\Windows Kits\\10\\bin\\10.0.22621.0\\x64\\signtool.exe",
            "C:\\Program Files\\Windows Kits\\10\\bin\\x64\\signtool.exe",
        ],
    },
    "download": {
        "timeout_seconds": 300,
        "chunk_size":      1024 * 1024,
        "user_agent":      "maintained-apps-tracker/1.0",
    },
    "install": {
        "settle_seconds":     3,
        "mount_attempts":     2,
        "mount_retry_delay":  2,
        "search_depth":       4,
        "recent_app_minutes": 5,
    },
    "inspect": {
        "attempts":      3,
        "delay_seconds": 5,
        "backoff":       1.5,
    },
    "checkpoint": {
        "git_commit": False,
        "every":      10,
    },
    "upstream": {
        "apps_json_url": (
            "https://raw.githubusercontent.com/fleetdm/fleet/main/"
            "ee/maintained-apps/outputs/apps.json"
        ),
        "app_base_url": (
            "https://raw.githubusercontent.com/fleetdm/fleet/main/"
            "ee/maintained-apps/outputs"
        ),
        "history_limit": 1000,
    },
}


_VAR_TOKEN = re.compile(r"%(\w+)%")


def _read_yaml(path: Path) -> dict:
    import yaml

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a YAML mapping at the top level, found {type(data).__name__}")
    return data


def _deep_merge(base: dict, override: dict) -> dict:
    """Copy of *base* with *override* applied; nested mappings merge key by key."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


def _placeholder_values() -> dict[str, str]:
    import getpass
    import socket
    import tempfile

    values = dict(os.environ)
    values.setdefault("TEMP", tempfile.gettempdir())
    values.setdefault("COMPUTERNAME", socket.gethostname().partition(".")[0].upper())
    if "USERNAME" not in values:
        try:
            values["USERNAME"] = getpass.getuser()
        except (KeyError, OSError):
            values["USERNAME"] = "unknown"
    return values


def _expand_strings(node: Any, values: Optional[dict[str, str]] = None) -> None:
    """Replace ``%NAME%`` tokens in every string nested in *node*, in place."""
    if values is None:
        values = _placeholder_values()
    if isinstance(node, dict):
        slots = list(node.keys())
    elif isinstance(node, list):
        slots = list(range(len(node)))
    else:
        return
    for slot in slots:
        item = node[slot]
        if isinstance(item, str):
            node[slot] = _VAR_TOKEN.sub(lambda m: values.get(m.group(1), m.group(0)), item)
        else:
            _expand_strings(item, values)


def _find_config_file(explicit_path: Optional[str]) -> Optional[Path]:
    if explicit_path is not None:
        path = Path(explicit_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return path

    from_env = os.environ.get(_CONFIG_ENV)
    if from_env:
        if Path(from_env).exists():
            return Path(from_env)
        print(f"  [config] Warning: {_CONFIG_ENV}={from_env} does not exist, ignoring", flush=True)

    local = Path.cwd() / _LOCAL_CONFIG_NAME
    return local if local.exists() else None


def load_config(explicit_path: Optional[str] = None) -> dict:
    """Return the merged, placeholder-expanded configuration mapping.

    Raises FileNotFoundError when *explicit_path* is missing and ValueError
    when the chosen file is not a YAML mapping.
    """
    source = _find_config_file(explicit_path)
    overrides = {}
    if source is not None:
        overrides = _read_yaml(source)
        print(f"  [config] Loaded from {source}", flush=True)
    config = _deep_merge(_DEFAULTS, overrides)
    _expand_strings(config)
    return config


@dataclass
class CollectorConfig:
    """Typed per-run settings injected into the collector components."""

    catalog_path: Path
    security_info_path: Path
    scratch_dir: Path
    applications_dir: Path = Path("/Applications")
    santactl: str = "santactl"
    signtool_paths: list[str] = field(default_factory=list)
    allow_unsigned: bool = False
    download_timeout: float = 300
    chunk_size: int = 1024 * 1024
    user_agent: str = "maintained-apps-tracker/1.0"
    settle_seconds: float = 3
    mount_attempts: int = 2
    mount_retry_delay: float = 2
    search_depth: int = 4
    recent_app_minutes: float = 5
    inspect_attempts: int = 3
    inspect_delay: float = 5
    inspect_backoff: float = 1.5
    git_commit: bool = False
    commit_every: int = 10


def build_collector_config(config: dict, platform: Platform) -> CollectorConfig:
    """Flatten a loaded mapping into a ``CollectorConfig`` for *platform*."""
    data_dir = Path(config["data_dir"])
    section = config["macos"] if platform is Platform.MACOS else config["windows"]
    install = config["install"]
    inspect = config["inspect"]
    download = config["download"]
    checkpoint = config["checkpoint"]

    return CollectorConfig(
        catalog_path=data_dir / config["catalog_file"],
        security_info_path=data_dir / config["security_info_file"],
        scratch_dir=Path(section["scratch_dir"]),
        applications_dir=Path(config["macos"]["applications_dir"]),
        santactl=config["macos"]["santactl"],
        signtool_paths=list(config["windows"]["signtool_paths"]),
        allow_unsigned=bool(config["windows"]["allow_unsigned"]),
        download_timeout=float(download["timeout_seconds"]),
        chunk_size=int(download["chunk_size"]),
        user_agent=str(download["user_agent"]),
        settle_seconds=float(install["settle_seconds"]),
        mount_attempts=int(install["mount_attempts"]),
        mount_retry_delay=float(install["mount_retry_delay"]),
        search_depth=int(install["search_depth"]),
        recent_app_minutes=float(install["recent_app_minutes"]),
        inspect_attempts=int(inspect["attempts"]),
        inspect_delay=float(inspect["delay_seconds"]),
        inspect_backoff=float(inspect["backoff"]),
        git_commit=bool(checkpoint["git_commit"]),
        commit_every=int(checkpoint["every"]),
    )
