"""Command-line interface for maintained-apps-tracker."""

from __future__ import annotations

import argparse
import sys

from . import __version__


# ── argument parsing ──────────────────────────────────────────────────────────

def _add_config_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        metavar="PATH",
        default=None,
        help="YAML config file (default: $MAINTAINED_APPS_CONFIG or ./maintained-apps.yaml)",
    )


def _add_test_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--test",
        action="store_true",
        default=False,
        help="Process only the first stale catalog entry (smoke test)",
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="maintained-apps",
        description="Track maintained app versions and collect their code-signing info.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  maintained-apps track-versions\n"
            "  maintained-apps collect --platform macos --test\n"
            "  maintained-apps collect --config ci.yaml\n"
        ),
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"maintained-apps {__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    collect = sub.add_parser("collect", help="Collect security info for stale catalog entries")
    collect.add_argument(
        "--platform",
        choices=["auto", "macos", "windows"],
        default="auto",
        help="Which catalog entries to process (default: the host OS)",
    )
    _add_test_flag(collect)
    _add_config_flag(collect)

    track = sub.add_parser("track-versions", help="Refresh the catalog from upstream and log version changes")
    _add_config_flag(track)

    return parser.parse_args(argv)


def _host_platform():
    from .models.schema import Platform
    if sys.platform == "darwin":
        return Platform.MACOS
    if sys.platform == "win32":
        return Platform.WINDOWS
    return None


def _load(config_path):
    from .config.collector_config import load_config
    try:
        return load_config(config_path)
    except (OSError, ValueError) as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return None


# ── commands ──────────────────────────────────────────────────────────────────

def collect(platform_name: str = "auto", test_mode: bool = False, config_path=None) -> int:
    from .config.collector_config import build_collector_config
    from .models.schema import Platform
    from .orchestrator import CollectionOrchestrator

    if platform_name == "auto":
        platform = _host_platform()
        if platform is None:
            print(f"[error] unsupported host platform {sys.platform!r}; pass --platform", file=sys.stderr)
            return 1
    else:
        platform = Platform(platform_name)

    raw = _load(config_path)
    if raw is None:
        return 1
    config = build_collector_config(raw, platform)

    print(f"[maintained-apps] Collecting {platform.value} security info (v{__version__})", flush=True)
    return CollectionOrchestrator(config, platform).run(test_mode=test_mode)


def track(config_path=None) -> int:
    from .catalog.versions import track_versions
    from .errors import CatalogError, PersistError

    raw = _load(config_path)
    if raw is None:
        return 1
    print("[maintained-apps] Tracking app versions...", flush=True)
    try:
        track_versions(raw)
    except (CatalogError, PersistError) as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    return 0


def run(argv=None) -> int:
    args = parse_args(argv)
    if args.command == "collect":
        return collect(args.platform, args.test, args.config)
    return track(args.config)


# ── entry points ──────────────────────────────────────────────────────────────

def _parse_collector_args(prog: str, argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=prog, description="Collect app security info.")
    _add_test_flag(parser)
    _add_config_flag(parser)
    return parser.parse_args(argv)


def main() -> None:
    sys.exit(run())


def collect_macos(argv=None) -> None:
    args = _parse_collector_args("collect-security-info", argv)
    sys.exit(collect("macos", args.test, args.config))


def collect_windows(argv=None) -> None:
    args = _parse_collector_args("collect-security-info-windows", argv)
    sys.exit(collect("windows", args.test, args.config))


if __name__ == "__main__":
    main()
