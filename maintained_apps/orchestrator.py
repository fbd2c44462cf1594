"""Drive download -> install -> inspect -> uninstall for every stale catalog entry.

Entries are processed one at a time. After each entry the merged result set
is written to disk, so an interruption loses at most the entry in flight.
SIGINT/SIGTERM raise ``CollectionInterrupted`` out of whatever step is
running; the run loop catches it, saves what was collected and returns 0.
"""

from __future__ import annotations

import shutil
import signal
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .catalog.loader import load_catalog, stale_entries
from .config.collector_config import CollectorConfig
from .errors import (
    CatalogError,
    CollectionError,
    CollectionInterrupted,
    PersistError,
)
from .installers import driver_for
from .installers.base import InstalledTarget, InstallerDriver
from .installers.download import acquire as download_artifact
from .models.schema import CatalogEntry, Platform, SecurityRecord
from .report.checkpoint import commit_progress, should_commit
from .report.result_store import ResultStore, utc_now
from .signing import inspector_for
from .signing.base import SigningInspector


class EntryState(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    INSPECTING = "inspecting"
    UNINSTALLING = "uninstalling"
    RECORDED = "recorded"
    FAILED = "failed"


@dataclass
class EntryOutcome:
    entry: CatalogEntry
    state: EntryState = EntryState.PENDING
    record: Optional[SecurityRecord] = None
    error: str = ""
    # The step that was running when the entry failed.
    failed_at: Optional[EntryState] = None


class CollectionOrchestrator:
    def __init__(
        self,
        config: CollectorConfig,
        platform: Platform,
        *,
        acquire: Callable = download_artifact,
        driver_factory: Callable[..., InstallerDriver] = driver_for,
        inspector: Optional[SigningInspector] = None,
        clock: Callable[[], str] = utc_now,
        checkpoint: Callable = commit_progress,
    ):
        self.config = config
        self.platform = platform
        self.acquire = acquire
        self.driver_factory = driver_factory
        self.inspector = inspector or inspector_for(platform, config)
        self.clock = clock
        self.checkpoint = checkpoint

    # ── run loop ──────────────────────────────────────────────────────────────

    def run(self, test_mode: bool = False) -> int:
        """Process every stale entry. Returns the process exit code."""
        try:
            catalog = load_catalog(self.config.catalog_path)
            store = ResultStore(self.config.security_info_path, clock=self.clock)
        except (CatalogError, PersistError) as exc:
            print(f"[error] {exc}", file=sys.stderr, flush=True)
            return 1

        valid_slugs = catalog.slugs()
        todo = stale_entries(catalog, store.existing.by_slug(), self.platform)
        if test_mode and todo:
            print("[collect] test mode: processing only the first stale entry", flush=True)
            todo = todo[:1]
        total = len(todo)
        print(f"[collect] {total} {self.platform.value} app(s) need security info", flush=True)

        fresh: dict[str, SecurityRecord] = {}
        processed = 0
        self.reset_scratch()
        previous_handlers = self._install_signal_handlers()
        try:
            try:
                for index, entry in enumerate(todo, 1):
                    print(f"\n[{index}/{total}] Processing {entry.name or entry.slug} ({entry.version})...", flush=True)
                    outcome = self.process_entry(entry)
                    if outcome.record is not None:
                        fresh[entry.slug] = outcome.record
                        processed += 1
                    elif entry.slug in store.existing.by_slug():
                        print("  [warn] keeping the previous record", flush=True)

                    if store.persist(fresh.values(), valid_slugs):
                        print(f"  [saved] {self.config.security_info_path}", flush=True)
                    if outcome.record is not None and self.config.git_commit and should_commit(processed, self.config.commit_every):
                        self.checkpoint(self.config.security_info_path, self.platform, processed, total)
            except CollectionInterrupted as exc:
                print(f"\n[warn] interrupted by signal {exc.signum}, saving progress...", flush=True)
                store.persist(fresh.values(), valid_slugs)
                print(f"[collect] stopped after {processed}/{total} apps", flush=True)
                return 0
            finally:
                self._restore_signal_handlers(previous_handlers)
                self.reset_scratch()

            # Also drops records of apps that left the catalog when nothing was stale.
            store.persist(fresh.values(), valid_slugs)
        except PersistError as exc:
            print(f"[error] {exc}", file=sys.stderr, flush=True)
            return 1

        if self.config.git_commit and processed:
            self.checkpoint(self.config.security_info_path, self.platform, processed, total)
        print(f"\n[collect] Done. Processed {processed}/{total} apps", flush=True)
        return 0

    # ── one entry ─────────────────────────────────────────────────────────────

    def process_entry(self, entry: CatalogEntry) -> EntryOutcome:
        """Run one entry through the pipeline; entry-level errors never escape."""
        outcome = EntryOutcome(entry=entry)
        driver: Optional[InstallerDriver] = None
        target: Optional[InstalledTarget] = None
        try:
            outcome.state = EntryState.DOWNLOADING
            print(f"  [download] {entry.installer_url}", flush=True)
            artifact = self.acquire(
                entry.installer_url,
                entry.slug,
                self.config.scratch_dir,
                timeout=self.config.download_timeout,
                chunk_size=self.config.chunk_size,
                user_agent=self.config.user_agent,
            )

            outcome.state = EntryState.INSTALLING
            driver = self.driver_factory(artifact.kind, self.platform, self.config, entry)
            print(f"  [install] {artifact.local_path.name} via {driver.name}", flush=True)
            target = driver.install(artifact)
            print(f"  [install] located {target.path.name} ({target.strategy})", flush=True)

            outcome.state = EntryState.INSPECTING
            record = self.build_record(entry, target)

            outcome.state = EntryState.UNINSTALLING
            self._uninstall(driver, target)
            target = None
            outcome.record = record
            outcome.state = EntryState.RECORDED
            print(f"  [inspect] recorded {entry.slug}", flush=True)
        except CollectionError as exc:
            self._fail(outcome, str(exc))
        except Exception as exc:  # noqa: BLE001
            self._fail(outcome, f"unexpected {type(exc).__name__}: {exc}")
        finally:
            if driver is not None and target is not None:
                self._uninstall(driver, target)
            self.reset_scratch()
        return outcome

    def build_record(self, entry: CatalogEntry, target: InstalledTarget) -> SecurityRecord:
        now = self.clock()
        fields = self.inspector.inspect(target.path)
        subs = []
        for sub_path in target.sub_paths:
            stem = sub_path.stem
            try:
                sub_fields = self.inspector.inspect(sub_path)
            except CollectionError as exc:
                print(f"  [warn] suite member {sub_path.name} not recorded: {exc}", flush=True)
                continue
            subs.append(
                SecurityRecord(
                    slug=f"{entry.slug}/{stem}",
                    name=stem,
                    version=entry.version,
                    collected_at=now,
                    **sub_fields,
                )
            )
        return SecurityRecord(
            slug=entry.slug,
            name=entry.name,
            version=entry.version,
            collected_at=now,
            sub_entries=subs,
            **fields,
        )

    def _fail(self, outcome: EntryOutcome, message: str) -> None:
        outcome.failed_at = outcome.state
        outcome.state = EntryState.FAILED
        outcome.error = message
        print(f"  [warn] {outcome.failed_at.value} failed: {message}", flush=True)

    def _uninstall(self, driver: InstallerDriver, target: InstalledTarget) -> None:
        if target.materialized:
            print(f"  [uninstall] removing {target.path.name}", flush=True)
        driver.uninstall(target)

    def reset_scratch(self) -> None:
        scratch = self.config.scratch_dir
        shutil.rmtree(scratch, ignore_errors=True)
        scratch.mkdir(parents=True, exist_ok=True)

    # ── signals ───────────────────────────────────────────────────────────────

    @staticmethod
    def _handle_signal(signum, frame):
        raise CollectionInterrupted(signum)

    def _install_signal_handlers(self) -> dict:
        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                previous[signum] = signal.signal(signum, self._handle_signal)
            except (ValueError, OSError):
                # Not the main thread; interruption falls back to the default.
                pass
        return previous

    def _restore_signal_handlers(self, previous: dict) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
