"""Serialized refresh worker for the usage monitor.

Every scan, periodic or manual, goes through one asyncio lock and one
single-thread executor, so scans never overlap and the snapshot is always
replaced by the newest completed scan. The periodic loop drops its tick
when a scan is already running; manual refreshes wait their turn.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import db
from aggregator import compute_snapshot
from collectors.account import detect_account
from collectors.oauth import RemoteUsageError, fetch_usage
from collectors.scanner import LogScanner, ScanError
from config import Settings
from models import AccountInfo, PlanLimits, PlanType, RemoteUsage, UsageSnapshot, UsageSummary

log = logging.getLogger(__name__)


class UsageMonitor:
    """Owns the scanner, the current snapshot and the remote utilization."""

    def __init__(
        self,
        scanner: LogScanner,
        *,
        db_path: Path | None = None,
        fetch_remote: Callable[[], Awaitable[RemoteUsage]] | None = None,
        detect: Callable[[], AccountInfo | None] | None = None,
        interval: float = 60.0,
        plan: PlanType | None = None,
    ) -> None:
        self.scanner = scanner
        self.db_path = db_path
        self.interval = interval
        self._fetch_remote = fetch_remote or fetch_usage
        self._detect = detect or detect_account
        self._plan = plan

        self.snapshot: UsageSnapshot | None = self._load(db.load_snapshot)
        self.remote_usage: RemoteUsage | None = self._load(db.load_remote)
        self.account: AccountInfo | None = None
        self.scan_error: str | None = None
        self.remote_error: str | None = None
        self.last_refreshed: str | None = None

        self._scan_lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="usage-scan")
        self._task: asyncio.Task[None] | None = None
        self._running = False

    # -- persistence ----------------------------------------------------------

    def _load(self, loader: Callable[[Path], Any]) -> Any:
        if self.db_path is None:
            return None
        try:
            return loader(self.db_path)
        except (sqlite3.Error, ValueError) as exc:
            log.warning("Could not load persisted state from %s: %s", self.db_path, exc)
            return None

    def _persist(self, saver: Callable[[Any, Path], None], value: Any) -> None:
        if self.db_path is None:
            return
        try:
            saver(value, self.db_path)
        except sqlite3.Error as exc:
            log.warning("Could not persist state to %s: %s", self.db_path, exc)

    # -- state ----------------------------------------------------------------

    @property
    def plan(self) -> PlanType:
        if self._plan is not None:
            return self._plan
        if self.account is not None:
            return self.account.plan
        return PlanType.API

    @property
    def scanning(self) -> bool:
        return self._scan_lock.locked()

    def summary(self) -> UsageSummary:
        plan = self.plan
        return UsageSummary(
            snapshot=self.snapshot,
            remote_usage=self.remote_usage,
            account=self.account,
            limits=PlanLimits(
                plan=plan,
                five_hour_limit=plan.five_hour_limit,
                weekly_limit=plan.weekly_limit,
            ),
            scan_error=self.scan_error,
            remote_error=self.remote_error,
            scanning=self.scanning,
            last_refreshed=self.last_refreshed,
        )

    # -- scans ----------------------------------------------------------------

    def _scan_and_fold(self, full: bool) -> UsageSnapshot:
        records = self.scanner.scan_full() if full else self.scanner.scan_incremental()
        return compute_snapshot(records)

    async def _run_scan(self, full: bool) -> UsageSnapshot | None:
        async with self._scan_lock:
            loop = asyncio.get_running_loop()
            try:
                snapshot = await loop.run_in_executor(self._executor, self._scan_and_fold, full)
            except ScanError as exc:
                self.scan_error = str(exc)
                log.warning("Scan failed, keeping previous snapshot: %s", exc)
                return self.snapshot

            self.snapshot = snapshot
            self.scan_error = None
            self.last_refreshed = datetime.now(timezone.utc).isoformat()
            self._persist(db.save_snapshot, snapshot)
            return snapshot

    async def rescan_full(self) -> UsageSnapshot | None:
        """Clear every cursor and rebuild the snapshot from all files."""
        return await self._run_scan(full=True)

    async def rescan_incremental(self) -> UsageSnapshot | None:
        """Read appended bytes only, then refold the whole record set."""
        return await self._run_scan(full=False)

    # -- remote ---------------------------------------------------------------

    async def refresh_remote(self) -> RemoteUsage | None:
        """Fetch live utilization; a failure keeps the last good value."""
        if not self.plan.is_subscription:
            return self.remote_usage
        try:
            usage = await self._fetch_remote()
        except RemoteUsageError as exc:
            self.remote_error = str(exc)
            log.warning("Remote usage fetch failed: %s", exc)
            return self.remote_usage

        self.remote_usage = usage
        self.remote_error = None
        self._persist(db.save_remote, usage)
        return usage

    # -- lifecycle ------------------------------------------------------------

    async def tick(self) -> bool:
        """One periodic step. Returns False when dropped for an in-flight scan."""
        if self._scan_lock.locked():
            log.debug("Scan already running, dropping periodic refresh")
            return False
        await self.rescan_incremental()
        await self.refresh_remote()
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.account = self._detect()
        await self.rescan_full()
        await self.refresh_remote()
        self._task = asyncio.create_task(self._refresh_loop(), name="usage-refresh")
        log.info("Usage monitor started (interval=%ss, plan=%s)", self.interval, self.plan.value)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        self._executor.shutdown(wait=False)
        log.info("Usage monitor stopped")

    async def _refresh_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception:
                log.exception("Periodic usage refresh failed")


def build_monitor(settings: Settings) -> UsageMonitor:
    scanner = LogScanner(settings.projects_dir, chunk_size=settings.chunk_size)
    fetch_remote = functools.partial(
        fetch_usage,
        credentials_path=settings.credentials_path,
        url=settings.usage_api_url,
        timeout=settings.remote_timeout_seconds,
    )
    detect = functools.partial(
        detect_account,
        config_path=settings.claude_config_path,
        backups_dir=settings.backups_dir,
    )
    return UsageMonitor(
        scanner,
        db_path=settings.db_path,
        fetch_remote=fetch_remote,
        detect=detect,
        interval=settings.refresh_interval_seconds,
        plan=PlanType(settings.plan) if settings.plan else None,
    )
