"""Tests for the serialized refresh worker."""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import pytest

from collectors.oauth import HttpStatusError
from collectors.scanner import LogScanner
from models import AccountInfo, PlanType, RemoteUsage
from service import UsageMonitor


class FakeRemote:
    """Async stand-in for fetch_usage that replays queued outcomes."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> RemoteUsage:
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class ConcurrencyProbeScanner(LogScanner):
    """Records the highest number of scans seen running at once."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.active = 0
        self.max_active = 0
        self._probe_lock = threading.Lock()

    def scan_incremental(self):
        with self._probe_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.02)
        try:
            return super().scan_incremental()
        finally:
            with self._probe_lock:
                self.active -= 1


def _monitor(root: Path, **kwargs) -> UsageMonitor:
    kwargs.setdefault("fetch_remote", FakeRemote())
    kwargs.setdefault("detect", lambda: None)
    kwargs.setdefault("interval", 3600)
    return UsageMonitor(LogScanner(root), **kwargs)


# ── Scans ────────────────────────────────────────────────────────────────────


class TestScans:
    @pytest.mark.asyncio
    async def test_full_then_incremental(self, session_file, make_entry, append_entries) -> None:
        append_entries(session_file, [make_entry(msg_id="m1")])
        monitor = _monitor(session_file.parent.parent)
        try:
            snap = await monitor.rescan_full()
            assert snap is not None and snap.all_time.tokens == 1500

            append_entries(session_file, [make_entry(msg_id="m2"), make_entry(msg_id="m3")])
            snap = await monitor.rescan_incremental()
            assert snap is not None and snap.all_time.tokens == 4500
            assert monitor.snapshot is snap
            assert monitor.last_refreshed is not None
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_scan_failure_keeps_previous_snapshot(self, session_file, make_entry, append_entries) -> None:
        append_entries(session_file, [make_entry()])
        monitor = _monitor(session_file.parent.parent)
        try:
            good = await monitor.rescan_full()
            monitor.scanner.root = session_file
            assert await monitor.rescan_full() is good
            assert monitor.snapshot is good
            assert monitor.scan_error is not None
            assert "not a directory" in monitor.scan_error

            monitor.scanner.root = session_file.parent.parent
            await monitor.rescan_incremental()
            assert monitor.scan_error is None
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_overlapping_refreshes_are_serialized(self, session_file, make_entry, append_entries) -> None:
        append_entries(session_file, [make_entry()])
        scanner = ConcurrencyProbeScanner(session_file.parent.parent)
        monitor = UsageMonitor(scanner, fetch_remote=FakeRemote(), detect=lambda: None)
        try:
            await asyncio.gather(*(monitor.rescan_incremental() for _ in range(4)))
            assert scanner.max_active == 1
            assert monitor.snapshot is not None
            assert monitor.snapshot.record_count == 1
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_tick_dropped_while_scan_in_flight(self, projects_dir) -> None:
        remote = FakeRemote()
        monitor = _monitor(projects_dir, fetch_remote=remote, plan=PlanType.PRO)
        try:
            async with monitor._scan_lock:
                assert monitor.scanning is True
                assert await monitor.tick() is False
            assert remote.calls == 0
            assert monitor.snapshot is None
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_tick_scans_and_fetches(self, projects_dir) -> None:
        remote = FakeRemote(RemoteUsage(five_hour_utilization=0.5))
        monitor = _monitor(projects_dir, fetch_remote=remote, plan=PlanType.PRO)
        try:
            assert await monitor.tick() is True
            assert monitor.snapshot is not None
            assert remote.calls == 1
        finally:
            await monitor.stop()


# ── Remote usage ─────────────────────────────────────────────────────────────


class TestRemote:
    @pytest.mark.asyncio
    async def test_failure_keeps_last_good_value(self, projects_dir) -> None:
        good = RemoteUsage(five_hour_utilization=0.3, weekly_utilization=0.6)
        remote = FakeRemote(good, HttpStatusError(500, "oops"))
        monitor = _monitor(projects_dir, fetch_remote=remote, plan=PlanType.MAX5)
        try:
            assert await monitor.refresh_remote() == good
            assert await monitor.refresh_remote() == good
            assert monitor.remote_usage == good
            assert monitor.remote_error == "HTTP 500: oops"
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_api_plan_skips_fetch(self, projects_dir) -> None:
        remote = FakeRemote()
        monitor = _monitor(projects_dir, fetch_remote=remote)
        try:
            assert await monitor.refresh_remote() is None
            assert remote.calls == 0
        finally:
            await monitor.stop()


# ── Lifecycle and persistence ────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_detects_account_and_scans(self, session_file, make_entry, append_entries) -> None:
        append_entries(session_file, [make_entry()])
        account = AccountInfo(email="me@example.com", plan=PlanType.PRO)
        remote = FakeRemote(RemoteUsage(weekly_utilization=0.25))
        monitor = _monitor(session_file.parent.parent, detect=lambda: account, fetch_remote=remote)
        await monitor.start()
        try:
            summary = monitor.summary()
            assert summary.account == account
            assert summary.limits is not None
            assert (summary.limits.plan, summary.limits.five_hour_limit) == (PlanType.PRO, 45)
            assert summary.snapshot is not None and summary.snapshot.record_count == 1
            assert summary.remote_usage == RemoteUsage(weekly_utilization=0.25)
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_configured_plan_overrides_detected(self, projects_dir) -> None:
        account = AccountInfo(email="me@example.com", plan=PlanType.PRO)
        monitor = _monitor(projects_dir, detect=lambda: account, plan=PlanType.API)
        await monitor.start()
        try:
            assert monitor.plan is PlanType.API
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_last_snapshot_restored_from_db(self, tmp_path, session_file, make_entry, append_entries) -> None:
        append_entries(session_file, [make_entry()])
        db_path = tmp_path / "usage.db"
        first = _monitor(session_file.parent.parent, db_path=db_path)
        try:
            snap = await first.rescan_full()
        finally:
            await first.stop()

        second = _monitor(session_file.parent.parent, db_path=db_path)
        try:
            assert second.snapshot == snap
        finally:
            await second.stop()
