"""Incremental reader for Claude Code session logs.

Each ``*.jsonl`` file under the projects directory is append-only. The
scanner remembers, per file, the byte offset just past the last complete
line it consumed and resumes from there on the next incremental pass. A
trailing line without its newline is left for a later pass.
"""

import logging
import os
import threading
from pathlib import Path

from collectors.decoder import decode_line
from collectors.dedup import DedupFilter
from models import UsageRecord

log = logging.getLogger(__name__)

CHUNK_SIZE = 65_536
LOG_SUFFIX = ".jsonl"


class ScanError(Exception):
    """Raised when the projects directory itself cannot be enumerated."""


class CursorStore:
    """Last confirmed line-boundary offset for each file."""

    def __init__(self) -> None:
        self._offsets: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._offsets)

    def get(self, path: Path) -> int:
        return self._offsets.get(str(path), 0)

    def set(self, path: Path, offset: int) -> None:
        self._offsets[str(path)] = offset

    def clear(self) -> None:
        self._offsets.clear()

    def as_dict(self) -> dict[str, int]:
        return dict(self._offsets)


class LogScanner:
    """Owns the cursor table and the retained record set.

    Both scan modes hold ``_lock`` for their whole run, so two callers can
    never interleave on the same cursors.
    """

    def __init__(self, root: Path, chunk_size: int = CHUNK_SIZE) -> None:
        self.root = Path(root)
        self.chunk_size = chunk_size
        self.cursors = CursorStore()
        self._dedup = DedupFilter()
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()

    @property
    def records(self) -> list[UsageRecord]:
        with self._lock:
            return list(self._records)

    def discover(self) -> list[Path]:
        """All non-hidden ``.jsonl`` files under the root, in sorted order."""
        try:
            if not self.root.exists():
                return []
            if not self.root.is_dir():
                raise ScanError(f"Projects path is not a directory: {self.root}")
        except OSError as exc:
            raise ScanError(f"Cannot access projects directory {self.root}: {exc.strerror}") from exc

        def on_error(exc: OSError) -> None:
            if exc.filename is not None and Path(exc.filename) == self.root:
                raise ScanError(f"Cannot list projects directory {self.root}: {exc.strerror}") from exc
            log.debug("Skipping unreadable directory %s: %s", exc.filename, exc)

        files: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(self.root, onerror=on_error):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for name in filenames:
                if name.startswith(".") or not name.endswith(LOG_SUFFIX):
                    continue
                fp = Path(dirpath) / name
                try:
                    if fp.is_file():
                        files.append(fp)
                except OSError as exc:
                    log.debug("Skipping unreadable file %s: %s", fp, exc)
        return sorted(files)

    def scan_full(self) -> list[UsageRecord]:
        """Forget every cursor and re-read all files from the start."""
        with self._lock:
            files = self.discover()
            self.cursors.clear()
            self._dedup.reset()
            records: list[UsageRecord] = []
            for fp in files:
                records.extend(self._read_from(fp, 0))
            self._records = records
            log.info("Full scan: %d files, %d records", len(files), len(records))
            return list(self._records)

    def scan_incremental(self) -> list[UsageRecord]:
        """Read only the bytes appended since the last pass."""
        with self._lock:
            files = self.discover()
            self._dedup.reset()
            added = 0
            for fp in files:
                offset = self.cursors.get(fp)
                if self._file_size(fp) <= offset:
                    continue
                new_records = self._read_from(fp, offset)
                self._records.extend(new_records)
                added += len(new_records)
            log.debug("Incremental scan: %d files, %d new records", len(files), added)
            return list(self._records)

    @staticmethod
    def _file_size(fp: Path) -> int:
        try:
            return fp.stat().st_size
        except OSError as exc:
            log.debug("Could not stat %s: %s", fp, exc)
            return 0

    def _read_from(self, fp: Path, offset: int) -> list[UsageRecord]:
        try:
            handle = open(fp, "rb")
        except OSError as exc:
            log.debug("Could not open %s: %s", fp, exc)
            return []

        records: list[UsageRecord] = []
        confirmed = offset
        remainder = b""
        with handle:
            try:
                if offset:
                    handle.seek(offset)
                while True:
                    chunk = handle.read(self.chunk_size)
                    if not chunk:
                        break
                    remainder += chunk
                    position = handle.tell()
                    start = 0
                    while True:
                        newline = remainder.find(b"\n", start)
                        if newline == -1:
                            break
                        decoded = decode_line(remainder[start:newline], fp)
                        if decoded is not None and self._dedup.admit(decoded.dedup_key):
                            records.append(decoded.record)
                        start = newline + 1
                        confirmed = position - (len(remainder) - start)
                    remainder = remainder[start:]
            except OSError as exc:
                log.debug("Read failed for %s at offset %d: %s", fp, confirmed, exc)

        self.cursors.set(fp, confirmed)
        return records
