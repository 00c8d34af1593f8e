"""Replay protection: remembers accepted signatures until their dates go stale."""

from __future__ import annotations

import asyncio
import contextlib
import heapq
import sqlite3
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from apiauth.common.logging import get_logger
from apiauth.common.metrics import update_replay_cache_entries
from apiauth.common.settings import Settings

logger = get_logger(__name__)


class ReplayCacheFull(Exception):
    """The cache cannot record another signature without evicting a live one."""


class ReplayCache(Protocol):
    """
    Set of signatures already accepted, each held until its own deadline.

    ``expires_at`` is the POSIX time at which the signed request's date
    leaves the validity window; from then on the timestamp check rejects any
    copy, so the entry may be dropped. An entry is live while
    ``now < expires_at``.
    """

    def seen(self, signature: str, now: float) -> bool: ...

    def record(self, signature: str, expires_at: float, now: float) -> None: ...

    def check_and_record(self, signature: str, expires_at: float, now: float) -> bool: ...

    def purge_expired(self, now: float) -> int: ...

    def __len__(self) -> int: ...


class InMemoryReplayCache:
    """
    Process-local replay cache.

    Deadlines are kept in a min-heap so purging always drops every expired
    entry regardless of the order signatures arrived in. When
    ``max_entries`` live signatures are held the cache refuses new ones
    instead of evicting.
    """

    def __init__(self, max_entries: int | None = None) -> None:
        self._max_entries = max_entries
        self._entries: dict[str, float] = {}
        self._deadlines: list[tuple[float, str]] = []
        self._lock = threading.Lock()

    def _purge(self, now: float) -> int:
        removed = 0
        while self._deadlines and self._deadlines[0][0] <= now:
            expires_at, signature = heapq.heappop(self._deadlines)
            # Skip heap nodes superseded by a later deadline for the same signature
            if self._entries.get(signature) == expires_at:
                del self._entries[signature]
                removed += 1
        return removed

    def _insert(self, signature: str, expires_at: float) -> None:
        current = self._entries.get(signature)
        if current is None:
            if self._max_entries is not None and len(self._entries) >= self._max_entries:
                raise ReplayCacheFull(
                    f"Replay cache holds {len(self._entries)} live signatures (max {self._max_entries})"
                )
        elif current >= expires_at:
            return
        self._entries[signature] = expires_at
        heapq.heappush(self._deadlines, (expires_at, signature))

    def seen(self, signature: str, now: float) -> bool:
        with self._lock:
            self._purge(now)
            return signature in self._entries

    def record(self, signature: str, expires_at: float, now: float) -> None:
        with self._lock:
            self._purge(now)
            if expires_at > now:
                self._insert(signature, expires_at)

    def check_and_record(self, signature: str, expires_at: float, now: float) -> bool:
        """
        Record a signature unless it is already present.

        Returns:
            True if the signature was fresh and is now recorded, False on replay

        Raises:
            ReplayCacheFull: If ``max_entries`` live signatures are held
        """
        with self._lock:
            self._purge(now)
            if signature in self._entries:
                return False
            self._insert(signature, expires_at)
            return True

    def purge_expired(self, now: float) -> int:
        with self._lock:
            return self._purge(now)

    def __len__(self) -> int:
        return len(self._entries)


class SqliteReplayCache:
    """SQLite replay cache shared by several worker processes on one host."""

    def __init__(self, path: str) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._path, check_same_thread=False, timeout=5.0)
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS replay_deadlines ("
            "signature TEXT PRIMARY KEY,"
            "expires_at REAL NOT NULL"
            ")"
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_expires_at ON replay_deadlines (expires_at)"
        )
        self._conn.commit()

    def _cleanup(self, now: float) -> int:
        cursor = self._conn.execute(
            "DELETE FROM replay_deadlines WHERE expires_at <= ?",
            (now,),
        )
        self._conn.commit()
        return cursor.rowcount

    def seen(self, signature: str, now: float) -> bool:
        with self._lock:
            self._cleanup(now)
            row = self._conn.execute(
                "SELECT 1 FROM replay_deadlines WHERE signature = ?",
                (signature,),
            ).fetchone()
            return row is not None

    def record(self, signature: str, expires_at: float, now: float) -> None:
        with self._lock:
            self._cleanup(now)
            if expires_at <= now:
                return
            self._conn.execute(
                "INSERT INTO replay_deadlines (signature, expires_at) VALUES (?, ?) "
                "ON CONFLICT(signature) DO UPDATE SET expires_at = MAX(expires_at, excluded.expires_at)",
                (signature, expires_at),
            )
            self._conn.commit()

    def check_and_record(self, signature: str, expires_at: float, now: float) -> bool:
        with self._lock:
            self._cleanup(now)
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO replay_deadlines (signature, expires_at) VALUES (?, ?)",
                (signature, expires_at),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def purge_expired(self, now: float) -> int:
        with self._lock:
            return self._cleanup(now)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __len__(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM replay_deadlines").fetchone()
            return int(row[0])


def create_replay_cache(settings: Settings) -> ReplayCache:
    """Create the replay cache backend selected in settings."""
    if settings.replay_cache_storage == "sqlite":
        logger.info("Using SQLite replay cache", path=settings.replay_cache_sqlite_path)
        return SqliteReplayCache(settings.replay_cache_sqlite_path)
    return InMemoryReplayCache(max_entries=settings.replay_cache_max_entries)


class ReplayCacheSweeper:
    """Background task that purges expired signatures periodically."""

    def __init__(
        self,
        cache: ReplayCache,
        interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._interval = interval
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> int:
        """Purge once and publish the cache size."""
        removed = self._cache.purge_expired(self._clock())
        update_replay_cache_entries(len(self._cache))
        if removed:
            logger.debug("Purged expired signatures", count=removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.sweep()
            except Exception as exc:
                logger.error("Replay cache sweep failed", error=str(exc))

    def start(self) -> None:
        if self._interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
