from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List

from normalize import NormalizedOrder, enrich_teams, normalize_orders
from orderapi import OrderApiClient


logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "orders_snapshot"
DEFAULT_TTL_SECONDS = int(os.environ.get("SNAPSHOT_TTL_SECONDS", "300"))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_db(path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(path, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    db = get_db(path)
    db.executescript(
        """
        CREATE TABLE IF NOT EXISTS keyval (
            key TEXT PRIMARY KEY,
            value TEXT,
            stored_at TEXT,
            expiry_seconds REAL
        );

        CREATE TABLE IF NOT EXISTS cache_status (
            key TEXT PRIMARY KEY,
            value TEXT
        );
        """
    )
    db.commit()
    db.close()


def set_cache_status(path: str, **values: str) -> None:
    if not values:
        return
    db = get_db(path)
    db.execute("PRAGMA journal_mode=WAL")
    for key, value in values.items():
        db.execute(
            "INSERT OR REPLACE INTO cache_status (key, value) VALUES (?, ?)",
            (key, value),
        )
    db.commit()
    db.close()


def get_cache_status(path: str) -> dict[str, str]:
    db = get_db(path)
    rows = db.execute("SELECT key, value FROM cache_status").fetchall()
    db.close()
    return {row[0]: row[1] for row in rows}


def cache_set(path: str, key: str, value: Any, expiry_seconds: float, now: datetime | None = None) -> None:
    stored_at = (now or utc_now()).isoformat()
    db = get_db(path)
    db.execute(
        "INSERT OR REPLACE INTO keyval (key, value, stored_at, expiry_seconds) VALUES (?, ?, ?, ?)",
        (key, json.dumps(value, default=str), stored_at, expiry_seconds),
    )
    db.commit()
    db.close()


def cache_get(path: str, key: str, now: datetime | None = None) -> Any | None:
    """Stored value for ``key``, or None when missing or expired (expired rows are dropped)."""
    db = get_db(path)
    row = db.execute("SELECT value, stored_at, expiry_seconds FROM keyval WHERE key = ?", (key,)).fetchone()
    if row is None:
        db.close()
        return None
    stored_at = datetime.fromisoformat(row["stored_at"])
    if (now or utc_now()) - stored_at > timedelta(seconds=row["expiry_seconds"]):
        db.execute("DELETE FROM keyval WHERE key = ?", (key,))
        db.commit()
        db.close()
        return None
    db.close()
    try:
        return json.loads(row["value"])
    except (json.JSONDecodeError, TypeError):
        logger.warning("Discarding unreadable cache entry %s", key)
        return None


def cache_remove(path: str, key: str) -> None:
    db = get_db(path)
    db.execute("DELETE FROM keyval WHERE key = ?", (key,))
    db.commit()
    db.close()


@dataclass(frozen=True)
class OrderSnapshot:
    """One fetched generation of orders; replaced wholesale, never mutated."""

    raw_orders: tuple[Dict[str, Any], ...]
    orders: tuple[NormalizedOrder, ...]
    fetched_at: datetime
    master: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        raw_orders: List[Dict[str, Any]],
        master: Dict[str, List[Dict[str, Any]]] | None = None,
        fetched_at: datetime | None = None,
    ) -> "OrderSnapshot":
        master = master or {}
        orders = enrich_teams(normalize_orders(raw_orders), master.get("users", []))
        return cls(
            raw_orders=tuple(raw_orders),
            orders=tuple(orders),
            fetched_at=fetched_at or utc_now(),
            master=master,
        )

    @property
    def pages(self) -> List[Dict[str, Any]]:
        return self.master.get("pages", [])

    @property
    def teams(self) -> List[str]:
        teams = {str(page.get("Team") or "").strip() for page in self.pages}
        return sorted(team for team in teams if team)

    def is_fresh(self, ttl_seconds: float, now: datetime | None = None) -> bool:
        return (now or utc_now()) - self.fetched_at <= timedelta(seconds=ttl_seconds)


class SnapshotStore:
    """
    Read-through cache of the order snapshot with wall-clock expiry.

    Fetches are numbered as they start; a fetch that finishes after a newer
    one has already been installed is discarded, so the latest request wins.
    """

    def __init__(
        self,
        client: OrderApiClient,
        db_path: str | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.client = client
        self.db_path = db_path
        self.ttl_seconds = ttl_seconds
        self._now = now
        self._lock = threading.Lock()
        self._snapshot: OrderSnapshot | None = None
        self._installed_ticket = 0
        self._next_ticket = 0

    @property
    def current(self) -> OrderSnapshot | None:
        return self._snapshot

    def get(self, force: bool = False) -> OrderSnapshot:
        snapshot = self._snapshot
        if not force and snapshot is not None and snapshot.is_fresh(self.ttl_seconds, self._now()):
            logger.debug("Serving cached order snapshot from %s", snapshot.fetched_at.isoformat())
            return snapshot
        if not force and snapshot is None:
            persisted = self._load_persisted()
            if persisted is not None:
                return persisted
        logger.debug("Order snapshot missing or expired; fetching")
        return self.refresh()

    def refresh(self) -> OrderSnapshot:
        with self._lock:
            self._next_ticket += 1
            ticket = self._next_ticket

        raw_orders = self.client.fetch_all_orders()
        master = self.client.fetch_master_data()
        snapshot = OrderSnapshot.build(raw_orders, master, self._now())

        with self._lock:
            if ticket < self._installed_ticket:
                logger.info("Discarding order fetch #%d superseded by #%d", ticket, self._installed_ticket)
                return self._snapshot
            self._installed_ticket = ticket
            self._snapshot = snapshot
        self._persist(snapshot)
        return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None
        if self.db_path:
            cache_remove(self.db_path, SNAPSHOT_KEY)

    def _persist(self, snapshot: OrderSnapshot) -> None:
        if not self.db_path:
            return
        cache_set(
            self.db_path,
            SNAPSHOT_KEY,
            {
                "raw_orders": list(snapshot.raw_orders),
                "master": snapshot.master,
                "fetched_at": snapshot.fetched_at.isoformat(),
            },
            self.ttl_seconds,
            now=snapshot.fetched_at,
        )
        set_cache_status(
            self.db_path,
            orders_count=str(len(snapshot.orders)),
            snapshot_fetched_at=snapshot.fetched_at.isoformat(),
        )

    def _load_persisted(self) -> OrderSnapshot | None:
        if not self.db_path:
            return None
        payload = cache_get(self.db_path, SNAPSHOT_KEY, now=self._now())
        if not payload:
            return None
        try:
            snapshot = OrderSnapshot.build(
                payload["raw_orders"],
                payload.get("master") or {},
                datetime.fromisoformat(payload["fetched_at"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Persisted order snapshot is unreadable; fetching fresh")
            return None
        with self._lock:
            if self._snapshot is None:
                self._snapshot = snapshot
        logger.info("Loaded persisted order snapshot from %s", snapshot.fetched_at.isoformat())
        return self._snapshot
