"""Pattern Store: durable domain -> SitePattern mapping."""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from .models import SitePattern
from .urlnorm import canonical_domain

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS patterns (
    domain TEXT PRIMARY KEY,
    name TEXT,
    confidence REAL NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL,
    last_updated TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_patterns_last_updated ON patterns(last_updated);
"""


class PatternStore(ABC):
    """Read/write/delete access to learned patterns, keyed by canonical domain."""

    @abstractmethod
    def get(self, domain: str) -> Optional[SitePattern]:
        ...

    @abstractmethod
    def save(self, pattern: SitePattern) -> None:
        ...

    @abstractmethod
    def list(self) -> list[SitePattern]:
        ...

    @abstractmethod
    def delete(self, domain: str) -> None:
        ...

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _is_stale(pattern: SitePattern, max_age_days: Optional[int]) -> bool:
    if max_age_days is None:
        return False
    updated = pattern.last_updated
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - updated > timedelta(days=max_age_days)


class MemoryPatternStore(PatternStore):
    """Process-local store. Used by tests and one-off runs."""

    def __init__(self, max_age_days: Optional[int] = None):
        self.max_age_days = max_age_days
        self._patterns: dict[str, SitePattern] = {}
        self._lock = threading.Lock()

    def get(self, domain: str) -> Optional[SitePattern]:
        with self._lock:
            pattern = self._patterns.get(canonical_domain(domain))
        if pattern is None or _is_stale(pattern, self.max_age_days):
            return None
        return pattern.model_copy(deep=True)

    def save(self, pattern: SitePattern) -> None:
        key = canonical_domain(pattern.domain)
        with self._lock:
            self._patterns[key] = pattern.model_copy(deep=True, update={"domain": key})

    def list(self) -> list[SitePattern]:
        with self._lock:
            patterns = [p.model_copy(deep=True) for p in self._patterns.values()]
        return sorted(
            (p for p in patterns if not _is_stale(p, self.max_age_days)),
            key=lambda p: p.domain,
        )

    def delete(self, domain: str) -> None:
        with self._lock:
            self._patterns.pop(canonical_domain(domain), None)


class SQLitePatternStore(PatternStore):
    """SQLite-backed store. Upserts are last-write-wins per domain."""

    def __init__(self, db_path: Path, max_age_days: Optional[int] = 30):
        self.db_path = db_path
        self.max_age_days = max_age_days
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)

    def get(self, domain: str) -> Optional[SitePattern]:
        key = canonical_domain(domain)
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM patterns WHERE domain = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        pattern = self._decode(key, row["payload"])
        if pattern is None:
            return None
        if _is_stale(pattern, self.max_age_days):
            logger.info("Stored pattern for %s expired (last updated %s)", key, pattern.last_updated)
            return None
        return pattern

    def save(self, pattern: SitePattern) -> None:
        key = canonical_domain(pattern.domain)
        pattern = pattern.model_copy(update={"domain": key})
        with self._lock:
            self._conn.execute(
                """INSERT INTO patterns (domain, name, confidence, payload, created_at, last_updated)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(domain) DO UPDATE SET
                       name = excluded.name,
                       confidence = excluded.confidence,
                       payload = excluded.payload,
                       created_at = excluded.created_at,
                       last_updated = excluded.last_updated""",
                (
                    key, pattern.name, pattern.confidence, pattern.model_dump_json(),
                    pattern.created_at.isoformat(), pattern.last_updated.isoformat(),
                ),
            )
            self._conn.commit()
        logger.debug("Saved pattern for %s (confidence %.2f)", key, pattern.confidence)

    def list(self) -> list[SitePattern]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT domain, payload FROM patterns ORDER BY domain"
            ).fetchall()
        patterns = []
        for row in rows:
            pattern = self._decode(row["domain"], row["payload"])
            if pattern is not None and not _is_stale(pattern, self.max_age_days):
                patterns.append(pattern)
        return patterns

    def delete(self, domain: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM patterns WHERE domain = ?", (canonical_domain(domain),))
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _decode(domain: str, payload: str) -> Optional[SitePattern]:
        try:
            return SitePattern.model_validate_json(payload)
        except ValueError as exc:
            # A corrupt row is treated as a miss; the pattern is re-derivable.
            logger.warning("Unreadable stored pattern for %s: %s", domain, exc)
            return None
