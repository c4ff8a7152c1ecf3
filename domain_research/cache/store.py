"""SQLite-based cache for research results, keyed by kind and normalized domain."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta

from domain_research.analysis.competitors import canonicalize_domain

logger = logging.getLogger(__name__)

KINDS = ("domain", "competitor")


class ResultCache:
    """Single-table SQLite cache; expiry is checked on read against a TTL."""

    def __init__(self, db_path: str = ".research_cache.db"):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None
        self._init_db()

    def _init_db(self) -> None:
        try:
            self.conn = sqlite3.connect(self.db_path, timeout=10)
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS research_cache (
                    cache_key TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    domain TEXT NOT NULL,
                    result_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
            """)
            self.conn.commit()
        except sqlite3.Error as e:
            logger.warning("Cache init failed: %s — running without cache", e)
            self.conn = None

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def get(self, kind: str, domain: str, max_age_days: int = 7, scope: str | None = None) -> dict | None:
        """Cached result dict, or None if missing, expired or unreadable."""
        if self.conn is None:
            return None
        key = cache_key(kind, domain, scope)
        try:
            row = self.conn.execute(
                "SELECT result_json, created_at FROM research_cache WHERE cache_key = ?",
                (key,),
            ).fetchone()
        except sqlite3.Error as e:
            logger.debug("Cache read error (%s): %s", key, e)
            return None
        if not row:
            return None
        if _is_expired(row[1], max_age_days):
            logger.debug("Cache entry %s expired", key)
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.debug("Cache entry %s is not valid JSON", key)
            return None

    def set(self, kind: str, domain: str, result: dict, scope: str | None = None) -> None:
        if self.conn is None:
            return
        key = cache_key(kind, domain, scope)
        try:
            self.conn.execute(
                "INSERT OR REPLACE INTO research_cache (cache_key, kind, domain, result_json, created_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (key, kind, _normalize(domain), json.dumps(result, default=str), datetime.now().isoformat()),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.debug("Cache write error (%s): %s", key, e)

    def clear(self, kind: str, domain: str, scope: str | None = None) -> None:
        if self.conn is None:
            return
        try:
            self.conn.execute(
                "DELETE FROM research_cache WHERE cache_key = ?",
                (cache_key(kind, domain, scope),),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.debug("Cache delete error: %s", e)

    def stats(self) -> dict:
        """Entry count and newest timestamp per kind."""
        if self.conn is None:
            return {}
        result = {}
        for kind in KINDS:
            try:
                count, newest = self.conn.execute(
                    "SELECT COUNT(*), MAX(created_at) FROM research_cache WHERE kind = ?",
                    (kind,),
                ).fetchone()
            except sqlite3.Error:
                count, newest = 0, None
            result[kind] = {"count": count, "newest": newest}
        return result


def cache_key(kind: str, domain: str, scope: str | None = None) -> str:
    """``kind:domain`` with an optional ``@scope`` (the client, for competitor results)."""
    if kind not in KINDS:
        raise ValueError(f"Unknown cache kind: {kind!r}")
    key = f"{kind}:{_normalize(domain)}"
    if scope:
        key += f"@{_normalize(scope)}"
    return key


def _normalize(domain: str) -> str:
    return canonicalize_domain(domain) or domain.strip().lower()


def _is_expired(created_at_str: str, max_age_days: int) -> bool:
    try:
        created = datetime.fromisoformat(created_at_str)
    except (TypeError, ValueError):
        return True
    return datetime.now() - created > timedelta(days=max_age_days)
