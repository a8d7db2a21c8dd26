"""
Snapshot store: durable key -> JSON PageSnapshot mapping backed by SQLite
"""
import asyncio
import sqlite3
import json
import logging
from typing import Dict, List, Optional
from datetime import datetime, timedelta

from models import PageSnapshot
from utils import md5_hex

logger = logging.getLogger(__name__)


def snapshot_key(url: str) -> str:
    """Stable content address for a target URL (byte-identical URL, same key)"""
    return md5_hex(url)


class SnapshotStore:
    """Holds the most recent snapshot per URL key for change detection.

    A read-then-write for one key must happen under ``lock_for(key)`` so a
    concurrent reader cannot lose the update.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._locks: Dict[str, asyncio.Lock] = {}
        self.setup_database()

    def setup_database(self):
        """Initialize SQLite database with the snapshot table"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS snapshots (
                key TEXT PRIMARY KEY,
                url TEXT,
                value TEXT,
                updated_at TEXT
            )
        ''')

        conn.commit()
        conn.close()
        logger.info("Snapshot store initialized")

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: str) -> Optional[PageSnapshot]:
        """Return the stored snapshot, or None (also for unreadable/old-shaped records)"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT value FROM snapshots WHERE key = ?", (key,))
            row = cursor.fetchone()
        finally:
            conn.close()

        if not row:
            return None

        try:
            snapshot = PageSnapshot.from_dict(json.loads(row[0]))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Unreadable snapshot for key {key}: {e}")
            return None

        if snapshot is None:
            logger.warning(f"Snapshot for key {key} has an outdated shape, treating as missing")
        return snapshot

    def put(self, key: str, snapshot: PageSnapshot):
        """Store (or replace) the snapshot for a key"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        try:
            cursor.execute('''
                INSERT OR REPLACE INTO snapshots (key, url, value, updated_at)
                VALUES (?, ?, ?, ?)
            ''', (
                key,
                snapshot.url,
                json.dumps(snapshot.to_dict()),
                datetime.now().isoformat()
            ))
            conn.commit()
            logger.debug(f"Saved snapshot for: {snapshot.url}")
        finally:
            conn.close()

    def delete(self, key: str) -> bool:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        try:
            cursor.execute("DELETE FROM snapshots WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def keys(self) -> List[str]:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT key FROM snapshots ORDER BY key")
            return [row[0] for row in cursor.fetchall()]
        finally:
            conn.close()

    def cleanup_old_snapshots(self, days_to_keep: int = 30) -> int:
        """Remove snapshots not refreshed within ``days_to_keep`` days"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        try:
            cutoff_date = (datetime.now() - timedelta(days=days_to_keep)).isoformat()
            cursor.execute("DELETE FROM snapshots WHERE updated_at < ?", (cutoff_date,))
            conn.commit()
            logger.info(f"Cleaned up {cursor.rowcount} snapshots older than {days_to_keep} days")
            return cursor.rowcount
        finally:
            conn.close()
