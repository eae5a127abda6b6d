"""SQLite-backed store.

Collections live in memory as ordinary Python objects; commit()
writes every collection to a single table in one transaction, so
a commit is the only durability boundary. Opening the store loads
all rows back.
"""

import json
import sqlite3
import threading
from pathlib import Path
from typing import Optional

import structlog

from ..exceptions import ErrorCategory, SnapshotError, StoreError
from . import codec
from .base import Store

logger = structlog.get_logger("abilitybot.store")


class SQLiteStore(Store):
    """File-backed store using one ``collections`` table.

    Args:
        db_path: Path of the database file. Parent directories are
            created if missing.

    Raises:
        StoreError: If the file cannot be opened or holds rows that
            cannot be decoded.
    """

    def __init__(self, db_path: Path):
        super().__init__()
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._open()

    def _open(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS collections (
                    name TEXT PRIMARY KEY,
                    kind TEXT NOT NULL CHECK(kind IN ('set', 'list', 'map')),
                    payload TEXT NOT NULL
                )
            """)
            self._conn.commit()
            rows = self._conn.execute(
                "SELECT name, kind, payload FROM collections"
            ).fetchall()
        except (OSError, sqlite3.Error) as e:
            raise StoreError(
                f"Cannot open store: {e}",
                category=ErrorCategory.INFRASTRUCTURE,
                module="store.sqlite",
                path=str(self.db_path),
            ) from e

        for row in rows:
            try:
                items = json.loads(row["payload"])
                self._collections[row["name"]] = codec.decode_collection(row["kind"], items)
            except (ValueError, SnapshotError) as e:
                raise StoreError(
                    f"Corrupt collection row: {e}",
                    collection=row["name"],
                    module="store.sqlite",
                ) from e

        logger.info(
            "store_opened",
            backend="sqlite",
            path=str(self.db_path),
            collections=len(self._collections),
        )

    def commit(self) -> None:
        """Write every collection in one transaction.

        Raises:
            StoreError: If the database rejects the write.
        """
        if self._conn is None:
            raise StoreError("Store is closed", module="store.sqlite")
        with self._lock:
            rows = [
                (name, codec.kind_of(collection), json.dumps(
                    codec.encode_collection(collection)["items"], ensure_ascii=False
                ))
                for name, collection in self._collections.items()
            ]
            try:
                with self._conn:
                    self._conn.executemany(
                        "INSERT OR REPLACE INTO collections (name, kind, payload) "
                        "VALUES (?, ?, ?)",
                        rows,
                    )
            except sqlite3.Error as e:
                raise StoreError(
                    f"Commit failed: {e}",
                    category=ErrorCategory.TRANSIENT,
                    module="store.sqlite",
                ) from e
        logger.debug("store_committed", backend="sqlite", collections=len(rows))

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("store_closed", path=str(self.db_path))
