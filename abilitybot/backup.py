"""Backup and recovery of the whole store.

Key classes:
    BackupCoordinator: Produces snapshots and restores them with at
        most one recovery in flight.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Union

import structlog

from .store import Store

logger = structlog.get_logger("abilitybot.backup")


class BackupCoordinator:
    """Serializes and restores the full store.

    Recovery rolls back to the pre-attempt state when the input is
    corrupt (see Store.restore_all). A second recovery requested
    while one is running is refused rather than queued.

    Args:
        store: The store to back up and restore.
        backup_filename: Name used when the snapshot is sent as a file.
    """

    def __init__(self, store: Store, backup_filename: str = "backup.json"):
        self.store = store
        self.backup_filename = backup_filename
        self._recovery_lock = threading.Lock()

    @property
    def recovery_in_progress(self) -> bool:
        return self._recovery_lock.locked()

    @contextmanager
    def recovery_slot(self) -> Iterator[bool]:
        """Hold the single recovery slot for the duration of the block.

        Yields True if the slot was taken, False if another recovery
        holds it. The slot may be held across awaits, so the recover
        reply keeps it while the backup file downloads.
        """
        if not self._recovery_lock.acquire(blocking=False):
            logger.warning("recovery_already_running")
            yield False
            return
        try:
            yield True
        finally:
            self._recovery_lock.release()

    def backup(self) -> bytes:
        """Return a deep-copied snapshot of every collection, serialized."""
        data = self.store.backup_all()
        logger.info(
            "backup_created",
            collections=len(self.store.names()),
            size_bytes=len(data),
        )
        return data

    def recover(self, data: Union[bytes, str]) -> bool:
        """Replace the store's contents with a serialized snapshot.

        Returns:
            True on success. False if the snapshot was corrupt (the
            store is left exactly as it was) or another recovery is
            already running.
        """
        with self.recovery_slot() as acquired:
            if not acquired:
                return False
            return self.restore(data)

    def restore(self, data: Union[bytes, str]) -> bool:
        """Apply a snapshot; the caller must hold the recovery slot."""
        logger.info("recovery_started", size_bytes=len(data))
        recovered = self.store.restore_all(data)
        if recovered:
            logger.info("recovery_succeeded", collections=len(self.store.names()))
        else:
            logger.warning("recovery_rolled_back")
        return recovered

    def info(self, name: str) -> str:
        """One-line size/kind summary of a collection.

        Raises:
            UnknownCollection: If the collection was never created.
        """
        return self.store.describe(name)

    def summary(self) -> str:
        return self.store.summary()
