"""In-process store with no durability; used offline and in tests."""

import structlog

from .base import Store

logger = structlog.get_logger("abilitybot.store")


class MemoryStore(Store):
    """Store whose commit() only counts.

    Attributes:
        commits: Number of commit() calls so far.
    """

    def __init__(self):
        super().__init__()
        self.commits = 0

    def commit(self) -> None:
        self.commits += 1
        logger.debug("store_committed", backend="memory", commits=self.commits)
