"""Abstract named-collection store.

A store holds durable, named collections (Python sets, lists and
dicts) created lazily on first access. Handles returned for a name
are live: every call with the same name returns the same object,
and mutations become durable on the next commit().

Key classes:
    Store: ABC implementing collection bookkeeping, introspection,
        and backup/restore with rollback on top of a backend-specific
        commit().
"""

import copy
import json
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Union

import structlog

from ..exceptions import CollectionKindError, StoreError, UnknownCollection
from . import codec
from .codec import KIND_LIST, KIND_MAP, KIND_SET, Collection

logger = structlog.get_logger("abilitybot.store")

_KIND_LABELS = {KIND_SET: "Set", KIND_LIST: "List", KIND_MAP: "Map"}


def group_key(name: str, chat_id: int) -> str:
    """Namespace a collection name by chat id (``"NAME-<chat_id>"``)."""
    return f"{name}-{chat_id}"


class Store(ABC):
    """Base class for named-collection stores.

    Subclasses implement commit() (and optionally close()); all
    collection handling lives here so every backend shares the same
    semantics, including restore_all()'s rollback guarantee.
    """

    def __init__(self):
        self._collections: Dict[str, Collection] = {}

    # --- Collection access ---

    def _get(self, name: str, kind: str, factory: Callable[[], Collection]) -> Collection:
        collection = self._collections.get(name)
        if collection is None:
            collection = factory()
            self._collections[name] = collection
            logger.debug("collection_created", collection=name, kind=kind)
        elif codec.kind_of(collection) != kind:
            raise CollectionKindError(name, expected=kind, actual=codec.kind_of(collection))
        return collection

    def get_set(self, name: str) -> set:
        return self._get(name, KIND_SET, set)

    def get_list(self, name: str) -> list:
        return self._get(name, KIND_LIST, list)

    def get_map(self, name: str) -> dict:
        return self._get(name, KIND_MAP, dict)

    def get_group_set(self, name: str, chat_id: int) -> set:
        return self.get_set(group_key(name, chat_id))

    def get_group_list(self, name: str, chat_id: int) -> list:
        return self.get_list(group_key(name, chat_id))

    def get_group_map(self, name: str, chat_id: int) -> dict:
        return self.get_map(group_key(name, chat_id))

    # --- Introspection ---

    def exists(self, name: str) -> bool:
        return name in self._collections

    def names(self) -> List[str]:
        return sorted(self._collections)

    def _require(self, name: str) -> Collection:
        if name not in self._collections:
            raise UnknownCollection(name)
        return self._collections[name]

    def describe(self, name: str) -> str:
        """Return a one-line ``"NAME - Kind - size"`` summary.

        Raises:
            UnknownCollection: If the collection was never created.
        """
        collection = self._require(name)
        label = _KIND_LABELS[codec.kind_of(collection)]
        return f"{name} - {label} - {len(collection)}"

    def summary(self) -> str:
        """Describe every collection, one per line, sorted by name."""
        return "\n".join(self.describe(name) for name in self.names())

    def info(self, name: str) -> str:
        """Return the JSON rendition of one collection's contents.

        Raises:
            UnknownCollection: If the collection was never created.
        """
        collection = self._require(name)
        return json.dumps(codec.encode_collection(collection)["items"], ensure_ascii=False)

    # --- Backup / restore ---

    def snapshot(self) -> Dict[str, Collection]:
        """Deep copy of every collection; never a live view."""
        return copy.deepcopy(self._collections)

    def backup_all(self) -> bytes:
        """Serialize the whole store to a backup document."""
        return codec.dumps(self.snapshot())

    def restore_all(self, data: Union[bytes, str]) -> bool:
        """Replace the store's contents with a backup document.

        A rollback snapshot is taken first. If the document cannot be
        decoded or applying it fails, the rollback snapshot is restored
        and committed instead, so the store is never left partially
        overwritten.

        Returns:
            True if the backup was applied, False if it was rejected.
        """
        rollback = self.snapshot()
        try:
            recovered = codec.loads(data)
            self._replace(recovered)
        except StoreError as e:
            logger.error(
                "restore_failed",
                error=str(e),
                error_type=type(e).__name__,
                preview=_preview(data),
            )
            self._replace(rollback)
            return False
        logger.info("restore_complete", collections=len(recovered))
        return True

    def _replace(self, collections: Dict[str, Collection]) -> None:
        """Clear everything, repopulate by kind, commit.

        Existing handles of a matching kind are refilled in place so
        references held by callers stay valid.
        """
        self._clear_contents()
        for name, source in collections.items():
            existing = self._collections.get(name)
            if existing is None or codec.kind_of(existing) != codec.kind_of(source):
                self._collections[name] = source
            elif isinstance(existing, set):
                existing.update(source)
            elif isinstance(existing, list):
                existing.extend(source)
            else:
                existing.update(source)
        self.commit()

    def _clear_contents(self) -> None:
        for collection in self._collections.values():
            collection.clear()

    def clear(self) -> None:
        """Empty every collection and commit. Names stay registered."""
        self._clear_contents()
        self.commit()

    # --- Lifecycle ---

    @abstractmethod
    def commit(self) -> None:
        """Make every pending mutation durable."""
        ...

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _preview(data: Union[bytes, str]) -> str:
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    return str(data)[:200]
