"""Snapshot codec for the named-collection store.

Serializes a mapping of collection name -> set/list/dict into a
self-describing JSON document and back. The same per-collection
encoding is used for backups and for the SQLite rows.

Document layout::

    {
      "format": "abilitybot-backup",
      "version": 1,
      "collections": {
        "USERS":  {"kind": "set",  "items": [...]},
        "LOG":    {"kind": "list", "items": [...]},
        "PREFS":  {"kind": "map",  "items": [[key, value], ...]}
      }
    }

Values are JSON scalars, lists, tuples, dicts and EndUser records.
Anything that is not a JSON scalar or list is tagged with ``$type``.
Map entries are key/value pairs so non-string keys survive.
"""

import json
from typing import Any, Dict, List, Union

import structlog

from ..exceptions import SnapshotError
from ..models import EndUser

logger = structlog.get_logger("abilitybot.store")

FORMAT = "abilitybot-backup"
VERSION = 1

KIND_SET = "set"
KIND_LIST = "list"
KIND_MAP = "map"

Collection = Union[set, list, dict]

_TYPE_KEY = "$type"


def kind_of(collection: Any) -> str:
    """Return the kind tag of a live collection."""
    if isinstance(collection, set):
        return KIND_SET
    if isinstance(collection, list):
        return KIND_LIST
    if isinstance(collection, dict):
        return KIND_MAP
    raise SnapshotError(f"Unsupported collection type: {type(collection).__name__}")


def encode_value(value: Any) -> Any:
    """Encode one stored value into a JSON-compatible structure."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, EndUser):
        return {_TYPE_KEY: "end_user", **value.model_dump()}
    if isinstance(value, tuple):
        return {_TYPE_KEY: "tuple", "items": [encode_value(v) for v in value]}
    if isinstance(value, list):
        return [encode_value(v) for v in value]
    if isinstance(value, dict):
        return {
            _TYPE_KEY: "dict",
            "items": [[encode_value(k), encode_value(v)] for k, v in value.items()],
        }
    if isinstance(value, (set, frozenset)):
        return {_TYPE_KEY: "frozenset", "items": _sorted_items(value)}
    raise SnapshotError(f"Cannot serialize value of type {type(value).__name__}")


def decode_value(raw: Any) -> Any:
    """Inverse of encode_value.

    Plain JSON objects without a ``$type`` tag decode to dicts.
    """
    if isinstance(raw, list):
        return [decode_value(v) for v in raw]
    if not isinstance(raw, dict):
        return raw
    tag = raw.get(_TYPE_KEY)
    if tag is None:
        return {k: decode_value(v) for k, v in raw.items()}
    if tag == "end_user":
        fields = {k: v for k, v in raw.items() if k != _TYPE_KEY}
        try:
            return EndUser(**fields)
        except (TypeError, ValueError) as e:
            raise SnapshotError(f"Invalid end_user record: {e}") from e
    items = raw.get("items")
    if not isinstance(items, list):
        raise SnapshotError(f"Tagged value {tag!r} has no item list")
    if tag == "tuple":
        return tuple(decode_value(v) for v in items)
    if tag == "dict":
        return dict(_decode_pairs(items))
    if tag == "frozenset":
        return frozenset(_hashable(decode_value(v)) for v in items)
    raise SnapshotError(f"Unknown value type tag: {tag!r}")


def _hashable(value: Any) -> Any:
    try:
        hash(value)
    except TypeError as e:
        raise SnapshotError(f"Set member is not hashable: {value!r}") from e
    return value


def _decode_pairs(items: List[Any]):
    for pair in items:
        if not isinstance(pair, list) or len(pair) != 2:
            raise SnapshotError(f"Map entry is not a key/value pair: {pair!r}")
        yield _hashable(decode_value(pair[0])), decode_value(pair[1])


def _sorted_items(values) -> List[Any]:
    # Sets have no order; sort the encoded form so output is deterministic
    encoded = [encode_value(v) for v in values]
    return sorted(encoded, key=lambda v: json.dumps(v, sort_keys=True))


def encode_collection(collection: Collection) -> Dict[str, Any]:
    """Encode a live collection as ``{"kind": ..., "items": [...]}``."""
    kind = kind_of(collection)
    if kind == KIND_SET:
        items = _sorted_items(collection)
    elif kind == KIND_LIST:
        items = [encode_value(v) for v in collection]
    else:
        items = [[encode_value(k), encode_value(v)] for k, v in collection.items()]
    return {"kind": kind, "items": items}


def decode_collection(kind: str, items: Any) -> Collection:
    """Rebuild a collection of ``kind`` from its encoded item list.

    Raises:
        SnapshotError: If the kind is unknown or the items are malformed.
    """
    if not isinstance(items, list):
        raise SnapshotError(f"Items of a {kind} must be a list")
    if kind == KIND_SET:
        return {_hashable(decode_value(v)) for v in items}
    if kind == KIND_LIST:
        return [decode_value(v) for v in items]
    if kind == KIND_MAP:
        return dict(_decode_pairs(items))
    raise SnapshotError(f"Unknown collection kind: {kind!r}")


def dumps(collections: Dict[str, Collection]) -> bytes:
    """Serialize a name -> collection mapping into a backup document."""
    document = {
        "format": FORMAT,
        "version": VERSION,
        "collections": {
            name: encode_collection(collections[name])
            for name in sorted(collections)
        },
    }
    return json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")


def loads(data: Union[bytes, str]) -> Dict[str, Collection]:
    """Parse a backup document into a name -> collection mapping.

    The whole document is decoded before anything is returned, so
    a caller never sees a partially decoded snapshot. Unknown
    top-level keys are ignored. Entries of an unknown kind are
    logged and skipped.

    Raises:
        SnapshotError: If the document is not a readable backup,
            including one nested too deeply to decode.
    """
    try:
        return _load_document(data)
    except RecursionError as e:
        raise SnapshotError("Backup is nested too deeply") from e


def _load_document(data: Union[bytes, str]) -> Dict[str, Collection]:
    try:
        document = json.loads(data)
    except (TypeError, ValueError) as e:
        raise SnapshotError(f"Backup is not valid JSON: {e}") from e

    if not isinstance(document, dict) or document.get("format") != FORMAT:
        raise SnapshotError("Not an abilitybot backup document")

    version = document.get("version")
    if not isinstance(version, int) or version < 1:
        raise SnapshotError(f"Invalid backup version: {version!r}")
    if version > VERSION:
        raise SnapshotError(
            f"Backup version {version} is newer than supported version {VERSION}"
        )

    entries = document.get("collections")
    if not isinstance(entries, dict):
        raise SnapshotError("Backup has no collections mapping")

    collections: Dict[str, Collection] = {}
    for name, entry in entries.items():
        if not isinstance(entry, dict) or "kind" not in entry:
            raise SnapshotError(f"Malformed entry for collection {name!r}")
        kind = entry["kind"]
        if kind not in (KIND_SET, KIND_LIST, KIND_MAP):
            logger.error("snapshot_unknown_kind", collection=name, kind=str(kind))
            continue
        collections[name] = decode_collection(kind, entry.get("items"))
    return collections
