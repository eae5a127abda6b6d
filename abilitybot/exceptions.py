"""Custom exception hierarchy for abilitybot.

Provides precise error classification across all subsystems, enabling
targeted error handling at startup and at the per-update boundary.

Configuration errors are fatal at startup. Update resolution errors are
fatal for a single update only; the host loop catches them per update.
Gate failures are never exceptions.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for retry decisions."""
    TRANSIENT = "transient"          # Worth retrying (network hiccup, busy database)
    PERMANENT = "permanent"          # Not worth retrying (bad input, corrupt snapshot)
    INFRASTRUCTURE = "infrastructure"  # Missing settings, env issues


class AbilityBotError(Exception):
    """Base exception for all abilitybot errors.

    All custom exceptions inherit from this, enabling broad catches
    when needed while still allowing precise handling per subsystem.

    Attributes:
        message: Human-readable error description.
        category: Error classification for retry/escalation decisions.
        module: Originating module name (e.g. "store.sqlite").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error is worth retrying."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Configuration exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(AbilityBotError):
    """Invalid or missing configuration.

    Defaults to INFRASTRUCTURE because config issues are environmental
    and won't resolve by retrying.
    """

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(
            message, category=category, module=module or "config", **context
        )


class InvalidAbilityError(ConfigurationError):
    """An ability descriptor failed validation (bad name, arity, action).

    Attributes:
        ability_name: The offending name, as given.
    """

    def __init__(
        self,
        message: str = "",
        *,
        ability_name: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.ability_name = ability_name
        super().__init__(message, module="commands", **context)


class DuplicateAbilityName(ConfigurationError):
    """Two abilities were registered under the same name.

    Attributes:
        ability_name: The clashing name.
    """

    def __init__(self, ability_name: str, **context: Any) -> None:
        self.ability_name = ability_name
        super().__init__(
            f"Duplicate ability name: {ability_name}",
            module="commands",
            **context,
        )


# ---------------------------------------------------------------------------
# Dispatch exceptions
# ---------------------------------------------------------------------------

class UpdateResolutionError(AbilityBotError):
    """The sender or chat of an update could not be determined.

    Fatal for the update being processed only.
    """

    def __init__(
        self,
        message: str = "",
        *,
        update_id: Optional[int] = None,
        **context: Any,
    ) -> None:
        self.update_id = update_id
        super().__init__(message, module="updates", update_id=update_id, **context)


# ---------------------------------------------------------------------------
# Store exceptions
# ---------------------------------------------------------------------------

class StoreError(AbilityBotError):
    """Error in the named-collection store.

    Attributes:
        collection: The collection involved (if known).
    """

    def __init__(
        self,
        message: str = "",
        *,
        collection: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.collection = collection
        super().__init__(
            message, category=category, module=module or "store", **context
        )


class UnknownCollection(StoreError):
    """A collection was queried by name before it was ever created."""

    def __init__(self, collection: str, **context: Any) -> None:
        super().__init__(
            f"Unknown collection: {collection}", collection=collection, **context
        )


class CollectionKindError(StoreError):
    """A collection was requested as a different kind than it was created."""

    def __init__(self, collection: str, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Collection {collection} is a {actual}, not a {expected}",
            collection=collection,
        )


class SnapshotError(StoreError):
    """A serialized snapshot could not be decoded."""

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message, module="store.codec", **context)


# ---------------------------------------------------------------------------
# Transport exceptions
# ---------------------------------------------------------------------------

class TransportError(AbilityBotError):
    """Error talking to the chat transport (Telegram Bot API).

    Defaults to TRANSIENT: network failures usually clear on their own.
    """

    def __init__(
        self,
        message: str = "",
        *,
        method: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.method = method
        super().__init__(
            message, category=category, module=module or "sender", **context
        )
