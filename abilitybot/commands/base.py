"""Base classes for the ability framework.

Defines the abstractions for declaring and registering abilities.
Abilities are grouped into classes that extend BaseAbilityHandler,
then registered with a HandlerRegistry that maps ability names to
immutable Ability descriptors and collects their reply rules.

Key classes:
    Ability: Immutable, validated descriptor of a named command.
    ReplyRule: Conditional action that consumes an update before
        command resolution.
    BotContext: Dependency container shared by all handlers.
    BaseAbilityHandler: ABC that ability groups must implement.
    HandlerRegistry: Maps ability names to Ability descriptors.

Constants:
    DEFAULT: Reserved name of the ability that receives free text.
    BUILTIN_ABILITIES: Reserved names registered by CoreAbilities.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

import structlog

from ..exceptions import DuplicateAbilityName, InvalidAbilityError
from ..flags import Flag
from ..models import MessageContext
from ..security import Locality, Privacy
from ..updates import Update

if TYPE_CHECKING:
    from ..backup import BackupCoordinator
    from ..config import Config
    from ..security import AccessModel
    from ..sender import MessageSender
    from ..store import Store

logger = structlog.get_logger("abilitybot.commands")

DEFAULT = "default"
COMMANDS = "commands"
CLAIM = "claim"
BAN = "ban"
UNBAN = "unban"
PROMOTE = "promote"
DEMOTE = "demote"
BACKUP = "backup"
RECOVER = "recover"
REPORT = "report"

BUILTIN_ABILITIES = frozenset({
    COMMANDS, CLAIM, BAN, UNBAN, PROMOTE, DEMOTE, BACKUP, RECOVER, REPORT,
})

# Action signature: (MessageContext) -> None, sync or async
Action = Callable[[MessageContext], Any]
# Reply action signature: (Update) -> None, sync or async
ReplyAction = Callable[[Update], Any]


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """Call ``func`` and await the result if it is awaitable."""
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True)
class ReplyRule:
    """An action guarded by update conditions.

    All conditions must hold for the rule to fire. The first
    matching rule consumes the update; no command dispatch follows.
    """

    action: ReplyAction
    conditions: Tuple[Flag, ...] = ()

    def __post_init__(self):
        if not callable(self.action):
            raise InvalidAbilityError("Reply action must be callable")
        object.__setattr__(self, "conditions", tuple(self.conditions))

    def is_ok_for(self, update: Update) -> bool:
        return all(condition(update) for condition in self.conditions)

    async def act_on(self, update: Update) -> None:
        await call_maybe_async(self.action, update)


@dataclass(frozen=True)
class Ability:
    """Immutable descriptor of a named, access-controlled command.

    Attributes:
        name: Alphanumeric token, unique across the registry.
        action: Called with the MessageContext once all gates pass.
        locality: Chat kinds the ability may run in.
        privacy: Minimum privacy level of the caller.
        arity: Exact argument count required; 0 accepts any count.
        info: Short help shown by /commands (hidden when None).
        flags: Update predicates that must all hold.
        post_action: Run after ``action`` completes (e.g. commit).
        replies: Reply rules contributed to the registry.

    Raises:
        InvalidAbilityError: If any field is invalid.
    """

    name: str
    action: Action
    locality: Locality
    privacy: Privacy
    arity: int = 0
    info: Optional[str] = None
    flags: Tuple[Flag, ...] = ()
    post_action: Optional[Action] = None
    replies: Tuple[ReplyRule, ...] = field(default=(), compare=False)

    def __post_init__(self):
        name = self.name
        if not isinstance(name, str) or not name.strip():
            raise InvalidAbilityError("Ability name cannot be empty", ability_name=name)
        if any(ch.isspace() for ch in name):
            raise InvalidAbilityError(
                "Ability name cannot contain spaces", ability_name=name
            )
        if not name.isalnum():
            raise InvalidAbilityError(
                "Ability name can only be alpha-numeric", ability_name=name
            )
        if not isinstance(self.locality, Locality):
            raise InvalidAbilityError(
                "Please specify a valid locality setting", ability_name=name
            )
        if not isinstance(self.privacy, Privacy):
            raise InvalidAbilityError(
                "Please specify a valid privacy setting", ability_name=name
            )
        if not isinstance(self.arity, int) or isinstance(self.arity, bool) or self.arity < 0:
            raise InvalidAbilityError(
                "Arity cannot be negative; use 0 to accept any number of arguments",
                ability_name=name,
            )
        if not callable(self.action):
            raise InvalidAbilityError("Ability action must be callable", ability_name=name)
        if self.post_action is not None and not callable(self.post_action):
            raise InvalidAbilityError("Post action must be callable", ability_name=name)
        if self.post_action is None:
            logger.debug("ability_without_post_action", ability=name)

        object.__setattr__(self, "flags", tuple(self.flags))
        object.__setattr__(self, "replies", tuple(self.replies))


def commit_to(store: "Store") -> Action:
    """Build a post action that commits ``store``."""
    def _commit(ctx: MessageContext) -> None:
        store.commit()
    return _commit


@dataclass
class BotContext:
    """Dependency container for ability handlers.

    Provides typed access to shared services without coupling
    handlers to AbilityBot.
    """

    config: "Config"
    store: "Store"
    sender: "MessageSender"
    access: "AccessModel"
    registry: "HandlerRegistry"
    backup: "BackupCoordinator"


class BaseAbilityHandler(ABC):
    """Abstract base class for ability groups.

    Subclasses implement get_abilities() to return the Ability
    descriptors they contribute. Registration is explicit:
    the bot passes each handler to HandlerRegistry.register_handler().

    Args:
        ctx: Shared BotContext dependency container.
    """

    def __init__(self, ctx: BotContext):
        self.ctx = ctx

    @abstractmethod
    def get_abilities(self) -> List[Ability]:
        """Return the abilities this group registers."""
        ...


class HandlerRegistry:
    """Immutable-after-registration name -> Ability map plus reply rules.

    Reply rules are flattened from every registered ability in
    declaration order; that order is the tie-break when matching.
    """

    def __init__(self):
        self._abilities: Dict[str, Ability] = {}
        self._replies: List[ReplyRule] = []

    def register(self, abilities: Iterable[Ability]) -> "HandlerRegistry":
        """Register a batch of abilities.

        The batch is checked as a whole before anything is added, so
        a failed registration leaves the registry unchanged.

        Args:
            abilities: Ability descriptors to add.

        Returns:
            This registry, for chaining.

        Raises:
            DuplicateAbilityName: If a name is already taken (including
                reserved built-in names) or repeats within the batch.
        """
        batch = list(abilities)
        seen = set(self._abilities)
        for ability in batch:
            if ability.name in seen:
                logger.error(
                    "duplicate_ability_name",
                    ability=ability.name,
                    hint="ability names must be unique, including reserved names",
                )
                raise DuplicateAbilityName(ability.name)
            seen.add(ability.name)

        for ability in batch:
            self._abilities[ability.name] = ability
            self._replies.extend(ability.replies)

        logger.info(
            "abilities_registered",
            abilities=[a.name for a in batch],
            replies=sum(len(a.replies) for a in batch),
        )
        return self

    def register_handler(self, handler: BaseAbilityHandler) -> "HandlerRegistry":
        """Register every ability of a BaseAbilityHandler group."""
        return self.register(handler.get_abilities())

    def resolve_command(self, token: str) -> Optional[Ability]:
        """Exact, case-sensitive lookup. None means "no such ability"."""
        return self._abilities.get(token)

    def default_ability(self) -> Optional[Ability]:
        """The ability registered under DEFAULT, if any."""
        return self._abilities.get(DEFAULT)

    @property
    def abilities(self) -> Mapping[str, Ability]:
        return MappingProxyType(self._abilities)

    @property
    def replies(self) -> Sequence[ReplyRule]:
        return tuple(self._replies)

    @property
    def names(self) -> frozenset:
        """All registered ability names."""
        return frozenset(self._abilities)
