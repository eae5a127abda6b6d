"""Per-update dispatch pipeline.

Every update runs through a fixed, ordered list of named stages.
Each stage receives the previous stage's value and returns either
``Pass(value)`` to continue or a ``Stop`` (``DROP`` or ``REPLIED``)
to end processing. Gate failures are silent: they are logged at
debug level and never raised.

Stage order:
    check_global_flags -> check_blacklist -> add_user -> filter_reply
    -> get_ability -> validate_ability -> check_message_flags
    -> check_privacy -> check_locality -> check_input -> get_context
    -> consume_update -> post_consumption

Exceptions raised by an ability's action or post action propagate
out of process(); the host loop isolates them per update.

Key classes:
    DispatchPipeline: Runs the stages for one update.
    DispatchResult: What happened to an update, and where.
"""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import structlog

from .commands.base import Ability, HandlerRegistry, call_maybe_async
from .flags import MESSAGE, Flag
from .models import EndUser, MessageContext
from .security import BLACKLIST, USERS, AccessModel
from .updates import Update, get_chat_id, get_user, is_user_message

if TYPE_CHECKING:
    from .store import Store

logger = structlog.get_logger("abilitybot.pipeline")


class Outcome(str, Enum):
    DISPATCHED = "dispatched"
    REPLIED = "replied"
    DROPPED = "dropped"


@dataclass(frozen=True)
class Pass:
    """Continue with ``value`` as the next stage's input."""
    value: Any


@dataclass(frozen=True)
class Stop:
    """End processing of this update."""
    outcome: Outcome


DROP = Stop(Outcome.DROPPED)
REPLIED = Stop(Outcome.REPLIED)

StageResult = Union[Pass, Stop]
Stage = Callable[[Any], Union[StageResult, Awaitable[StageResult]]]


@dataclass(frozen=True)
class Dispatch:
    """A resolved (or unresolved) command and its argument tokens."""
    update: Update
    ability: Optional[Ability]
    arguments: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Invocation:
    context: MessageContext
    ability: Ability


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one update.

    Attributes:
        outcome: dispatched, replied or dropped.
        stage: Stage that ended processing (the last stage when dispatched).
        ability: Name of the resolved ability, if resolution was reached.
    """

    outcome: Outcome
    stage: str
    ability: Optional[str] = None
    duration_ms: float = field(default=0.0, compare=False)

    @property
    def dispatched(self) -> bool:
        return self.outcome == Outcome.DISPATCHED


class DispatchPipeline:
    """Decides, for each update, which ability runs and whether it may.

    Args:
        registry: Registered abilities and reply rules.
        access: Privacy and locality resolution.
        store: Store holding USERS and BLACKLIST.
        bot_username: The bot's own username, stripped from
            ``/command@botname`` tokens.
        global_flags: Predicates every update must satisfy.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        access: AccessModel,
        store: "Store",
        bot_username: str = "",
        global_flags: Sequence[Flag] = (MESSAGE,),
    ):
        self.registry = registry
        self.access = access
        self.store = store
        self.bot_username = bot_username.lstrip("@")
        self.global_flags = tuple(global_flags)
        self._mention = (
            re.compile(re.escape("@" + self.bot_username) + "$", re.IGNORECASE)
            if self.bot_username
            else None
        )

    @property
    def stages(self) -> Tuple[Tuple[str, Stage], ...]:
        return (
            ("check_global_flags", self.check_global_flags),
            ("check_blacklist", self.check_blacklist),
            ("add_user", self.add_user),
            ("filter_reply", self.filter_reply),
            ("get_ability", self.get_ability),
            ("validate_ability", self.validate_ability),
            ("check_message_flags", self.check_message_flags),
            ("check_privacy", self.check_privacy),
            ("check_locality", self.check_locality),
            ("check_input", self.check_input),
            ("get_context", self.get_context),
            ("consume_update", self.consume_update),
            ("post_consumption", self.post_consumption),
        )

    async def process(self, update: Update) -> DispatchResult:
        """Run every stage for one update.

        Raises:
            UpdateResolutionError: If the sender or chat of the update
                cannot be determined.
            Exception: Anything raised by the ability's action or post action.
        """
        started = time.monotonic()
        value: Any = update
        ability_name: Optional[str] = None
        stage_name = ""

        for stage_name, stage in self.stages:
            result = await call_maybe_async(stage, value)
            if isinstance(result, Stop):
                duration_ms = (time.monotonic() - started) * 1000
                logger.debug(
                    "update_stopped",
                    update_id=update.update_id,
                    outcome=result.outcome.value,
                    stage=stage_name,
                    ability=ability_name,
                )
                return DispatchResult(
                    result.outcome, stage_name, ability_name, duration_ms
                )
            value = result.value
            ability = getattr(value, "ability", None)
            if ability is not None:
                ability_name = ability.name

        duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            "update_dispatched",
            update_id=update.update_id,
            ability=ability_name,
            duration_ms=round(duration_ms, 1),
        )
        return DispatchResult(Outcome.DISPATCHED, stage_name, ability_name, duration_ms)

    # --- Update gates ---

    def check_global_flags(self, update: Update) -> StageResult:
        if all(flag(update) for flag in self.global_flags):
            return Pass(update)
        return DROP

    def check_blacklist(self, update: Update) -> StageResult:
        """Drop blacklisted senders. The creator can never be blacklisted out."""
        user_id = get_user(update).id
        if self.access.is_creator(user_id):
            return Pass(update)
        if user_id in self.store.get_set(BLACKLIST):
            logger.debug("blacklisted_sender_dropped", user_id=user_id)
            return DROP
        return Pass(update)

    def add_user(self, update: Update) -> StageResult:
        """Insert or refresh the sender's EndUser record.

        Commits only when the USERS set actually changed.
        """
        end_user = EndUser.from_user(get_user(update))
        users = self.store.get_set(USERS)
        existing = next((u for u in users if u.id == end_user.id), None)

        if existing is None:
            users.add(end_user)
            self.store.commit()
            logger.info("user_added", user_id=end_user.id, username=end_user.username)
        elif existing != end_user:
            users.discard(existing)
            users.add(end_user)
            self.store.commit()
            logger.info("user_updated", user_id=end_user.id, username=end_user.username)
        return Pass(update)

    async def filter_reply(self, update: Update) -> StageResult:
        """Run the first reply rule whose conditions all hold.

        A matching rule consumes the update; command resolution never
        happens for it.
        """
        for index, rule in enumerate(self.registry.replies):
            if rule.is_ok_for(update):
                logger.info("reply_matched", update_id=update.update_id, rule=index)
                await rule.act_on(update)
                return REPLIED
        return Pass(update)

    # --- Command resolution ---

    def get_ability(self, update: Update) -> StageResult:
        """Resolve the ability and its argument tokens.

        ``/name@botname arg1 arg2`` looks up ``name``. Free text and
        messages without text go to the default ability.
        """
        message = update.message
        if message is None or not message.has_text:
            return Pass(Dispatch(update, self.registry.default_ability()))

        tokens = message.text.split()
        if tokens and tokens[0].startswith("/"):
            token = tokens[0][1:]
            if self._mention is not None:
                token = self._mention.sub("", token)
            return Pass(Dispatch(
                update, self.registry.resolve_command(token), tuple(tokens[1:])
            ))
        return Pass(Dispatch(update, self.registry.default_ability(), tuple(tokens)))

    def validate_ability(self, dispatch: Dispatch) -> StageResult:
        if dispatch.ability is None:
            return DROP
        return Pass(dispatch)

    # --- Ability gates ---

    def check_message_flags(self, dispatch: Dispatch) -> StageResult:
        if all(flag(dispatch.update) for flag in dispatch.ability.flags):
            return Pass(dispatch)
        return DROP

    def check_privacy(self, dispatch: Dispatch) -> StageResult:
        user_id = get_user(dispatch.update).id
        if self.access.has_privacy(user_id, dispatch.ability.privacy):
            return Pass(dispatch)
        return DROP

    def check_locality(self, dispatch: Dispatch) -> StageResult:
        private = is_user_message(dispatch.update)
        if self.access.is_allowed_locality(private, dispatch.ability.locality):
            return Pass(dispatch)
        return DROP

    def check_input(self, dispatch: Dispatch) -> StageResult:
        """Arity gate: 0 accepts anything, N > 0 needs exactly N tokens."""
        arity = dispatch.ability.arity
        count = len(dispatch.arguments)
        if arity == 0 or (count > 0 and count == arity):
            return Pass(dispatch)
        return DROP

    # --- Invocation ---

    def get_context(self, dispatch: Dispatch) -> StageResult:
        update = dispatch.update
        context = MessageContext(
            update=update,
            user=EndUser.from_user(get_user(update)),
            chat_id=get_chat_id(update),
            arguments=dispatch.arguments,
        )
        return Pass(Invocation(context, dispatch.ability))

    async def consume_update(self, invocation: Invocation) -> StageResult:
        await call_maybe_async(invocation.ability.action, invocation.context)
        return Pass(invocation)

    async def post_consumption(self, invocation: Invocation) -> StageResult:
        post_action = invocation.ability.post_action
        if post_action is not None:
            await call_maybe_async(post_action, invocation.context)
        return Pass(invocation)
