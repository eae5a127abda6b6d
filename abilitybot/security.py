"""Access model for abilitybot.

Defines the three-level privacy lattice (creator > admin > public),
the chat locality constraint (private, group, or either), and the
AccessModel that resolves a sender's effective privacy from the
store on every update.

Key classes:
    Privacy: Ordered minimum authorization level of an ability.
    Locality: Chat kinds an ability may run in.
    AccessModel: Pure predicates over identity and collection membership.
"""

from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Optional

import structlog

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .store import Store

logger = structlog.get_logger("abilitybot.security")

# Reserved collection names
ADMINS = "ADMINS"
USERS = "USERS"
BLACKLIST = "BLACKLIST"


class Privacy(IntEnum):
    """Minimum authorization level required to invoke an ability."""
    PUBLIC = 0
    ADMIN = 1
    CREATOR = 2


class Locality(str, Enum):
    """Chat kinds an ability is valid in."""
    USER = "user"    # One-to-one chats only
    GROUP = "group"  # Group chats only
    ALL = "all"


def strip_tag(name: str) -> str:
    """Lower-case a username and drop a leading ``@``."""
    username = name.lower()
    return username[1:] if username.startswith("@") else username


def add_tag(username: str) -> str:
    return "@" + username


class AccessModel:
    """Resolves who may run what, and where.

    Admin membership is read from the global ``ADMINS`` set on every
    call so promotions and demotions apply to the very next update.

    Args:
        store: Store holding the ``ADMINS`` collection.
        creator_id: Telegram user id of the bot's creator.

    Raises:
        ConfigurationError: If no valid creator id is configured.
    """

    def __init__(self, store: "Store", creator_id: Optional[int]):
        if creator_id is None or creator_id <= 0:
            raise ConfigurationError(
                "A creator id is required", setting_name="creator_id"
            )
        self.store = store
        self.creator_id = creator_id

    def is_creator(self, user_id: int) -> bool:
        return user_id == self.creator_id

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.store.get_set(ADMINS)

    def effective_privacy(self, user_id: int) -> Privacy:
        """Return the highest privacy level the user holds right now."""
        if self.is_creator(user_id):
            return Privacy.CREATOR
        if self.is_admin(user_id):
            return Privacy.ADMIN
        return Privacy.PUBLIC

    def has_privacy(self, user_id: int, required: Privacy) -> bool:
        allowed = self.effective_privacy(user_id) >= required
        if not allowed:
            logger.info(
                "privacy_denied",
                user_id=user_id,
                required=required.name,
            )
        return allowed

    @staticmethod
    def is_allowed_locality(is_private_chat: bool, locality: Locality) -> bool:
        """Return whether an ability with ``locality`` may run in this chat kind."""
        if locality == Locality.ALL:
            return True
        chat_locality = Locality.USER if is_private_chat else Locality.GROUP
        return chat_locality == locality
