"""Ability framework for abilitybot.

Provides the Ability descriptor, the BaseAbilityHandler ABC, the
BotContext dependency container, the HandlerRegistry, and the
built-in CoreAbilities group.
"""

from .base import (
    BUILTIN_ABILITIES,
    DEFAULT,
    Ability,
    BaseAbilityHandler,
    BotContext,
    HandlerRegistry,
    ReplyRule,
    commit_to,
)
from .core import CoreAbilities

__all__ = [
    "Ability",
    "BaseAbilityHandler",
    "BotContext",
    "HandlerRegistry",
    "ReplyRule",
    "CoreAbilities",
    "BUILTIN_ABILITIES",
    "DEFAULT",
    "commit_to",
]
