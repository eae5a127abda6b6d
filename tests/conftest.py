"""Shared fixtures and update builders."""

from itertools import count
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from abilitybot.backup import BackupCoordinator
from abilitybot.commands.base import BotContext, HandlerRegistry
from abilitybot.security import AccessModel
from abilitybot.sender import MessageSender
from abilitybot.store import MemoryStore
from abilitybot.updates import Update

CREATOR_ID = 1337
ADMIN_ID = 42
USER_ID = 7
GROUP_CHAT_ID = -100200

_update_ids = count(1)


def user_payload(user_id: int = USER_ID, username: Optional[str] = "username",
                 first_name: str = "First", last_name: Optional[str] = "Last") -> dict:
    user = {"id": user_id, "is_bot": False, "first_name": first_name}
    if last_name is not None:
        user["last_name"] = last_name
    if username is not None:
        user["username"] = username
    return user


def message_payload(
    text: Optional[str] = None,
    user: Optional[dict] = None,
    chat_id: Optional[int] = None,
    chat_type: str = "private",
    **extra,
) -> dict:
    user = user or user_payload()
    if chat_id is None:
        chat_id = user["id"] if chat_type == "private" else GROUP_CHAT_ID
    message = {
        "message_id": next(_update_ids),
        "from": user,
        "chat": {"id": chat_id, "type": chat_type},
        "date": 1700000000,
    }
    if text is not None:
        message["text"] = text
    message.update(extra)
    return message


def make_update(text: Optional[str] = None, **kwargs) -> Update:
    """Build a message update as Telegram would send it."""
    return Update.model_validate(
        {"update_id": next(_update_ids), "message": message_payload(text, **kwargs)}
    )


def raw_update(text: Optional[str] = None, **kwargs) -> dict:
    return {"update_id": next(_update_ids), "message": message_payload(text, **kwargs)}


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sender():
    return AsyncMock(spec=MessageSender)


@pytest.fixture
def access(store):
    return AccessModel(store, CREATOR_ID)


@pytest.fixture
def registry():
    return HandlerRegistry()


@pytest.fixture
def bot_context(store, sender, access, registry):
    config = MagicMock()
    config.backup_filename = "backup.json"
    config.bot_username = "testbot"
    return BotContext(
        config=config,
        store=store,
        sender=sender,
        access=access,
        registry=registry,
        backup=BackupCoordinator(store, backup_filename="backup.json"),
    )
