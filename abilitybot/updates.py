"""Pydantic models for inbound Telegram updates.

Only the subset of the Bot API the dispatcher reads is modelled;
unknown fields are ignored so newer payloads keep parsing.

Key functions:
    get_user: Originating sender of an update.
    get_chat_id: Chat an update belongs to (replies go there).
    is_user_message: Whether the update came from a one-to-one chat.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import UpdateResolutionError


class _TelegramObject(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class User(_TelegramObject):
    """A Telegram user or bot."""

    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None


class Chat(_TelegramObject):
    """A chat: "private", "group", "supergroup" or "channel"."""

    id: int
    type: str = "private"
    title: Optional[str] = None
    username: Optional[str] = None


class Document(_TelegramObject):
    file_id: str
    file_unique_id: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class PhotoSize(_TelegramObject):
    file_id: str
    width: int = 0
    height: int = 0
    file_size: Optional[int] = None


class Location(_TelegramObject):
    longitude: float
    latitude: float


class Message(_TelegramObject):
    """A chat message. ``from`` is exposed as ``from_``."""

    message_id: int
    from_: Optional[User] = Field(default=None, alias="from")
    chat: Chat
    date: int = 0
    text: Optional[str] = None
    caption: Optional[str] = None
    document: Optional[Document] = None
    photo: Optional[List[PhotoSize]] = None
    location: Optional[Location] = None
    reply_to_message: Optional["Message"] = None

    @property
    def has_text(self) -> bool:
        return self.text is not None

    @property
    def has_document(self) -> bool:
        return self.document is not None

    @property
    def has_photo(self) -> bool:
        return bool(self.photo)

    @property
    def is_reply(self) -> bool:
        return self.reply_to_message is not None

    @property
    def is_user_message(self) -> bool:
        """True for one-to-one (private) chats."""
        return self.chat.type == "private"


Message.model_rebuild()


class CallbackQuery(_TelegramObject):
    id: str
    from_: User = Field(alias="from")
    message: Optional[Message] = None
    data: Optional[str] = None


class InlineQuery(_TelegramObject):
    id: str
    from_: User = Field(alias="from")
    query: str = ""


class ChosenInlineResult(_TelegramObject):
    result_id: str
    from_: User = Field(alias="from")
    query: str = ""


class Update(_TelegramObject):
    """One inbound update. At most one of the optional payloads is set."""

    update_id: int
    message: Optional[Message] = None
    edited_message: Optional[Message] = None
    channel_post: Optional[Message] = None
    edited_channel_post: Optional[Message] = None
    callback_query: Optional[CallbackQuery] = None
    inline_query: Optional[InlineQuery] = None
    chosen_inline_result: Optional[ChosenInlineResult] = None


def _message_like(update: Update) -> Optional[Message]:
    """Return the message-bearing payload in resolution order, if any.

    Callback queries are excluded; they carry their own sender.
    """
    for payload in (
        update.message,
        update.channel_post,
        update.edited_channel_post,
        update.edited_message,
    ):
        if payload is not None:
            return payload
    return None


def get_user(update: Update) -> User:
    """Return the user that originated an update.

    Raises:
        UpdateResolutionError: If the update shape carries no sender.
    """
    if update.message is not None and update.message.from_ is not None:
        return update.message.from_
    if update.callback_query is not None:
        return update.callback_query.from_
    if update.inline_query is not None:
        return update.inline_query.from_
    for payload in (update.channel_post, update.edited_channel_post, update.edited_message):
        if payload is not None and payload.from_ is not None:
            return payload.from_
    if update.chosen_inline_result is not None:
        return update.chosen_inline_result.from_
    raise UpdateResolutionError(
        "Could not retrieve originating user from update",
        update_id=update.update_id,
    )


def get_chat_id(update: Update) -> int:
    """Return the chat id an update belongs to.

    Inline queries have no chat; the sender's id is used instead.

    Raises:
        UpdateResolutionError: If the update shape carries no chat.
    """
    if update.message is not None:
        return update.message.chat.id
    if update.callback_query is not None and update.callback_query.message is not None:
        return update.callback_query.message.chat.id
    if update.inline_query is not None:
        return update.inline_query.from_.id
    message = _message_like(update)
    if message is not None:
        return message.chat.id
    if update.chosen_inline_result is not None:
        return update.chosen_inline_result.from_.id
    raise UpdateResolutionError(
        "Could not retrieve originating chat ID from update",
        update_id=update.update_id,
    )


def is_user_message(update: Update) -> bool:
    """Return whether the update originated from a one-to-one chat.

    Raises:
        UpdateResolutionError: If the update's origin cannot be determined.
    """
    if update.message is not None:
        return update.message.is_user_message
    if update.callback_query is not None and update.callback_query.message is not None:
        return update.callback_query.message.is_user_message
    message = _message_like(update)
    if message is not None:
        return message.is_user_message
    if update.inline_query is not None or update.chosen_inline_result is not None:
        return True
    raise UpdateResolutionError(
        "Could not retrieve update context origin (user/group)",
        update_id=update.update_id,
    )
