"""Update predicates used as ability flags and reply conditions.

A flag is any callable ``(Update) -> bool``. The module-level flags
below cover the common cases; message flags return False when the
update carries no message rather than raising.
"""

from typing import Callable

from .updates import Update

Flag = Callable[[Update], bool]


def NONE(update: Update) -> bool:
    return True


# Update flags

def MESSAGE(update: Update) -> bool:
    return update.message is not None


def CALLBACK_QUERY(update: Update) -> bool:
    return update.callback_query is not None


def CHANNEL_POST(update: Update) -> bool:
    return update.channel_post is not None


def EDITED_CHANNEL_POST(update: Update) -> bool:
    return update.edited_channel_post is not None


def EDITED_MESSAGE(update: Update) -> bool:
    return update.edited_message is not None


def INLINE_QUERY(update: Update) -> bool:
    return update.inline_query is not None


def CHOSEN_INLINE_QUERY(update: Update) -> bool:
    return update.chosen_inline_result is not None


# Message flags

def DOCUMENT(update: Update) -> bool:
    return update.message is not None and update.message.has_document


def TEXT(update: Update) -> bool:
    return update.message is not None and update.message.has_text


def PHOTO(update: Update) -> bool:
    return update.message is not None and update.message.has_photo


def LOCATION(update: Update) -> bool:
    return update.message is not None and update.message.location is not None


def CAPTION(update: Update) -> bool:
    return update.message is not None and update.message.caption is not None


def REPLY(update: Update) -> bool:
    return update.message is not None and update.message.is_reply


def is_reply_to(text: str) -> Flag:
    """Build a flag matching replies to a message with exactly ``text``.

    This is how multi-step flows wait for an answer: the bot's prompt
    text is the only conversation state.
    """
    def _is_reply_to(update: Update) -> bool:
        message = update.message
        if message is None or message.reply_to_message is None:
            return False
        return message.reply_to_message.text == text

    _is_reply_to.__name__ = f"is_reply_to({text[:20]!r})"
    return _is_reply_to
