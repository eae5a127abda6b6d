"""Core value types handed to abilities."""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .updates import Update, User


class EndUser(BaseModel):
    """Stored profile of a user the bot has seen.

    Equality is structural over all fields, so a changed name or
    username makes the stored record unequal and triggers a refresh.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Stable Telegram user id")
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "EndUser":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            username=user.username,
        )

    @property
    def full_name(self) -> str:
        if self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name


@dataclass(frozen=True)
class MessageContext:
    """Everything an ability action needs about the update it runs for.

    Built only after every dispatch gate has passed.
    """

    update: Update
    user: EndUser
    chat_id: int
    arguments: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def first_arg(self) -> str:
        return self.arguments[0]

    @property
    def second_arg(self) -> str:
        return self.arguments[1 % len(self.arguments)]

    @property
    def third_arg(self) -> str:
        return self.arguments[2 % len(self.arguments)]
