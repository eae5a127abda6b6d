"""Outbound transport for abilitybot.

Abilities talk to users only through a MessageSender. The Telegram
implementation calls the Bot API over aiohttp; send failures are
logged here and never raised into the dispatch pipeline.

Key classes:
    MessageSender: ABC the core depends on.
    TelegramSender: Bot API implementation (also long-polls updates).
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from .exceptions import TransportError
from .updates import Message

logger = structlog.get_logger("abilitybot.transport")


class MessageSender(ABC):
    """Outbound operations available to abilities.

    Send methods are best-effort: they return the sent Message, or
    None if delivery failed (already logged).
    """

    @abstractmethod
    async def send(self, text: str, chat_id: int) -> Optional[Message]:
        ...

    @abstractmethod
    async def send_formatted(self, text: str, chat_id: int) -> Optional[Message]:
        """Send Markdown-formatted text."""
        ...

    @abstractmethod
    async def send_force_reply(self, text: str, chat_id: int) -> Optional[Message]:
        """Send text that prompts the client to reply to it."""
        ...

    @abstractmethod
    async def send_document(
        self, data: bytes, filename: str, chat_id: int
    ) -> Optional[Message]:
        ...

    @abstractmethod
    async def fetch_file(self, file_id: str) -> bytes:
        """Download a file sent to the bot.

        Raises:
            TransportError: If the file cannot be retrieved.
        """
        ...


class TelegramSender(MessageSender):
    """MessageSender backed by the Telegram Bot API.

    Args:
        token: Bot token.
        api_url: Bot API base URL.
        session: Optional pre-built session; otherwise start() creates one.
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.telegram.org",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._token = token
        self.api_url = api_url.rstrip("/")
        self.session = session

    async def start(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None

    def _method_url(self, method: str) -> str:
        return f"{self.api_url}/bot{self._token}/{method}"

    async def _call(
        self,
        method: str,
        payload: Optional[Dict[str, Any]] = None,
        data: Optional[aiohttp.FormData] = None,
        timeout: float = 30,
    ) -> Any:
        """Call a Bot API method and return its ``result``.

        Raises:
            TransportError: On network errors or an unsuccessful response.
        """
        if self.session is None:
            raise TransportError("Sender not started", method=method)
        try:
            async with self.session.post(
                self._method_url(method),
                json=payload if data is None else None,
                data=data,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(f"{method} failed: {e}", method=method) from e

        if not isinstance(body, dict) or not body.get("ok"):
            description = body.get("description") if isinstance(body, dict) else None
            raise TransportError(
                f"{method} rejected: {description or 'no description'}",
                method=method,
            )
        return body.get("result")

    async def _send(self, method: str, chat_id: int, **kwargs) -> Optional[Message]:
        try:
            result = await self._call(method, **kwargs)
        except TransportError as e:
            logger.warning("send_failed", method=method, chat_id=chat_id, error=str(e))
            return None
        try:
            return Message.model_validate(result)
        except ValueError as e:
            logger.warning("send_result_unparsed", method=method, error=str(e))
            return None

    async def send(self, text: str, chat_id: int) -> Optional[Message]:
        return await self._send(
            "sendMessage", chat_id, payload={"chat_id": chat_id, "text": text}
        )

    async def send_formatted(self, text: str, chat_id: int) -> Optional[Message]:
        return await self._send(
            "sendMessage",
            chat_id,
            payload={"chat_id": chat_id, "text": text, "parse_mode": "Markdown"},
        )

    async def send_force_reply(self, text: str, chat_id: int) -> Optional[Message]:
        return await self._send(
            "sendMessage",
            chat_id,
            payload={
                "chat_id": chat_id,
                "text": text,
                "reply_markup": {"force_reply": True},
            },
        )

    async def send_document(
        self, data: bytes, filename: str, chat_id: int
    ) -> Optional[Message]:
        form = aiohttp.FormData()
        form.add_field("chat_id", str(chat_id))
        form.add_field(
            "document", data, filename=filename, content_type="application/json"
        )
        return await self._send("sendDocument", chat_id, data=form, timeout=60)

    async def fetch_file(self, file_id: str) -> bytes:
        result = await self._call("getFile", payload={"file_id": file_id})
        file_path = (result or {}).get("file_path")
        if not file_path:
            raise TransportError("getFile returned no file_path", method="getFile")
        url = f"{self.api_url}/file/bot{self._token}/{file_path}"
        try:
            async with self.session.get(
                url, timeout=aiohttp.ClientTimeout(total=60)
            ) as resp:
                if resp.status != 200:
                    raise TransportError(
                        f"File download returned HTTP {resp.status}",
                        method="download",
                    )
                return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"File download failed: {e}", method="download") from e

    async def get_updates(self, offset: int, timeout: int = 25) -> List[Dict[str, Any]]:
        """Long-poll for raw updates starting at ``offset``.

        Raises:
            TransportError: If the poll fails.
        """
        result = await self._call(
            "getUpdates",
            payload={"offset": offset, "timeout": timeout},
            timeout=timeout + 10,
        )
        return result if isinstance(result, list) else []
