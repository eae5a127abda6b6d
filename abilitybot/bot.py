"""Telegram ability bot host.

Long-polls the Telegram Bot API, parses each raw update, and runs it
through the DispatchPipeline one at a time, in the order received.
Owns every subsystem: config, store, sender, access model, registry,
backup coordinator and pipeline.

Key classes:
    AbilityBot: Main bot class. Registers the built-in abilities,
        then any application ability groups passed to register().
"""

import asyncio
from typing import List, Optional, Type, Union

import structlog
from pydantic import ValidationError

from .backup import BackupCoordinator
from .commands.base import BaseAbilityHandler, BotContext, HandlerRegistry
from .commands.core import CoreAbilities
from .config import Config, get_config
from .exceptions import TransportError
from .pipeline import DispatchPipeline, DispatchResult
from .security import AccessModel
from .sender import MessageSender, TelegramSender
from .store import SQLiteStore, Store
from .updates import Update

logger = structlog.get_logger("abilitybot.bot")

HandlerSpec = Union[BaseAbilityHandler, Type[BaseAbilityHandler]]


class AbilityBot:
    """Ability bot with a handler registry and dispatch pipeline.

    Built-in abilities are registered in __init__, so an application
    group that reuses a reserved name fails at startup with
    DuplicateAbilityName.

    Args:
        config: Configuration; defaults to the global instance.
        store: Store to use; defaults to a SQLiteStore at
            ``config.database_path``.
        sender: Outbound transport; defaults to a TelegramSender.

    Raises:
        ConfigurationError: If no valid creator id is configured.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[Store] = None,
        sender: Optional[MessageSender] = None,
    ):
        self.config = config or get_config()
        self.store = store if store is not None else SQLiteStore(self.config.database_path)
        self.sender = sender if sender is not None else TelegramSender(
            self.config.bot_token, self.config.telegram_api_url
        )
        self.running = False
        self._offset = 0

        self.access = AccessModel(self.store, self.config.creator_id)
        self.registry = HandlerRegistry()
        self.backup = BackupCoordinator(self.store, self.config.backup_filename)

        # BotContext: dependency container for ability groups
        self.ctx = BotContext(
            config=self.config,
            store=self.store,
            sender=self.sender,
            access=self.access,
            registry=self.registry,
            backup=self.backup,
        )
        self.registry.register_handler(CoreAbilities(self.ctx))

        self.pipeline = DispatchPipeline(
            registry=self.registry,
            access=self.access,
            store=self.store,
            bot_username=self.config.bot_username,
        )

    def register(self, *handlers: HandlerSpec) -> "AbilityBot":
        """Register application ability groups.

        Each handler may be an instance or a BaseAbilityHandler
        subclass, which is instantiated with this bot's BotContext.

        Raises:
            DuplicateAbilityName: If a name clashes with a registered one.
        """
        for handler in handlers:
            if isinstance(handler, type):
                handler = handler(self.ctx)
            self.registry.register_handler(handler)
        return self

    async def handle_update(self, raw: dict) -> Optional[DispatchResult]:
        """Parse and dispatch one raw update.

        Any failure is logged and contained to this update so a single
        malformed update or failing ability cannot stop the loop.

        Returns:
            The DispatchResult, or None if the update failed.
        """
        try:
            update = Update.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "invalid_update",
                update_id=raw.get("update_id") if isinstance(raw, dict) else None,
                error=str(e)[:200],
            )
            return None

        try:
            return await self.pipeline.process(update)
        except Exception as e:
            logger.error(
                "update_processing_error",
                update_id=update.update_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def poll_updates(self) -> None:
        """Long-poll getUpdates and process updates sequentially."""
        if not isinstance(self.sender, TelegramSender):
            logger.error("polling_unsupported", sender=type(self.sender).__name__)
            return

        reconnect_delay = 1
        MAX_RECONNECT_DELAY = 300

        while self.running:
            try:
                raw_updates: List[dict] = await self.sender.get_updates(
                    self._offset, timeout=self.config.poll_timeout
                )
                reconnect_delay = 1
            except asyncio.CancelledError:
                break
            except TransportError as e:
                logger.error("poll_failed", error=str(e), retry_in=reconnect_delay)
                await asyncio.sleep(reconnect_delay)
                reconnect_delay = min(reconnect_delay * 2, MAX_RECONNECT_DELAY)
                continue

            for raw in raw_updates:
                update_id = raw.get("update_id")
                if isinstance(update_id, int):
                    self._offset = max(self._offset, update_id + 1)
                await self.handle_update(raw)

    async def start(self) -> None:
        """Open the transport session and mark the bot running."""
        if isinstance(self.sender, TelegramSender):
            await self.sender.start()
        self.running = True
        logger.info(
            "bot_started",
            username=self.config.bot_username,
            abilities=sorted(self.registry.names),
            replies=len(self.registry.replies),
        )

    async def stop(self) -> None:
        """Close the transport session and the store.

        The store is closed even if the bot never started.
        """
        if self.running:
            self.running = False
            if isinstance(self.sender, TelegramSender):
                await self.sender.close()
            logger.info("bot_stopped")
        self.store.close()

    async def run(self) -> None:
        """Main run loop: start, poll updates, stop on exit."""
        await self.start()

        try:
            await self.poll_updates()
        finally:
            await self.stop()
