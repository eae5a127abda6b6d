"""Built-in abilities registered by every bot.

Handles: commands, claim, ban, unban, promote, demote, backup,
recover, report.
"""

from __future__ import annotations

from typing import List, Optional

import structlog

from .. import flags
from ..exceptions import AbilityBotError
from ..models import EndUser, MessageContext
from ..security import ADMINS, BLACKLIST, USERS, Locality, Privacy, strip_tag
from ..updates import Update, get_user
from .base import (
    BACKUP,
    BAN,
    CLAIM,
    COMMANDS,
    DEMOTE,
    PROMOTE,
    RECOVER,
    REPORT,
    UNBAN,
    Ability,
    BaseAbilityHandler,
    ReplyRule,
    commit_to,
)

logger = structlog.get_logger("abilitybot.commands")

RECOVERY_MESSAGE = (
    "I am ready to receive the backup file. "
    "Please reply to this message with the backup file attached."
)
RECOVER_SUCCESS = "I have successfully recovered."
RECOVER_ROLLED_BACK = "Oops, something went wrong during recovery."
RECOVER_FAILED = "I have failed to recover."
NO_COMMANDS = "No public commands found."


class CoreAbilities(BaseAbilityHandler):
    """Administration, backup and help abilities."""

    def get_abilities(self) -> List[Ability]:
        store = self.ctx.store
        return [
            Ability(
                name=COMMANDS,
                action=self.report_commands,
                locality=Locality.ALL,
                privacy=Privacy.PUBLIC,
            ),
            Ability(
                name=CLAIM,
                action=self.claim_creator,
                locality=Locality.ALL,
                privacy=Privacy.PUBLIC,
                post_action=commit_to(store),
            ),
            Ability(
                name=BAN,
                action=self.ban_user,
                locality=Locality.ALL,
                privacy=Privacy.ADMIN,
                arity=1,
                post_action=commit_to(store),
            ),
            Ability(
                name=UNBAN,
                action=self.unban_user,
                locality=Locality.ALL,
                privacy=Privacy.ADMIN,
                arity=1,
                post_action=commit_to(store),
            ),
            Ability(
                name=PROMOTE,
                action=self.promote_admin,
                locality=Locality.ALL,
                privacy=Privacy.ADMIN,
                arity=1,
                post_action=commit_to(store),
            ),
            Ability(
                name=DEMOTE,
                action=self.demote_admin,
                locality=Locality.ALL,
                privacy=Privacy.ADMIN,
                arity=1,
                post_action=commit_to(store),
            ),
            Ability(
                name=BACKUP,
                action=self.backup_db,
                locality=Locality.USER,
                privacy=Privacy.CREATOR,
            ),
            Ability(
                name=RECOVER,
                action=self.prompt_recovery,
                locality=Locality.USER,
                privacy=Privacy.CREATOR,
                replies=(
                    ReplyRule(
                        self.recover_db,
                        (
                            flags.MESSAGE,
                            flags.DOCUMENT,
                            flags.REPLY,
                            flags.is_reply_to(RECOVERY_MESSAGE),
                        ),
                    ),
                ),
            ),
            Ability(
                name=REPORT,
                action=self.report_store,
                locality=Locality.USER,
                privacy=Privacy.CREATOR,
            ),
        ]

    # --- Lookups ---

    def find_user(self, username: str) -> Optional[EndUser]:
        """Find a known user by username, ignoring case and a leading @."""
        wanted = strip_tag(username)
        for user in self.ctx.store.get_set(USERS):
            if user.username is not None and user.username.lower() == wanted:
                return user
        return None

    def find_user_by_id(self, user_id: int) -> Optional[EndUser]:
        for user in self.ctx.store.get_set(USERS):
            if user.id == user_id:
                return user
        return None

    # --- Help ---

    async def report_commands(self, ctx: MessageContext) -> None:
        """List abilities that carry an info line.

        Usage::

            /commands
        """
        lines = sorted(
            f"{ability.name} - {ability.info}"
            for ability in self.ctx.registry.abilities.values()
            if ability.info is not None
        )
        await self.ctx.sender.send("\n".join(lines) or NO_COMMANDS, ctx.chat_id)

    # --- Administration ---

    async def claim_creator(self, ctx: MessageContext) -> None:
        """Add the creator to the admin set; anyone else gets banned.

        Usage::

            /claim
        """
        if self.ctx.access.is_creator(ctx.user.id):
            admins = self.ctx.store.get_set(ADMINS)
            if ctx.user.id in admins:
                await self.ctx.sender.send("You're already my master.", ctx.chat_id)
            else:
                admins.add(ctx.user.id)
                logger.info("creator_claimed", user_id=ctx.user.id)
                await self.ctx.sender.send("You're now my master.", ctx.chat_id)
            return

        logger.warning("claim_by_non_creator", user_id=ctx.user.id)
        self.ctx.store.get_set(BLACKLIST).add(ctx.user.id)
        await self.ctx.sender.send_formatted(
            f"{ctx.user.username or ctx.user.first_name} is now *banned*.",
            ctx.chat_id,
        )

    async def ban_user(self, ctx: MessageContext) -> None:
        """Add a known user to the blacklist.

        Banning the creator bans the caller instead.

        Usage::

            /ban @username
        """
        username = strip_tag(ctx.first_arg)
        target = self.find_user(username)
        if target is None:
            logger.info("ban_unknown_user", username=username)
            return

        user_id = target.id
        display = username
        if self.ctx.access.is_creator(user_id):
            user_id = ctx.user.id
            caller = self.find_user_by_id(user_id)
            display = caller.first_name if caller is not None else ctx.user.first_name
            logger.warning("ban_creator_redirected", caller_id=user_id)

        blacklist = self.ctx.store.get_set(BLACKLIST)
        if user_id in blacklist:
            await self.ctx.sender.send_formatted(
                f"{display} is already *banned*.", ctx.chat_id
            )
        else:
            blacklist.add(user_id)
            logger.info("user_banned", user_id=user_id, by=ctx.user.id)
            await self.ctx.sender.send_formatted(
                f"{display} is now *banned*.", ctx.chat_id
            )

    async def unban_user(self, ctx: MessageContext) -> None:
        """Usage::

            /unban @username
        """
        username = strip_tag(ctx.first_arg)
        target = self.find_user(username)
        if target is None:
            logger.info("unban_unknown_user", username=username)
            return

        blacklist = self.ctx.store.get_set(BLACKLIST)
        if target.id not in blacklist:
            await self.ctx.sender.send_formatted(
                f"@{username} is *not* on the *blacklist*.", ctx.chat_id
            )
        else:
            blacklist.discard(target.id)
            logger.info("user_unbanned", user_id=target.id, by=ctx.user.id)
            await self.ctx.sender.send_formatted(
                f"@{username}, your ban has been *lifted*.", ctx.chat_id
            )

    async def promote_admin(self, ctx: MessageContext) -> None:
        """Usage::

            /promote @username
        """
        username = strip_tag(ctx.first_arg)
        target = self.find_user(username)
        if target is None:
            logger.info("promote_unknown_user", username=username)
            return

        admins = self.ctx.store.get_set(ADMINS)
        if target.id in admins:
            await self.ctx.sender.send_formatted(
                f"@{username} is already a *super admin*.", ctx.chat_id
            )
        else:
            admins.add(target.id)
            logger.info("admin_promoted", user_id=target.id, by=ctx.user.id)
            await self.ctx.sender.send_formatted(
                f"@{username} is now a *super admin*.", ctx.chat_id
            )

    async def demote_admin(self, ctx: MessageContext) -> None:
        """Usage::

            /demote @username
        """
        username = strip_tag(ctx.first_arg)
        target = self.find_user(username)
        if target is None:
            logger.info("demote_unknown_user", username=username)
            return

        admins = self.ctx.store.get_set(ADMINS)
        if target.id not in admins:
            await self.ctx.sender.send_formatted(
                f"@{username} is *not* a *super admin*.", ctx.chat_id
            )
        else:
            admins.discard(target.id)
            logger.info("admin_demoted", user_id=target.id, by=ctx.user.id)
            await self.ctx.sender.send_formatted(
                f"@{username} has been *demoted*.", ctx.chat_id
            )

    # --- Backup / recovery ---

    async def backup_db(self, ctx: MessageContext) -> None:
        """Send the whole store as a JSON document.

        Usage::

            /backup
        """
        backup = self.ctx.backup
        data = backup.backup()
        sent = await self.ctx.sender.send_document(
            data, backup.backup_filename, ctx.chat_id
        )
        if sent is None:
            logger.error("backup_send_failed", chat_id=ctx.chat_id)

    async def prompt_recovery(self, ctx: MessageContext) -> None:
        """Ask for a backup file; the reply is handled by recover_db().

        Usage::

            /recover
        """
        await self.ctx.sender.send_force_reply(RECOVERY_MESSAGE, ctx.chat_id)

    async def recover_db(self, update: Update) -> None:
        """Restore the store from a document sent in reply to the prompt."""
        message = update.message
        chat_id = message.chat.id
        if not self.ctx.access.is_creator(get_user(update).id):
            logger.warning("recovery_denied", user_id=get_user(update).id)
            return

        backup = self.ctx.backup
        with backup.recovery_slot() as acquired:
            if not acquired:
                await self.ctx.sender.send(RECOVER_FAILED, chat_id)
                return
            try:
                data = await self.ctx.sender.fetch_file(message.document.file_id)
                recovered = backup.restore(data)
            except AbilityBotError as e:
                logger.error("recovery_error", error=str(e), error_type=type(e).__name__)
                await self.ctx.sender.send(RECOVER_FAILED, chat_id)
                return

        if recovered:
            await self.ctx.sender.send(RECOVER_SUCCESS, chat_id)
        else:
            await self.ctx.sender.send(RECOVER_ROLLED_BACK, chat_id)

    async def report_store(self, ctx: MessageContext) -> None:
        """One line per stored collection with its kind and size.

        Usage::

            /report
        """
        await self.ctx.sender.send(
            self.ctx.backup.summary() or "The store is empty.", ctx.chat_id
        )
