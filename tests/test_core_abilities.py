"""Tests for the built-in abilities, driven through the pipeline."""

import asyncio
import json

import pytest

from abilitybot.commands.base import BUILTIN_ABILITIES, Ability
from abilitybot.commands.core import (
    NO_COMMANDS,
    RECOVER_FAILED,
    RECOVER_ROLLED_BACK,
    RECOVER_SUCCESS,
    RECOVERY_MESSAGE,
    CoreAbilities,
)
from abilitybot.exceptions import DuplicateAbilityName, TransportError
from abilitybot.models import EndUser
from abilitybot.pipeline import DispatchPipeline, Outcome
from abilitybot.security import ADMINS, BLACKLIST, USERS, Locality, Privacy

from conftest import ADMIN_ID, CREATOR_ID, USER_ID, make_update, message_payload, user_payload

CREATOR = user_payload(user_id=CREATOR_ID, username="creator", first_name="Maker")
ADMIN = user_payload(user_id=ADMIN_ID, username="boss", first_name="Boss")
USER = user_payload(user_id=USER_ID, username="username", first_name="First")


@pytest.fixture
def pipeline(bot_context, registry, access, store):
    registry.register_handler(CoreAbilities(bot_context))
    return DispatchPipeline(registry, access, store, bot_username="testbot")


@pytest.fixture
def known_users(store):
    store.get_set(USERS).update({
        EndUser(id=CREATOR_ID, first_name="Maker", last_name="Last", username="creator"),
        EndUser(id=ADMIN_ID, first_name="Boss", last_name="Last", username="boss"),
        EndUser(id=USER_ID, first_name="First", last_name="Last", username="username"),
    })
    store.get_set(ADMINS).add(ADMIN_ID)


class TestRegistration:

    def test_all_builtins_registered(self, pipeline, registry):
        assert registry.names == BUILTIN_ABILITIES

    def test_reserved_names_cannot_be_reused(self, pipeline, registry):
        with pytest.raises(DuplicateAbilityName):
            registry.register([Ability(
                name="ban", action=print, locality=Locality.ALL, privacy=Privacy.PUBLIC
            )])

    def test_recover_contributes_a_reply_rule(self, pipeline, registry):
        assert len(registry.replies) == 1


class TestClaim:

    @pytest.mark.asyncio
    async def test_creator_claims(self, pipeline, store, sender):
        commits_before = store.commits
        result = await pipeline.process(make_update("/claim", user=CREATOR))

        assert result.outcome == Outcome.DISPATCHED
        assert store.get_set(ADMINS) == {CREATOR_ID}
        assert CREATOR_ID not in store.get_set(BLACKLIST)
        sender.send.assert_awaited_once_with("You're now my master.", CREATOR_ID)
        assert store.commits > commits_before

    @pytest.mark.asyncio
    async def test_creator_claims_twice(self, pipeline, store, sender):
        await pipeline.process(make_update("/claim", user=CREATOR))
        await pipeline.process(make_update("/claim", user=CREATOR))
        assert store.get_set(ADMINS) == {CREATOR_ID}
        sender.send.assert_awaited_with("You're already my master.", CREATOR_ID)

    @pytest.mark.asyncio
    async def test_impostor_gets_banned(self, pipeline, store, sender):
        await pipeline.process(make_update("/claim", user=USER))

        assert store.get_set(BLACKLIST) == {USER_ID}
        assert store.get_set(ADMINS) == set()
        sender.send_formatted.assert_awaited_once_with("username is now *banned*.", USER_ID)

    @pytest.mark.asyncio
    async def test_impostor_without_username_gets_banned(self, pipeline, store, sender):
        anonymous = user_payload(user_id=99, username=None, first_name="Nameless")
        await pipeline.process(make_update("/claim", user=anonymous))

        assert 99 in store.get_set(BLACKLIST)
        sender.send_formatted.assert_awaited_once_with("Nameless is now *banned*.", 99)

    @pytest.mark.asyncio
    async def test_impostor_ban_ignores_stale_username_records(self, pipeline, store, sender):
        # Another user previously seen under the same username
        store.get_set(USERS).add(
            EndUser(id=555, first_name="Old", last_name=None, username="username")
        )
        await pipeline.process(make_update("/claim", user=USER))

        blacklist = store.get_set(BLACKLIST)
        assert USER_ID in blacklist
        assert 555 not in blacklist

    @pytest.mark.asyncio
    async def test_banned_impostor_is_then_ignored(self, pipeline, sender):
        await pipeline.process(make_update("/claim", user=USER))
        result = await pipeline.process(make_update("/commands", user=USER))
        assert result.stage == "check_blacklist"


class TestBan:

    @pytest.mark.asyncio
    async def test_admin_bans_user(self, pipeline, store, sender, known_users):
        await pipeline.process(make_update("/ban @UserName", user=ADMIN))
        assert store.get_set(BLACKLIST) == {USER_ID}
        sender.send_formatted.assert_awaited_once_with("username is now *banned*.", ADMIN_ID)

    @pytest.mark.asyncio
    async def test_already_banned(self, pipeline, store, sender, known_users):
        store.get_set(BLACKLIST).add(USER_ID)
        await pipeline.process(make_update("/ban username", user=ADMIN))
        sender.send_formatted.assert_awaited_once_with(
            "username is already *banned*.", ADMIN_ID
        )

    @pytest.mark.asyncio
    async def test_banning_creator_bans_caller(self, pipeline, store, sender, known_users):
        await pipeline.process(make_update("/ban @creator", user=ADMIN))
        assert store.get_set(BLACKLIST) == {ADMIN_ID}
        sender.send_formatted.assert_awaited_once_with("Boss is now *banned*.", ADMIN_ID)

    @pytest.mark.asyncio
    async def test_unknown_user_is_ignored(self, pipeline, store, sender, known_users):
        result = await pipeline.process(make_update("/ban ghost", user=ADMIN))
        assert result.outcome == Outcome.DISPATCHED
        assert store.get_set(BLACKLIST) == set()
        sender.send_formatted.assert_not_called()

    @pytest.mark.asyncio
    async def test_requires_admin(self, pipeline, store, known_users):
        result = await pipeline.process(make_update("/ban boss", user=USER))
        assert result.stage == "check_privacy"
        assert store.get_set(BLACKLIST) == set()

    @pytest.mark.asyncio
    async def test_requires_exactly_one_argument(self, pipeline, known_users):
        assert (await pipeline.process(make_update("/ban", user=ADMIN))).stage == "check_input"
        assert (await pipeline.process(make_update("/ban a b", user=ADMIN))).stage == "check_input"


class TestUnban:

    @pytest.mark.asyncio
    async def test_lift_ban(self, pipeline, store, sender, known_users):
        store.get_set(BLACKLIST).add(USER_ID)
        await pipeline.process(make_update("/unban @username", user=ADMIN))
        assert store.get_set(BLACKLIST) == set()
        sender.send_formatted.assert_awaited_once_with(
            "@username, your ban has been *lifted*.", ADMIN_ID
        )

    @pytest.mark.asyncio
    async def test_not_banned(self, pipeline, sender, known_users):
        await pipeline.process(make_update("/unban username", user=ADMIN))
        sender.send_formatted.assert_awaited_once_with(
            "@username is *not* on the *blacklist*.", ADMIN_ID
        )


class TestPromoteDemote:

    @pytest.mark.asyncio
    async def test_promote(self, pipeline, store, sender, known_users):
        await pipeline.process(make_update("/promote @username", user=ADMIN))
        assert USER_ID in store.get_set(ADMINS)
        sender.send_formatted.assert_awaited_once_with(
            "@username is now a *super admin*.", ADMIN_ID
        )

    @pytest.mark.asyncio
    async def test_promote_existing_admin(self, pipeline, sender, known_users):
        await pipeline.process(make_update("/promote boss", user=ADMIN))
        sender.send_formatted.assert_awaited_once_with(
            "@boss is already a *super admin*.", ADMIN_ID
        )

    @pytest.mark.asyncio
    async def test_demote(self, pipeline, store, sender, known_users):
        await pipeline.process(make_update("/demote boss", user=CREATOR))
        assert ADMIN_ID not in store.get_set(ADMINS)
        sender.send_formatted.assert_awaited_once_with("@boss has been *demoted*.", CREATOR_ID)

    @pytest.mark.asyncio
    async def test_demote_non_admin(self, pipeline, sender, known_users):
        await pipeline.process(make_update("/demote username", user=ADMIN))
        sender.send_formatted.assert_awaited_once_with(
            "@username is *not* a *super admin*.", ADMIN_ID
        )

    @pytest.mark.asyncio
    async def test_demoted_admin_loses_access_immediately(self, pipeline, known_users):
        await pipeline.process(make_update("/demote boss", user=CREATOR))
        result = await pipeline.process(make_update("/promote username", user=ADMIN))
        assert result.stage == "check_privacy"


class TestCommands:

    @pytest.mark.asyncio
    async def test_no_public_commands(self, pipeline, sender):
        await pipeline.process(make_update("/commands"))
        sender.send.assert_awaited_once_with(NO_COMMANDS, USER_ID)

    @pytest.mark.asyncio
    async def test_lists_abilities_with_info_sorted(self, pipeline, registry, sender):
        registry.register([
            Ability(name="zeta", action=print, locality=Locality.ALL,
                    privacy=Privacy.PUBLIC, info="last one"),
            Ability(name="alpha", action=print, locality=Locality.ALL,
                    privacy=Privacy.PUBLIC, info="first one"),
            Ability(name="hidden", action=print, locality=Locality.ALL,
                    privacy=Privacy.PUBLIC),
        ])
        await pipeline.process(make_update("/commands", chat_type="group"))
        text, chat_id = sender.send.await_args.args
        assert text == "alpha - first one\nzeta - last one"


class TestBackupAndRecover:

    @pytest.mark.asyncio
    async def test_backup_sends_document(self, pipeline, store, sender):
        store.get_list("LOG").append("kept")
        await pipeline.process(make_update("/backup", user=CREATOR))

        data, filename, chat_id = sender.send_document.await_args.args
        assert filename == "backup.json"
        assert chat_id == CREATOR_ID
        document = json.loads(data)
        assert document["collections"]["LOG"] == {"kind": "list", "items": ["kept"]}

    @pytest.mark.asyncio
    async def test_backup_is_private_only(self, pipeline, sender):
        result = await pipeline.process(make_update("/backup", user=CREATOR, chat_type="group"))
        assert result.stage == "check_locality"
        sender.send_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_backup_is_creator_only(self, pipeline, store, sender):
        store.get_set(ADMINS).add(ADMIN_ID)
        result = await pipeline.process(make_update("/backup", user=ADMIN))
        assert result.stage == "check_privacy"

    @pytest.mark.asyncio
    async def test_recover_prompts_for_file(self, pipeline, sender):
        await pipeline.process(make_update("/recover", user=CREATOR))
        sender.send_force_reply.assert_awaited_once_with(RECOVERY_MESSAGE, CREATOR_ID)

    def _reply_with_backup(self, user=CREATOR):
        prompt = message_payload(RECOVERY_MESSAGE, user=user_payload(user_id=999, username="testbot"),
                                 chat_id=user["id"])
        return make_update(
            user=user,
            document={"file_id": "backup-file", "file_name": "backup.json"},
            reply_to_message=prompt,
        )

    @pytest.mark.asyncio
    async def test_recover_reply_restores(self, pipeline, store, sender):
        source = type(store)()
        source.get_set(ADMINS).add(ADMIN_ID)
        source.get_list("LOG").append("restored")
        sender.fetch_file.return_value = source.backup_all()

        result = await pipeline.process(self._reply_with_backup())

        assert result.outcome == Outcome.REPLIED
        sender.fetch_file.assert_awaited_once_with("backup-file")
        assert store.get_set(ADMINS) == {ADMIN_ID}
        assert store.get_list("LOG") == ["restored"]
        sender.send.assert_awaited_once_with(RECOVER_SUCCESS, CREATOR_ID)

    @pytest.mark.asyncio
    async def test_corrupt_backup_rolls_back(self, pipeline, store, sender):
        store.get_list("LOG").append("original")
        sender.fetch_file.return_value = b"definitely not a backup"

        await pipeline.process(self._reply_with_backup())

        assert store.get_list("LOG") == ["original"]
        sender.send.assert_awaited_once_with(RECOVER_ROLLED_BACK, CREATOR_ID)

    @pytest.mark.asyncio
    async def test_download_failure(self, pipeline, store, sender):
        store.get_list("LOG").append("original")
        sender.fetch_file.side_effect = TransportError("getFile failed", method="getFile")

        await pipeline.process(self._reply_with_backup())

        assert store.get_list("LOG") == ["original"]
        sender.send.assert_awaited_once_with(RECOVER_FAILED, CREATOR_ID)

    @pytest.mark.asyncio
    async def test_second_reply_refused_while_download_pending(self, pipeline, store, sender):
        source = type(store)()
        source.get_list("LOG").append("restored")
        downloading = asyncio.Event()
        release = asyncio.Event()

        async def slow_fetch(file_id):
            downloading.set()
            await release.wait()
            return source.backup_all()

        sender.fetch_file.side_effect = slow_fetch
        first = asyncio.create_task(pipeline.process(self._reply_with_backup()))
        await downloading.wait()

        await pipeline.process(self._reply_with_backup())
        sender.send.assert_awaited_once_with(RECOVER_FAILED, CREATOR_ID)

        release.set()
        await first
        assert sender.fetch_file.await_count == 1
        assert store.get_list("LOG") == ["restored"]
        sender.send.assert_awaited_with(RECOVER_SUCCESS, CREATOR_ID)

    @pytest.mark.asyncio
    async def test_non_creator_reply_is_consumed_without_recovery(self, pipeline, sender):
        result = await pipeline.process(self._reply_with_backup(user=USER))
        assert result.outcome == Outcome.REPLIED
        sender.fetch_file.assert_not_called()
        sender.send.assert_not_called()


class TestReport:

    @pytest.mark.asyncio
    async def test_report_summarises_store(self, pipeline, store, sender):
        await pipeline.process(make_update("/report", user=CREATOR))
        text, chat_id = sender.send.await_args.args
        assert chat_id == CREATOR_ID
        assert "USERS - Set - 1" in text.splitlines()
