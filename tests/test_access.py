"""Tests for the access model (privacy lattice and locality)."""

import pytest

from abilitybot.exceptions import ConfigurationError
from abilitybot.security import (
    ADMINS,
    BLACKLIST,
    AccessModel,
    Locality,
    Privacy,
    add_tag,
    strip_tag,
)
from abilitybot.store import MemoryStore

from conftest import ADMIN_ID, CREATOR_ID, USER_ID


class TestConstruction:

    @pytest.mark.parametrize("creator_id", [None, 0, -5])
    def test_invalid_creator_id_is_fatal(self, creator_id):
        with pytest.raises(ConfigurationError) as exc_info:
            AccessModel(MemoryStore(), creator_id)
        assert exc_info.value.setting_name == "creator_id"


class TestEffectivePrivacy:

    def test_creator_is_creator(self, access):
        assert access.effective_privacy(CREATOR_ID) == Privacy.CREATOR

    def test_admin_from_store(self, access, store):
        store.get_set(ADMINS).add(ADMIN_ID)
        assert access.effective_privacy(ADMIN_ID) == Privacy.ADMIN

    def test_everyone_else_is_public(self, access):
        assert access.effective_privacy(USER_ID) == Privacy.PUBLIC

    def test_creator_overrides_admin_and_blacklist(self, access, store):
        store.get_set(ADMINS).add(CREATOR_ID)
        store.get_set(BLACKLIST).add(CREATOR_ID)
        assert access.effective_privacy(CREATOR_ID) == Privacy.CREATOR

    def test_demotion_applies_immediately(self, access, store):
        admins = store.get_set(ADMINS)
        admins.add(ADMIN_ID)
        assert access.is_admin(ADMIN_ID)
        admins.discard(ADMIN_ID)
        assert not access.is_admin(ADMIN_ID)

    def test_has_privacy_is_ordinal(self, access, store):
        store.get_set(ADMINS).add(ADMIN_ID)
        assert access.has_privacy(ADMIN_ID, Privacy.PUBLIC)
        assert access.has_privacy(ADMIN_ID, Privacy.ADMIN)
        assert not access.has_privacy(ADMIN_ID, Privacy.CREATOR)
        assert access.has_privacy(CREATOR_ID, Privacy.CREATOR)


class TestLocality:

    @pytest.mark.parametrize(
        "is_private, locality, expected",
        [
            (True, Locality.ALL, True),
            (False, Locality.ALL, True),
            (True, Locality.USER, True),
            (False, Locality.USER, False),
            (True, Locality.GROUP, False),
            (False, Locality.GROUP, True),
        ],
    )
    def test_is_allowed_locality(self, is_private, locality, expected):
        assert AccessModel.is_allowed_locality(is_private, locality) is expected


class TestTags:

    def test_strip_tag(self):
        assert strip_tag("@UserName") == "username"
        assert strip_tag("plain") == "plain"

    def test_add_tag(self):
        assert add_tag("someone") == "@someone"
