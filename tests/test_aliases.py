"""Tests for clockbot.core.aliases — AliasResolver."""

import pytest

from clockbot.core.aliases import GUILD_SCOPE, USER_SCOPE

from conftest import ALICE, BOB, GUILD


class TestResolve:
    def test_no_alias_returns_raw_unchanged(self, resolver):
        assert resolver.resolve(GUILD, ALICE, "Bot Stuff") == "Bot Stuff"

    def test_user_alias(self, resolver):
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "bs", "bot-stuff")
        assert resolver.resolve(GUILD, ALICE, "bs") == "bot-stuff"

    def test_user_alias_is_private(self, resolver):
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "bs", "bot-stuff")
        assert resolver.resolve(GUILD, BOB, "bs") == "bs"

    def test_guild_alias_applies_to_everyone(self, resolver):
        resolver.set_alias(GUILD, ALICE, GUILD_SCOPE, "dm", "design-mockup")
        assert resolver.resolve(GUILD, BOB, "dm") == "design-mockup"

    def test_user_alias_beats_guild_alias(self, resolver):
        resolver.set_alias(GUILD, ALICE, GUILD_SCOPE, "bs", "brainstorm")
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "bs", "bot-stuff")
        assert resolver.resolve(GUILD, ALICE, "bs") == "bot-stuff"
        assert resolver.resolve(GUILD, BOB, "bs") == "brainstorm"

    def test_lookup_is_normalized(self, resolver):
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "BS", "bot-stuff")
        assert resolver.resolve(GUILD, ALICE, "bs") == "bot-stuff"
        assert resolver.resolve(GUILD, ALICE, "Bs") == "bot-stuff"

    def test_aliases_are_per_guild(self, resolver):
        resolver.set_alias(GUILD, ALICE, GUILD_SCOPE, "bs", "bot-stuff")
        assert resolver.resolve(GUILD + 1, ALICE, "bs") == "bs"

    def test_empty_input_returns_raw(self, resolver):
        assert resolver.resolve(GUILD, ALICE, "   ") == "   "


class TestSetAndRemove:
    def test_set_replaces_existing(self, resolver):
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "bs", "bot-stuff")
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "bs", "bug-squash")
        assert resolver.resolve(GUILD, ALICE, "bs") == "bug-squash"
        assert len(resolver.list_aliases(GUILD, ALICE, USER_SCOPE)) == 1

    def test_remove(self, resolver):
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "bs", "bot-stuff")
        assert resolver.remove_alias(GUILD, ALICE, USER_SCOPE, "BS") is True
        assert resolver.resolve(GUILD, ALICE, "bs") == "bs"

    def test_remove_missing_returns_false(self, resolver):
        assert resolver.remove_alias(GUILD, ALICE, USER_SCOPE, "nope") is False

    def test_empty_key_rejected(self, resolver):
        with pytest.raises(ValueError):
            resolver.set_alias(GUILD, ALICE, USER_SCOPE, "--", "bot-stuff")

    def test_unknown_scope_rejected(self, resolver):
        with pytest.raises(ValueError):
            resolver.set_alias(GUILD, ALICE, "team", "bs", "bot-stuff")


class TestListAliases:
    def test_sorted_by_key(self, resolver):
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "zz", "sleep")
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "bs", "bot-stuff")
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "dm", "design-mockup")
        keys = [a.key for a in resolver.list_aliases(GUILD, ALICE, USER_SCOPE)]
        assert keys == ["bs", "dm", "zz"]

    def test_scopes_are_separate(self, resolver):
        resolver.set_alias(GUILD, ALICE, USER_SCOPE, "bs", "bot-stuff")
        resolver.set_alias(GUILD, ALICE, GUILD_SCOPE, "dm", "design-mockup")
        assert [a.key for a in resolver.list_aliases(GUILD, ALICE, USER_SCOPE)] == ["bs"]
        assert [a.key for a in resolver.list_aliases(GUILD, BOB, GUILD_SCOPE)] == ["dm"]
