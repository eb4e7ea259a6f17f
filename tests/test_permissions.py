"""Unit tests for capability levels and permission tables."""

import pytest

from repo_manager.auth.models import AuthOutcome
from repo_manager.permissions import (
    Permission,
    PermissionEntry,
    PermissionTable,
    is_sufficient,
)

NONE, READ, WRITE = Permission.NONE, Permission.READ, Permission.WRITE


class TestIsSufficient:
    """Test the fixed order NONE < READ < WRITE."""

    @pytest.mark.parametrize(
        "actual,required,expected",
        [
            (WRITE, NONE, True),
            (WRITE, READ, True),
            (WRITE, WRITE, True),
            (READ, NONE, True),
            (READ, READ, True),
            (READ, WRITE, False),
            (NONE, NONE, True),
            (NONE, READ, False),
            (NONE, WRITE, False),
        ],
    )
    def test_matrix(
        self, actual: Permission, required: Permission, expected: bool
    ) -> None:
        assert is_sufficient(actual, required) is expected
        assert actual.is_permitted(required) is expected

    def test_config_tags(self) -> None:
        assert Permission("none") is NONE
        assert Permission("read") is READ
        assert Permission("write") is WRITE


class TestPermissionEntry:
    def test_named_entry(self) -> None:
        entry = PermissionEntry(permission=WRITE, username="alice")
        assert entry.username == "alice"
        assert not entry.anonymous

    def test_anonymous_entry_needs_no_username(self) -> None:
        entry = PermissionEntry(permission=NONE, anonymous=True)
        assert entry.username is None

    @pytest.mark.parametrize("username", [None, ""])
    def test_named_entry_requires_username(self, username: str | None) -> None:
        with pytest.raises(ValueError):
            PermissionEntry(permission=READ, username=username)


class TestPermissionTable:
    """Test capability lookup."""

    def test_anonymous_defaults_to_read(self) -> None:
        table = PermissionTable([PermissionEntry(WRITE, "alice")])
        assert table.capability_for(AuthOutcome.anonymous()) is READ

    def test_configured_anonymous(self) -> None:
        table = PermissionTable([PermissionEntry(NONE, anonymous=True)])
        assert table.capability_for(AuthOutcome.anonymous()) is NONE

    def test_last_anonymous_entry_wins(self) -> None:
        """Test several anonymous entries resolve to the last one."""
        table = PermissionTable(
            [
                PermissionEntry(WRITE, anonymous=True),
                PermissionEntry(READ, "alice"),
                PermissionEntry(NONE, anonymous=True),
            ]
        )
        assert table.capability_for(AuthOutcome.anonymous()) is NONE

    def test_listed_user(self) -> None:
        table = PermissionTable(
            [PermissionEntry(WRITE, "alice"), PermissionEntry(READ, "bob")]
        )
        assert table.capability_for(AuthOutcome.authenticated("alice")) is WRITE
        assert table.capability_for(AuthOutcome.authenticated("bob")) is READ

    def test_unlisted_user_has_no_capability(self) -> None:
        """Test unlisted users are not silently given NONE."""
        table = PermissionTable([PermissionEntry(WRITE, "alice")])
        assert table.capability_for(AuthOutcome.authenticated("mallory")) is None

    def test_explicit_none_is_distinct_from_unlisted(self) -> None:
        table = PermissionTable([PermissionEntry(NONE, "bob")])
        assert table.capability_for(AuthOutcome.authenticated("bob")) is NONE

    def test_anonymous_entry_username_ignored(self) -> None:
        table = PermissionTable([PermissionEntry(WRITE, "alice", anonymous=True)])
        assert table.capability_for(AuthOutcome.authenticated("alice")) is None
        assert table.capability_for(AuthOutcome.anonymous()) is WRITE
