"""Tests for AccountManager and UserDirectory."""

from datetime import date

import pytest

from smartlibrary.accounts.directory import UserDirectory
from smartlibrary.accounts.manager import AccountError, AccountManager
from smartlibrary.db.schemas import ApprovalStatus, NotificationKind, UserCreate
from smartlibrary.db.sqlite import NotFoundError


class TestRegistration:
    """Tests for registering and approving accounts."""

    def test_register_is_pending_and_welcomed(self, accounts: AccountManager, channel):
        user = accounts.register(
            UserCreate(full_name="Grace Hopper", email="Grace@School.Example", status=ApprovalStatus.APPROVED)
        )

        assert user.status == ApprovalStatus.PENDING.value
        assert user.email == "grace@school.example"
        assert channel.subjects_for("grace@school.example") == [
            "Welcome to Smart Library! 👋 Your reading journey begins now"
        ]

    def test_duplicate_email(self, accounts: AccountManager):
        accounts.register(UserCreate(full_name="Grace Hopper", email="grace@school.example"))

        with pytest.raises(AccountError, match="already registered"):
            accounts.register(UserCreate(full_name="Other Grace", email="GRACE@school.example"))

    def test_approve(self, accounts: AccountManager, db, channel):
        user = accounts.register(UserCreate(full_name="Grace Hopper", email="grace@school.example"))

        accounts.approve(user.id)

        assert UserDirectory(db).get_approval_status(user.id) == ApprovalStatus.APPROVED
        assert channel.subjects_for(user.email)[-1] == "🎉 Your Smart Library account has been approved!"

    def test_reject(self, accounts: AccountManager, db, channel):
        user = accounts.register(UserCreate(full_name="Grace Hopper", email="grace@school.example"))

        accounts.reject(user.id)

        assert UserDirectory(db).get_approval_status(user.id) == ApprovalStatus.REJECTED
        assert channel.subjects_for(user.email)[-1] == "Smart Library Account Registration Update"

    def test_approve_unknown_user(self, accounts: AccountManager):
        with pytest.raises(NotFoundError):
            accounts.approve("missing")

    def test_without_dispatcher(self, db, config):
        manager = AccountManager(db, config)

        user = manager.register(UserCreate(full_name="Grace Hopper", email="grace@school.example"))

        assert user.id

    def test_email_failure_does_not_block_registration(self, accounts: AccountManager, channel, db):
        channel.fail_for.add("grace@school.example")
        channel.retryable = False

        user = accounts.register(UserCreate(full_name="Grace Hopper", email="grace@school.example"))

        assert db.get_user(user.id) is not None


class TestActivity:
    """Tests for activity tracking emails."""

    def test_inactive_after_more_than_three_days(self, accounts: AccountManager, user, channel):
        accounts.touch_activity(user.id, date(2025, 3, 1))

        check = accounts.check_activity(user.id, today=date(2025, 3, 5))

        assert check.kind == NotificationKind.USER_INACTIVE
        assert check.days_since_activity == 4
        assert check.outcome.delivered
        assert channel.subjects_for(user.email)[-1] == "We miss you!"

    def test_active_within_three_days(self, accounts: AccountManager, user, channel):
        accounts.touch_activity(user.id, date(2025, 3, 2))

        check = accounts.check_activity(user.id, today=date(2025, 3, 5))

        assert check.kind == NotificationKind.USER_ACTIVE
        assert check.days_since_activity == 3
        assert channel.subjects_for(user.email)[-1] == "You’re back! 🔥"

    def test_touch_unknown_user(self, accounts: AccountManager):
        assert accounts.touch_activity("missing") is False

    def test_check_unknown_user(self, accounts: AccountManager):
        with pytest.raises(NotFoundError):
            accounts.check_activity("missing")


class TestUserDirectory:
    """Tests for approval lookups."""

    def test_unknown_user(self, db):
        assert UserDirectory(db).get_approval_status("missing") is None

    def test_pending_user(self, db, make_user):
        user = make_user(status=ApprovalStatus.PENDING)

        assert UserDirectory(db).get_approval_status(user.id) == ApprovalStatus.PENDING
