"""Tests for NotificationWindowSelector."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from smartlibrary.scheduler.schemas import NotificationCategory
from smartlibrary.scheduler.windows import NotificationWindowSelector

TODAY = date(2025, 3, 10)


@pytest.fixture
def selector(db, config) -> NotificationWindowSelector:
    return NotificationWindowSelector(db, config)


class TestDueToday:
    """Tests for the due-today window."""

    def test_selects_loans_due_today(self, selector, make_loan):
        due = make_loan(TODAY)
        make_loan(TODAY + timedelta(days=1))
        make_loan(TODAY - timedelta(days=1))

        candidates = selector.due_today(TODAY)

        assert [c.loan_id for c in candidates] == [due.id]
        assert candidates[0].days_overdue == 0

    def test_ignores_flags(self, selector, db, make_loan):
        """Repeated same-day runs select the same loan again."""
        loan = make_loan(TODAY)
        db.claim_notice_flag(loan.id, "reminder_sent")

        assert len(selector.due_today(TODAY)) == 1

    def test_excludes_returned(self, selector, lending, make_loan):
        loan = make_loan(TODAY)
        lending.return_loan(loan.id, today=TODAY)

        assert selector.due_today(TODAY) == []

    def test_joins_user_and_book(self, selector, make_user, make_book, make_loan):
        ada = make_user("Ada Lovelace")
        make_loan(TODAY, user=ada, book=make_book("Dune"))

        candidate = selector.due_today(TODAY)[0]

        assert candidate.user_email == ada.email
        assert candidate.user_name == "Ada Lovelace"
        assert candidate.book_title == "Dune"
        assert candidate.book_author == "J. R. R. Tolkien"


class TestDueTomorrow:
    """Tests for the due-tomorrow window."""

    def test_selects_unreminded_loans(self, selector, db, make_loan):
        first = make_loan(TODAY + timedelta(days=1))
        reminded = make_loan(TODAY + timedelta(days=1))
        db.claim_notice_flag(reminded.id, "reminder_sent")

        assert [c.loan_id for c in selector.due_tomorrow(TODAY)] == [first.id]

    def test_overdue_flag_does_not_suppress_reminder(self, selector, db, make_loan):
        loan = make_loan(TODAY + timedelta(days=1))
        db.claim_notice_flag(loan.id, "overdue_notice_sent")

        assert len(selector.due_tomorrow(TODAY)) == 1


class TestOverdue:
    """Tests for the overdue window."""

    def test_penalty_for_three_days(self, selector, make_loan):
        """Overdue by 3 days at 0.50 per day is 1.50."""
        make_loan(date(2025, 3, 7))

        candidate = selector.overdue(TODAY)[0]

        assert candidate.days_overdue == 3
        assert candidate.penalty_amount == Decimal("1.50")

    def test_excludes_due_today_and_notified(self, selector, db, make_loan):
        make_loan(TODAY)
        notified = make_loan(TODAY - timedelta(days=2))
        db.claim_notice_flag(notified.id, "overdue_notice_sent")

        assert selector.overdue(TODAY) == []

    def test_custom_unit_penalty(self, db, config, make_loan):
        config.unit_penalty = Decimal("0.25")
        make_loan(TODAY - timedelta(days=4))

        candidate = NotificationWindowSelector(db, config).overdue(TODAY)[0]

        assert candidate.penalty_amount == Decimal("1.00")

    def test_ordered_by_due_date(self, selector, make_loan):
        later = make_loan(TODAY - timedelta(days=1))
        earlier = make_loan(TODAY - timedelta(days=5))

        assert [c.loan_id for c in selector.overdue(TODAY)] == [earlier.id, later.id]


class TestSelect:
    """Tests for selecting by category."""

    @pytest.mark.parametrize(
        "category,offset",
        [
            (NotificationCategory.DUE_TODAY, 0),
            (NotificationCategory.DUE_TOMORROW, 1),
            (NotificationCategory.OVERDUE, -2),
        ],
    )
    def test_select_by_category(self, selector, make_loan, category, offset):
        loan = make_loan(TODAY + timedelta(days=offset))
        assert [c.loan_id for c in selector.select(category, TODAY)] == [loan.id]
