"""Tests for the Database storage operations."""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from smartlibrary.db.models import LoanRecord
from smartlibrary.db.schemas import ApprovalStatus, BookCreate, LoanStatus, UserCreate
from smartlibrary.db.sqlite import Database, StoreError

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestUsers:
    """Tests for user operations."""

    def test_create_and_get_user(self, db: Database):
        """Test creating a user."""
        user = db.create_user(UserCreate(full_name="Ada", email="Ada@School.example"))

        assert user.id is not None
        assert user.email == "ada@school.example"
        assert user.status == ApprovalStatus.PENDING.value
        assert db.get_user(user.id).full_name == "Ada"

    def test_get_user_by_email_is_case_insensitive(self, db: Database):
        db.create_user(UserCreate(full_name="Ada", email="ada@school.example"))
        assert db.get_user_by_email("ADA@school.example") is not None

    def test_invalid_email_rejected(self):
        with pytest.raises(ValueError):
            UserCreate(full_name="Ada", email="not-an-email")

    def test_approval_status(self, db: Database):
        user = db.create_user(UserCreate(full_name="Ada", email="ada@school.example"))

        assert db.get_user_approval_status(user.id) == ApprovalStatus.PENDING
        db.set_user_status(user.id, ApprovalStatus.APPROVED)
        assert db.get_user_approval_status(user.id) == ApprovalStatus.APPROVED
        assert db.get_user_approval_status("missing") is None

    def test_touch_activity(self, db: Database):
        user = db.create_user(UserCreate(full_name="Ada", email="ada@school.example"))

        assert db.touch_user_activity(user.id, date(2025, 1, 2))
        assert db.get_user(user.id).last_activity_date == "2025-01-02"
        assert not db.touch_user_activity("missing")


class TestInventory:
    """Tests for conditional copy count updates."""

    def test_new_book_has_all_copies_available(self, db: Database):
        book = db.create_book(BookCreate(title="Dune", author="Frank Herbert", total_copies=2))
        assert book.available_copies == 2

    def test_decrement_stops_at_zero(self, db: Database):
        """Test that the count never goes negative."""
        book = db.create_book(BookCreate(title="Dune", author="Frank Herbert", total_copies=2))

        with db.get_session() as session:
            assert db.decrement_available(book.id, session)
            assert db.decrement_available(book.id, session)
            assert not db.decrement_available(book.id, session)

        assert db.get_book(book.id).available_copies == 0

    def test_stale_readers_cannot_both_take_last_copy(self, db: Database):
        """Two callers that both saw one copy left: only one gets it."""
        book = db.create_book(BookCreate(title="Dune", author="Frank Herbert", total_copies=1))
        assert db.get_book(book.id).available_copies == 1
        assert db.get_book(book.id).available_copies == 1

        with db.get_session() as first:
            took_first = db.decrement_available(book.id, first)
        with db.get_session() as second:
            took_second = db.decrement_available(book.id, second)

        assert [took_first, took_second] == [True, False]
        assert db.get_book(book.id).available_copies == 0

    def test_increment_never_exceeds_total(self, db: Database):
        book = db.create_book(BookCreate(title="Dune", author="Frank Herbert", total_copies=1))

        with db.get_session() as session:
            assert not db.increment_available(book.id, session)

        assert db.get_book(book.id).available_copies == 1

    def test_total_copies_must_be_positive(self):
        with pytest.raises(ValueError):
            BookCreate(title="Dune", author="Frank Herbert", total_copies=0)


class TestLoans:
    """Tests for loan record operations."""

    @pytest.fixture
    def loan(self, db: Database, user, book) -> LoanRecord:
        with db.get_session() as session:
            loan = db.create_loan(user.id, book.id, NOW, date(2025, 3, 8), session)
            session.expunge(loan)
        return loan

    def test_create_loan(self, db: Database, loan: LoanRecord):
        stored = db.get_loan(loan.id)

        assert stored.status == LoanStatus.BORROWED.value
        assert stored.due_date == "2025-03-08"
        assert stored.reminder_sent is False
        assert stored.overdue_notice_sent is False

    def test_second_active_loan_for_pair_violates_index(self, db: Database, loan: LoanRecord):
        with pytest.raises(IntegrityError):
            with db.get_session() as session:
                db.create_loan(loan.user_id, loan.book_id, NOW, date(2025, 3, 8), session)

    def test_new_loan_allowed_after_return(self, db: Database, loan: LoanRecord):
        with db.get_session() as session:
            assert db.mark_returned(loan.id, date(2025, 3, 5), session)
            db.create_loan(loan.user_id, loan.book_id, NOW, date(2025, 3, 12), session)

        assert len(db.list_loans(user_id=loan.user_id)) == 2

    def test_mark_returned_only_once(self, db: Database, loan: LoanRecord):
        with db.get_session() as session:
            assert db.mark_returned(loan.id, date(2025, 3, 5), session)
            assert not db.mark_returned(loan.id, date(2025, 3, 6), session)

        stored = db.get_loan(loan.id)
        assert stored.status == LoanStatus.RETURNED.value
        assert stored.return_date == "2025-03-05"

    def test_claim_flag_once(self, db: Database, loan: LoanRecord):
        assert db.claim_notice_flag(loan.id, "reminder_sent")
        assert not db.claim_notice_flag(loan.id, "reminder_sent")
        assert db.get_loan(loan.id).reminder_sent is True
        assert db.get_loan(loan.id).overdue_notice_sent is False

    def test_release_flag(self, db: Database, loan: LoanRecord):
        db.claim_notice_flag(loan.id, "overdue_notice_sent")
        db.release_notice_flag(loan.id, "overdue_notice_sent")

        assert db.get_loan(loan.id).overdue_notice_sent is False
        assert db.claim_notice_flag(loan.id, "overdue_notice_sent")

    def test_unknown_flag(self, db: Database, loan: LoanRecord):
        with pytest.raises(ValueError):
            db.claim_notice_flag(loan.id, "status")

    def test_list_loans_by_status(self, db: Database, loan: LoanRecord):
        assert len(db.list_loans(status=LoanStatus.BORROWED)) == 1
        assert db.list_loans(status=LoanStatus.RETURNED) == []

    def test_derived_overdue(self, db: Database, loan: LoanRecord):
        stored = db.get_loan(loan.id)

        assert not stored.is_overdue(date(2025, 3, 8))
        assert stored.days_overdue(date(2025, 3, 11)) == 3


class TestStoreErrors:
    """Tests for persistence failures."""

    def test_missing_tables_raise_store_error(self):
        """Test that OperationalError surfaces as StoreError."""
        database = Database(":memory:")

        with pytest.raises(StoreError):
            database.get_user("anything")
