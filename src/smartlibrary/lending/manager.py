"""Lending manager for borrow and return operations."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError

from ..accounts.directory import UserDirectory
from ..config import Config
from ..db.models import LoanRecord
from ..db.schemas import ApprovalStatus, LoanStatus, NotificationKind
from ..db.sqlite import Database, StoreError
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.schemas import NotificationRequest
from .schemas import BorrowResult, LendingError, ReturnResult

logger = logging.getLogger(__name__)


class LendingManager:
    """Manages the loan lifecycle: BORROWED, then RETURNED exactly once.

    Every change to a book's available copies is a conditional update, so
    concurrent borrows and returns cannot push the count out of range.
    """

    def __init__(
        self,
        db: Database,
        config: Config,
        directory: Optional[UserDirectory] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        """Initialize lending manager.

        Args:
            db: Database instance
            config: Application configuration (loan period)
            directory: Approval status lookup, defaults to the local users table
            dispatcher: Sends borrow and return confirmations; None disables them
        """
        self.db = db
        self.config = config
        self.directory = directory or UserDirectory(db)
        self.dispatcher = dispatcher

    # -------------------------------------------------------------------------
    # Borrowing
    # -------------------------------------------------------------------------

    def borrow(
        self,
        user_id: str,
        book_id: str,
        now: Optional[datetime] = None,
    ) -> BorrowResult:
        """Borrow one copy of a book.

        Args:
            user_id: Borrower ID
            book_id: Book ID
            now: Borrow timestamp (defaults to the current time); the due date
                counts from its date on the library calendar

        Returns:
            BorrowResult; on any error nothing has changed
        """
        now = now or datetime.now(timezone.utc)
        borrow_day = self.config.local_date(now)

        status = self.directory.get_approval_status(user_id)
        if status is None:
            return BorrowResult.failed(LendingError.USER_NOT_FOUND)
        if status != ApprovalStatus.APPROVED:
            return BorrowResult.failed(LendingError.USER_NOT_ELIGIBLE)

        try:
            with self.db.get_session() as session:
                book = self.db.get_book(book_id, session=session)
                if not book:
                    return BorrowResult.failed(LendingError.BOOK_NOT_FOUND)
                book_title, book_author = book.title, book.author

                if self.db.get_active_loan(user_id, book_id, session=session):
                    return BorrowResult.failed(LendingError.ALREADY_BORROWED)

                if not self.db.decrement_available(book_id, session):
                    return BorrowResult.failed(LendingError.OUT_OF_COPIES)

                due_date = borrow_day + timedelta(days=self.config.loan_period_days)
                loan = self.db.create_loan(user_id, book_id, now, due_date, session)
                session.expunge(loan)
        except IntegrityError:
            # A concurrent borrow of the same book by the same user won
            logger.info("Concurrent borrow of %s by %s rejected", book_id, user_id)
            return BorrowResult.failed(LendingError.ALREADY_BORROWED)

        logger.info("User %s borrowed '%s' until %s", user_id, book_title, loan.due_date)
        self._touch(user_id, borrow_day)
        self._notify(
            loan,
            NotificationKind.BORROW_CONFIRMATION,
            {
                "book_title": book_title,
                "book_author": book_author,
                "borrow_date": borrow_day.isoformat(),
                "due_date": loan.due_date,
            },
        )

        return BorrowResult(success=True, loan=loan, message="Book borrowed successfully")

    # -------------------------------------------------------------------------
    # Returning
    # -------------------------------------------------------------------------

    def return_loan(self, loan_id: str, today: Optional[date] = None) -> ReturnResult:
        """Return a borrowed book.

        Returning a loan that is already RETURNED succeeds without touching
        the inventory or sending another email.

        Args:
            loan_id: Loan ID
            today: Return date (defaults to today)

        Returns:
            ReturnResult
        """
        today = today or self.config.local_date()

        with self.db.get_session() as session:
            loan = self.db.get_loan(loan_id, session=session)
            if not loan:
                return ReturnResult.failed(LendingError.LOAN_NOT_FOUND)

            transitioned = self.db.mark_returned(loan_id, today, session)
            if transitioned and not self.db.increment_available(loan.book_id, session):
                logger.warning("Book %s already had all copies available", loan.book_id)

            session.refresh(loan)
            book = self.db.get_book(loan.book_id, session=session)
            book_title = book.title if book else ""
            session.expunge(loan)

        if not transitioned:
            return ReturnResult(
                success=True,
                loan=loan,
                message="Book was already returned",
                already_returned=True,
            )

        logger.info("Loan %s returned on %s", loan_id, today)
        self._touch(loan.user_id, today)
        self._notify(
            loan,
            NotificationKind.RETURN_CONFIRMATION,
            {"book_title": book_title, "return_date": today.isoformat()},
        )

        return ReturnResult(success=True, loan=loan, message="Book returned successfully")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_loan(self, loan_id: str) -> Optional[LoanRecord]:
        """Get a loan by ID."""
        return self.db.get_loan(loan_id)

    def list_loans(
        self,
        user_id: Optional[str] = None,
        status: Optional[LoanStatus] = None,
    ) -> list[LoanRecord]:
        """List loans, newest first."""
        return self.db.list_loans(user_id=user_id, status=status)

    def _notify(self, loan: LoanRecord, kind: NotificationKind, context: dict) -> None:
        if not self.dispatcher:
            return
        user = self.db.get_user(loan.user_id)
        if not user:
            return
        self.dispatcher.send_quietly(
            NotificationRequest(
                kind=kind,
                recipient_email=user.email,
                recipient_name=user.full_name,
                context=context,
                loan_id=loan.id,
                metadata={"book_id": loan.book_id},
            )
        )

    def _touch(self, user_id: str, day: date) -> None:
        try:
            self.db.touch_user_activity(user_id, day)
        except StoreError as e:
            logger.warning("Could not record activity for %s: %s", user_id, e)
