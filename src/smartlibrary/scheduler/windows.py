"""Candidate selection for the scheduled notification windows."""

from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select

from ..config import Config
from ..db.models import Book, LoanRecord, User
from ..db.schemas import LoanStatus
from ..db.sqlite import Database
from ..notifications.schemas import LoanCandidate
from .schemas import NotificationCategory

CENTS = Decimal("0.01")


class NotificationWindowSelector:
    """Read-only queries for loans due today, due tomorrow and overdue.

    Every query takes ``today`` so callers and tests control the clock.
    Results are ordered by due date, then loan ID.
    """

    def __init__(self, db: Database, config: Config):
        self.db = db
        self.config = config

    def select(
        self, category: NotificationCategory, today: Optional[date] = None
    ) -> list[LoanCandidate]:
        """Candidates for one category."""
        category = NotificationCategory(category)
        if category == NotificationCategory.DUE_TODAY:
            return self.due_today(today)
        if category == NotificationCategory.DUE_TOMORROW:
            return self.due_tomorrow(today)
        return self.overdue(today)

    def due_today(self, today: Optional[date] = None) -> list[LoanCandidate]:
        """Active loans due today. No flag filter, so repeated runs select them again."""
        today = today or self.config.local_date()
        return self._select(today, LoanRecord.due_date == today.isoformat())

    def due_tomorrow(self, today: Optional[date] = None) -> list[LoanCandidate]:
        """Active loans due tomorrow that have not had their reminder."""
        today = today or self.config.local_date()
        tomorrow = today + timedelta(days=1)
        return self._select(
            today,
            LoanRecord.due_date == tomorrow.isoformat(),
            LoanRecord.reminder_sent.is_(False),
        )

    def overdue(self, today: Optional[date] = None) -> list[LoanCandidate]:
        """Active loans past due that have not had their overdue notice.

        Each candidate carries the days overdue and the penalty so far.
        """
        today = today or self.config.local_date()
        candidates = self._select(
            today,
            LoanRecord.due_date < today.isoformat(),
            LoanRecord.return_date.is_(None),
            LoanRecord.overdue_notice_sent.is_(False),
        )
        return [c for c in candidates if c.days_overdue >= 1]

    def _select(self, today: date, *conditions) -> list[LoanCandidate]:
        stmt = (
            select(LoanRecord, User, Book)
            .join(User, LoanRecord.user_id == User.id)
            .join(Book, LoanRecord.book_id == Book.id)
            .where(LoanRecord.status == LoanStatus.BORROWED.value, *conditions)
            .order_by(LoanRecord.due_date, LoanRecord.id)
        )

        with self.db.get_session() as session:
            rows = session.execute(stmt).all()
            return [self._to_candidate(loan, user, book, today) for loan, user, book in rows]

    def _to_candidate(self, loan: LoanRecord, user: User, book: Book, today: date) -> LoanCandidate:
        due = date.fromisoformat(loan.due_date)
        days_overdue = max(0, (today - due).days)
        penalty = (Decimal(days_overdue) * self.config.unit_penalty).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )
        return LoanCandidate(
            loan_id=loan.id,
            user_id=user.id,
            book_id=book.id,
            user_email=user.email,
            user_name=user.full_name,
            book_title=book.title,
            book_author=book.author,
            borrow_date=datetime.fromisoformat(loan.borrow_date),
            due_date=due,
            days_overdue=days_overdue,
            penalty_amount=penalty,
        )
