"""SQLite database operations.

Handles database connection, session management, and the row-level
primitives the lending and notification layers build on. Every mutation of
``books.available_copies`` and of the loan notice flags is a single
conditional UPDATE whose affected-row count decides the outcome.
"""

import os
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base, Book, LoanRecord, NotificationLog, User
from .schemas import ApprovalStatus, BookCreate, LoanStatus, UserCreate

# Loan columns that record a scheduled notice was delivered
NOTICE_FLAGS = ("reminder_sent", "overdue_notice_sent")


class StoreError(Exception):
    """Raised when the persistence layer is unreachable."""

    pass


class NotFoundError(Exception):
    """Raised when a referenced user, book or loan does not exist."""

    pass


class Database:
    """Database connection and operations manager."""

    def __init__(self, db_path: Optional[str] = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses
                     SMARTLIBRARY_DB_PATH env var or default location.
        """
        if db_path is None:
            db_path = os.environ.get(
                "SMARTLIBRARY_DB_PATH",
                str(Path.home() / ".smartlibrary" / "library.db"),
            )

        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"

        if not self._is_memory:
            self._ensure_directory()

        # For in-memory databases, use StaticPool to reuse the same connection
        # so all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            raise StoreError(f"Database unavailable: {e.orig}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ========================================================================
    # User Operations
    # ========================================================================

    def create_user(self, user: UserCreate, session: Optional[Session] = None) -> User:
        """Create a new user record."""

        def _create(s: Session) -> User:
            db_user = User(
                full_name=user.full_name,
                email=user.email,
                status=user.status.value,
                role=user.role.value,
            )
            s.add(db_user)
            s.flush()
            return db_user

        if session:
            return _create(session)
        else:
            with self.get_session() as s:
                db_user = _create(s)
                s.expunge(db_user)
                return db_user

    def get_user(self, user_id: str, session: Optional[Session] = None) -> Optional[User]:
        """Get a user by ID."""

        def _get(s: Session) -> Optional[User]:
            return s.get(User, user_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                db_user = _get(s)
                if db_user:
                    s.expunge(db_user)
                return db_user

    def get_user_by_email(
        self, email: str, session: Optional[Session] = None
    ) -> Optional[User]:
        """Get a user by email address (case insensitive)."""

        def _get(s: Session) -> Optional[User]:
            stmt = select(User).where(func.lower(User.email) == email.strip().lower())
            return s.execute(stmt).scalar_one_or_none()

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                db_user = _get(s)
                if db_user:
                    s.expunge(db_user)
                return db_user

    def get_user_approval_status(self, user_id: str) -> Optional[ApprovalStatus]:
        """Approval status of a user, or None if the user does not exist."""
        with self.get_session() as s:
            status = s.execute(
                select(User.status).where(User.id == user_id)
            ).scalar_one_or_none()
            return ApprovalStatus(status) if status else None

    def set_user_status(
        self, user_id: str, status: ApprovalStatus, session: Optional[Session] = None
    ) -> Optional[User]:
        """Change a user's approval status."""

        def _set(s: Session) -> Optional[User]:
            db_user = s.get(User, user_id)
            if not db_user:
                return None
            db_user.status = status.value
            s.flush()
            return db_user

        if session:
            return _set(session)
        else:
            with self.get_session() as s:
                db_user = _set(s)
                if db_user:
                    s.expunge(db_user)
                return db_user

    def touch_user_activity(
        self, user_id: str, day: Optional[date] = None, session: Optional[Session] = None
    ) -> bool:
        """Record that a user was active on the given day."""

        def _touch(s: Session) -> bool:
            result = s.execute(
                update(User)
                .where(User.id == user_id)
                .values(last_activity_date=(day or date.today()).isoformat())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

        if session:
            return _touch(session)
        else:
            with self.get_session() as s:
                return _touch(s)

    # ========================================================================
    # Book / Inventory Operations
    # ========================================================================

    def create_book(self, book: BookCreate, session: Optional[Session] = None) -> Book:
        """Create a new book with all copies available."""

        def _create(s: Session) -> Book:
            db_book = Book(
                title=book.title,
                author=book.author,
                genre=book.genre,
                total_copies=book.total_copies,
                available_copies=book.total_copies,
            )
            s.add(db_book)
            s.flush()
            return db_book

        if session:
            return _create(session)
        else:
            with self.get_session() as s:
                db_book = _create(s)
                s.expunge(db_book)
                return db_book

    def get_book(self, book_id: str, session: Optional[Session] = None) -> Optional[Book]:
        """Get a book by ID."""

        def _get(s: Session) -> Optional[Book]:
            return s.get(Book, book_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                db_book = _get(s)
                if db_book:
                    s.expunge(db_book)
                return db_book

    def get_all_books(self, session: Optional[Session] = None) -> list[Book]:
        """Get all books."""

        def _get(s: Session) -> list[Book]:
            stmt = select(Book).order_by(Book.title)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                books = _get(s)
                for db_book in books:
                    s.expunge(db_book)
                return books

    def decrement_available(self, book_id: str, session: Session) -> bool:
        """Take one copy off the shelf if any is left.

        Returns:
            True if a copy was taken, False if none was available
        """
        result = session.execute(
            update(Book)
            .where(Book.id == book_id, Book.available_copies > 0)
            .values(available_copies=Book.available_copies - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def increment_available(self, book_id: str, session: Session) -> bool:
        """Put one copy back, never above the total.

        Returns:
            True if a copy was restored, False if the book is already full
        """
        result = session.execute(
            update(Book)
            .where(Book.id == book_id, Book.available_copies < Book.total_copies)
            .values(available_copies=Book.available_copies + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def count_active_loans(self, book_id: str, session: Optional[Session] = None) -> int:
        """Count BORROWED loans for a book."""

        def _count(s: Session) -> int:
            return s.execute(
                select(func.count())
                .select_from(LoanRecord)
                .where(
                    LoanRecord.book_id == book_id,
                    LoanRecord.status == LoanStatus.BORROWED.value,
                )
            ).scalar() or 0

        if session:
            return _count(session)
        else:
            with self.get_session() as s:
                return _count(s)

    # ========================================================================
    # Loan Record Operations
    # ========================================================================

    def create_loan(
        self,
        user_id: str,
        book_id: str,
        borrow_date: datetime,
        due_date: date,
        session: Session,
    ) -> LoanRecord:
        """Insert a new BORROWED loan. Caller owns the transaction."""
        loan = LoanRecord(
            user_id=user_id,
            book_id=book_id,
            status=LoanStatus.BORROWED.value,
            borrow_date=borrow_date.isoformat(),
            due_date=due_date.isoformat(),
            reminder_sent=False,
            overdue_notice_sent=False,
        )
        session.add(loan)
        session.flush()
        return loan

    def get_loan(self, loan_id: str, session: Optional[Session] = None) -> Optional[LoanRecord]:
        """Get a loan by ID."""

        def _get(s: Session) -> Optional[LoanRecord]:
            return s.get(LoanRecord, loan_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                loan = _get(s)
                if loan:
                    s.expunge(loan)
                return loan

    def get_active_loan(
        self, user_id: str, book_id: str, session: Optional[Session] = None
    ) -> Optional[LoanRecord]:
        """Get the BORROWED loan for a (user, book) pair, if any."""

        def _get(s: Session) -> Optional[LoanRecord]:
            stmt = select(LoanRecord).where(
                LoanRecord.user_id == user_id,
                LoanRecord.book_id == book_id,
                LoanRecord.status == LoanStatus.BORROWED.value,
            )
            return s.execute(stmt).scalars().first()

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                loan = _get(s)
                if loan:
                    s.expunge(loan)
                return loan

    def list_loans(
        self,
        user_id: Optional[str] = None,
        book_id: Optional[str] = None,
        status: Optional[LoanStatus] = None,
        session: Optional[Session] = None,
    ) -> list[LoanRecord]:
        """List loans with optional filters, newest first."""

        def _get(s: Session) -> list[LoanRecord]:
            stmt = select(LoanRecord)
            if user_id:
                stmt = stmt.where(LoanRecord.user_id == user_id)
            if book_id:
                stmt = stmt.where(LoanRecord.book_id == book_id)
            if status:
                stmt = stmt.where(LoanRecord.status == status.value)
            stmt = stmt.order_by(LoanRecord.borrow_date.desc())
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                loans = _get(s)
                for loan in loans:
                    s.expunge(loan)
                return loans

    def mark_returned(self, loan_id: str, return_date: date, session: Session) -> bool:
        """Move a loan from BORROWED to RETURNED.

        Returns:
            True if this call performed the transition, False if the loan
            was not BORROWED
        """
        result = session.execute(
            update(LoanRecord)
            .where(
                LoanRecord.id == loan_id,
                LoanRecord.status == LoanStatus.BORROWED.value,
            )
            .values(
                status=LoanStatus.RETURNED.value,
                return_date=return_date.isoformat(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def claim_notice_flag(self, loan_id: str, flag: str) -> bool:
        """Set a notice flag only if it is still unset.

        Returns:
            True if this caller now owns the notice for the loan
        """
        column = _flag_column(flag)
        with self.get_session() as s:
            result = s.execute(
                update(LoanRecord)
                .where(
                    LoanRecord.id == loan_id,
                    LoanRecord.status == LoanStatus.BORROWED.value,
                    column.is_(False),
                )
                .values({flag: True})
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def release_notice_flag(self, loan_id: str, flag: str) -> None:
        """Clear a notice flag after a failed delivery so a later run retries."""
        column = _flag_column(flag)
        with self.get_session() as s:
            s.execute(
                update(LoanRecord)
                .where(LoanRecord.id == loan_id, column.is_(True))
                .values({flag: False})
                .execution_options(synchronize_session=False)
            )

    # ========================================================================
    # Audit Log Operations
    # ========================================================================

    def add_notification_log(
        self, entry: NotificationLog, session: Optional[Session] = None
    ) -> str:
        """Append an audit row and return its ID."""

        def _add(s: Session) -> str:
            s.add(entry)
            s.flush()
            return entry.id

        if session:
            return _add(session)
        else:
            with self.get_session() as s:
                return _add(s)


def _flag_column(flag: str):
    if flag not in NOTICE_FLAGS:
        raise ValueError(f"Unknown notice flag: {flag}")
    return getattr(LoanRecord, flag)


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        _db = Database(db_path)
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    _db = None
