"""SQLAlchemy ORM models.

Tables:
- users: Library accounts (owned by the user directory)
- books: Inventory with total and available copy counts
- loans: Borrow records
- notification_logs: Append-only audit log of notification attempts
"""

import json
from datetime import date, datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .schemas import ApprovalStatus, DeliveryStatus, LoanStatus, UserRole


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Current UTC time as an ISO string."""
    return datetime.now(timezone.utc).isoformat()


class User(Base):
    """Library account."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ApprovalStatus.PENDING.value, index=True
    )
    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER.value)
    last_activity_date: Mapped[Optional[str]] = mapped_column(
        String(10), default=lambda: date.today().isoformat()
    )  # ISO date
    created_at: Mapped[str] = mapped_column(String(32), default=utc_now_iso)

    loans: Mapped[list["LoanRecord"]] = relationship("LoanRecord", back_populates="user")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', status={self.status})>"


class Book(Base):
    """Book inventory record."""

    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("total_copies >= 1", name="ck_books_total_positive"),
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_available_range",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    genre: Mapped[Optional[str]] = mapped_column(String(100))
    total_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    available_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[str] = mapped_column(String(32), default=utc_now_iso)

    loans: Mapped[list["LoanRecord"]] = relationship("LoanRecord", back_populates="book")

    def __repr__(self) -> str:
        return (
            f"<Book(id={self.id}, title='{self.title}', "
            f"available={self.available_copies}/{self.total_copies})>"
        )


class LoanRecord(Base):
    """A single borrow transaction."""

    __tablename__ = "loans"
    __table_args__ = (
        # At most one active loan per (user, book)
        Index(
            "uq_loans_active_user_book",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=text("status = 'BORROWED'"),
            postgresql_where=text("status = 'BORROWED'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    book_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("books.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=LoanStatus.BORROWED.value, nullable=False, index=True
    )

    # Dates
    borrow_date: Mapped[str] = mapped_column(String(32), nullable=False)  # ISO datetime
    due_date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # ISO date
    return_date: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date

    # Idempotency flags for scheduled notices
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    overdue_notice_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[str] = mapped_column(String(32), default=utc_now_iso)

    user: Mapped["User"] = relationship("User", back_populates="loans")
    book: Mapped["Book"] = relationship("Book", back_populates="loans")

    def __repr__(self) -> str:
        return f"<LoanRecord(id={self.id}, book_id={self.book_id}, status={self.status})>"

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.BORROWED.value

    def days_overdue(self, today: Optional[date] = None) -> int:
        """Whole days past the due date (0 if not overdue)."""
        if not self.is_active or self.return_date:
            return 0
        days = ((today or date.today()) - date.fromisoformat(self.due_date)).days
        return max(0, days)

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """Derived overdue condition."""
        return self.days_overdue(today) > 0


class NotificationLog(Base):
    """Audit log row, one per notification attempt."""

    __tablename__ = "notification_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    recipient_email: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    recipient_name: Mapped[Optional[str]] = mapped_column(String(255))
    notification_kind: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    delivery_status: Mapped[str] = mapped_column(
        String(20), default=DeliveryStatus.SENT.value, nullable=False, index=True
    )
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    sent_at: Mapped[str] = mapped_column(String(32), default=utc_now_iso, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    trigger_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    loan_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    metadata_json: Mapped[Optional[str]] = mapped_column("metadata", Text)  # JSON dict

    def __repr__(self) -> str:
        return (
            f"<NotificationLog(id={self.id}, kind={self.notification_kind}, "
            f"status={self.delivery_status})>"
        )

    def get_metadata(self) -> dict[str, Any]:
        """Get metadata as a dict."""
        if not self.metadata_json:
            return {}
        try:
            return json.loads(self.metadata_json)
        except json.JSONDecodeError:
            return {}

    def set_metadata(self, metadata: Optional[dict[str, Any]]) -> None:
        """Set metadata from a dict."""
        self.metadata_json = json.dumps(metadata, default=str) if metadata else None
