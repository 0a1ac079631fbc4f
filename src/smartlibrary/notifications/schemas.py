"""Data shapes passed through the notification pipeline."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel

from ..db.schemas import NotificationKind


class LoanCandidate(BaseModel):
    """An active loan selected for a scheduled notice, joined with its borrower and book."""

    loan_id: str
    user_id: str
    book_id: str
    user_email: str
    user_name: str
    book_title: str
    book_author: str
    borrow_date: datetime
    due_date: date
    days_overdue: int = 0
    penalty_amount: Decimal = Decimal("0")

    def template_context(self) -> dict[str, Any]:
        """Variables for the loan email templates."""
        return {
            "full_name": self.user_name,
            "book_title": self.book_title,
            "book_author": self.book_author,
            "borrow_date": self.borrow_date.date().isoformat(),
            "due_date": self.due_date.isoformat(),
            "days_overdue": self.days_overdue,
            "penalty_amount": self.penalty_amount,
        }


@dataclass
class NotificationRequest:
    """One email to render and deliver."""

    kind: NotificationKind
    recipient_email: str
    recipient_name: str
    context: dict[str, Any] = field(default_factory=dict)
    loan_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_loan(cls, candidate: LoanCandidate, kind: NotificationKind) -> "NotificationRequest":
        """Build a request from a loan candidate."""
        metadata: dict[str, Any] = {
            "book_id": candidate.book_id,
            "book_title": candidate.book_title,
            "due_date": candidate.due_date.isoformat(),
        }
        if kind == NotificationKind.OVERDUE_NOTICE:
            metadata["days_overdue"] = candidate.days_overdue
            metadata["penalty_amount"] = str(candidate.penalty_amount)
        return cls(
            kind=kind,
            recipient_email=candidate.user_email,
            recipient_name=candidate.user_name,
            context=candidate.template_context(),
            loan_id=candidate.loan_id,
            metadata=metadata,
        )


@dataclass
class DispatchOutcome:
    """Result of dispatching one notification."""

    delivered: bool
    audit_row_id: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None
    skipped: bool = False  # Another run already owns this notice
    dry_run: bool = False


@dataclass
class BatchResult:
    """Aggregate result of dispatching a list of candidates."""

    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    dry_run: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def merge(self, other: "BatchResult") -> None:
        self.processed += other.processed
        self.sent += other.sent
        self.failed += other.failed
        self.skipped += other.skipped
        self.dry_run += other.dry_run
        self.details.extend(other.details)
