"""Pydantic schemas and enums shared by the storage layer."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class ApprovalStatus(str, Enum):
    """Account approval status kept by the user directory."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class UserRole(str, Enum):
    """Role of a library account."""

    USER = "USER"
    ADMIN = "ADMIN"


class LoanStatus(str, Enum):
    """Stored loan states. Overdue is derived, never stored."""

    BORROWED = "BORROWED"
    RETURNED = "RETURNED"


class NotificationKind(str, Enum):
    """Kinds of email the platform sends."""

    WELCOME = "WELCOME"
    ACCOUNT_APPROVAL = "ACCOUNT_APPROVAL"
    ACCOUNT_REJECTION = "ACCOUNT_REJECTION"
    BORROW_CONFIRMATION = "BORROW_CONFIRMATION"
    DUE_REMINDER = "DUE_REMINDER"  # Due tomorrow
    OVERDUE_NOTICE = "OVERDUE_NOTICE"  # Overdue penalty notice
    RETURN_CONFIRMATION = "RETURN_CONFIRMATION"
    USER_ACTIVE = "USER_ACTIVE"
    USER_INACTIVE = "USER_INACTIVE"
    DUE_TODAY = "DUE_TODAY"


class DeliveryStatus(str, Enum):
    """Outcome recorded in the audit log."""

    SENT = "SENT"
    FAILED = "FAILED"
    PENDING = "PENDING"


# ============================================================================
# Books
# ============================================================================


class BookCreate(BaseModel):
    """Schema for adding a book to the inventory."""

    title: str = Field(..., min_length=1, max_length=255)
    author: str = Field(..., min_length=1, max_length=255)
    genre: Optional[str] = Field(None, max_length=100)
    total_copies: int = Field(default=1, ge=1)


class BookResponse(BaseModel):
    """Schema for book responses."""

    id: UUID
    title: str
    author: str
    genre: Optional[str]
    total_copies: int
    available_copies: int

    model_config = {"from_attributes": True}


# ============================================================================
# Users
# ============================================================================


class UserCreate(BaseModel):
    """Schema for registering an account."""

    full_name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    status: ApprovalStatus = ApprovalStatus.PENDING
    role: UserRole = UserRole.USER

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Lower-case the address and require an @."""
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v


class UserResponse(BaseModel):
    """Schema for user responses."""

    id: UUID
    full_name: str
    email: str
    status: ApprovalStatus
    role: UserRole
    last_activity_date: Optional[date]

    model_config = {"from_attributes": True}


# ============================================================================
# Loans
# ============================================================================


class LoanResponse(BaseModel):
    """Schema for loan responses."""

    id: UUID
    user_id: UUID
    book_id: UUID
    status: LoanStatus
    borrow_date: datetime
    due_date: date
    return_date: Optional[date]
    reminder_sent: bool
    overdue_notice_sent: bool

    model_config = {"from_attributes": True}


# ============================================================================
# Audit log
# ============================================================================


class NotificationLogResponse(BaseModel):
    """Schema for audit log rows."""

    id: UUID
    recipient_email: str
    recipient_name: Optional[str]
    notification_kind: NotificationKind
    delivery_status: DeliveryStatus
    subject: str
    error_message: Optional[str]
    sent_at: datetime
    attempts: int
    trigger_id: Optional[str]
    loan_id: Optional[str]
    metadata: dict[str, Any] = Field(default_factory=dict)
