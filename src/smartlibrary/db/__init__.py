"""Database module for the lending platform's SQL storage."""

from .models import Book, LoanRecord, NotificationLog, User
from .schemas import (
    ApprovalStatus,
    BookCreate,
    BookResponse,
    DeliveryStatus,
    LoanResponse,
    LoanStatus,
    NotificationKind,
    NotificationLogResponse,
    UserCreate,
    UserResponse,
    UserRole,
)
from .sqlite import Database, NotFoundError, StoreError, get_db

__all__ = [
    "Book",
    "LoanRecord",
    "NotificationLog",
    "User",
    "ApprovalStatus",
    "BookCreate",
    "BookResponse",
    "DeliveryStatus",
    "LoanResponse",
    "LoanStatus",
    "NotificationKind",
    "NotificationLogResponse",
    "UserCreate",
    "UserResponse",
    "UserRole",
    "Database",
    "NotFoundError",
    "StoreError",
    "get_db",
]
