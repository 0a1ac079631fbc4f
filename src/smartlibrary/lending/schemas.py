"""Result types for borrowing and returning."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..db.models import LoanRecord


class LendingError(str, Enum):
    """Why a borrow or return was refused."""

    ALREADY_BORROWED = "ALREADY_BORROWED"
    OUT_OF_COPIES = "OUT_OF_COPIES"
    USER_NOT_ELIGIBLE = "USER_NOT_ELIGIBLE"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    BOOK_NOT_FOUND = "BOOK_NOT_FOUND"
    LOAN_NOT_FOUND = "LOAN_NOT_FOUND"


ERROR_MESSAGES = {
    LendingError.ALREADY_BORROWED: "You have already borrowed this book",
    LendingError.OUT_OF_COPIES: "Book is not available for borrowing",
    LendingError.USER_NOT_ELIGIBLE: "Your account is not approved for borrowing",
    LendingError.USER_NOT_FOUND: "User not found",
    LendingError.BOOK_NOT_FOUND: "Book not found",
    LendingError.LOAN_NOT_FOUND: "Loan not found",
}


@dataclass
class BorrowResult:
    """Outcome of a borrow request."""

    success: bool
    loan: Optional[LoanRecord] = None
    error: Optional[LendingError] = None
    message: str = ""

    @classmethod
    def failed(cls, error: LendingError) -> "BorrowResult":
        return cls(success=False, error=error, message=ERROR_MESSAGES[error])


@dataclass
class ReturnResult:
    """Outcome of a return request."""

    success: bool
    loan: Optional[LoanRecord] = None
    error: Optional[LendingError] = None
    message: str = ""
    already_returned: bool = False

    @classmethod
    def failed(cls, error: LendingError) -> "ReturnResult":
        return cls(success=False, error=error, message=ERROR_MESSAGES[error])
