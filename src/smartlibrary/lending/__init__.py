"""Book lending module.

Provides functionality for:
- Borrowing books with copy-count and eligibility checks
- Returning books exactly once
- Borrow and return confirmation emails
"""

from .manager import LendingManager
from .schemas import BorrowResult, LendingError, ReturnResult

__all__ = [
    "LendingManager",
    "BorrowResult",
    "LendingError",
    "ReturnResult",
]
