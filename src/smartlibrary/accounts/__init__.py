"""Account module.

Provides functionality for:
- Registering accounts and approving or rejecting them
- Tracking last activity
- Welcome, approval and activity emails
"""

from .directory import UserDirectory
from .manager import AccountError, AccountManager, ActivityCheck

__all__ = [
    "UserDirectory",
    "AccountError",
    "AccountManager",
    "ActivityCheck",
]
