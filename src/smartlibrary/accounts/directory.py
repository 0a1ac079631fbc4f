"""User directory lookups used by the lending rules."""

from typing import Optional

from ..db.schemas import ApprovalStatus
from ..db.sqlite import Database


class UserDirectory:
    """Read-only view of account approval state."""

    def __init__(self, db: Database):
        self.db = db

    def get_approval_status(self, user_id: str) -> Optional[ApprovalStatus]:
        """Approval status of a user, or None if the user is unknown."""
        return self.db.get_user_approval_status(user_id)
