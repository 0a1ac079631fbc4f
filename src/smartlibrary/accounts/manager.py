"""Account manager for registration, approval and activity emails."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from ..config import Config
from ..db.models import User
from ..db.schemas import ApprovalStatus, NotificationKind, UserCreate
from ..db.sqlite import Database, NotFoundError
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.schemas import DispatchOutcome, NotificationRequest

logger = logging.getLogger(__name__)

# Days without activity after which a user counts as inactive
INACTIVITY_DAYS = 3


class AccountError(Exception):
    """Raised when an account operation is not allowed."""

    pass


@dataclass
class ActivityCheck:
    """Result of an activity check for one user."""

    user_id: str
    kind: NotificationKind
    days_since_activity: int
    outcome: Optional[DispatchOutcome] = None


class AccountManager:
    """Manages library accounts."""

    def __init__(
        self,
        db: Database,
        config: Config,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        """Initialize account manager.

        Args:
            db: Database instance
            config: Application configuration
            dispatcher: Sends account emails; None disables them
        """
        self.db = db
        self.config = config
        self.dispatcher = dispatcher

    # -------------------------------------------------------------------------
    # Registration and approval
    # -------------------------------------------------------------------------

    def register(self, data: UserCreate) -> User:
        """Create an account awaiting approval and send the welcome email.

        Args:
            data: Account details

        Returns:
            Created user

        Raises:
            AccountError: If the email is already registered
        """
        if self.db.get_user_by_email(data.email):
            raise AccountError(f"Email already registered: {data.email}")

        user = self.db.create_user(data.model_copy(update={"status": ApprovalStatus.PENDING}))
        logger.info("Registered %s", user.email)
        self._notify(user, NotificationKind.WELCOME)
        return user

    def approve(self, user_id: str) -> User:
        """Approve an account and notify the user."""
        return self._set_status(user_id, ApprovalStatus.APPROVED, NotificationKind.ACCOUNT_APPROVAL)

    def reject(self, user_id: str) -> User:
        """Reject an account and notify the user."""
        return self._set_status(user_id, ApprovalStatus.REJECTED, NotificationKind.ACCOUNT_REJECTION)

    def _set_status(
        self, user_id: str, status: ApprovalStatus, kind: NotificationKind
    ) -> User:
        user = self.db.set_user_status(user_id, status)
        if not user:
            raise NotFoundError(f"User not found: {user_id}")
        logger.info("Account %s is now %s", user.email, status.value)
        self._notify(user, kind)
        return user

    # -------------------------------------------------------------------------
    # Activity
    # -------------------------------------------------------------------------

    def touch_activity(self, user_id: str, today: Optional[date] = None) -> bool:
        """Record that the user was active today.

        Returns:
            True if the user exists
        """
        return self.db.touch_user_activity(user_id, today or self.config.local_date())

    def check_activity(self, user_id: str, today: Optional[date] = None) -> ActivityCheck:
        """Send the inactive or welcome-back email depending on last activity.

        A user whose last activity is more than three days old gets
        USER_INACTIVE, anyone else USER_ACTIVE.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = self.db.get_user(user_id)
        if not user:
            raise NotFoundError(f"User not found: {user_id}")

        today = today or self.config.local_date()
        last = date.fromisoformat(user.last_activity_date) if user.last_activity_date else today
        days = (today - last).days
        kind = NotificationKind.USER_INACTIVE if days > INACTIVITY_DAYS else NotificationKind.USER_ACTIVE

        return ActivityCheck(
            user_id=user.id,
            kind=kind,
            days_since_activity=days,
            outcome=self._notify(user, kind),
        )

    def _notify(self, user: User, kind: NotificationKind) -> Optional[DispatchOutcome]:
        if not self.dispatcher:
            return None
        return self.dispatcher.send_quietly(
            NotificationRequest(
                kind=kind,
                recipient_email=user.email,
                recipient_name=user.full_name,
                context={"library_url": self.config.public_url},
                metadata={"user_id": user.id},
            )
        )
