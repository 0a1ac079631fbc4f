"""Pydantic schemas for scheduled notification triggers."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..db.schemas import NotificationKind
from ..notifications.schemas import LoanCandidate


class NotificationCategory(str, Enum):
    """Time windows the scheduler notifies about."""

    DUE_TODAY = "due-today"
    DUE_TOMORROW = "due-tomorrow"
    OVERDUE = "overdue"

    @property
    def kind(self) -> NotificationKind:
        return {
            NotificationCategory.DUE_TODAY: NotificationKind.DUE_TODAY,
            NotificationCategory.DUE_TOMORROW: NotificationKind.DUE_REMINDER,
            NotificationCategory.OVERDUE: NotificationKind.OVERDUE_NOTICE,
        }[self]

    @property
    def label(self) -> str:
        return self.value.replace("-", " ")


class TriggerResult(BaseModel):
    """Uniform envelope returned by every trigger."""

    success: bool
    message: str
    processed_count: int = 0
    sent_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    dry_run_count: int = 0
    details: list[dict[str, Any]] = Field(default_factory=list)
    category: Optional[NotificationCategory] = None
    trigger_id: Optional[str] = None
    queued: bool = False


class ConsolidatedResult(BaseModel):
    """Result of running all three categories in one go."""

    success: bool
    status: str  # success, partial_success or failure
    message: str
    total_sent: int = 0
    per_category: dict[str, TriggerResult] = Field(default_factory=dict)

    @property
    def http_status(self) -> int:
        return {"success": 200, "partial_success": 207}.get(self.status, 500)


class RecipientCounts(BaseModel):
    """How many loans each category would notify today."""

    due_today: int = 0
    due_tomorrow: int = 0
    overdue: int = 0

    @property
    def total(self) -> int:
        return self.due_today + self.due_tomorrow + self.overdue


class ManualTriggerReceipt(BaseModel):
    """Returned as soon as a manual trigger has been handed off."""

    success: bool
    message: str
    trigger_id: Optional[str] = None
    category: NotificationCategory
    total_recipients: int = 0
    mode: str = "direct"
    batches: int = 0


class JobReport(BaseModel):
    """Progress of a background or queued pass."""

    trigger_id: str
    state: str  # running, completed, failed, queued or unknown
    counts: dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None


class WorkerBatchPayload(BaseModel):
    """Body the queue delivers to the worker endpoint."""

    trigger_id: str = Field(..., min_length=1)
    kind: NotificationKind
    batch_index: int = 0
    batch_count: int = 1
    candidates: list[LoanCandidate]
