"""Notification scheduling module.

Provides functionality for:
- Selecting loans due today, due tomorrow and overdue
- Running each pass and the consolidated daily run
- Manual background triggers and the queued batch worker
"""

from .orchestrator import TriggerOrchestrator
from .schemas import (
    ConsolidatedResult,
    JobReport,
    ManualTriggerReceipt,
    NotificationCategory,
    RecipientCounts,
    TriggerResult,
    WorkerBatchPayload,
)
from .windows import NotificationWindowSelector

__all__ = [
    "TriggerOrchestrator",
    "ConsolidatedResult",
    "JobReport",
    "ManualTriggerReceipt",
    "NotificationCategory",
    "RecipientCounts",
    "TriggerResult",
    "WorkerBatchPayload",
    "NotificationWindowSelector",
]
