"""Notification delivery module.

Provides functionality for:
- Rendering email templates for every notification kind
- Delivering through the email channel with retries
- Recording every attempt in the audit log
- Running passes inline, in the background, or through the queue
"""

from .audit import AuditLog, AuditSummary
from .channels import (
    DeliveryChannel,
    DeliveryConfigError,
    DeliveryError,
    LogOnlyChannel,
    QStashQueueClient,
    QueueClient,
    QueueError,
    ResendChannel,
    build_channel,
    build_queue_client,
)
from .dispatcher import NotificationDispatcher
from .schemas import BatchResult, DispatchOutcome, LoanCandidate, NotificationRequest
from .strategies import DirectStrategy, PassOutcome, QueuedStrategy, resolve_strategy
from .worker import JobState, JobStatus, LocalWorker

__all__ = [
    "AuditLog",
    "AuditSummary",
    "DeliveryChannel",
    "DeliveryConfigError",
    "DeliveryError",
    "LogOnlyChannel",
    "QStashQueueClient",
    "QueueClient",
    "QueueError",
    "ResendChannel",
    "build_channel",
    "build_queue_client",
    "NotificationDispatcher",
    "BatchResult",
    "DispatchOutcome",
    "LoanCandidate",
    "NotificationRequest",
    "DirectStrategy",
    "PassOutcome",
    "QueuedStrategy",
    "resolve_strategy",
    "JobState",
    "JobStatus",
    "LocalWorker",
]
