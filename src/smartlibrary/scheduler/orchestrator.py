"""Trigger orchestrator for scheduled notification passes.

Entry points are called by an external cron or by an admin. Runs may
overlap; the loan flags claimed by the dispatcher keep each notice to at
most one delivery.
"""

import logging
from datetime import date
from typing import Any, Optional, Union

from ..config import Config
from ..db.models import generate_uuid
from ..db.sqlite import Database
from ..notifications.audit import AuditLog
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.strategies import DirectStrategy, QueuedStrategy, resolve_strategy
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

logger = logging.getLogger(__name__)


class TriggerOrchestrator:
    """Runs window selection and dispatch passes and reports on them."""

    def __init__(
        self,
        db: Database,
        config: Config,
        dispatcher: NotificationDispatcher,
        audit: AuditLog,
        selector: Optional[NotificationWindowSelector] = None,
        strategy: Optional[Union[DirectStrategy, QueuedStrategy]] = None,
    ):
        """Initialize orchestrator.

        Args:
            db: Database instance
            config: Application configuration
            dispatcher: Dispatcher used inline and by the worker endpoint
            audit: Audit log
            selector: Window selector (built from db and config if omitted)
            strategy: Delivery strategy (resolved from config if omitted)
        """
        self.db = db
        self.config = config
        self.dispatcher = dispatcher
        self.audit = audit
        self.selector = selector or NotificationWindowSelector(db, config)
        self.strategy = strategy or resolve_strategy(config, dispatcher)

    # -------------------------------------------------------------------------
    # Scheduled triggers
    # -------------------------------------------------------------------------

    def trigger_due_today(self, today: Optional[date] = None, show_progress: bool = False) -> TriggerResult:
        """Notify every loan due today."""
        return self.run_category(NotificationCategory.DUE_TODAY, today, show_progress)

    def trigger_due_tomorrow(self, today: Optional[date] = None, show_progress: bool = False) -> TriggerResult:
        """Send the due-tomorrow reminder to loans that have not had it."""
        return self.run_category(NotificationCategory.DUE_TOMORROW, today, show_progress)

    def trigger_overdue(self, today: Optional[date] = None, show_progress: bool = False) -> TriggerResult:
        """Send the overdue penalty notice to loans that have not had it."""
        return self.run_category(NotificationCategory.OVERDUE, today, show_progress)

    def run_category(
        self,
        category: NotificationCategory,
        today: Optional[date] = None,
        show_progress: bool = False,
    ) -> TriggerResult:
        """Select and dispatch one category.

        Exceptions from the store or the strategy propagate; a single
        recipient's failure does not.
        """
        category = NotificationCategory(category)
        candidates = self.selector.select(category, today)

        if not candidates:
            return TriggerResult(
                success=True,
                message=f"No loans {category.label}",
                category=category,
            )

        trigger_id = generate_uuid()
        if self.strategy.defers_scheduled_passes:
            self.audit.record_summary(trigger_id, category.kind, len(candidates), category.value)

        outcome = self.strategy.run(category.kind, candidates, trigger_id, show_progress=show_progress)
        result = outcome.result

        if outcome.deferred:
            message = f"Queued {len(candidates)} {category.label} notice(s) in {outcome.batches} batch(es)"
        elif result.dry_run:
            message = f"Logged {result.dry_run} {category.label} notice(s) without sending"
        else:
            message = f"Sent {result.sent} of {result.processed} {category.label} notice(s)"

        logger.info("%s (trigger %s)", message, trigger_id)
        return TriggerResult(
            success=True,
            message=message,
            processed_count=result.processed,
            sent_count=result.sent,
            failed_count=result.failed,
            skipped_count=result.skipped,
            dry_run_count=result.dry_run,
            details=result.details,
            category=category,
            trigger_id=trigger_id,
            queued=outcome.deferred,
        )

    def run_consolidated(self, today: Optional[date] = None, show_progress: bool = False) -> ConsolidatedResult:
        """Run due-today, due-tomorrow and overdue passes.

        Each category runs in isolation: an exception marks only that
        category failed, and the others still run.

        Returns:
            ConsolidatedResult. HTTP 200 when every category succeeds and
            207 when only some do. When none succeed the status is failure
            (HTTP 500) rather than multi-status, so cron alerting can tell a
            total outage from a partial one.
        """
        per_category: dict[str, TriggerResult] = {}

        for category in NotificationCategory:
            try:
                per_category[category.value] = self.run_category(category, today, show_progress)
            except Exception as e:
                logger.exception("%s pass failed", category.value)
                per_category[category.value] = TriggerResult(
                    success=False,
                    message=f"{category.label} pass failed: {e}",
                    category=category,
                )

        succeeded = sum(1 for r in per_category.values() if r.success)
        total_sent = sum(r.sent_count for r in per_category.values())

        if succeeded == len(per_category):
            status, message = "success", "All notification passes completed"
        elif succeeded:
            failed = [name for name, r in per_category.items() if not r.success]
            status, message = "partial_success", f"Some passes failed: {', '.join(failed)}"
        else:
            status, message = "failure", "All notification passes failed"

        return ConsolidatedResult(
            success=status == "success",
            status=status,
            message=message,
            total_sent=total_sent,
            per_category=per_category,
        )

    def preview_recipient_counts(self, today: Optional[date] = None) -> RecipientCounts:
        """Count candidates per category without sending anything."""
        return RecipientCounts(
            due_today=len(self.selector.due_today(today)),
            due_tomorrow=len(self.selector.due_tomorrow(today)),
            overdue=len(self.selector.overdue(today)),
        )

    # -------------------------------------------------------------------------
    # Manual triggers and the worker endpoint
    # -------------------------------------------------------------------------

    def manual_trigger(
        self, category: NotificationCategory, today: Optional[date] = None
    ) -> ManualTriggerReceipt:
        """Start a pass in the background and return a receipt at once.

        Writes a PENDING summary row with the recipient count, then hands the
        pass to the local worker or the queue.
        """
        category = NotificationCategory(category)
        candidates = self.selector.select(category, today)

        if not candidates:
            return ManualTriggerReceipt(
                success=True,
                message=f"No loans {category.label}",
                category=category,
                mode=self.strategy.mode.value,
            )

        trigger_id = generate_uuid()
        self.audit.record_summary(trigger_id, category.kind, len(candidates), category.value)
        outcome = self.strategy.submit(category.kind, candidates, trigger_id)

        return ManualTriggerReceipt(
            success=True,
            message=f"Processing {len(candidates)} {category.label} notice(s) in the background",
            trigger_id=trigger_id,
            category=category,
            total_recipients=len(candidates),
            mode=self.strategy.mode.value,
            batches=outcome.batches,
        )

    def job_status(self, trigger_id: str) -> JobReport:
        """Report on a manual or queued pass by trigger ID."""
        counts = self.audit.counts_for_trigger(trigger_id)
        worker = getattr(self.strategy, "worker", None)
        job = worker.status(trigger_id) if worker else None

        if job:
            return JobReport(
                trigger_id=trigger_id, state=job.state.value, counts=counts, error=job.error
            )
        if counts or self.audit.list_entries(trigger_id=trigger_id, limit=1):
            return JobReport(trigger_id=trigger_id, state="queued", counts=counts)
        return JobReport(trigger_id=trigger_id, state="unknown")

    def process_worker_batch(self, payload: dict[str, Any]) -> TriggerResult:
        """Run one queued batch delivered to the worker endpoint.

        Loans already recorded SENT under the same trigger are skipped, so a
        redelivered batch does not email anyone twice.

        Raises:
            pydantic.ValidationError: If the payload is malformed
        """
        batch = WorkerBatchPayload.model_validate(payload)
        result = self.dispatcher.process_batch(
            batch.kind,
            batch.candidates,
            trigger_id=batch.trigger_id,
            skip_already_sent=True,
        )
        logger.info(
            "Worker batch %d/%d of %s: %d sent, %d failed",
            batch.batch_index + 1, batch.batch_count, batch.trigger_id, result.sent, result.failed,
        )
        return TriggerResult(
            success=True,
            message=f"Processed batch {batch.batch_index + 1} of {batch.batch_count}",
            processed_count=result.processed,
            sent_count=result.sent,
            failed_count=result.failed,
            skipped_count=result.skipped,
            dry_run_count=result.dry_run,
            details=result.details,
            trigger_id=batch.trigger_id,
        )
