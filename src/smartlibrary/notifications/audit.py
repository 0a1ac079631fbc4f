"""Append-only audit log of notification attempts."""

from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import func, select

from ..db.models import NotificationLog
from ..db.schemas import DeliveryStatus, NotificationKind, NotificationLogResponse
from ..db.sqlite import Database


def summary_address(trigger_id: str) -> str:
    """Placeholder recipient used by trigger summary rows."""
    return f"notification-trigger+{trigger_id}@local"


@dataclass
class AuditSummary:
    """Totals across the audit log."""

    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_kind: dict[str, int] = field(default_factory=dict)


class AuditLog:
    """Writes and queries notification log rows.

    Rows are only ever inserted; nothing here updates or deletes them.
    """

    def __init__(self, db: Database):
        self.db = db

    def record(
        self,
        recipient_email: str,
        kind: NotificationKind,
        status: DeliveryStatus,
        subject: str,
        recipient_name: Optional[str] = None,
        error_message: Optional[str] = None,
        attempts: int = 1,
        trigger_id: Optional[str] = None,
        loan_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Append one attempt to the log.

        Returns:
            ID of the new row
        """
        entry = NotificationLog(
            recipient_email=recipient_email,
            recipient_name=recipient_name,
            notification_kind=NotificationKind(kind).value,
            delivery_status=DeliveryStatus(status).value,
            subject=subject,
            error_message=error_message,
            attempts=attempts,
            trigger_id=trigger_id,
            loan_id=loan_id,
        )
        entry.set_metadata(metadata)
        return self.db.add_notification_log(entry)

    def record_summary(
        self,
        trigger_id: str,
        kind: NotificationKind,
        total_recipients: int,
        category: Optional[str] = None,
    ) -> str:
        """Write the PENDING row that marks the start of a triggered pass."""
        label = category or NotificationKind(kind).value
        return self.record(
            recipient_email=summary_address(trigger_id),
            recipient_name="Scheduled trigger",
            kind=kind,
            status=DeliveryStatus.PENDING,
            subject=f"{label} trigger: {total_recipients} recipient(s)",
            attempts=0,
            trigger_id=trigger_id,
            metadata={
                "summary": True,
                "category": label,
                "total_recipients": total_recipients,
            },
        )

    def has_sent(self, trigger_id: str, loan_id: str) -> bool:
        """Check whether a loan already has a SENT row for a trigger."""
        with self.db.get_session() as session:
            stmt = (
                select(func.count())
                .select_from(NotificationLog)
                .where(
                    NotificationLog.trigger_id == trigger_id,
                    NotificationLog.loan_id == loan_id,
                    NotificationLog.delivery_status == DeliveryStatus.SENT.value,
                )
            )
            return (session.execute(stmt).scalar() or 0) > 0

    def list_entries(
        self,
        kind: Optional[NotificationKind] = None,
        status: Optional[DeliveryStatus] = None,
        trigger_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[NotificationLogResponse]:
        """List log rows, newest first.

        Args:
            kind: Filter by notification kind
            status: Filter by delivery status
            trigger_id: Filter by trigger
            limit: Maximum rows to return

        Returns:
            List of NotificationLogResponse
        """
        with self.db.get_session() as session:
            stmt = select(NotificationLog)
            if kind:
                stmt = stmt.where(NotificationLog.notification_kind == NotificationKind(kind).value)
            if status:
                stmt = stmt.where(NotificationLog.delivery_status == DeliveryStatus(status).value)
            if trigger_id:
                stmt = stmt.where(NotificationLog.trigger_id == trigger_id)
            stmt = stmt.order_by(NotificationLog.sent_at.desc()).limit(limit)

            return [_to_response(row) for row in session.execute(stmt).scalars().all()]

    def summary(self) -> AuditSummary:
        """Count rows per delivery status and per kind."""
        result = AuditSummary()
        with self.db.get_session() as session:
            for status, count in session.execute(
                select(NotificationLog.delivery_status, func.count()).group_by(
                    NotificationLog.delivery_status
                )
            ):
                result.by_status[status] = count
                result.total += count

            for kind, count in session.execute(
                select(NotificationLog.notification_kind, func.count()).group_by(
                    NotificationLog.notification_kind
                )
            ):
                result.by_kind[kind] = count

        return result

    def counts_for_trigger(self, trigger_id: str) -> dict[str, int]:
        """Per-status counts of the item rows written under a trigger."""
        with self.db.get_session() as session:
            rows = session.execute(
                select(NotificationLog.delivery_status, func.count())
                .where(
                    NotificationLog.trigger_id == trigger_id,
                    NotificationLog.recipient_email != summary_address(trigger_id),
                )
                .group_by(NotificationLog.delivery_status)
            )
            return {status: count for status, count in rows}


def _to_response(row: NotificationLog) -> NotificationLogResponse:
    return NotificationLogResponse(
        id=row.id,
        recipient_email=row.recipient_email,
        recipient_name=row.recipient_name,
        notification_kind=row.notification_kind,
        delivery_status=row.delivery_status,
        subject=row.subject,
        error_message=row.error_message,
        sent_at=row.sent_at,
        attempts=row.attempts,
        trigger_id=row.trigger_id,
        loan_id=row.loan_id,
        metadata=row.get_metadata(),
    )
