"""Notification dispatcher.

Renders one notification, hands it to the delivery channel with bounded
retries, writes the audit row and maintains the loan notice flags.
"""

import logging
import time
from typing import Callable, Iterable, Optional

from jinja2 import TemplateError
from tqdm import tqdm

from ..config import Config
from ..db.schemas import DeliveryStatus, NotificationKind
from ..db.sqlite import Database
from .audit import AuditLog
from .channels import DeliveryChannel, DeliveryError
from .schemas import BatchResult, DispatchOutcome, LoanCandidate, NotificationRequest
from .templates import render

logger = logging.getLogger(__name__)

# Loan column claimed before sending each flagged kind. DUE_TODAY has no flag.
FLAG_FOR_KIND = {
    NotificationKind.DUE_REMINDER: "reminder_sent",
    NotificationKind.OVERDUE_NOTICE: "overdue_notice_sent",
}


class NotificationDispatcher:
    """Delivers notifications and records every attempt."""

    def __init__(
        self,
        db: Database,
        audit: AuditLog,
        channel: DeliveryChannel,
        config: Config,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize dispatcher.

        Args:
            db: Database instance (used for loan flag updates)
            audit: Audit log writer
            channel: Email transport
            config: Retry settings come from here
            sleep: Backoff sleep function, replaceable in tests
        """
        self.db = db
        self.audit = audit
        self.channel = channel
        self.config = config
        self._sleep = sleep

    @property
    def dry_run(self) -> bool:
        return self.channel.dry_run

    # -------------------------------------------------------------------------
    # Single notifications
    # -------------------------------------------------------------------------

    def dispatch(
        self, request: NotificationRequest, trigger_id: Optional[str] = None
    ) -> DispatchOutcome:
        """Render, deliver and audit one notification.

        Delivery failures never raise, whatever the channel raised; they come
        back in the outcome and in a FAILED audit row.

        Args:
            request: What to send and to whom
            trigger_id: Trigger the attempt belongs to, if any

        Returns:
            DispatchOutcome
        """
        try:
            message = render(
                request.kind, {"full_name": request.recipient_name, **request.context}
            )
        except TemplateError as e:
            logger.error("Cannot render %s for %s: %s", request.kind.value, request.recipient_email, e)
            row_id = self._record(request, DeliveryStatus.FAILED, request.kind.value, trigger_id,
                                  error=f"Template error: {e}", attempts=0)
            return DispatchOutcome(delivered=False, audit_row_id=row_id, error=str(e))

        if self.channel.dry_run:
            self.channel.send(request.recipient_email, message.subject, message.html)
            row_id = self._record(request, DeliveryStatus.PENDING, message.subject, trigger_id,
                                  attempts=0, extra={"dry_run": True})
            return DispatchOutcome(delivered=False, audit_row_id=row_id, dry_run=True)

        attempts = 0
        backoff = self.config.delivery_retry_base_delay
        while True:
            attempts += 1
            try:
                message_id = self.channel.send(
                    request.recipient_email, message.subject, message.html
                )
                break
            except DeliveryError as e:
                if not e.retryable or attempts >= self.config.delivery_retry_max:
                    logger.warning(
                        "Failed to send %s to %s after %d attempt(s): %s",
                        request.kind.value, request.recipient_email, attempts, e,
                    )
                    row_id = self._record(request, DeliveryStatus.FAILED, message.subject,
                                          trigger_id, error=str(e), attempts=attempts)
                    return DispatchOutcome(
                        delivered=False, audit_row_id=row_id, attempts=attempts, error=str(e)
                    )
                logger.debug("Send failed (%s), retrying in %ss", e, backoff)
                self._sleep(backoff)
                backoff *= 2
            except Exception as e:
                # Unknown transport failure, not retried
                logger.exception(
                    "Channel error sending %s to %s", request.kind.value, request.recipient_email
                )
                error = f"{type(e).__name__}: {e}"
                row_id = self._record(request, DeliveryStatus.FAILED, message.subject,
                                      trigger_id, error=error, attempts=attempts)
                return DispatchOutcome(
                    delivered=False, audit_row_id=row_id, attempts=attempts, error=error
                )

        row_id = self._record(request, DeliveryStatus.SENT, message.subject, trigger_id,
                              attempts=attempts, extra={"message_id": message_id})
        logger.info("Sent %s to %s", request.kind.value, request.recipient_email)
        return DispatchOutcome(delivered=True, audit_row_id=row_id, attempts=attempts)

    def send_quietly(self, request: NotificationRequest) -> Optional[DispatchOutcome]:
        """Dispatch without letting any error reach the caller.

        Used for the immediate emails that follow a borrow, a return or an
        account change, where the primary operation has already committed.
        """
        try:
            return self.dispatch(request)
        except Exception:
            logger.exception(
                "Could not send %s to %s", request.kind.value, request.recipient_email
            )
            return None

    def dispatch_for_loan(
        self,
        candidate: LoanCandidate,
        kind: NotificationKind,
        trigger_id: Optional[str] = None,
    ) -> DispatchOutcome:
        """Dispatch a scheduled notice for one loan.

        Flagged kinds claim the loan's flag with a conditional update first;
        a loan whose flag is already set is skipped. The flag is released
        again if delivery fails so a later run can retry. Log-only mode
        leaves the flag untouched.
        """
        kind = NotificationKind(kind)
        flag = None if self.channel.dry_run else FLAG_FOR_KIND.get(kind)

        if flag and not self.db.claim_notice_flag(candidate.loan_id, flag):
            logger.debug("Loan %s already has %s set, skipping", candidate.loan_id, flag)
            return DispatchOutcome(delivered=False, skipped=True)

        try:
            outcome = self.dispatch(NotificationRequest.for_loan(candidate, kind), trigger_id)
        except Exception:
            if flag:
                self.db.release_notice_flag(candidate.loan_id, flag)
            raise

        if flag and not outcome.delivered:
            self.db.release_notice_flag(candidate.loan_id, flag)

        return outcome

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def process_batch(
        self,
        kind: NotificationKind,
        candidates: Iterable[LoanCandidate],
        trigger_id: Optional[str] = None,
        skip_already_sent: bool = False,
        show_progress: bool = False,
    ) -> BatchResult:
        """Dispatch a notice to every candidate.

        One candidate's failure never stops the rest of the batch.

        Args:
            kind: Notification kind for every candidate
            candidates: Loans to notify
            trigger_id: Trigger the batch belongs to
            skip_already_sent: Skip loans with a SENT row for this trigger
                (queue redelivery)
            show_progress: Show a progress bar

        Returns:
            BatchResult with per-candidate details
        """
        result = BatchResult()
        candidates = list(candidates)
        iterator = tqdm(
            candidates, desc=f"Sending {kind.value}", disable=not show_progress
        )

        for candidate in iterator:
            result.processed += 1
            detail = {"loan_id": candidate.loan_id, "email": candidate.user_email}

            if skip_already_sent and trigger_id and self.audit.has_sent(trigger_id, candidate.loan_id):
                result.skipped += 1
                result.details.append({**detail, "status": "skipped"})
                continue

            try:
                outcome = self.dispatch_for_loan(candidate, kind, trigger_id)
            except Exception as e:
                logger.exception("Notice for loan %s failed", candidate.loan_id)
                result.failed += 1
                result.details.append({**detail, "status": "failed", "error": str(e)})
                continue

            if outcome.delivered:
                result.sent += 1
                result.details.append({**detail, "status": "sent"})
            elif outcome.skipped:
                result.skipped += 1
                result.details.append({**detail, "status": "skipped"})
            elif outcome.dry_run:
                result.dry_run += 1
                result.details.append({**detail, "status": "dry_run"})
            else:
                result.failed += 1
                result.details.append({**detail, "status": "failed", "error": outcome.error})

        return result

    def _record(
        self,
        request: NotificationRequest,
        status: DeliveryStatus,
        subject: str,
        trigger_id: Optional[str],
        error: Optional[str] = None,
        attempts: int = 1,
        extra: Optional[dict] = None,
    ) -> str:
        return self.audit.record(
            recipient_email=request.recipient_email,
            recipient_name=request.recipient_name,
            kind=request.kind,
            status=status,
            subject=subject,
            error_message=error,
            attempts=attempts,
            trigger_id=trigger_id,
            loan_id=request.loan_id,
            metadata={**request.metadata, **(extra or {})},
        )
