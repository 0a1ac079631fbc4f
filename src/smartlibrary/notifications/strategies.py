"""Delivery strategies for scheduled notification passes.

Direct runs a pass in this process, inline or on the local background
worker. Queued splits the pass into batches and publishes them to the worker
endpoint. The strategy is resolved once per process from the configuration.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..config import Config, DeliveryMode
from ..db.schemas import NotificationKind
from .channels import QueueClient, QueueError, build_queue_client
from .dispatcher import NotificationDispatcher
from .schemas import BatchResult, LoanCandidate
from .worker import LocalWorker

logger = logging.getLogger(__name__)


@dataclass
class PassOutcome:
    """What a strategy did with one pass."""

    result: BatchResult
    deferred: bool = False  # True when sending happens after this call returns
    batches: int = 0
    correlation_ids: list[str] = field(default_factory=list)


class DirectStrategy:
    """Send from this process."""

    mode = DeliveryMode.DIRECT
    defers_scheduled_passes = False

    def __init__(self, dispatcher: NotificationDispatcher, worker: Optional[LocalWorker] = None):
        self.dispatcher = dispatcher
        self.worker = worker or LocalWorker()

    def run(
        self,
        kind: NotificationKind,
        candidates: list[LoanCandidate],
        trigger_id: str,
        show_progress: bool = False,
    ) -> PassOutcome:
        """Send every notice inline and return the counts."""
        result = self.dispatcher.process_batch(
            kind, candidates, trigger_id=trigger_id, show_progress=show_progress
        )
        return PassOutcome(result=result, batches=1)

    def submit(
        self,
        kind: NotificationKind,
        candidates: list[LoanCandidate],
        trigger_id: str,
    ) -> PassOutcome:
        """Run the pass on the local background worker and return at once."""
        self.worker.submit(
            trigger_id,
            lambda: self.dispatcher.process_batch(kind, candidates, trigger_id=trigger_id),
        )
        return PassOutcome(
            result=BatchResult(processed=len(candidates)), deferred=True, batches=1
        )


class QueuedStrategy:
    """Publish batches to the worker endpoint through the queue."""

    mode = DeliveryMode.QUEUED
    defers_scheduled_passes = True

    def __init__(self, queue_client: QueueClient, config: Config):
        self.queue_client = queue_client
        self.config = config

    def run(
        self,
        kind: NotificationKind,
        candidates: list[LoanCandidate],
        trigger_id: str,
        show_progress: bool = False,
    ) -> PassOutcome:
        return self.submit(kind, candidates, trigger_id)

    def submit(
        self,
        kind: NotificationKind,
        candidates: list[LoanCandidate],
        trigger_id: str,
    ) -> PassOutcome:
        """Enqueue the candidates in batches of ``batch_size``.

        A batch the queue rejects is reported as failed; the remaining
        batches are still published.
        """
        size = self.config.batch_size
        batches = [candidates[i:i + size] for i in range(0, len(candidates), size)]
        outcome = PassOutcome(
            result=BatchResult(processed=len(candidates)), deferred=True, batches=len(batches)
        )

        for index, batch in enumerate(batches):
            payload = {
                "trigger_id": trigger_id,
                "kind": NotificationKind(kind).value,
                "batch_index": index,
                "batch_count": len(batches),
                "candidates": [c.model_dump(mode="json") for c in batch],
            }
            try:
                outcome.correlation_ids.append(
                    self.queue_client.enqueue(self.config.worker_endpoint, payload)
                )
            except QueueError as e:
                logger.error("Could not enqueue batch %d of %s: %s", index, trigger_id, e)
                outcome.result.failed += len(batch)
                outcome.result.details.extend(
                    {"loan_id": c.loan_id, "email": c.user_email, "status": "failed", "error": str(e)}
                    for c in batch
                )

        logger.info("Enqueued %d batch(es) for trigger %s", len(batches), trigger_id)
        return outcome


def resolve_strategy(
    config: Config,
    dispatcher: NotificationDispatcher,
    queue_client: Optional[QueueClient] = None,
    worker: Optional[LocalWorker] = None,
):
    """Pick the delivery strategy for this process.

    A missing or loopback base URL means no remote worker can call back, so
    passes run directly. A public base URL without queue credentials falls
    back to Direct with a warning.
    """
    if config.has_public_base_url:
        queue_client = queue_client or build_queue_client(config)
        if queue_client is not None:
            return QueuedStrategy(queue_client, config)
        logger.warning("SMARTLIBRARY_BASE_URL is public but QSTASH_TOKEN is not set; sending directly")
    return DirectStrategy(dispatcher, worker)
