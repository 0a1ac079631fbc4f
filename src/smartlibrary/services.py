"""Wiring of the application services.

The CLI and the web app both build one ``Services`` bundle per process so
the delivery channel and strategy are resolved exactly once.
"""

from dataclasses import dataclass
from typing import Optional

from .accounts.manager import AccountManager
from .config import Config, get_config
from .db.sqlite import Database
from .lending.manager import LendingManager
from .notifications.audit import AuditLog
from .notifications.channels import DeliveryChannel, QueueClient, build_channel
from .notifications.dispatcher import NotificationDispatcher
from .notifications.strategies import resolve_strategy
from .notifications.worker import LocalWorker
from .scheduler.orchestrator import TriggerOrchestrator


@dataclass
class Services:
    """Everything an entry point needs."""

    config: Config
    db: Database
    audit: AuditLog
    dispatcher: NotificationDispatcher
    accounts: AccountManager
    lending: LendingManager
    orchestrator: TriggerOrchestrator


def build_services(
    config: Optional[Config] = None,
    db: Optional[Database] = None,
    channel: Optional[DeliveryChannel] = None,
    queue_client: Optional[QueueClient] = None,
    worker: Optional[LocalWorker] = None,
) -> Services:
    """Create and connect all services.

    Args:
        config: Configuration (defaults to the environment)
        db: Database (defaults to one at ``config.db_path``, tables created)
        channel: Email channel (defaults to Resend, or log-only without a token)
        queue_client: Queue client for queued delivery
        worker: Local background worker for direct delivery

    Returns:
        Services
    """
    config = config or get_config()
    if db is None:
        db = Database(str(config.db_path))
        db.create_tables()

    audit = AuditLog(db)
    dispatcher = NotificationDispatcher(db, audit, channel or build_channel(config), config)
    strategy = resolve_strategy(config, dispatcher, queue_client=queue_client, worker=worker)

    return Services(
        config=config,
        db=db,
        audit=audit,
        dispatcher=dispatcher,
        accounts=AccountManager(db, config, dispatcher=dispatcher),
        lending=LendingManager(db, config, dispatcher=dispatcher),
        orchestrator=TriggerOrchestrator(db, config, dispatcher, audit, strategy=strategy),
    )
