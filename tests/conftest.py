"""Pytest configuration and shared fixtures.

This module provides fixtures for testing the smartlibrary application,
including in-memory databases, a recording email channel, and factories for
users, books and loans.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Generator, Optional

import pytest

from smartlibrary.accounts.manager import AccountManager
from smartlibrary.config import Config, reset_config
from smartlibrary.db.models import Book, LoanRecord, User
from smartlibrary.db.schemas import ApprovalStatus, BookCreate, UserCreate
from smartlibrary.db.sqlite import Database, reset_db
from smartlibrary.lending.manager import LendingManager
from smartlibrary.notifications.audit import AuditLog
from smartlibrary.notifications.channels import DeliveryChannel, DeliveryError
from smartlibrary.notifications.dispatcher import NotificationDispatcher
from smartlibrary.notifications.strategies import DirectStrategy
from smartlibrary.notifications.worker import LocalWorker
from smartlibrary.scheduler.orchestrator import TriggerOrchestrator


class RecordingChannel(DeliveryChannel):
    """Email channel that records sends and can be told to fail."""

    def __init__(self):
        self.sent: list[dict] = []
        self.calls = 0
        self.fail_for: set[str] = set()  # Always fail for these addresses
        self.transient_failures: dict[str, int] = {}  # Fail N times, then succeed
        self.retryable = True

    def send(self, to: str, subject: str, html: str) -> str:
        self.calls += 1
        if to in self.fail_for:
            raise DeliveryError(f"Rejected {to}", retryable=self.retryable)
        if self.transient_failures.get(to, 0) > 0:
            self.transient_failures[to] -= 1
            raise DeliveryError("Temporary failure")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return f"msg-{len(self.sent)}"

    def subjects_for(self, to: str) -> list[str]:
        return [m["subject"] for m in self.sent if m["to"] == to]


# ============================================================================
# Configuration and Database Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    """Reset process-wide config and database between tests."""
    reset_db()
    reset_config()
    yield
    reset_db()
    reset_config()


@pytest.fixture
def config() -> Config:
    """Direct-delivery configuration with no backoff delay."""
    return Config(
        db_path=Path(":memory:"),
        base_url=None,
        resend_token="test-token",
        email_from="Smart Library <library@example.org>",
        qstash_token=None,
        qstash_url="https://qstash.example.com",
        worker_secret=None,
        loan_period_days=7,
        unit_penalty=Decimal("0.50"),
        batch_size=100,
        delivery_retry_max=3,
        delivery_retry_base_delay=0.0,
        delivery_timeout=1.0,
        timezone="UTC",
    )


@pytest.fixture
def db() -> Database:
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    database.create_tables()
    return database


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by the dispatcher."""
    return []


@pytest.fixture
def audit(db: Database) -> AuditLog:
    return AuditLog(db)


@pytest.fixture
def dispatcher(db, audit, channel, config, sleeps) -> NotificationDispatcher:
    return NotificationDispatcher(db, audit, channel, config, sleep=sleeps.append)


@pytest.fixture
def worker() -> Generator[LocalWorker, None, None]:
    local_worker = LocalWorker(max_workers=1)
    yield local_worker
    local_worker.shutdown()


@pytest.fixture
def orchestrator(db, config, dispatcher, audit, worker) -> TriggerOrchestrator:
    return TriggerOrchestrator(
        db, config, dispatcher, audit, strategy=DirectStrategy(dispatcher, worker)
    )


@pytest.fixture
def lending(db, config, dispatcher) -> LendingManager:
    return LendingManager(db, config, dispatcher=dispatcher)


@pytest.fixture
def accounts(db, config, dispatcher) -> AccountManager:
    return AccountManager(db, config, dispatcher=dispatcher)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def make_user(db: Database):
    """Factory creating users (approved unless told otherwise)."""
    counter = {"n": 0}

    def _make(
        name: Optional[str] = None,
        status: ApprovalStatus = ApprovalStatus.APPROVED,
    ) -> User:
        counter["n"] += 1
        name = name or f"Student {counter['n']}"
        return db.create_user(
            UserCreate(
                full_name=name,
                email=f"student{counter['n']}@school.example",
                status=status,
            )
        )

    return _make


@pytest.fixture
def make_book(db: Database):
    """Factory creating books."""

    def _make(title: str = "The Hobbit", copies: int = 1) -> Book:
        return db.create_book(
            BookCreate(title=title, author="J. R. R. Tolkien", genre="Fantasy", total_copies=copies)
        )

    return _make


@pytest.fixture
def make_loan(lending: LendingManager, make_user, make_book):
    """Factory creating a BORROWED loan with a chosen due date."""

    def _make(
        due_date: date,
        user: Optional[User] = None,
        book: Optional[Book] = None,
    ) -> LoanRecord:
        user = user or make_user()
        book = book or make_book()
        borrowed_on = due_date - timedelta(days=7)
        now = datetime.combine(borrowed_on, time(9, 0), tzinfo=timezone.utc)
        result = lending.borrow(user.id, book.id, now=now)
        assert result.success, result.message
        return result.loan

    return _make


@pytest.fixture
def user(make_user) -> User:
    return make_user("Ada Lovelace")


@pytest.fixture
def book(make_book) -> Book:
    return make_book("The Hobbit", copies=3)
