"""Configuration management for smartlibrary.

Loads configuration from environment variables and provides defaults.
"""

import ipaddress
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


class DeliveryMode(str, Enum):
    """How scheduled notification passes reach the email transport."""

    DIRECT = "direct"  # Send inline or on the local background worker
    QUEUED = "queued"  # Publish batches to the remote worker endpoint


def is_loopback_host(hostname: Optional[str]) -> bool:
    """Check whether a hostname cannot receive inbound worker callbacks."""
    if not hostname:
        return True
    host = hostname.lower().strip("[]").rstrip(".")
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return address.is_loopback or address.is_unspecified


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path

    # Public address of this deployment (used for worker callbacks and links)
    base_url: Optional[str]

    # Email transport
    resend_token: Optional[str]
    email_from: str

    # Queue
    qstash_token: Optional[str]
    qstash_url: str
    worker_secret: Optional[str]

    # Lending rules
    loan_period_days: int
    unit_penalty: Decimal

    # Dispatch
    batch_size: int
    delivery_retry_max: int
    delivery_retry_base_delay: float  # seconds
    delivery_timeout: float  # seconds

    log_level: str = "INFO"

    # Calendar used for due dates and notification windows (None = local time)
    timezone: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "SMARTLIBRARY_DB_PATH",
            str(Path.home() / ".smartlibrary" / "library.db"),
        )
        db_path = Path(db_path_str).expanduser()

        return cls(
            db_path=db_path,
            base_url=os.environ.get("SMARTLIBRARY_BASE_URL") or None,
            resend_token=os.environ.get("RESEND_TOKEN") or None,
            email_from=os.environ.get(
                "SMARTLIBRARY_EMAIL_FROM", "Smart Library <library@example.org>"
            ),
            qstash_token=os.environ.get("QSTASH_TOKEN") or None,
            qstash_url=os.environ.get("QSTASH_URL", "https://qstash.upstash.io"),
            worker_secret=os.environ.get("SMARTLIBRARY_WORKER_SECRET") or None,
            loan_period_days=int(os.environ.get("SMARTLIBRARY_LOAN_DAYS", "7")),
            unit_penalty=Decimal(os.environ.get("SMARTLIBRARY_UNIT_PENALTY", "0.50")),
            batch_size=int(os.environ.get("SMARTLIBRARY_BATCH_SIZE", "100")),
            delivery_retry_max=int(os.environ.get("SMARTLIBRARY_RETRY_MAX", "3")),
            delivery_retry_base_delay=float(
                os.environ.get("SMARTLIBRARY_RETRY_DELAY", "1.0")
            ),
            delivery_timeout=float(
                os.environ.get("SMARTLIBRARY_DELIVERY_TIMEOUT", "10")
            ),
            log_level=os.environ.get("SMARTLIBRARY_LOG_LEVEL", "INFO").upper(),
            timezone=os.environ.get("SMARTLIBRARY_TIMEZONE") or None,
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        if self.loan_period_days < 1:
            errors.append("SMARTLIBRARY_LOAN_DAYS must be at least 1")
        if self.unit_penalty < 0:
            errors.append("SMARTLIBRARY_UNIT_PENALTY must not be negative")
        if self.batch_size < 1:
            errors.append("SMARTLIBRARY_BATCH_SIZE must be at least 1")
        if self.delivery_retry_max < 1:
            errors.append("SMARTLIBRARY_RETRY_MAX must be at least 1")
        if self.base_url and not urlparse(self.base_url).scheme:
            errors.append(f"SMARTLIBRARY_BASE_URL is not an absolute URL: {self.base_url}")
        if self.timezone:
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                errors.append(f"Unknown SMARTLIBRARY_TIMEZONE: {self.timezone}")

        return errors

    @property
    def zone(self) -> Optional[ZoneInfo]:
        """Library time zone, or None for the process's local zone."""
        return ZoneInfo(self.timezone) if self.timezone else None

    def local_date(self, moment: Optional[datetime] = None) -> date:
        """Library calendar date of a moment (default: now).

        Borrow due dates, returns and the notification windows all read the
        date through here so they agree on when a day starts.
        """
        moment = moment or datetime.now(timezone.utc)
        return moment.astimezone(self.zone).date()

    def has_delivery_config(self) -> bool:
        """Check if email transport credentials are present."""
        return bool(self.resend_token)

    def has_queue_config(self) -> bool:
        """Check if queue credentials are present."""
        return bool(self.qstash_token)

    @property
    def has_public_base_url(self) -> bool:
        """True when the base URL can receive callbacks from a remote worker."""
        if not self.base_url:
            return False
        return not is_loopback_host(urlparse(self.base_url).hostname)

    @property
    def delivery_mode(self) -> DeliveryMode:
        """Queued only when a public base URL and a queue token are both set."""
        if self.has_public_base_url and self.has_queue_config():
            return DeliveryMode.QUEUED
        return DeliveryMode.DIRECT

    @property
    def public_url(self) -> str:
        """Base URL used in email links."""
        return (self.base_url or "http://localhost:5000").rstrip("/")

    @property
    def worker_endpoint(self) -> str:
        """Absolute URL of the queued batch worker."""
        return f"{self.public_url}/api/workers/notifications"


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
