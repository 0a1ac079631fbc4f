"""Delivery channels and the batch queue client.

Channels move one rendered email to a recipient. The queue client publishes
notification batches to the worker endpoint so they run outside the request
that triggered them.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from ..config import Config

logger = logging.getLogger(__name__)

WORKER_SECRET_HEADER = "X-Worker-Secret"


class DeliveryError(Exception):
    """Raised when the email transport rejects or fails a send."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class DeliveryConfigError(DeliveryError):
    """Raised when transport credentials are missing."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class QueueError(Exception):
    """Raised when a batch cannot be published to the queue."""

    pass


class DeliveryChannel:
    """Email transport interface."""

    dry_run = False

    def send(self, to: str, subject: str, html: str) -> str:
        """Send one email.

        Returns:
            Transport message ID

        Raises:
            DeliveryError: On any transport failure
        """
        raise NotImplementedError


class ResendChannel(DeliveryChannel):
    """Sends email through the Resend HTTP API."""

    BASE_URL = "https://api.resend.com"

    def __init__(
        self,
        api_key: Optional[str],
        sender: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise DeliveryConfigError("RESEND_TOKEN is not set")
        self.sender = sender
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def send(self, to: str, subject: str, html: str) -> str:
        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        try:
            response = self._session.post(
                f"{self.BASE_URL}/emails", json=payload, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.Timeout:
            raise DeliveryError("Email request timed out")
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code
            # Client errors other than rate limiting will fail the same way again
            retryable = status == 429 or status >= 500
            raise DeliveryError(f"HTTP error: {status}", retryable=retryable)
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Request failed: {e}")

        return _message_id(response)


def _message_id(response: requests.Response) -> str:
    """ID from an accepted send. The email is out even if the body is unreadable."""
    try:
        body = response.json()
    except ValueError:
        return ""
    return str(body.get("id", "")) if isinstance(body, dict) else ""


class LogOnlyChannel(DeliveryChannel):
    """Logs what would be sent. Used when no transport is configured."""

    dry_run = True

    def __init__(self):
        self.outbox: list[tuple[str, str]] = []

    def send(self, to: str, subject: str, html: str) -> str:
        logger.info("Would send '%s' to %s", subject, to)
        self.outbox.append((to, subject))
        return ""


def build_channel(config: Config) -> DeliveryChannel:
    """Create the email channel for a configuration.

    Missing credentials degrade to a log-only channel instead of failing.
    """
    try:
        return ResendChannel(
            config.resend_token, config.email_from, timeout=config.delivery_timeout
        )
    except DeliveryConfigError as e:
        logger.warning("%s; notifications will be logged, not sent", e)
        return LogOnlyChannel()


class QueueClient:
    """Batch queue interface."""

    def enqueue(self, worker_endpoint: str, payload: dict[str, Any]) -> str:
        """Publish one payload for delivery to the worker endpoint.

        Returns:
            Queue correlation ID

        Raises:
            QueueError: If the queue rejects the message
        """
        raise NotImplementedError


class QStashQueueClient(QueueClient):
    """Publishes batches through the Upstash QStash HTTP API."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://qstash.upstash.io",
        worker_secret: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.worker_secret = worker_secret
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {token}"})

    def enqueue(self, worker_endpoint: str, payload: dict[str, Any]) -> str:
        headers = {"Content-Type": "application/json"}
        if self.worker_secret:
            # QStash forwards Upstash-Forward-* headers to the destination
            headers[f"Upstash-Forward-{WORKER_SECRET_HEADER}"] = self.worker_secret

        url = f"{self.base_url}/v2/publish/{quote(worker_endpoint, safe=':/')}"
        try:
            response = self._session.post(
                url, json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json().get("messageId", "")
        except requests.exceptions.Timeout:
            raise QueueError("Queue publish timed out")
        except requests.exceptions.HTTPError as e:
            raise QueueError(f"HTTP error: {e.response.status_code}")
        except requests.exceptions.RequestException as e:
            raise QueueError(f"Request failed: {e}")


def build_queue_client(config: Config) -> Optional[QueueClient]:
    """Create the queue client, or None when no queue token is configured."""
    if not config.has_queue_config():
        return None
    return QStashQueueClient(
        config.qstash_token,
        base_url=config.qstash_url,
        worker_secret=config.worker_secret,
        timeout=config.delivery_timeout,
    )
