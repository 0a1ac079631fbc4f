"""Tests for the email channel and queue client."""

from unittest.mock import MagicMock

import pytest
import requests

from smartlibrary.notifications.channels import (
    DeliveryConfigError,
    DeliveryError,
    LogOnlyChannel,
    QStashQueueClient,
    QueueError,
    ResendChannel,
    build_channel,
    build_queue_client,
)


def _response(status: int = 200, payload: dict = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload or {}
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    return response


@pytest.fixture
def session():
    mock = MagicMock(spec=requests.Session)
    mock.headers = {}
    return mock


class TestResendChannel:
    """Tests for ResendChannel."""

    def test_send_posts_email(self, session):
        session.post.return_value = _response(200, {"id": "email-123"})
        channel = ResendChannel("re_token", "Library <lib@example.org>", timeout=5, session=session)

        message_id = channel.send("ada@example.org", "Hello", "<p>Hi</p>")

        assert message_id == "email-123"
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == "https://api.resend.com/emails"
        assert kwargs["json"]["to"] == ["ada@example.org"]
        assert kwargs["json"]["from"] == "Library <lib@example.org>"
        assert kwargs["timeout"] == 5
        assert session.headers["Authorization"] == "Bearer re_token"

    def test_accepted_send_with_unreadable_body(self, session):
        """The email went out, so a garbled body must not look like a failure."""
        response = _response(200)
        response.json.side_effect = ValueError("Expecting value")
        session.post.return_value = response
        channel = ResendChannel("re_token", "lib@example.org", session=session)

        assert channel.send("ada@example.org", "Hello", "<p>Hi</p>") == ""

    def test_missing_token(self):
        with pytest.raises(DeliveryConfigError):
            ResendChannel(None, "lib@example.org")

    @pytest.mark.parametrize("status,retryable", [(500, True), (429, True), (422, False)])
    def test_http_errors(self, session, status, retryable):
        session.post.return_value = _response(status)
        channel = ResendChannel("re_token", "lib@example.org", session=session)

        with pytest.raises(DeliveryError) as exc:
            channel.send("ada@example.org", "Hello", "<p>Hi</p>")

        assert exc.value.retryable is retryable
        assert str(status) in str(exc.value)

    def test_timeout(self, session):
        session.post.side_effect = requests.exceptions.Timeout()
        channel = ResendChannel("re_token", "lib@example.org", session=session)

        with pytest.raises(DeliveryError, match="timed out"):
            channel.send("ada@example.org", "Hello", "<p>Hi</p>")

    def test_connection_error(self, session):
        session.post.side_effect = requests.exceptions.ConnectionError("refused")
        channel = ResendChannel("re_token", "lib@example.org", session=session)

        with pytest.raises(DeliveryError, match="Request failed"):
            channel.send("ada@example.org", "Hello", "<p>Hi</p>")


class TestBuildChannel:
    """Tests for channel selection."""

    def test_resend_with_token(self, config):
        assert isinstance(build_channel(config), ResendChannel)

    def test_log_only_without_token(self, config):
        config.resend_token = None
        channel = build_channel(config)

        assert isinstance(channel, LogOnlyChannel)
        assert channel.dry_run


class TestQStashQueueClient:
    """Tests for QStashQueueClient."""

    def test_enqueue(self, session):
        session.post.return_value = _response(201, {"messageId": "msg_1"})
        client = QStashQueueClient(
            "qs_token", base_url="https://qstash.example.com/", worker_secret="s3cret", session=session
        )

        correlation_id = client.enqueue(
            "https://library.example.org/api/workers/notifications", {"trigger_id": "t-1"}
        )

        assert correlation_id == "msg_1"
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == (
            "https://qstash.example.com/v2/publish/"
            "https://library.example.org/api/workers/notifications"
        )
        assert kwargs["json"] == {"trigger_id": "t-1"}
        assert kwargs["headers"]["Upstash-Forward-X-Worker-Secret"] == "s3cret"
        assert session.headers["Authorization"] == "Bearer qs_token"

    def test_enqueue_without_secret(self, session):
        session.post.return_value = _response(201, {"messageId": "msg_1"})
        client = QStashQueueClient("qs_token", session=session)

        client.enqueue("https://library.example.org/api/workers/notifications", {})

        assert "Upstash-Forward-X-Worker-Secret" not in session.post.call_args.kwargs["headers"]

    def test_enqueue_error(self, session):
        session.post.return_value = _response(401)
        client = QStashQueueClient("qs_token", session=session)

        with pytest.raises(QueueError, match="401"):
            client.enqueue("https://library.example.org/api/workers/notifications", {})

    def test_build_queue_client(self, config):
        assert build_queue_client(config) is None
        config.qstash_token = "qs"
        assert isinstance(build_queue_client(config), QStashQueueClient)
