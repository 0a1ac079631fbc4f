"""JSON API for lending and scheduled notifications.

Cron jobs call the notification triggers; the queue calls the worker
endpoint with one batch per request.
"""

import hmac
import logging
from datetime import date
from typing import Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError

from .config import Config, get_config
from .db.schemas import DeliveryStatus, LoanResponse, NotificationKind
from .db.sqlite import Database, StoreError
from .lending.schemas import LendingError
from .notifications.channels import WORKER_SECRET_HEADER, DeliveryChannel, QueueClient
from .notifications.worker import LocalWorker
from .scheduler.schemas import NotificationCategory
from .services import build_services

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    LendingError.USER_NOT_FOUND: 404,
    LendingError.BOOK_NOT_FOUND: 404,
    LendingError.LOAN_NOT_FOUND: 404,
    LendingError.USER_NOT_ELIGIBLE: 403,
    LendingError.ALREADY_BORROWED: 409,
    LendingError.OUT_OF_COPIES: 409,
}


def _parse_today() -> Optional[date]:
    """Optional ``today`` query parameter, used to replay a given day."""
    value = request.args.get("today")
    return date.fromisoformat(value) if value else None


def create_app(
    config: Optional[Config] = None,
    db: Optional[Database] = None,
    channel: Optional[DeliveryChannel] = None,
    queue_client: Optional[QueueClient] = None,
    worker: Optional[LocalWorker] = None,
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    services = build_services(
        config or get_config(), db=db, channel=channel, queue_client=queue_client, worker=worker
    )
    app.extensions["smartlibrary"] = services
    orchestrator = services.orchestrator

    @app.errorhandler(StoreError)
    def store_unavailable(e: StoreError):
        logger.error("Store error: %s", e)
        return jsonify({"success": False, "message": str(e)}), 503

    @app.errorhandler(ValueError)
    def bad_request(e: ValueError):
        return jsonify({"success": False, "message": f"Invalid request: {e}"}), 400

    @app.route("/health")
    def health():
        """Liveness check."""
        return jsonify({"status": "ok", "delivery_mode": orchestrator.strategy.mode.value})

    # -------------------------------------------------------------------------
    # Loans
    # -------------------------------------------------------------------------

    @app.route("/api/loans", methods=["POST"])
    def borrow():
        """Borrow a book for a user."""
        data = request.get_json(silent=True)
        if not data or "user_id" not in data or "book_id" not in data:
            return jsonify({"success": False, "message": "user_id and book_id are required"}), 400

        result = services.lending.borrow(data["user_id"], data["book_id"])
        if not result.success:
            return jsonify(
                {"success": False, "error": result.error.value, "message": result.message}
            ), ERROR_STATUS[result.error]

        return jsonify(
            {
                "success": True,
                "message": result.message,
                "loan": LoanResponse.model_validate(result.loan).model_dump(mode="json"),
            }
        ), 201

    @app.route("/api/loans/<loan_id>/return", methods=["POST"])
    def return_loan(loan_id: str):
        """Return a borrowed book."""
        result = services.lending.return_loan(loan_id)
        if not result.success:
            return jsonify(
                {"success": False, "error": result.error.value, "message": result.message}
            ), ERROR_STATUS[result.error]

        return jsonify(
            {
                "success": True,
                "message": result.message,
                "already_returned": result.already_returned,
                "loan": LoanResponse.model_validate(result.loan).model_dump(mode="json"),
            }
        )

    # -------------------------------------------------------------------------
    # Notification triggers
    # -------------------------------------------------------------------------

    @app.route("/api/notifications/due-today", methods=["POST"])
    def due_today():
        """Send due-today notices."""
        return jsonify(orchestrator.trigger_due_today(_parse_today()).model_dump(mode="json"))

    @app.route("/api/notifications/due-tomorrow", methods=["POST"])
    def due_tomorrow():
        """Send due-tomorrow reminders."""
        return jsonify(orchestrator.trigger_due_tomorrow(_parse_today()).model_dump(mode="json"))

    @app.route("/api/notifications/overdue", methods=["POST"])
    def overdue():
        """Send overdue penalty notices."""
        return jsonify(orchestrator.trigger_overdue(_parse_today()).model_dump(mode="json"))

    @app.route("/api/notifications/consolidated", methods=["POST"])
    def consolidated():
        """Run every category. 207 when only some succeed."""
        result = orchestrator.run_consolidated(_parse_today())
        return jsonify(result.model_dump(mode="json")), result.http_status

    @app.route("/api/notifications/preview")
    def preview():
        """Recipient counts per category, nothing is sent."""
        counts = orchestrator.preview_recipient_counts(_parse_today())
        return jsonify({**counts.model_dump(), "total": counts.total})

    @app.route("/api/notifications/manual/<category>", methods=["POST"])
    def manual(category: str):
        """Start a background pass for one category."""
        try:
            parsed = NotificationCategory(category)
        except ValueError:
            return jsonify({"success": False, "message": f"Unknown category: {category}"}), 404

        receipt = orchestrator.manual_trigger(parsed, _parse_today())
        return jsonify(receipt.model_dump(mode="json")), 202 if receipt.trigger_id else 200

    @app.route("/api/notifications/jobs/<trigger_id>")
    def job_status(trigger_id: str):
        """Progress of a manual or queued pass."""
        report = orchestrator.job_status(trigger_id)
        status = 404 if report.state == "unknown" else 200
        return jsonify(report.model_dump(mode="json")), status

    @app.route("/api/notifications/logs")
    def logs():
        """Recent audit log rows."""
        kind = request.args.get("kind")
        status = request.args.get("status")
        entries = services.audit.list_entries(
            kind=NotificationKind(kind.upper()) if kind else None,
            status=DeliveryStatus(status.upper()) if status else None,
            trigger_id=request.args.get("trigger_id"),
            limit=request.args.get("limit", 50, type=int),
        )
        return jsonify([e.model_dump(mode="json") for e in entries])

    # -------------------------------------------------------------------------
    # Queue worker
    # -------------------------------------------------------------------------

    @app.route("/api/workers/notifications", methods=["POST"])
    def worker_batch():
        """Process one batch delivered by the queue."""
        secret = services.config.worker_secret
        if secret and not hmac.compare_digest(
            request.headers.get(WORKER_SECRET_HEADER, ""), secret
        ):
            return jsonify({"success": False, "message": "Unauthorized"}), 401

        data = request.get_json(silent=True)
        if not data:
            return jsonify({"success": False, "message": "JSON body required"}), 400

        try:
            result = orchestrator.process_worker_batch(data)
        except ValidationError as e:
            return jsonify({"success": False, "message": f"Invalid batch: {e.error_count()} error(s)"}), 400

        return jsonify(result.model_dump(mode="json"))

    return app


def run_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False):
    """Run the API server."""
    app = create_app()
    print(f"\n📚 Smart Library API running at http://localhost:{port}")
    print("   Press Ctrl+C to stop\n")
    app.run(host=host, port=port, debug=debug)
