# Overview: Flask API routes for reports; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify

from ..services import reporting_service
from ..decorators import require_actor

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/reconciliation")
@require_actor
def reconciliation_route():
    """
    Rebuild stock, cashbox and customer balances from their logs and report
    every aggregate that disagrees. Read-only.
    """
    try:
        report = reporting_service.verify_ledgers()
    except Exception:
        current_app.logger.exception("Failed to build reconciliation report")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(report), 200
