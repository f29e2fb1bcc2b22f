# Overview: Flask API routes for the cashbox; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..models.cashbox import TRANSACTION_TYPES, TX_SALE, TX_REFUND
from ..services import cashbox_service
from ..services.errors import LedgerError
from ..validation import ValidationError, money_field, parse_exchange_rate, parse_int
from ..decorators import require_actor

cashbox_bp = Blueprint("cashbox", __name__, url_prefix="/api/cashbox")

# Sale and refund entries are written only by the sale orchestrator
MANUAL_TYPES = tuple(t for t in TRANSACTION_TYPES if t not in (TX_SALE, TX_REFUND))


@cashbox_bp.get("")
@require_actor
def get_cashbox_route():
    try:
        box = cashbox_service.get_cashbox(request.args.get("cashbox_id", type=int))
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    return jsonify({"cashbox": box.to_dict()}), 200


@cashbox_bp.get("/transactions")
@require_actor
def list_transactions_route():
    """Transaction log, newest first. Optional ?reference_type=&reference_id=&limit=."""
    try:
        txs = cashbox_service.list_transactions(
            cashbox_id=request.args.get("cashbox_id", type=int),
            reference_type=request.args.get("reference_type"),
            reference_id=request.args.get("reference_id", type=int),
            limit=min(request.args.get("limit", 200, type=int), 1000),
        )
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    return jsonify({"transactions": [t.to_dict() for t in txs]}), 200


@cashbox_bp.post("/transactions")
@require_actor
def record_transaction_route():
    """
    Manual cashbox entry (deposit, withdrawal, expense, adjustment).

    Amounts arrive unsigned; direction comes from the type. Adjustments keep
    the sign they are given.
    """
    data = request.get_json(silent=True) or {}

    try:
        transaction_type = data.get("type")
        if transaction_type not in MANUAL_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(MANUAL_TYPES)}")
        usd = money_field(data, "amount_usd", default=0)
        lyd = money_field(data, "amount_lyd", default=0)
        if not usd and not lyd:
            raise ValidationError("amount_usd or amount_lyd is required")
        exchange_rate = parse_exchange_rate(data.get("exchange_rate"))
        cashbox_id = data.get("cashbox_id")
        cashbox_id = parse_int(cashbox_id, "cashbox_id") if cashbox_id is not None else None
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    usd, lyd = cashbox_service.signed_amounts(transaction_type, usd, lyd)

    try:
        tx = cashbox_service.record_transaction(
            transaction_type=transaction_type,
            amount_usd_cents=usd,
            amount_lyd_cents=lyd,
            exchange_rate=exchange_rate,
            description=data.get("description"),
            reference_type="manual",
            cashbox_id=cashbox_id,
            created_by_user_id=g.actor_user_id,
        )
        box = cashbox_service.get_cashbox(tx.cashbox_id)
        return jsonify({"transaction": tx.to_dict(), "cashbox": box.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record cashbox transaction")
        return jsonify({"error": "Internal server error"}), 500
