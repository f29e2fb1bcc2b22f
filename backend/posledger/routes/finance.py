# Overview: Flask API routes for expenses and revenues; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..models.finance import EXPENSE_CATEGORIES
from ..services import finance_service
from ..services.errors import LedgerError
from ..validation import (
    ValidationError,
    money_field,
    parse_currency,
    parse_exchange_rate,
    parse_optional_datetime,
)
from ..decorators import require_actor

expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")
revenues_bp = Blueprint("revenues", __name__, url_prefix="/api/revenues")


def _parse_amount(data: dict) -> tuple[int, str, object]:
    amount = money_field(data, "amount", required=True)
    if amount <= 0:
        raise ValidationError("amount must be > 0")
    currency = parse_currency(data.get("currency"), current_app.config["SUPPORTED_CURRENCIES"])
    return amount, currency or current_app.config["BASE_CURRENCY"], parse_exchange_rate(data.get("exchange_rate"))


@expenses_bp.get("")
@require_actor
def list_expenses_route():
    expenses = finance_service.list_expenses(category=request.args.get("category"))
    return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200


@expenses_bp.post("")
@require_actor
def create_expense_route():
    """
    Record an expense paid from the cashbox.

    Body: category, amount, currency, exchange_rate, description, person_name, occurred_at
    """
    data = request.get_json(silent=True) or {}

    try:
        category = data.get("category")
        if category not in EXPENSE_CATEGORIES:
            raise ValidationError(f"category must be one of: {', '.join(EXPENSE_CATEGORIES)}")
        description = (data.get("description") or "").strip()
        if not description:
            raise ValidationError("description is required")
        amount, currency, exchange_rate = _parse_amount(data)
        occurred_at = parse_optional_datetime(data.get("occurred_at"), "occurred_at")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        expense = finance_service.record_expense(
            category=category,
            amount_cents=amount,
            currency=currency,
            exchange_rate=exchange_rate,
            description=description,
            person_name=data.get("person_name"),
            occurred_at=occurred_at,
            created_by_user_id=g.actor_user_id,
        )
        return jsonify({"expense": expense.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record expense")
        return jsonify({"error": "Internal server error"}), 500


@revenues_bp.get("")
@require_actor
def list_revenues_route():
    revenues = finance_service.list_revenues()
    return jsonify({"revenues": [r.to_dict() for r in revenues]}), 200


@revenues_bp.post("")
@require_actor
def create_revenue_route():
    """
    Record non-sale income into the cashbox.

    Body: source, amount, currency, exchange_rate, description, occurred_at
    """
    data = request.get_json(silent=True) or {}

    try:
        source = (data.get("source") or "").strip()
        if not source:
            raise ValidationError("source is required")
        amount, currency, exchange_rate = _parse_amount(data)
        occurred_at = parse_optional_datetime(data.get("occurred_at"), "occurred_at")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        revenue = finance_service.record_revenue(
            source=source,
            amount_cents=amount,
            currency=currency,
            exchange_rate=exchange_rate,
            description=data.get("description"),
            occurred_at=occurred_at,
            created_by_user_id=g.actor_user_id,
        )
        return jsonify({"revenue": revenue.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record revenue")
        return jsonify({"error": "Internal server error"}), 500
