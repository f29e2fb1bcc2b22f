# Overview: Flask API routes for customer accounts; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..models import Customer
from ..services import customer_service
from ..services.errors import LedgerError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    money_field,
    parse_currency,
    parse_exchange_rate,
    ValidationError,
)
from ..decorators import require_actor

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "address", "notes"},
    required_on_create={"name", "phone"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_actor
def list_customers_route():
    """List customers. Optional ?search= matches name or phone."""
    customers = customer_service.list_customers(search=request.args.get("search"))
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@customers_bp.post("")
@require_actor
def create_customer_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        customer = customer_service.create_customer(patch=patch)
        return jsonify({"customer": customer.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_actor
def get_customer_route(customer_id: int):
    """Customer with the most recent account ledger entries."""
    try:
        customer = customer_service.get_customer(customer_id)
        entries = customer_service.list_ledger_entries(customer_id, limit=50)
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status

    return jsonify({
        "customer": customer.to_dict(),
        "ledger": [entry.to_dict() for entry in entries],
    }), 200


@customers_bp.post("/<int:customer_id>/payment")
@require_actor
def record_payment_route(customer_id: int):
    """
    Take a payment against the customer's balance.

    Body:
    - amount (decimal string) or amount_cents (int), > 0
    - currency: "USD" | "LYD" (default: base currency)
    - exchange_rate: decimal string, required when currency differs from base
    - note: str (optional)
    """
    data = request.get_json(silent=True) or {}

    try:
        amount_cents = money_field(data, "amount", required=True)
        if amount_cents <= 0:
            raise ValidationError("amount must be > 0")
        currency = parse_currency(data.get("currency"), current_app.config["SUPPORTED_CURRENCIES"])
        exchange_rate = parse_exchange_rate(data.get("exchange_rate"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        customer = customer_service.record_customer_payment(
            customer_id=customer_id,
            amount_cents=amount_cents,
            currency=currency or current_app.config["BASE_CURRENCY"],
            exchange_rate=exchange_rate,
            created_by_user_id=g.actor_user_id,
            note=data.get("note"),
        )
        return jsonify({"customer": customer.to_dict()}), 200

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record customer payment")
        return jsonify({"error": "Internal server error"}), 500
