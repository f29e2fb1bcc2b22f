# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/posledger/routes/sales.py
"""Sale checkout, edit, return and cancel routes."""

from flask import Blueprint, request, jsonify, g
from flask import current_app

from ..services import sales_service
from ..services.errors import LedgerError
from ..services.sales_service import CartLine, SaleClaims
from ..models.sales import PAYMENT_CASH, PAYMENT_PARTIAL
from ..validation import (
    ValidationError,
    money_field,
    parse_currency,
    parse_exchange_rate,
    parse_id_list,
    parse_int,
    parse_optional_datetime,
    parse_quantity,
)
from ..decorators import require_actor


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def parse_cart_lines(raw, field: str = "items") -> list[CartLine]:
    """
    Each line: {"product_id", "quantity", and optionally unit_price / cost_price /
    total_price / profit as decimal strings or *_cents integers}.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"{field} must be a list")

    lines = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"{field}[{i}] must be an object")
        if entry.get("product_id") is None:
            raise ValidationError(f"{field}[{i}].product_id is required")
        lines.append(CartLine(
            product_id=parse_int(entry["product_id"], f"{field}[{i}].product_id"),
            quantity=parse_quantity(entry.get("quantity"), f"{field}[{i}].quantity"),
            unit_price_cents=money_field(entry, "unit_price"),
            cost_price_cents=money_field(entry, "cost_price"),
            total_price_cents=money_field(entry, "total_price"),
            profit_cents=money_field(entry, "profit"),
        ))
    return lines


@sales_bp.get("")
@require_actor
def list_sales_route():
    """
    List sales, newest first.

    Query params: status, customer_id, start, end (ISO-8601), limit
    """
    try:
        sales = sales_service.list_sales(
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            start=parse_optional_datetime(request.args.get("start"), "start"),
            end=parse_optional_datetime(request.args.get("end"), "end", end_of_range=True),
            limit=min(request.args.get("limit", 100, type=int), 500),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"sales": [s.to_dict() for s in sales]}), 200


@sales_bp.post("")
@require_actor
def create_sale_route():
    """
    Check out a cart.

    Body:
    - items: [{product_id, quantity, ...}] (non-empty)
    - amount_paid / amount_paid_cents
    - discount / discount_cents (optional)
    - customer_id (optional; required when not fully paid)
    - currency, exchange_rate
    - subtotal / total / amount_due / payment_method (optional; checked against computed values)
    """
    data = request.get_json(silent=True) or {}

    try:
        lines = parse_cart_lines(data.get("items"))
        if not lines:
            raise ValidationError("items must not be empty")
        amount_paid = money_field(data, "amount_paid", required=True)
        if amount_paid < 0:
            raise ValidationError("amount_paid must be >= 0")
        discount = money_field(data, "discount", default=0)
        if discount < 0:
            raise ValidationError("discount must be >= 0")
        customer_id = data.get("customer_id")
        customer_id = parse_int(customer_id, "customer_id") if customer_id is not None else None
        payment_method = data.get("payment_method")
        if payment_method is not None and payment_method not in (PAYMENT_CASH, PAYMENT_PARTIAL):
            raise ValidationError("payment_method must be cash or partial")
        claims = SaleClaims(
            subtotal_cents=money_field(data, "subtotal"),
            total_cents=money_field(data, "total"),
            amount_due_cents=money_field(data, "amount_due"),
            payment_method=payment_method,
        )
        currency = parse_currency(data.get("currency"), current_app.config["SUPPORTED_CURRENCIES"])
        exchange_rate = parse_exchange_rate(data.get("exchange_rate"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        sale = sales_service.create_sale(
            lines=lines,
            amount_paid_cents=amount_paid,
            discount_cents=discount,
            customer_id=customer_id,
            currency=currency,
            exchange_rate=exchange_rate,
            notes=data.get("notes"),
            claims=claims,
            created_by_user_id=g.actor_user_id,
        )
        return jsonify({"sale": sale.to_dict(include_items=True)}), 201

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    """Get sale with all lines (returned lines included)."""
    try:
        sale = sales_service.get_sale(sale_id)
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    return jsonify({"sale": sale.to_dict(include_items=True)}), 200


@sales_bp.post("/<int:sale_id>/edit")
@require_actor
def edit_sale_route(sale_id: int):
    """
    Return some lines and add new ones.

    Body:
    - return_item_ids: [int]
    - new_items: [{product_id, quantity, ...}]
    """
    data = request.get_json(silent=True) or {}

    try:
        return_item_ids = parse_id_list(data.get("return_item_ids"), "return_item_ids")
        new_lines = parse_cart_lines(data.get("new_items"), "new_items")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        sale, summary = sales_service.edit_sale(
            sale_id=sale_id,
            return_item_ids=return_item_ids,
            new_lines=new_lines,
            created_by_user_id=g.actor_user_id,
        )
        return jsonify({"sale": sale.to_dict(include_items=True), "settlement": summary}), 200

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to edit sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/return")
@require_actor
def return_sale_route(sale_id: int):
    try:
        sale = sales_service.return_sale(sale_id=sale_id, created_by_user_id=g.actor_user_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to return sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
@require_actor
def cancel_sale_route(sale_id: int):
    try:
        sale = sales_service.cancel_sale(sale_id=sale_id, created_by_user_id=g.actor_user_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500
