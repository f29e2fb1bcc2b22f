# Overview: Flask API routes for products and stock movements; parses input and returns JSON responses.

# backend/posledger/routes/products.py
"""
Product, category and stock routes.

Stock is only ever changed through movements: there is no endpoint that
writes current_stock directly.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..models import Category, Product
from ..models.inventory import MOVEMENT_TYPES, MOVEMENT_ADJUSTMENT
from ..services import inventory_service
from ..services.errors import LedgerError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_int,
    ValidationError,
)
from ..decorators import require_actor

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "barcode", "category_id", "name", "description",
        "cost_price_cents", "selling_price_cents",
        "low_stock_threshold", "is_active",
    },
    required_on_create={"sku", "name", "cost_price_cents", "selling_price_cents"},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "is_active"},
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
movements_bp = Blueprint("stock_movements", __name__, url_prefix="/api/stock-movements")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@products_bp.get("")
@require_actor
def list_products_route():
    """
    List products.

    Query params:
    - include_inactive: "true" to include deactivated products
    - category_id: only products in this category
    """
    include_inactive = request.args.get("include_inactive", "").lower() == "true"
    products = inventory_service.list_products(
        include_inactive=include_inactive,
        category_id=request.args.get("category_id", type=int),
    )
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.get("/low-stock")
@require_actor
def low_stock_route():
    products = inventory_service.list_low_stock_products()
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.get("/search")
@require_actor
def search_products_route():
    """Checkout search: ?q= matches name, SKU or barcode."""
    limit = min(request.args.get("limit", 50, type=int), 200)
    products = inventory_service.search_products(request.args.get("q", ""), limit=limit)
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.get("/lookup")
@require_actor
def lookup_product_route():
    """Resolve a scanned barcode (or a typed SKU) for the checkout cart."""
    code = (request.args.get("code") or "").strip()
    if not code:
        return jsonify({"error": "code is required"}), 400

    try:
        product = inventory_service.find_product_by_code(code)
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    return jsonify({"product": product.to_dict()}), 200


@products_bp.post("")
@require_actor
def create_product_route():
    """
    Create a new product.

    Optional "initial_stock" is recorded as an 'in' movement.
    """
    payload = dict(request.get_json(silent=True) or {})

    try:
        initial_stock = parse_int(payload.pop("initial_stock", 0), "initial_stock")
        if initial_stock < 0:
            raise ValidationError("initial_stock must be >= 0")
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        product = inventory_service.create_product(
            patch=patch,
            created_by_user_id=g.actor_user_id,
            initial_stock=initial_stock,
        )
        return jsonify({"product": product.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_actor
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(product_id)
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    return jsonify({"product": product.to_dict()}), 200


@products_bp.patch("/<int:product_id>")
@require_actor
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        product = inventory_service.update_product(product_id=product_id, patch=patch)
        return jsonify({"product": product.to_dict()}), 200

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/stock")
@require_actor
def apply_stock_movement_route(product_id: int):
    """
    Manual stock movement (receiving, shrinkage, count corrections).

    Body:
    - type: "in" | "out" | "adjustment"
    - quantity: int (> 0 for in/out, signed non-zero for adjustment)
    - reason: str (optional)
    """
    data = request.get_json(silent=True) or {}

    try:
        movement_type = data.get("type")
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")
        quantity = parse_int(data.get("quantity"), "quantity")
        if movement_type != MOVEMENT_ADJUSTMENT and quantity <= 0:
            raise ValidationError("quantity must be > 0")
        if movement_type == MOVEMENT_ADJUSTMENT and quantity == 0:
            raise ValidationError("quantity must be non-zero for adjustment")
        unit_cost = data.get("unit_cost_cents")
        unit_cost = parse_int(unit_cost, "unit_cost_cents") if unit_cost is not None else None
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        movement = inventory_service.apply_movement(
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            created_by_user_id=g.actor_user_id,
            reason=data.get("reason") or "manual",
            reference_type="manual",
            unit_cost_cents=unit_cost,
        )
        product = inventory_service.get_product(product_id)
        return jsonify({"movement": movement.to_dict(), "product": product.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to apply stock movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("")
@require_actor
def list_movements_route():
    """Movement log, newest first. Optional ?product_id= and ?limit=."""
    product_id = request.args.get("product_id", type=int)
    limit = min(request.args.get("limit", 200, type=int), 1000)

    try:
        movements = inventory_service.list_stock_movements(product_id=product_id, limit=limit)
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200


@categories_bp.get("")
@require_actor
def list_categories_route():
    include_inactive = request.args.get("include_inactive", "").lower() == "true"
    categories = inventory_service.list_categories(include_inactive=include_inactive)
    return jsonify({"categories": [c.to_dict() for c in categories]}), 200


@categories_bp.post("")
@require_actor
def create_category_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        category = inventory_service.create_category(patch=patch)
        return jsonify({"category": category.to_dict()}), 201

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.patch("/<int:category_id>")
@require_actor
def update_category_route(category_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        category = inventory_service.update_category(category_id=category_id, patch=patch)
        return jsonify({"category": category.to_dict()}), 200

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.delete("/<int:category_id>")
@require_actor
def delete_category_route(category_id: int):
    """Delete a category that no product references."""
    try:
        inventory_service.delete_category(category_id)
        return jsonify({"deleted": True}), 200

    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete category")
        return jsonify({"error": "Internal server error"}), 500
