# Overview: Service-layer operations for inventory; owns Product.current_stock and the movement log.

# backend/posledger/services/inventory_service.py

import logging

from sqlalchemy import func, case, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Product, StockMovement
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT, MOVEMENT_TYPES
from .concurrency import lock_for_update, unit_of_work
from .errors import InsufficientStockError, InvalidStateError, InvariantViolationError, NotFoundError
"""
Inventory Ledger Invariants (authoritative)

Stock model:
- Product.current_stock is a materialized summary of StockMovement rows.
- For every product: current_stock == SUM(in) - SUM(out) + SUM(adjustment deltas).
- Products start at zero; opening stock is recorded as an 'in' movement.

Business invariants:
- current_stock may never go negative. Violating writes are rejected, not clamped.
- 'out' subtracts quantity, 'in' adds quantity, 'adjustment' applies a signed delta.
- Every movement stores previous_stock/new_stock as read under the row lock.

Atomicity:
- The product row update and the movement insert happen in one unit of work.
- Only this module writes Product.current_stock.
"""

logger = logging.getLogger(__name__)


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def get_product(product_id: int) -> Product:
    return _get_product(product_id)


def get_stock(product_id: int) -> int:
    """Current stock level (read-only)."""
    return _get_product(product_id).current_stock


def lock_products(product_ids) -> dict[int, Product]:
    """
    Lock a set of product rows in ascending id order.

    Units that touch several products always lock them in the same order, so
    two overlapping sales cannot deadlock each other.
    """
    locked: dict[int, Product] = {}
    for product_id in sorted(set(product_ids)):
        locked[product_id] = _get_product(product_id, lock=True)
    return locked


def _compute_new_stock(product: Product, movement_type: str, quantity: int) -> int:
    if movement_type not in MOVEMENT_TYPES:
        raise InvariantViolationError(f"Invalid stock movement type: {movement_type}")

    if movement_type == MOVEMENT_ADJUSTMENT:
        if quantity == 0:
            raise InvariantViolationError("Adjustment quantity must be non-zero")
        new_stock = product.current_stock + quantity
    else:
        if quantity <= 0:
            raise InvariantViolationError("Movement quantity must be positive")
        if movement_type == MOVEMENT_IN:
            new_stock = product.current_stock + quantity
        else:
            new_stock = product.current_stock - quantity

    if new_stock < 0:
        raise InsufficientStockError(
            "Insufficient stock",
            details={
                "product_id": product.id,
                "sku": product.sku,
                "requested_quantity": abs(quantity),
                "current_stock": product.current_stock,
            },
        )
    return new_stock


def apply_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    created_by_user_id: int,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    unit_cost_cents: int | None = None,
) -> StockMovement:
    """
    Apply one stock movement and append its fact row.

    Reads the stock under the product row lock, so the availability check and
    the decrement cannot be separated by a concurrent writer. Joins the
    caller's unit of work when there is one.

    Raises:
        NotFoundError: product missing
        InsufficientStockError: the movement would drive stock below zero
        InvariantViolationError: bad type or quantity
    """
    with unit_of_work():
        product = _get_product(product_id, lock=True)
        previous_stock = product.current_stock
        new_stock = _compute_new_stock(product, movement_type, quantity)

        product.current_stock = new_stock

        movement = StockMovement(
            product_id=product.id,
            type=movement_type,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            unit_cost_cents=unit_cost_cents,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(movement)
        db.session.flush()

    logger.info(
        "Stock movement %s product=%s qty=%s %s->%s ref=%s:%s",
        movement_type, product_id, quantity, previous_stock, new_stock, reference_type, reference_id,
    )
    return movement


def _get_category(category_id: int) -> Category:
    category = db.session.query(Category).filter_by(id=category_id).first()
    if category is None:
        raise NotFoundError("Category not found", details={"category_id": category_id})
    return category


def _check_category(category_id: int | None) -> None:
    if category_id is not None:
        _get_category(category_id)


def get_category(category_id: int) -> Category:
    return _get_category(category_id)


def list_categories(*, include_inactive: bool = False) -> list[Category]:
    q = db.session.query(Category)
    if not include_inactive:
        q = q.filter(Category.is_active.is_(True))
    return q.order_by(Category.name.asc()).all()


def create_category(*, patch: dict) -> Category:
    with unit_of_work():
        category = Category(**patch)
        db.session.add(category)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise InvariantViolationError("Category name already exists", details={"name": patch.get("name")}) from exc
    return category


def update_category(*, category_id: int, patch: dict) -> Category:
    with unit_of_work():
        category = _get_category(category_id)
        for key, value in patch.items():
            setattr(category, key, value)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise InvariantViolationError("Category name already exists", details={"name": patch.get("name")}) from exc
    return category


def delete_category(category_id: int) -> None:
    """Delete an empty category. Categories still holding products are refused."""
    with unit_of_work():
        category = _get_category(category_id)
        in_use = db.session.query(Product).filter(Product.category_id == category_id).count()
        if in_use:
            raise InvalidStateError(
                "Category still has products",
                details={"category_id": category_id, "product_count": in_use},
            )
        db.session.delete(category)


def create_product(
    *,
    patch: dict,
    created_by_user_id: int,
    initial_stock: int = 0,
) -> Product:
    """
    Create a product with zero stock, then record any opening stock as an
    'in' movement so the movement log explains every unit on hand.
    """
    with unit_of_work():
        _check_category(patch.get("category_id"))
        product = Product(**patch)
        product.current_stock = 0
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise InvariantViolationError("SKU already exists", details={"sku": patch.get("sku")}) from exc

        if initial_stock:
            apply_movement(
                product_id=product.id,
                movement_type=MOVEMENT_IN,
                quantity=initial_stock,
                created_by_user_id=created_by_user_id,
                reason="Initial stock",
                reference_type="product",
                reference_id=product.id,
                unit_cost_cents=product.cost_price_cents,
            )
    return product


def update_product(*, product_id: int, patch: dict) -> Product:
    """Update product master data. Stock is never changed here."""
    if "current_stock" in patch:
        raise InvariantViolationError("current_stock can only change through stock movements")

    with unit_of_work():
        product = _get_product(product_id, lock=True)
        _check_category(patch.get("category_id"))
        for key, value in patch.items():
            setattr(product, key, value)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise InvariantViolationError("SKU already exists", details={"sku": patch.get("sku")}) from exc
    return product


def list_products(*, include_inactive: bool = False, category_id: int | None = None) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def find_product_by_code(code: str) -> Product:
    """
    Resolve a scanned or typed code to an active product.

    A barcode match wins over a SKU match; among several products sharing a
    barcode the oldest one is returned.
    """
    code = (code or "").strip()
    active = db.session.query(Product).filter(Product.is_active.is_(True))
    product = (
        active.filter(Product.barcode == code).order_by(Product.id.asc()).first()
        or active.filter(Product.sku == code).first()
    )
    if product is None:
        raise NotFoundError("No product with this barcode or SKU", details={"code": code})
    return product


def search_products(query: str, *, limit: int = 50) -> list[Product]:
    """Case-insensitive substring match on name, SKU and barcode (active products)."""
    pattern = f"%{(query or '').strip()}%"
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.barcode.ilike(pattern),
            ),
        )
        .order_by(Product.name.asc(), Product.id.asc())
        .limit(limit)
        .all()
    )


def list_low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.current_stock <= Product.low_stock_threshold,
        )
        .order_by(Product.current_stock.asc(), Product.id.asc())
        .all()
    )


def list_stock_movements(*, product_id: int | None = None, limit: int = 200) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        _get_product(product_id)
        q = q.filter(StockMovement.product_id == product_id)
    return q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()


def fold_stock_movements(product_id: int) -> int:
    """Recompute a product's stock from its movement log alone."""
    signed = case(
        (StockMovement.type == MOVEMENT_OUT, -StockMovement.quantity),
        else_=StockMovement.quantity,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)
