# Overview: Sale Record Store; persists sale headers and line snapshots and guards their arithmetic.

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Product, Sale, SaleItem
from ..models.sales import (
    ITEM_STATUS_ACTIVE,
    ITEM_STATUS_RETURNED,
    PAYMENT_CASH,
    PAYMENT_PARTIAL,
    SALE_STATUS_COMPLETED,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, unit_of_work
from .document_service import next_document_number
from .errors import InvariantViolationError, NotFoundError
"""
Sale Record Invariants (authoritative)

- A sale has at least one line when created.
- Every line: total_price == quantity * unit_price and
  profit == total_price - quantity * cost_price. Mismatches are rejected,
  never silently recomputed.
- Header: subtotal == sum(active line totals), total == subtotal - discount,
  amount_due == total - amount_paid, 0 <= discount <= subtotal.
- Lines are never deleted; a returned line keeps its row with status 'returned'.
- Name, SKU and prices on a line are copied from the product when the line is
  built and never refreshed afterwards.
"""


@dataclass(frozen=True)
class SaleItemSnapshot:
    """
    A sale line as it will be persisted.

    Prices are locked when the snapshot is taken; changing the quantity
    re-derives the totals from the locked prices, never from the product.
    """
    product_id: int
    product_name: str
    product_sku: str
    quantity: int
    unit_price_cents: int
    cost_price_cents: int
    total_price_cents: int
    profit_cents: int

    @classmethod
    def from_product(
        cls,
        product: Product,
        quantity: int,
        *,
        unit_price_cents: int | None = None,
        cost_price_cents: int | None = None,
    ) -> "SaleItemSnapshot":
        unit = product.selling_price_cents if unit_price_cents is None else unit_price_cents
        cost = product.cost_price_cents if cost_price_cents is None else cost_price_cents
        total = quantity * unit
        return cls(
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku,
            quantity=quantity,
            unit_price_cents=unit,
            cost_price_cents=cost,
            total_price_cents=total,
            profit_cents=total - quantity * cost,
        )

    def with_quantity(self, quantity: int) -> "SaleItemSnapshot":
        total = quantity * self.unit_price_cents
        return replace(
            self,
            quantity=quantity,
            total_price_cents=total,
            profit_cents=total - quantity * self.cost_price_cents,
        )

    def validate(self) -> None:
        details = {"product_id": self.product_id, "sku": self.product_sku}
        if self.quantity < 1:
            raise InvariantViolationError("Line quantity must be at least 1", details=details)
        if self.unit_price_cents < 0 or self.cost_price_cents < 0:
            raise InvariantViolationError("Line prices must not be negative", details=details)
        if self.total_price_cents != self.quantity * self.unit_price_cents:
            raise InvariantViolationError(
                "Line total does not equal quantity * unit price",
                details={**details, "expected": self.quantity * self.unit_price_cents,
                         "got": self.total_price_cents},
            )
        expected_profit = self.total_price_cents - self.quantity * self.cost_price_cents
        if self.profit_cents != expected_profit:
            raise InvariantViolationError(
                "Line profit does not equal total - quantity * cost",
                details={**details, "expected": expected_profit, "got": self.profit_cents},
            )


@dataclass(frozen=True)
class SaleHeader:
    sale_number: str
    customer_id: int | None
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    amount_paid_cents: int
    amount_due_cents: int
    payment_method: str
    currency: str
    exchange_rate: Decimal | None
    created_by_user_id: int
    change_due_cents: int = 0
    notes: str | None = None


def payment_method_for(amount_due_cents: int) -> str:
    return PAYMENT_PARTIAL if amount_due_cents > 0 else PAYMENT_CASH


def check_totals(*, subtotal_cents: int, discount_cents: int, total_cents: int,
                 amount_paid_cents: int, amount_due_cents: int) -> None:
    if discount_cents < 0 or discount_cents > subtotal_cents:
        raise InvariantViolationError(
            "Discount must be between zero and the subtotal",
            details={"discount_cents": discount_cents, "subtotal_cents": subtotal_cents},
        )
    if total_cents != subtotal_cents - discount_cents:
        raise InvariantViolationError(
            "Total does not equal subtotal - discount",
            details={"expected": subtotal_cents - discount_cents, "got": total_cents},
        )
    if amount_due_cents != total_cents - amount_paid_cents:
        raise InvariantViolationError(
            "Amount due does not equal total - amount paid",
            details={"expected": total_cents - amount_paid_cents, "got": amount_due_cents},
        )


def _add_lines(sale: Sale, items, user_id: int) -> list[SaleItem]:
    rows = []
    for snap in items:
        row = SaleItem(
            product_id=snap.product_id,
            product_name=snap.product_name,
            product_sku=snap.product_sku,
            quantity=snap.quantity,
            unit_price_cents=snap.unit_price_cents,
            cost_price_cents=snap.cost_price_cents,
            total_price_cents=snap.total_price_cents,
            profit_cents=snap.profit_cents,
            status=ITEM_STATUS_ACTIVE,
            added_by_user_id=user_id,
        )
        sale.items.append(row)
        rows.append(row)
    return rows


def create_sale_record(header: SaleHeader, items: list[SaleItemSnapshot]) -> Sale:
    """
    Persist a sale header and all of its lines as one unit.

    Raises InvariantViolationError when the cart is empty, a line's
    arithmetic is wrong, or the header does not add up.
    """
    if not items:
        raise InvariantViolationError("Sale must have at least one item")
    for snap in items:
        snap.validate()

    line_sum = sum(s.total_price_cents for s in items)
    if header.subtotal_cents != line_sum:
        raise InvariantViolationError(
            "Subtotal does not equal the sum of line totals",
            details={"expected": line_sum, "got": header.subtotal_cents},
        )
    check_totals(
        subtotal_cents=header.subtotal_cents,
        discount_cents=header.discount_cents,
        total_cents=header.total_cents,
        amount_paid_cents=header.amount_paid_cents,
        amount_due_cents=header.amount_due_cents,
    )

    with unit_of_work():
        sale = Sale(
            sale_number=header.sale_number,
            customer_id=header.customer_id,
            status=SALE_STATUS_COMPLETED,
            subtotal_cents=header.subtotal_cents,
            discount_cents=header.discount_cents,
            total_cents=header.total_cents,
            amount_paid_cents=header.amount_paid_cents,
            amount_due_cents=header.amount_due_cents,
            change_due_cents=header.change_due_cents,
            payment_method=header.payment_method,
            currency=header.currency,
            exchange_rate=header.exchange_rate,
            notes=header.notes,
            created_by_user_id=header.created_by_user_id,
        )
        db.session.add(sale)
        _add_lines(sale, items, header.created_by_user_id)
        db.session.flush()
    return sale


def get_sale_with_items(sale_id: int, *, lock: bool = False) -> Sale:
    q = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        q = lock_for_update(q)
    sale = q.first()
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[Sale]:
    q = db.session.query(Sale)
    if status:
        q = q.filter(Sale.status == status)
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at < end)
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def next_sale_number(now: datetime | None = None) -> str:
    """Allocate the next sale number, e.g. MD-20261019-0001."""
    now = now or utcnow()
    return next_document_number(
        document_type="SALE",
        prefix=current_app.config.get("SALE_NUMBER_PREFIX", "MD"),
        pad=4,
        date_part=now.strftime("%Y%m%d"),
    )


def mark_items_returned(sale: Sale, items: list[SaleItem], user_id: int) -> None:
    now = utcnow()
    for item in items:
        if item.sale_id != sale.id:
            raise InvariantViolationError("Item does not belong to this sale", details={"item_id": item.id})
        item.status = ITEM_STATUS_RETURNED
        item.returned_by_user_id = user_id
        item.returned_at = now


def append_items(sale: Sale, items: list[SaleItemSnapshot], user_id: int) -> list[SaleItem]:
    for snap in items:
        snap.validate()
    return _add_lines(sale, items, user_id)


def update_totals(sale: Sale, *, discount_cents: int, amount_paid_cents: int) -> Sale:
    """Rewrite the header money fields from the sale's active lines."""
    subtotal = sum(item.total_price_cents for item in sale.active_items)
    total = subtotal - discount_cents
    due = total - amount_paid_cents
    check_totals(
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        total_cents=total,
        amount_paid_cents=amount_paid_cents,
        amount_due_cents=due,
    )
    sale.subtotal_cents = subtotal
    sale.discount_cents = discount_cents
    sale.total_cents = total
    sale.amount_paid_cents = amount_paid_cents
    sale.amount_due_cents = due
    sale.payment_method = payment_method_for(due)
    return sale
