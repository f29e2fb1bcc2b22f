# Overview: Transaction orchestrator for sales; composes stock, sale records, cashbox and customer ledgers atomically.

# backend/posledger/services/sales_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..models import Sale, SaleItem
from ..models.cashbox import TX_SALE, TX_REFUND
from ..models.customers import ENTRY_SALE, ENTRY_SALE_EDIT, ENTRY_SALE_RETURN
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from ..models.sales import (
    ITEM_STATUS_RETURNED,
    PAYMENT_PARTIAL,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_RETURNED,
)
from ..money import to_base_cents, split_by_currency
from ..time_utils import utcnow
from . import cashbox_service, customer_service, inventory_service, sale_record_service
from .concurrency import unit_of_work
from .errors import (
    InvalidStateError,
    InvariantViolationError,
    NoChangeRequestedError,
    NotFoundError,
)
from .sale_record_service import SaleHeader, SaleItemSnapshot
"""
Sale Orchestration Invariants (authoritative)

Lifecycle:
- none -> completed -> (edited)* -> returned | cancelled
- Sales are never deleted. Corrections append stock movements, cashbox
  transactions and customer ledger entries, then rewrite the header totals.

Atomicity:
- create_sale, edit_sale, return_sale and cancel_sale each run as ONE unit of
  work. Any failure (insufficient stock on the last line included) rolls back
  every write made by the call.

Lock order (deadlock avoidance):
- sale row -> product rows by ascending id -> cashbox -> customer

Money:
- Only the paid portion of a sale moves cash; the due portion is owed by the
  customer. Over-tender is returned as change and never enters the cashbox.
- Cash is recorded in the sale's own currency column. Customer balances are
  held in the base currency; other currencies convert at the sale's rate.

Edit settlement:
- priceDiff = sum(new line totals) - sum(returned line totals).
- The discount is kept unless the new subtotal falls below it.
- A reduction in total first cancels outstanding due, then is refunded in cash.
- An increase is added to the due of a partial sale, otherwise collected in cash.
"""

logger = logging.getLogger(__name__)

REFERENCE_SALE = "sale"


@dataclass(frozen=True)
class CartLine:
    """
    One requested line of a cart or of an edit.

    Prices default to the product's current prices. When the caller sends
    pre-computed totals they must agree with quantity and prices.
    """
    product_id: int
    quantity: int
    unit_price_cents: int | None = None
    cost_price_cents: int | None = None
    total_price_cents: int | None = None
    profit_cents: int | None = None


@dataclass(frozen=True)
class SaleClaims:
    """Totals the caller computed on its side; checked, never trusted."""
    subtotal_cents: int | None = None
    total_cents: int | None = None
    amount_due_cents: int | None = None
    payment_method: str | None = None


def _base_currency() -> str:
    return current_app.config["BASE_CURRENCY"]


def _check_currency(currency: str, exchange_rate: Decimal | None) -> None:
    supported = current_app.config.get("SUPPORTED_CURRENCIES", ("USD", "LYD"))
    if currency not in supported:
        raise InvariantViolationError("Unsupported currency", details={"currency": currency})
    if currency != _base_currency():
        if exchange_rate is None or Decimal(exchange_rate) <= 0:
            raise InvariantViolationError(
                "Exchange rate is required for sales not in the base currency",
                details={"currency": currency, "base_currency": _base_currency()},
            )


def _to_base(amount_cents: int, sale_currency: str, exchange_rate: Decimal | None) -> int:
    return to_base_cents(
        amount_cents, currency=sale_currency, exchange_rate=exchange_rate, base_currency=_base_currency()
    )


def _snapshot(line: CartLine, products: dict) -> SaleItemSnapshot:
    product = products[line.product_id]
    if not product.is_active:
        raise InvalidStateError("Product is not active", details={"product_id": product.id, "sku": product.sku})

    snap = SaleItemSnapshot.from_product(
        product,
        line.quantity,
        unit_price_cents=line.unit_price_cents,
        cost_price_cents=line.cost_price_cents,
    )
    if line.total_price_cents is not None or line.profit_cents is not None:
        claimed = SaleItemSnapshot(
            product_id=snap.product_id,
            product_name=snap.product_name,
            product_sku=snap.product_sku,
            quantity=snap.quantity,
            unit_price_cents=snap.unit_price_cents,
            cost_price_cents=snap.cost_price_cents,
            total_price_cents=snap.total_price_cents if line.total_price_cents is None else line.total_price_cents,
            profit_cents=snap.profit_cents if line.profit_cents is None else line.profit_cents,
        )
        claimed.validate()
        return claimed
    snap.validate()
    return snap


def _check_claims(claims: SaleClaims | None, **computed) -> None:
    if claims is None:
        return
    for field, value in computed.items():
        claimed = getattr(claims, field)
        if claimed is not None and claimed != value:
            raise InvariantViolationError(
                f"Supplied {field} does not match the computed value",
                details={"field": field, "expected": value, "got": claimed},
            )


def _record_cash(sale: Sale, amount_cents: int, *, transaction_type: str, description: str, user_id: int) -> None:
    usd, lyd = split_by_currency(amount_cents, sale.currency)
    cashbox_service.record_transaction(
        transaction_type=transaction_type,
        amount_usd_cents=usd,
        amount_lyd_cents=lyd,
        exchange_rate=sale.exchange_rate,
        description=description,
        reference_type=REFERENCE_SALE,
        reference_id=sale.id,
        created_by_user_id=user_id,
    )


def _charge_customer(sale: Sale, *, old_due: int, new_due: int, entry_type: str, user_id: int) -> None:
    """
    Move the customer's balance from one sale due to another (sale currency).

    Both dues are converted whole and the difference is charged, so a due that
    returns to zero over several edits leaves no rounding residue behind.
    """
    delta = (
        _to_base(new_due, sale.currency, sale.exchange_rate)
        - _to_base(old_due, sale.currency, sale.exchange_rate)
    )
    if delta == 0:
        return
    customer_service.adjust_balance(
        customer_id=sale.customer_id,
        delta_cents=delta,
        created_by_user_id=user_id,
        entry_type=entry_type,
        reference_type=REFERENCE_SALE,
        reference_id=sale.id,
    )


def _add_customer_purchase(sale: Sale, *, old_total: int, new_total: int, entry_type: str, user_id: int) -> None:
    amount = (
        _to_base(new_total, sale.currency, sale.exchange_rate)
        - _to_base(old_total, sale.currency, sale.exchange_rate)
    )
    if amount <= 0:
        return
    customer_service.add_purchase(
        customer_id=sale.customer_id,
        amount_cents=amount,
        created_by_user_id=user_id,
        entry_type=entry_type,
        reference_type=REFERENCE_SALE,
        reference_id=sale.id,
    )


def create_sale(
    *,
    lines: list[CartLine],
    amount_paid_cents: int,
    created_by_user_id: int,
    customer_id: int | None = None,
    discount_cents: int = 0,
    currency: str | None = None,
    exchange_rate: Decimal | None = None,
    notes: str | None = None,
    claims: SaleClaims | None = None,
) -> Sale:
    """
    Check out a cart.

    Deducts stock for every line, stores the sale, records the paid portion in
    the cashbox and charges any amount due to the customer, all in one unit of
    work.

    Raises:
        InvariantViolationError: empty cart, bad line arithmetic, mismatching
            claimed totals, bad currency/rate, partial payment without customer
        InsufficientStockError: a line exceeds the stock on hand
        NotFoundError: product or customer missing
    """
    if not lines:
        raise InvariantViolationError("Sale must have at least one item")
    if amount_paid_cents < 0:
        raise InvariantViolationError("Amount paid must not be negative")
    if discount_cents < 0:
        raise InvariantViolationError("Discount must not be negative")

    currency = currency or _base_currency()
    _check_currency(currency, exchange_rate)

    with unit_of_work():
        products = inventory_service.lock_products(line.product_id for line in lines)
        items = [_snapshot(line, products) for line in lines]

        subtotal = sum(s.total_price_cents for s in items)
        if discount_cents > subtotal:
            raise InvariantViolationError(
                "Discount exceeds subtotal",
                details={"discount_cents": discount_cents, "subtotal_cents": subtotal},
            )
        total = subtotal - discount_cents
        paid = min(amount_paid_cents, total)
        change_due = amount_paid_cents - paid
        due = total - paid
        payment_method = sale_record_service.payment_method_for(due)

        _check_claims(
            claims,
            subtotal_cents=subtotal,
            total_cents=total,
            amount_due_cents=due,
            payment_method=payment_method,
        )

        customer = customer_service.get_customer(customer_id) if customer_id is not None else None
        if due > 0 and customer is None:
            raise InvariantViolationError(
                "A sale with an amount due requires a customer",
                details={"amount_due_cents": due},
            )

        header = SaleHeader(
            sale_number=sale_record_service.next_sale_number(),
            customer_id=customer_id,
            subtotal_cents=subtotal,
            discount_cents=discount_cents,
            total_cents=total,
            amount_paid_cents=paid,
            amount_due_cents=due,
            change_due_cents=change_due,
            payment_method=payment_method,
            currency=currency,
            exchange_rate=exchange_rate,
            notes=notes,
            created_by_user_id=created_by_user_id,
        )
        sale = sale_record_service.create_sale_record(header, items)

        for snap in items:
            inventory_service.apply_movement(
                product_id=snap.product_id,
                movement_type=MOVEMENT_OUT,
                quantity=snap.quantity,
                created_by_user_id=created_by_user_id,
                reason="sale",
                reference_type=REFERENCE_SALE,
                reference_id=sale.id,
                unit_cost_cents=snap.cost_price_cents,
            )

        if paid > 0:
            _record_cash(
                sale, paid,
                transaction_type=TX_SALE,
                description=f"Sale {sale.sale_number}",
                user_id=created_by_user_id,
            )

        if customer is not None:
            if due > 0:
                _charge_customer(
                    sale, old_due=0, new_due=due, entry_type=ENTRY_SALE, user_id=created_by_user_id
                )
            _add_customer_purchase(
                sale, old_total=0, new_total=total, entry_type=ENTRY_SALE, user_id=created_by_user_id
            )

    logger.info(
        "Sale %s created: total=%s paid=%s due=%s %s",
        sale.sale_number, total, paid, due, currency,
    )
    return sale


def _settle(
    sale: Sale,
    *,
    old_total: int,
    discount_cents: int,
    entry_type: str,
    user_id: int,
) -> int:
    """
    Move money for a change in the sale's total and rewrite the header.

    Returns the settlement amount (new total - old total).
    """
    new_subtotal = sum(item.total_price_cents for item in sale.active_items)
    discount = min(discount_cents, new_subtotal)
    new_total = new_subtotal - discount
    settlement = new_total - old_total

    paid = sale.amount_paid_cents
    due = sale.amount_due_cents

    if settlement < 0:
        credit = -settlement
        due_credit = min(credit, max(due, 0))
        refund = credit - due_credit

        if due_credit and sale.customer_id is not None:
            _charge_customer(
                sale, old_due=due, new_due=due - due_credit, entry_type=entry_type, user_id=user_id
            )
        if refund:
            _record_cash(
                sale, -refund,
                transaction_type=TX_REFUND,
                description=f"Refund on sale {sale.sale_number}",
                user_id=user_id,
            )
            paid -= refund

    elif settlement > 0:
        if sale.payment_method == PAYMENT_PARTIAL and sale.customer_id is not None:
            _charge_customer(
                sale, old_due=due, new_due=due + settlement, entry_type=entry_type, user_id=user_id
            )
        else:
            _record_cash(
                sale, settlement,
                transaction_type=TX_SALE,
                description=f"Additional charge on sale {sale.sale_number}",
                user_id=user_id,
            )
            paid += settlement

        if sale.customer_id is not None:
            _add_customer_purchase(
                sale, old_total=old_total, new_total=new_total, entry_type=entry_type, user_id=user_id
            )

    sale_record_service.update_totals(sale, discount_cents=discount, amount_paid_cents=paid)
    return settlement


def _load_completed_sale(sale_id: int) -> Sale:
    sale = sale_record_service.get_sale_with_items(sale_id, lock=True)
    if sale.status != SALE_STATUS_COMPLETED:
        raise InvalidStateError(
            f"Cannot change a sale with status {sale.status}",
            details={"sale_id": sale.id, "status": sale.status},
        )
    return sale


def _resolve_returned_items(sale: Sale, return_item_ids) -> list[SaleItem]:
    ids = list(return_item_ids)
    if len(set(ids)) != len(ids):
        raise InvariantViolationError("Duplicate item ids in return set", details={"item_ids": ids})

    by_id = {item.id: item for item in sale.items}
    returned = []
    for item_id in ids:
        item = by_id.get(item_id)
        if item is None:
            raise NotFoundError("Sale item not found on this sale", details={"sale_id": sale.id, "item_id": item_id})
        if item.status == ITEM_STATUS_RETURNED:
            raise InvariantViolationError("Sale item already returned", details={"item_id": item_id})
        returned.append(item)
    return returned


def _apply_changes(
    sale: Sale,
    *,
    returned: list[SaleItem],
    new_lines: list[CartLine],
    user_id: int,
    return_reason: str,
    entry_type: str,
) -> dict:
    """Restock returned lines, deduct added lines and settle the difference."""
    products = inventory_service.lock_products(
        [item.product_id for item in returned] + [line.product_id for line in new_lines]
    )

    for item in returned:
        inventory_service.apply_movement(
            product_id=item.product_id,
            movement_type=MOVEMENT_IN,
            quantity=item.quantity,
            created_by_user_id=user_id,
            reason=return_reason,
            reference_type=REFERENCE_SALE,
            reference_id=sale.id,
            unit_cost_cents=item.cost_price_cents,
        )
    returned_total = sum(item.total_price_cents for item in returned)

    added = [_snapshot(line, products) for line in new_lines]
    for snap in added:
        inventory_service.apply_movement(
            product_id=snap.product_id,
            movement_type=MOVEMENT_OUT,
            quantity=snap.quantity,
            created_by_user_id=user_id,
            reason="sale-edit-add",
            reference_type=REFERENCE_SALE,
            reference_id=sale.id,
            unit_cost_cents=snap.cost_price_cents,
        )
    new_items_total = sum(s.total_price_cents for s in added)

    sale_record_service.mark_items_returned(sale, returned, user_id)
    sale_record_service.append_items(sale, added, user_id)

    settlement = _settle(
        sale,
        old_total=sale.total_cents,
        discount_cents=sale.discount_cents,
        entry_type=entry_type,
        user_id=user_id,
    )
    return {
        "returned_total_cents": returned_total,
        "new_items_total_cents": new_items_total,
        "price_diff_cents": new_items_total - returned_total,
        "settlement_cents": settlement,
    }


def _close(sale: Sale, status: str, user_id: int) -> None:
    sale.status = status
    sale.closed_by_user_id = user_id
    sale.closed_at = utcnow()


def edit_sale(
    *,
    sale_id: int,
    return_item_ids,
    new_lines: list[CartLine],
    created_by_user_id: int,
) -> tuple[Sale, dict]:
    """
    Return some lines of a completed sale and add new ones in one pass.

    Returns the updated sale and a summary of the settlement
    (returned_total_cents, new_items_total_cents, price_diff_cents,
    settlement_cents).

    Raises:
        NoChangeRequestedError: nothing to return and nothing to add
        InvalidStateError: the sale is not completed
        NotFoundError: sale or item missing
        InsufficientStockError: an added line exceeds stock (nothing is applied)
    """
    return_item_ids = list(return_item_ids or [])
    new_lines = list(new_lines or [])
    if not return_item_ids and not new_lines:
        raise NoChangeRequestedError("Edit must return or add at least one item", details={"sale_id": sale_id})

    with unit_of_work():
        sale = _load_completed_sale(sale_id)
        returned = _resolve_returned_items(sale, return_item_ids)
        summary = _apply_changes(
            sale,
            returned=returned,
            new_lines=new_lines,
            user_id=created_by_user_id,
            return_reason="sale-edit-return",
            entry_type=ENTRY_SALE_EDIT,
        )
        if not sale.active_items:
            _close(sale, SALE_STATUS_RETURNED, created_by_user_id)

    logger.info(
        "Sale %s edited: returned=%s added=%s diff=%s",
        sale.sale_number, summary["returned_total_cents"], summary["new_items_total_cents"],
        summary["price_diff_cents"],
    )
    return sale, summary


def _reverse_sale(sale_id: int, *, status: str, reason: str, user_id: int) -> Sale:
    with unit_of_work():
        sale = _load_completed_sale(sale_id)
        returned = list(sale.active_items)
        if not returned:
            raise InvalidStateError("Sale has no active items", details={"sale_id": sale_id})
        _apply_changes(
            sale,
            returned=returned,
            new_lines=[],
            user_id=user_id,
            return_reason=reason,
            entry_type=ENTRY_SALE_RETURN,
        )
        _close(sale, status, user_id)

    logger.info("Sale %s %s", sale.sale_number, status)
    return sale


def return_sale(*, sale_id: int, created_by_user_id: int) -> Sale:
    """Return every active line of a sale; refunds what was paid and clears the due."""
    return _reverse_sale(sale_id, status=SALE_STATUS_RETURNED, reason="sale-return", user_id=created_by_user_id)


def cancel_sale(*, sale_id: int, created_by_user_id: int) -> Sale:
    """Same reversal as a return, recorded as a cancellation."""
    return _reverse_sale(sale_id, status=SALE_STATUS_CANCELLED, reason="sale-cancel", user_id=created_by_user_id)


def get_sale(sale_id: int) -> Sale:
    return sale_record_service.get_sale_with_items(sale_id)


def list_sales(**filters) -> list[Sale]:
    return sale_record_service.list_sales(**filters)
