# Overview: Service-layer operations for customer accounts; owns balance owed and lifetime purchases.

from __future__ import annotations

import logging
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, CustomerLedgerEntry
from ..models.cashbox import TX_DEPOSIT
from ..models.customers import ENTRY_PAYMENT, ENTRY_ADJUSTMENT
from ..money import to_base_cents, split_by_currency
from .concurrency import lock_for_update, unit_of_work
from .errors import InvariantViolationError, NotFoundError
from . import cashbox_service
"""
Customer Account Invariants (authoritative)

- balance_owed_cents and total_purchases_cents are held in the base currency.
- Both aggregates equal the fold of the customer's CustomerLedgerEntry rows.
- balance_owed_cents may be decremented (payments, returns) and is not
  floored: a negative balance is store credit carried forward.
- total_purchases_cents is a lifetime figure and is never decremented.
"""

logger = logging.getLogger(__name__)


def _get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    q = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        q = lock_for_update(q)
    customer = q.first()
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def get_customer(customer_id: int) -> Customer:
    return _get_customer(customer_id)


def list_customers(*, include_inactive: bool = False, search: str | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if not include_inactive:
        q = q.filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search}%"
        q = q.filter((Customer.name.ilike(like)) | (Customer.phone.ilike(like)))
    return q.order_by(Customer.name.asc(), Customer.id.asc()).all()


def create_customer(*, patch: dict) -> Customer:
    """Create a customer with a zero balance. Phone numbers are unique."""
    with unit_of_work():
        customer = Customer(**patch)
        customer.balance_owed_cents = 0
        customer.total_purchases_cents = 0
        db.session.add(customer)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise InvariantViolationError(
                "Phone number already registered", details={"phone": patch.get("phone")}
            ) from exc
    return customer


def _append_entry(
    customer: Customer,
    *,
    entry_type: str,
    balance_delta_cents: int,
    purchase_delta_cents: int,
    created_by_user_id: int,
    reference_type: str | None,
    reference_id: int | None,
    note: str | None,
) -> CustomerLedgerEntry:
    entry = CustomerLedgerEntry(
        customer_id=customer.id,
        entry_type=entry_type,
        balance_delta_cents=balance_delta_cents,
        purchase_delta_cents=purchase_delta_cents,
        balance_after_cents=customer.balance_owed_cents,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        created_by_user_id=created_by_user_id,
    )
    db.session.add(entry)
    return entry


def adjust_balance(
    *,
    customer_id: int,
    delta_cents: int,
    created_by_user_id: int,
    entry_type: str = ENTRY_ADJUSTMENT,
    reference_type: str | None = None,
    reference_id: int | None = None,
    note: str | None = None,
) -> Customer:
    """
    Add a signed delta (base currency) to balance_owed.

    Positive means the customer owes more; negative means a payment or credit.
    """
    if delta_cents == 0:
        raise InvariantViolationError("Balance adjustment must be non-zero")

    with unit_of_work():
        customer = _get_customer(customer_id, lock=True)
        customer.balance_owed_cents = customer.balance_owed_cents + delta_cents
        _append_entry(
            customer,
            entry_type=entry_type,
            balance_delta_cents=delta_cents,
            purchase_delta_cents=0,
            created_by_user_id=created_by_user_id,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
        )
        db.session.flush()

    logger.info("Customer %s balance %+d -> %s", customer_id, delta_cents, customer.balance_owed_cents)
    return customer


def add_purchase(
    *,
    customer_id: int,
    amount_cents: int,
    created_by_user_id: int,
    entry_type: str,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> Customer:
    """Grow the lifetime purchase total. Negative amounts are rejected."""
    if amount_cents < 0:
        raise InvariantViolationError("Lifetime purchases cannot be decremented")

    with unit_of_work():
        customer = _get_customer(customer_id, lock=True)
        customer.total_purchases_cents = customer.total_purchases_cents + amount_cents
        _append_entry(
            customer,
            entry_type=entry_type,
            balance_delta_cents=0,
            purchase_delta_cents=amount_cents,
            created_by_user_id=created_by_user_id,
            reference_type=reference_type,
            reference_id=reference_id,
            note=None,
        )
        db.session.flush()
    return customer


def record_customer_payment(
    *,
    customer_id: int,
    amount_cents: int,
    currency: str,
    exchange_rate: Decimal | None,
    created_by_user_id: int,
    note: str | None = None,
) -> Customer:
    """
    Take a payment against the customer's balance.

    The cash goes into the cashbox in the currency it was paid in; the
    balance is reduced by the same amount expressed in the base currency.
    Both writes happen in one unit of work.
    """
    if amount_cents <= 0:
        raise InvariantViolationError("Payment amount must be positive")

    base_currency = current_app.config["BASE_CURRENCY"]
    try:
        base_amount = to_base_cents(
            amount_cents, currency=currency, exchange_rate=exchange_rate, base_currency=base_currency
        )
    except ValueError as exc:
        raise InvariantViolationError(str(exc), details={"currency": currency}) from exc

    usd, lyd = split_by_currency(amount_cents, currency)

    with unit_of_work():
        customer = _get_customer(customer_id)
        cashbox_service.record_transaction(
            transaction_type=TX_DEPOSIT,
            amount_usd_cents=usd,
            amount_lyd_cents=lyd,
            exchange_rate=exchange_rate,
            description=f"Payment from {customer.name}",
            reference_type="customer",
            reference_id=customer.id,
            created_by_user_id=created_by_user_id,
        )
        customer = adjust_balance(
            customer_id=customer_id,
            delta_cents=-base_amount,
            created_by_user_id=created_by_user_id,
            entry_type=ENTRY_PAYMENT,
            reference_type="customer",
            reference_id=customer_id,
            note=note,
        )
    return customer


def list_ledger_entries(customer_id: int, *, limit: int = 200) -> list[CustomerLedgerEntry]:
    _get_customer(customer_id)
    return (
        db.session.query(CustomerLedgerEntry)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerLedgerEntry.created_at.desc(), CustomerLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def fold_ledger(customer_id: int) -> tuple[int, int]:
    """Recompute (balance_owed, total_purchases) from the ledger entries alone."""
    row = (
        db.session.query(
            func.coalesce(func.sum(CustomerLedgerEntry.balance_delta_cents), 0).label("balance"),
            func.coalesce(func.sum(CustomerLedgerEntry.purchase_delta_cents), 0).label("purchases"),
        )
        .filter(CustomerLedgerEntry.customer_id == customer_id)
        .one()
    )
    return int(row.balance or 0), int(row.purchases or 0)
