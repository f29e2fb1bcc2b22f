# Overview: Service-layer operations for the cashbox; owns per-currency balances and the transaction log.

from __future__ import annotations

import logging
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Cashbox, CashboxTransaction
from ..models.cashbox import (
    TRANSACTION_TYPES,
    TX_SALE,
    TX_DEPOSIT,
    TX_EXPENSE,
    TX_WITHDRAWAL,
    TX_REFUND,
    TX_ADJUSTMENT,
)
from .concurrency import lock_for_update, unit_of_work
from .errors import InvariantViolationError, NotFoundError
"""
Cashbox Ledger Invariants (authoritative)

- balance_usd_cents / balance_lyd_cents are materialized sums of the
  CashboxTransaction amounts for that cashbox and currency.
- Amounts are signed. Inflows (sale, deposit) are >= 0; outflows
  (refund, expense, withdrawal) are <= 0; adjustment may be either.
- After record_transaction: balance == previous balance + amount, per currency.
- No currency conversion happens here; callers pass figures already in the
  currency of each column.
"""

logger = logging.getLogger(__name__)

INFLOW_TYPES = (TX_SALE, TX_DEPOSIT)
OUTFLOW_TYPES = (TX_REFUND, TX_EXPENSE, TX_WITHDRAWAL)


def _default_cashbox_name() -> str:
    return current_app.config.get("DEFAULT_CASHBOX_NAME", "Main Cashbox")


def ensure_default_cashbox() -> Cashbox:
    """
    Ensure the default cashbox exists.

    Safe to call repeatedly (idempotent).
    """
    name = _default_cashbox_name()
    box = db.session.query(Cashbox).filter_by(name=name).first()
    if box:
        return box

    with unit_of_work():
        box = Cashbox(name=name)
        db.session.add(box)
        db.session.flush()
    return box


def get_cashbox(cashbox_id: int | None = None, *, lock: bool = False) -> Cashbox:
    """Fetch a cashbox by id, or the default cashbox when no id is given."""
    q = db.session.query(Cashbox)
    if cashbox_id is not None:
        q = q.filter_by(id=cashbox_id)
    else:
        q = q.filter_by(name=_default_cashbox_name())
    if lock:
        q = lock_for_update(q)
    box = q.first()
    if box is None:
        raise NotFoundError("Cashbox not found", details={"cashbox_id": cashbox_id})
    return box


def signed_amounts(transaction_type: str, amount_usd_cents: int, amount_lyd_cents: int) -> tuple[int, int]:
    """
    Turn unsigned amounts from a manual entry into ledger signs.

    Outflow types become negative, inflow types stay positive and adjustments
    keep the sign they were given.
    """
    if transaction_type in OUTFLOW_TYPES:
        return -abs(amount_usd_cents), -abs(amount_lyd_cents)
    if transaction_type in INFLOW_TYPES:
        return abs(amount_usd_cents), abs(amount_lyd_cents)
    return amount_usd_cents, amount_lyd_cents


def _check_signs(transaction_type: str, amount_usd_cents: int, amount_lyd_cents: int) -> None:
    if transaction_type not in TRANSACTION_TYPES:
        raise InvariantViolationError(f"Invalid cashbox transaction type: {transaction_type}")

    amounts = (amount_usd_cents, amount_lyd_cents)
    if transaction_type in INFLOW_TYPES and any(a < 0 for a in amounts):
        raise InvariantViolationError(f"{transaction_type} amounts must not be negative")
    if transaction_type in OUTFLOW_TYPES and any(a > 0 for a in amounts):
        raise InvariantViolationError(f"{transaction_type} amounts must not be positive")
    if transaction_type != TX_ADJUSTMENT and not any(amounts):
        raise InvariantViolationError("Cashbox transaction must move money")


def record_transaction(
    *,
    transaction_type: str,
    amount_usd_cents: int = 0,
    amount_lyd_cents: int = 0,
    created_by_user_id: int,
    cashbox_id: int | None = None,
    exchange_rate: Decimal | None = None,
    description: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> CashboxTransaction:
    """
    Append a cashbox transaction and move the balances by the same amounts.

    The cashbox row is locked for the rest of the unit of work, so two
    concurrent writers cannot both start from the same previous balance.
    """
    _check_signs(transaction_type, amount_usd_cents, amount_lyd_cents)

    with unit_of_work():
        box = get_cashbox(cashbox_id, lock=True)

        tx = CashboxTransaction(
            cashbox_id=box.id,
            type=transaction_type,
            amount_usd_cents=amount_usd_cents,
            amount_lyd_cents=amount_lyd_cents,
            exchange_rate=exchange_rate,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(tx)

        box.balance_usd_cents = box.balance_usd_cents + amount_usd_cents
        box.balance_lyd_cents = box.balance_lyd_cents + amount_lyd_cents
        db.session.flush()

    logger.info(
        "Cashbox %s %s usd=%s lyd=%s ref=%s:%s",
        box.id, transaction_type, amount_usd_cents, amount_lyd_cents, reference_type, reference_id,
    )
    return tx


def list_transactions(
    *,
    cashbox_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    limit: int = 200,
) -> list[CashboxTransaction]:
    box = get_cashbox(cashbox_id)
    q = db.session.query(CashboxTransaction).filter_by(cashbox_id=box.id)
    if reference_type is not None:
        q = q.filter_by(reference_type=reference_type)
    if reference_id is not None:
        q = q.filter_by(reference_id=reference_id)
    return q.order_by(CashboxTransaction.created_at.desc(), CashboxTransaction.id.desc()).limit(limit).all()


def fold_transactions(cashbox_id: int) -> tuple[int, int]:
    """Recompute (usd, lyd) balances from the transaction log alone."""
    row = (
        db.session.query(
            func.coalesce(func.sum(CashboxTransaction.amount_usd_cents), 0).label("usd"),
            func.coalesce(func.sum(CashboxTransaction.amount_lyd_cents), 0).label("lyd"),
        )
        .filter(CashboxTransaction.cashbox_id == cashbox_id)
        .one()
    )
    return int(row.usd or 0), int(row.lyd or 0)
