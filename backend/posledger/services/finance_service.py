# Overview: Expenses and non-sale revenues; each is recorded together with its cashbox entry.

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Expense, Revenue
from ..models.cashbox import TX_DEPOSIT, TX_EXPENSE
from ..models.finance import EXPENSE_CATEGORIES
from ..money import split_by_currency
from . import cashbox_service
from .concurrency import unit_of_work
from .document_service import next_document_number
from .errors import InvariantViolationError

logger = logging.getLogger(__name__)


def _check_amount(amount_cents: int, currency: str) -> None:
    if amount_cents <= 0:
        raise InvariantViolationError("Amount must be positive", details={"amount_cents": amount_cents})
    if currency not in current_app.config.get("SUPPORTED_CURRENCIES", ("USD", "LYD")):
        raise InvariantViolationError("Unsupported currency", details={"currency": currency})


def record_expense(
    *,
    category: str,
    amount_cents: int,
    currency: str,
    description: str,
    created_by_user_id: int,
    exchange_rate: Decimal | None = None,
    person_name: str | None = None,
    occurred_at: datetime | None = None,
) -> Expense:
    """Pay an expense out of the cashbox (negative 'expense' transaction)."""
    if category not in EXPENSE_CATEGORIES:
        raise InvariantViolationError("Invalid expense category", details={"category": category})
    _check_amount(amount_cents, currency)

    usd, lyd = split_by_currency(amount_cents, currency)
    with unit_of_work():
        number = next_document_number(
            document_type="EXPENSE",
            prefix=current_app.config.get("EXPENSE_NUMBER_PREFIX", "EXP"),
            pad=5,
        )
        expense = Expense(
            expense_number=number,
            category=category,
            amount_cents=amount_cents,
            currency=currency,
            exchange_rate=exchange_rate,
            description=description,
            person_name=person_name,
            created_by_user_id=created_by_user_id,
        )
        if occurred_at is not None:
            expense.occurred_at = occurred_at
        db.session.add(expense)
        db.session.flush()

        tx = cashbox_service.record_transaction(
            transaction_type=TX_EXPENSE,
            amount_usd_cents=-usd,
            amount_lyd_cents=-lyd,
            exchange_rate=exchange_rate,
            description=f"Expense {number}: {description}",
            reference_type="expense",
            reference_id=expense.id,
            created_by_user_id=created_by_user_id,
        )
        expense.cashbox_transaction_id = tx.id

    logger.info("Expense %s recorded: %s %s", number, amount_cents, currency)
    return expense


def record_revenue(
    *,
    source: str,
    amount_cents: int,
    currency: str,
    created_by_user_id: int,
    exchange_rate: Decimal | None = None,
    description: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    occurred_at: datetime | None = None,
) -> Revenue:
    """Record money received outside a sale (positive 'deposit' transaction)."""
    if not source:
        raise InvariantViolationError("Revenue source is required")
    _check_amount(amount_cents, currency)

    usd, lyd = split_by_currency(amount_cents, currency)
    with unit_of_work():
        number = next_document_number(
            document_type="REVENUE",
            prefix=current_app.config.get("REVENUE_NUMBER_PREFIX", "REV"),
            pad=5,
        )
        revenue = Revenue(
            revenue_number=number,
            source=source,
            amount_cents=amount_cents,
            currency=currency,
            exchange_rate=exchange_rate,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by_user_id=created_by_user_id,
        )
        if occurred_at is not None:
            revenue.occurred_at = occurred_at
        db.session.add(revenue)
        db.session.flush()

        tx = cashbox_service.record_transaction(
            transaction_type=TX_DEPOSIT,
            amount_usd_cents=usd,
            amount_lyd_cents=lyd,
            exchange_rate=exchange_rate,
            description=f"Revenue {number}: {source}",
            reference_type="revenue",
            reference_id=revenue.id,
            created_by_user_id=created_by_user_id,
        )
        revenue.cashbox_transaction_id = tx.id

    logger.info("Revenue %s recorded: %s %s", number, amount_cents, currency)
    return revenue


def list_expenses(*, category: str | None = None, limit: int = 200) -> list[Expense]:
    q = db.session.query(Expense)
    if category:
        q = q.filter(Expense.category == category)
    return q.order_by(Expense.occurred_at.desc(), Expense.id.desc()).limit(limit).all()


def list_revenues(*, limit: int = 200) -> list[Revenue]:
    return (
        db.session.query(Revenue)
        .order_by(Revenue.occurred_at.desc(), Revenue.id.desc())
        .limit(limit)
        .all()
    )
