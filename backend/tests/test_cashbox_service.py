"""
Cashbox ledger tests.

Verifies:
- balance == previous balance + amount for each currency
- Sign rules per transaction type
- Balances are reconstructible from the transaction log
"""

import pytest

from posledger.services import cashbox_service
from posledger.services.errors import InvariantViolationError, NotFoundError


def test_ensure_default_cashbox_is_idempotent(cashbox):
    again = cashbox_service.ensure_default_cashbox()
    assert again.id == cashbox.id
    assert (again.balance_usd_cents, again.balance_lyd_cents) == (0, 0)


def test_record_transaction_moves_each_currency_independently(cashbox, actor_id):
    cashbox_service.record_transaction(
        transaction_type="deposit", amount_lyd_cents=5000, created_by_user_id=actor_id
    )
    cashbox_service.record_transaction(
        transaction_type="deposit", amount_usd_cents=1200, created_by_user_id=actor_id
    )
    cashbox_service.record_transaction(
        transaction_type="withdrawal", amount_lyd_cents=-1500, created_by_user_id=actor_id
    )

    box = cashbox_service.get_cashbox()
    assert box.balance_lyd_cents == 3500
    assert box.balance_usd_cents == 1200


@pytest.mark.parametrize(
    "transaction_type,usd,lyd",
    [
        ("sale", 0, -100),
        ("deposit", -1, 0),
        ("refund", 0, 100),
        ("expense", 50, 0),
        ("withdrawal", 0, 10),
        ("deposit", 0, 0),
        ("nonsense", 0, 10),
    ],
)
def test_sign_rules(cashbox, actor_id, transaction_type, usd, lyd):
    with pytest.raises(InvariantViolationError):
        cashbox_service.record_transaction(
            transaction_type=transaction_type,
            amount_usd_cents=usd,
            amount_lyd_cents=lyd,
            created_by_user_id=actor_id,
        )
    box = cashbox_service.get_cashbox()
    assert (box.balance_usd_cents, box.balance_lyd_cents) == (0, 0)


def test_adjustment_accepts_either_sign(cashbox, actor_id):
    cashbox_service.record_transaction(
        transaction_type="adjustment", amount_lyd_cents=300, created_by_user_id=actor_id
    )
    cashbox_service.record_transaction(
        transaction_type="adjustment", amount_lyd_cents=-500, created_by_user_id=actor_id
    )
    assert cashbox_service.get_cashbox().balance_lyd_cents == -200


def test_signed_amounts():
    assert cashbox_service.signed_amounts("withdrawal", 100, 200) == (-100, -200)
    assert cashbox_service.signed_amounts("expense", 0, 200) == (0, -200)
    assert cashbox_service.signed_amounts("deposit", 100, 0) == (100, 0)
    assert cashbox_service.signed_amounts("adjustment", -100, 5) == (-100, 5)


def test_balance_equals_fold_of_transactions(cashbox, actor_id):
    entries = [
        ("deposit", 0, 10000),
        ("sale", 2500, 0),
        ("refund", 0, -750),
        ("expense", -500, -1000),
        ("adjustment", 1, -1),
    ]
    for transaction_type, usd, lyd in entries:
        cashbox_service.record_transaction(
            transaction_type=transaction_type,
            amount_usd_cents=usd,
            amount_lyd_cents=lyd,
            created_by_user_id=actor_id,
        )

    box = cashbox_service.get_cashbox()
    assert cashbox_service.fold_transactions(box.id) == (box.balance_usd_cents, box.balance_lyd_cents)
    assert (box.balance_usd_cents, box.balance_lyd_cents) == (2001, 8249)


def test_missing_cashbox(db_session, actor_id):
    with pytest.raises(NotFoundError):
        cashbox_service.get_cashbox(12345)
    with pytest.raises(NotFoundError):
        cashbox_service.record_transaction(
            transaction_type="deposit", amount_lyd_cents=1, created_by_user_id=actor_id, cashbox_id=12345
        )
