"""
Sale orchestration tests.

Verifies:
- Checkout moves stock, records the sale, cash and customer debt together
- Edits settle the price difference through refund / extra charge
- Failures leave every ledger exactly as it was
- Sale totals stay consistent after every operation
"""

from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from posledger.extensions import db
from posledger.models import (
    CashboxTransaction,
    CustomerLedgerEntry,
    Product,
    Sale,
    SaleItem,
    StockMovement,
)
from posledger.services import (
    cashbox_service,
    customer_service,
    inventory_service,
    reporting_service,
    sales_service,
)
from posledger.services.errors import (
    ConcurrentModificationError,
    InsufficientStockError,
    InvalidStateError,
    InvariantViolationError,
    NoChangeRequestedError,
    NotFoundError,
)
from posledger.services.sales_service import CartLine, SaleClaims


def _ledger_state():
    """Everything a sale operation may touch, as plain values."""
    db.session.expire_all()
    return {
        "stock": sorted((p.id, p.current_stock) for p in db.session.query(Product).all()),
        "movements": db.session.query(StockMovement).count(),
        "sales": sorted(
            (s.id, s.status, s.subtotal_cents, s.discount_cents, s.total_cents,
             s.amount_paid_cents, s.amount_due_cents)
            for s in db.session.query(Sale).all()
        ),
        "items": sorted((i.id, i.status) for i in db.session.query(SaleItem).all()),
        "cash": [
            (b.balance_usd_cents, b.balance_lyd_cents)
            for b in [cashbox_service.get_cashbox()]
        ],
        "cash_txs": db.session.query(CashboxTransaction).count(),
        "customers": sorted(
            (c.id, c.balance_owed_cents, c.total_purchases_cents)
            for c in customer_service.list_customers(include_inactive=True)
        ),
        "customer_entries": db.session.query(CustomerLedgerEntry).count(),
    }


def _assert_totals_consistent(sale):
    active = sum(i.total_price_cents for i in sale.items if i.status == "active")
    assert sale.subtotal_cents == active
    assert sale.total_cents == sale.subtotal_cents - sale.discount_cents
    assert sale.amount_due_cents == sale.total_cents - sale.amount_paid_cents


def _sale_txs(sale_id):
    return (
        db.session.query(CashboxTransaction)
        .filter_by(reference_type="sale", reference_id=sale_id)
        .order_by(CashboxTransaction.id)
        .all()
    )


def _checkout(actor_id, product, qty=2, paid=None, **kwargs):
    paid = qty * product.selling_price_cents if paid is None else paid
    return sales_service.create_sale(
        lines=[CartLine(product_id=product.id, quantity=qty)],
        amount_paid_cents=paid,
        created_by_user_id=actor_id,
        **kwargs,
    )


# =============================================================================
# CREATE SALE
# =============================================================================


class TestCreateSale:

    def test_single_line_cash_sale(self, cashbox, make_product, actor_id):
        product = make_product(stock=5, price_cents=1000, cost_cents=600)

        sale = _checkout(actor_id, product, qty=2)

        assert inventory_service.get_stock(product.id) == 3
        assert sale.total_cents == 2000
        assert sale.status == "completed"
        assert sale.payment_method == "cash"
        assert sale.items[0].profit_cents == 800

        outs = db.session.query(StockMovement).filter_by(product_id=product.id, type="out").all()
        assert len(outs) == 1
        assert outs[0].quantity == 2
        assert (outs[0].reference_type, outs[0].reference_id) == ("sale", sale.id)

        [tx] = _sale_txs(sale.id)
        assert tx.type == "sale"
        assert (tx.amount_usd_cents, tx.amount_lyd_cents) == (0, 2000)
        assert cashbox_service.get_cashbox().balance_lyd_cents == 2000

    def test_sale_number_format(self, cashbox, make_product, actor_id):
        product = make_product()
        sale = _checkout(actor_id, product, qty=1)
        prefix, date_part, seq = sale.sale_number.split("-")
        assert prefix == "MD"
        assert len(date_part) == 8
        assert seq == "0001"

    def test_partial_payment_charges_customer(self, cashbox, make_product, make_customer, actor_id):
        product = make_product(stock=5, price_cents=1000)
        customer = make_customer()

        sale = _checkout(actor_id, product, qty=3, paid=1000, customer_id=customer.id)

        assert sale.payment_method == "partial"
        assert sale.amount_due_cents == 2000
        assert cashbox_service.get_cashbox().balance_lyd_cents == 1000
        customer = customer_service.get_customer(customer.id)
        assert customer.balance_owed_cents == 2000
        assert customer.total_purchases_cents == 3000

    def test_partial_payment_without_customer_rejected(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        before = _ledger_state()

        with pytest.raises(InvariantViolationError):
            _checkout(actor_id, product, qty=2, paid=500)

        assert _ledger_state() == before

    def test_over_tender_returns_change(self, cashbox, make_product, actor_id):
        product = make_product(price_cents=1000)

        sale = _checkout(actor_id, product, qty=1, paid=5000)

        assert sale.amount_paid_cents == 1000
        assert sale.change_due_cents == 4000
        assert sale.amount_due_cents == 0
        assert cashbox_service.get_cashbox().balance_lyd_cents == 1000

    def test_discount(self, cashbox, make_product, actor_id):
        product = make_product(price_cents=1000)
        sale = _checkout(actor_id, product, qty=2, paid=1500, discount_cents=500)

        assert (sale.subtotal_cents, sale.discount_cents, sale.total_cents) == (2000, 500, 1500)
        _assert_totals_consistent(sale)

    def test_discount_above_subtotal_rejected(self, cashbox, make_product, actor_id):
        product = make_product(price_cents=1000)
        with pytest.raises(InvariantViolationError):
            _checkout(actor_id, product, qty=1, paid=0, discount_cents=1001)

    def test_usd_sale_books_usd_cash_and_converts_customer_debt(
        self, cashbox, make_product, make_customer, actor_id
    ):
        product = make_product(price_cents=1000)
        customer = make_customer()

        sale = _checkout(
            actor_id, product, qty=2, paid=500,
            customer_id=customer.id, currency="USD", exchange_rate=Decimal("4.85"),
        )

        box = cashbox_service.get_cashbox()
        assert (box.balance_usd_cents, box.balance_lyd_cents) == (500, 0)
        customer = customer_service.get_customer(customer.id)
        # 15.00 USD due * 4.85 = 72.75 LYD; 20.00 USD total = 97.00 LYD
        assert customer.balance_owed_cents == 7275
        assert customer.total_purchases_cents == 9700
        assert sale.exchange_rate == Decimal("4.8500")

    def test_foreign_currency_requires_rate(self, cashbox, make_product, actor_id):
        product = make_product()
        with pytest.raises(InvariantViolationError):
            _checkout(actor_id, product, qty=1, currency="USD")

    def test_unsupported_currency_rejected(self, cashbox, make_product, actor_id):
        product = make_product()
        with pytest.raises(InvariantViolationError):
            _checkout(actor_id, product, qty=1, currency="EUR", exchange_rate=Decimal("5"))

    def test_empty_cart_rejected(self, cashbox, actor_id):
        with pytest.raises(InvariantViolationError):
            sales_service.create_sale(lines=[], amount_paid_cents=0, created_by_user_id=actor_id)

    def test_claimed_total_must_match(self, cashbox, make_product, actor_id):
        product = make_product(stock=5, price_cents=1000)
        before = _ledger_state()

        with pytest.raises(InvariantViolationError) as exc:
            _checkout(actor_id, product, qty=2, claims=SaleClaims(total_cents=1900))

        assert exc.value.details["field"] == "total_cents"
        assert _ledger_state() == before

    def test_claimed_line_total_must_match(self, cashbox, make_product, actor_id):
        product = make_product(stock=5, price_cents=1000, cost_cents=600)
        with pytest.raises(InvariantViolationError):
            sales_service.create_sale(
                lines=[CartLine(product_id=product.id, quantity=2, total_price_cents=2100)],
                amount_paid_cents=2100,
                created_by_user_id=actor_id,
            )

    def test_matching_claims_accepted(self, cashbox, make_product, actor_id):
        product = make_product(stock=5, price_cents=1000, cost_cents=600)
        sale = sales_service.create_sale(
            lines=[CartLine(product_id=product.id, quantity=2, unit_price_cents=1000,
                            cost_price_cents=600, total_price_cents=2000, profit_cents=800)],
            amount_paid_cents=2000,
            created_by_user_id=actor_id,
            claims=SaleClaims(subtotal_cents=2000, total_cents=2000, amount_due_cents=0, payment_method="cash"),
        )
        assert sale.total_cents == 2000

    def test_insufficient_stock_on_last_line_rolls_back(self, cashbox, make_product, actor_id):
        plenty = make_product(stock=10)
        scarce = make_product(stock=1)
        before = _ledger_state()

        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(
                lines=[
                    CartLine(product_id=plenty.id, quantity=3),
                    CartLine(product_id=scarce.id, quantity=2),
                ],
                amount_paid_cents=3 * plenty.selling_price_cents + 2 * scarce.selling_price_cents,
                created_by_user_id=actor_id,
            )

        assert _ledger_state() == before

    def test_unknown_product(self, cashbox, actor_id):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(
                lines=[CartLine(product_id=4242, quantity=1)],
                amount_paid_cents=0,
                created_by_user_id=actor_id,
            )

    def test_inactive_product_cannot_be_sold(self, cashbox, make_product, actor_id):
        product = make_product()
        inventory_service.update_product(product_id=product.id, patch={"is_active": False})
        with pytest.raises(InvalidStateError):
            _checkout(actor_id, product, qty=1)


# =============================================================================
# EDIT SALE
# =============================================================================


class TestEditSale:

    def test_return_line_and_add_cheaper_line_refunds_difference(self, cashbox, make_product, actor_id):
        product = make_product(stock=5, price_cents=1000, cost_cents=600)
        sale = _checkout(actor_id, product, qty=2)
        item_id = sale.items[0].id

        sale, summary = sales_service.edit_sale(
            sale_id=sale.id,
            return_item_ids=[item_id],
            new_lines=[CartLine(product_id=product.id, quantity=1, unit_price_cents=1500)],
            created_by_user_id=actor_id,
        )

        assert inventory_service.get_stock(product.id) == 4
        assert summary["returned_total_cents"] == 2000
        assert summary["new_items_total_cents"] == 1500
        assert summary["price_diff_cents"] == -500
        assert sale.total_cents == 1500
        _assert_totals_consistent(sale)

        txs = _sale_txs(sale.id)
        assert [t.type for t in txs] == ["sale", "refund"]
        assert txs[1].amount_lyd_cents == -500
        assert cashbox_service.get_cashbox().balance_lyd_cents == 1500

        reasons = [
            m.reason for m in db.session.query(StockMovement)
            .filter_by(reference_type="sale", reference_id=sale.id)
            .order_by(StockMovement.id)
        ]
        assert reasons == ["sale", "sale-edit-return", "sale-edit-add"]

    def test_returned_line_kept_for_audit(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        sale = _checkout(actor_id, product, qty=2)
        item_id = sale.items[0].id

        sale, _ = sales_service.edit_sale(
            sale_id=sale.id,
            return_item_ids=[item_id],
            new_lines=[CartLine(product_id=product.id, quantity=1)],
            created_by_user_id=actor_id,
        )

        statuses = {i.id: i.status for i in sale.items}
        assert statuses[item_id] == "returned"
        assert sorted(statuses.values()) == ["active", "returned"]

    def test_additional_charge_collected_in_cash(self, cashbox, make_product, actor_id):
        first = make_product(stock=5, price_cents=1000)
        second = make_product(stock=5, price_cents=700)
        sale = _checkout(actor_id, first, qty=1)

        sale, summary = sales_service.edit_sale(
            sale_id=sale.id,
            return_item_ids=[],
            new_lines=[CartLine(product_id=second.id, quantity=2)],
            created_by_user_id=actor_id,
        )

        assert summary["price_diff_cents"] == 1400
        assert sale.total_cents == 2400
        assert sale.amount_paid_cents == 2400
        assert sale.amount_due_cents == 0
        assert [t.type for t in _sale_txs(sale.id)] == ["sale", "sale"]
        assert cashbox_service.get_cashbox().balance_lyd_cents == 2400

    def test_additional_charge_on_partial_sale_goes_to_customer(
        self, cashbox, make_product, make_customer, actor_id
    ):
        product = make_product(stock=10, price_cents=1000)
        customer = make_customer()
        sale = _checkout(actor_id, product, qty=2, paid=500, customer_id=customer.id)

        sale, _ = sales_service.edit_sale(
            sale_id=sale.id,
            return_item_ids=[],
            new_lines=[CartLine(product_id=product.id, quantity=1)],
            created_by_user_id=actor_id,
        )

        assert sale.amount_due_cents == 2500
        assert cashbox_service.get_cashbox().balance_lyd_cents == 500
        customer = customer_service.get_customer(customer.id)
        assert customer.balance_owed_cents == 2500
        assert customer.total_purchases_cents == 3000

    def test_credit_on_partial_sale_reduces_due_before_refunding(
        self, cashbox, make_product, make_customer, actor_id
    ):
        cheap = make_product(stock=10, price_cents=500)
        dear = make_product(stock=10, price_cents=3000)
        customer = make_customer()
        sale = sales_service.create_sale(
            lines=[CartLine(product_id=cheap.id, quantity=1), CartLine(product_id=dear.id, quantity=1)],
            amount_paid_cents=2000,
            customer_id=customer.id,
            created_by_user_id=actor_id,
        )
        assert sale.amount_due_cents == 1500
        dear_item = next(i for i in sale.items if i.product_id == dear.id)

        sale, summary = sales_service.edit_sale(
            sale_id=sale.id,
            return_item_ids=[dear_item.id],
            new_lines=[],
            created_by_user_id=actor_id,
        )

        # 30.00 credit: 15.00 cancels the due, 15.00 refunded in cash
        assert summary["settlement_cents"] == -3000
        assert sale.amount_due_cents == 0
        assert sale.amount_paid_cents == 500
        assert sale.total_cents == 500
        assert cashbox_service.get_cashbox().balance_lyd_cents == 2000 - 1500
        customer = customer_service.get_customer(customer.id)
        assert customer.balance_owed_cents == 0
        assert customer.total_purchases_cents == 3500

    def test_discount_reduced_when_subtotal_falls_below_it(self, cashbox, make_product, actor_id):
        big = make_product(stock=5, price_cents=5000)
        small = make_product(stock=5, price_cents=300)
        sale = sales_service.create_sale(
            lines=[CartLine(product_id=big.id, quantity=1)],
            amount_paid_cents=4000,
            discount_cents=1000,
            created_by_user_id=actor_id,
        )

        sale, summary = sales_service.edit_sale(
            sale_id=sale.id,
            return_item_ids=[sale.items[0].id],
            new_lines=[CartLine(product_id=small.id, quantity=1)],
            created_by_user_id=actor_id,
        )

        assert sale.subtotal_cents == 300
        assert sale.discount_cents == 300
        assert sale.total_cents == 0
        assert summary["settlement_cents"] == -4000
        assert sale.amount_paid_cents == 0
        _assert_totals_consistent(sale)

    def test_returning_every_line_marks_sale_returned(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        sale = _checkout(actor_id, product, qty=2)

        sale, _ = sales_service.edit_sale(
            sale_id=sale.id,
            return_item_ids=[sale.items[0].id],
            new_lines=[],
            created_by_user_id=actor_id,
        )

        assert sale.status == "returned"
        assert sale.total_cents == 0

    def test_no_change_rejected_and_nothing_mutated(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        sale = _checkout(actor_id, product, qty=2)
        before = _ledger_state()

        for empty_returns, empty_adds in [([], []), (None, None), ([], None)]:
            with pytest.raises(NoChangeRequestedError):
                sales_service.edit_sale(
                    sale_id=sale.id,
                    return_item_ids=empty_returns,
                    new_lines=empty_adds,
                    created_by_user_id=actor_id,
                )

        assert _ledger_state() == before

    def test_insufficient_stock_on_last_added_line_leaves_everything_untouched(
        self, cashbox, make_product, make_customer, actor_id
    ):
        a = make_product(stock=10, price_cents=1000)
        b = make_product(stock=10, price_cents=2000)
        scarce = make_product(stock=1, price_cents=500)
        customer = make_customer()
        sale = sales_service.create_sale(
            lines=[CartLine(product_id=a.id, quantity=2), CartLine(product_id=b.id, quantity=1)],
            amount_paid_cents=3000,
            customer_id=customer.id,
            created_by_user_id=actor_id,
        )
        returned_id = sale.items[0].id
        before = _ledger_state()

        with pytest.raises(InsufficientStockError):
            sales_service.edit_sale(
                sale_id=sale.id,
                return_item_ids=[returned_id],
                new_lines=[
                    CartLine(product_id=b.id, quantity=1),
                    CartLine(product_id=scarce.id, quantity=5),
                ],
                created_by_user_id=actor_id,
            )

        assert _ledger_state() == before

    def test_unknown_item_rejected(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        sale = _checkout(actor_id, product, qty=1)
        with pytest.raises(NotFoundError):
            sales_service.edit_sale(
                sale_id=sale.id, return_item_ids=[99999], new_lines=[], created_by_user_id=actor_id
            )

    def test_item_from_another_sale_rejected(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        first = _checkout(actor_id, product, qty=1)
        second = _checkout(actor_id, product, qty=1)
        with pytest.raises(NotFoundError):
            sales_service.edit_sale(
                sale_id=second.id,
                return_item_ids=[first.items[0].id],
                new_lines=[],
                created_by_user_id=actor_id,
            )

    def test_already_returned_item_rejected(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        sale = sales_service.create_sale(
            lines=[CartLine(product_id=product.id, quantity=1), CartLine(product_id=product.id, quantity=1)],
            amount_paid_cents=2 * product.selling_price_cents,
            created_by_user_id=actor_id,
        )
        item_id = sale.items[0].id
        sales_service.edit_sale(sale_id=sale.id, return_item_ids=[item_id], new_lines=[], created_by_user_id=actor_id)

        with pytest.raises(InvariantViolationError):
            sales_service.edit_sale(
                sale_id=sale.id, return_item_ids=[item_id], new_lines=[], created_by_user_id=actor_id
            )

    def test_missing_sale(self, cashbox, make_product, actor_id):
        product = make_product()
        with pytest.raises(NotFoundError):
            sales_service.edit_sale(
                sale_id=555,
                return_item_ids=[],
                new_lines=[CartLine(product_id=product.id, quantity=1)],
                created_by_user_id=actor_id,
            )

    def test_usd_refund_leaves_usd_column(self, cashbox, make_product, actor_id):
        product = make_product(stock=5, price_cents=1000)
        sale = _checkout(actor_id, product, qty=2, currency="USD", exchange_rate=Decimal("4.85"))

        sales_service.edit_sale(
            sale_id=sale.id,
            return_item_ids=[sale.items[0].id],
            new_lines=[CartLine(product_id=product.id, quantity=1)],
            created_by_user_id=actor_id,
        )

        box = cashbox_service.get_cashbox()
        assert (box.balance_usd_cents, box.balance_lyd_cents) == (1000, 0)

    def test_foreign_due_returned_in_steps_leaves_no_balance(
        self, cashbox, make_product, make_customer, actor_id
    ):
        first = make_product(stock=5, price_cents=1001)
        second = make_product(stock=5, price_cents=1001)
        customer = make_customer()
        sale = sales_service.create_sale(
            lines=[CartLine(product_id=first.id, quantity=1), CartLine(product_id=second.id, quantity=1)],
            amount_paid_cents=0,
            customer_id=customer.id,
            currency="USD",
            exchange_rate=Decimal("4.5"),
            created_by_user_id=actor_id,
        )
        # 20.02 USD * 4.5 = 90.09 LYD; each 10.01 USD line alone rounds to 45.05
        assert customer_service.get_customer(customer.id).balance_owed_cents == 9009

        for item_id in [i.id for i in sale.items]:
            sale, _ = sales_service.edit_sale(
                sale_id=sale.id,
                return_item_ids=[item_id],
                new_lines=[],
                created_by_user_id=actor_id,
            )

        assert sale.status == "returned"
        assert sale.amount_due_cents == 0
        customer = customer_service.get_customer(customer.id)
        assert customer.balance_owed_cents == 0
        assert customer_service.fold_ledger(customer.id)[0] == 0
        deltas = [e.balance_delta_cents for e in reversed(customer_service.list_ledger_entries(customer.id))]
        assert [d for d in deltas if d] == [9009, -4504, -4505]


# =============================================================================
# RETURN / CANCEL
# =============================================================================


class TestReturnAndCancel:

    def test_return_sale_restores_stock_and_refunds_paid(self, cashbox, make_product, make_customer, actor_id):
        product = make_product(stock=5, price_cents=1000)
        customer = make_customer()
        sale = _checkout(actor_id, product, qty=3, paid=1000, customer_id=customer.id)

        sale = sales_service.return_sale(sale_id=sale.id, created_by_user_id=actor_id)

        assert sale.status == "returned"
        assert sale.closed_by_user_id == actor_id
        assert sale.closed_at is not None
        assert inventory_service.get_stock(product.id) == 5
        assert (sale.total_cents, sale.amount_paid_cents, sale.amount_due_cents) == (0, 0, 0)
        assert cashbox_service.get_cashbox().balance_lyd_cents == 0
        customer = customer_service.get_customer(customer.id)
        assert customer.balance_owed_cents == 0
        # lifetime metric survives the return
        assert customer.total_purchases_cents == 3000

        [refund] = [t for t in _sale_txs(sale.id) if t.type == "refund"]
        assert refund.amount_lyd_cents == -1000

    def test_cancel_sale(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        sale = _checkout(actor_id, product, qty=2)

        sale = sales_service.cancel_sale(sale_id=sale.id, created_by_user_id=actor_id)

        assert sale.status == "cancelled"
        assert inventory_service.get_stock(product.id) == 5
        assert cashbox_service.get_cashbox().balance_lyd_cents == 0

    def test_closed_sale_cannot_change_again(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        sale = _checkout(actor_id, product, qty=2)
        sales_service.return_sale(sale_id=sale.id, created_by_user_id=actor_id)
        before = _ledger_state()

        with pytest.raises(InvalidStateError):
            sales_service.return_sale(sale_id=sale.id, created_by_user_id=actor_id)
        with pytest.raises(InvalidStateError):
            sales_service.cancel_sale(sale_id=sale.id, created_by_user_id=actor_id)
        with pytest.raises(InvalidStateError):
            sales_service.edit_sale(
                sale_id=sale.id,
                return_item_ids=[],
                new_lines=[CartLine(product_id=product.id, quantity=1)],
                created_by_user_id=actor_id,
            )

        assert _ledger_state() == before


# =============================================================================
# CONCURRENT MODIFICATION
# =============================================================================


def _bump_product_version(product_id):
    """Simulate another writer committing a change to the product row."""
    db.session.execute(
        text("UPDATE products SET version_id = version_id + 1 WHERE id = :id"),
        {"id": product_id},
    )


class TestConcurrentModification:

    def test_stale_product_row_aborts_checkout(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        before = _ledger_state()
        assert product.current_stock == 5
        _bump_product_version(product.id)

        with pytest.raises(ConcurrentModificationError):
            _checkout(actor_id, product, qty=2)

        assert _ledger_state() == before
        assert inventory_service.get_stock(product.id) == 5

    def test_stale_product_row_aborts_edit(self, cashbox, make_product, actor_id):
        product = make_product(stock=5)
        sale = _checkout(actor_id, product, qty=2)
        before = _ledger_state()
        assert product.current_stock == 3
        _bump_product_version(product.id)

        with pytest.raises(ConcurrentModificationError):
            sales_service.edit_sale(
                sale_id=sale.id,
                return_item_ids=[],
                new_lines=[CartLine(product_id=product.id, quantity=1)],
                created_by_user_id=actor_id,
            )

        assert _ledger_state() == before

    def test_lock_timeout_surfaces_as_conflict(self, cashbox, make_product, actor_id, monkeypatch):
        product = make_product(stock=5)
        before = _ledger_state()

        def locked(**kwargs):
            raise OperationalError("UPDATE cashboxes", {}, Exception("database is locked"))

        monkeypatch.setattr(cashbox_service, "record_transaction", locked)

        with pytest.raises(ConcurrentModificationError):
            _checkout(actor_id, product, qty=2)

        assert _ledger_state() == before

    def test_other_operational_errors_propagate(self, cashbox, make_product, actor_id, monkeypatch):
        product = make_product(stock=5)

        def broken(**kwargs):
            raise OperationalError("UPDATE cashboxes", {}, Exception("disk I/O error"))

        monkeypatch.setattr(cashbox_service, "record_transaction", broken)

        with pytest.raises(OperationalError):
            _checkout(actor_id, product, qty=2)

        assert inventory_service.get_stock(product.id) == 5


# =============================================================================
# LEDGER PROPERTIES OVER A MIXED SEQUENCE
# =============================================================================


def test_mixed_sequence_keeps_every_ledger_reconciled(cashbox, make_product, make_customer, actor_id):
    p1 = make_product(stock=20, price_cents=1250, cost_cents=700)
    p2 = make_product(stock=8, price_cents=399, cost_cents=150)
    p3 = make_product(stock=3, price_cents=9900, cost_cents=6000)
    customer = make_customer()

    s1 = sales_service.create_sale(
        lines=[CartLine(product_id=p1.id, quantity=4), CartLine(product_id=p2.id, quantity=3)],
        amount_paid_cents=6197,
        created_by_user_id=actor_id,
    )
    s2 = sales_service.create_sale(
        lines=[CartLine(product_id=p3.id, quantity=2)],
        amount_paid_cents=5000,
        discount_cents=800,
        customer_id=customer.id,
        created_by_user_id=actor_id,
    )
    s3 = sales_service.create_sale(
        lines=[CartLine(product_id=p2.id, quantity=1)],
        amount_paid_cents=100,
        customer_id=customer.id,
        currency="USD",
        exchange_rate=Decimal("4.85"),
        created_by_user_id=actor_id,
    )

    sales_service.edit_sale(
        sale_id=s1.id,
        return_item_ids=[s1.items[1].id],
        new_lines=[CartLine(product_id=p3.id, quantity=1)],
        created_by_user_id=actor_id,
    )
    with pytest.raises(InsufficientStockError):
        sales_service.edit_sale(
            sale_id=s2.id,
            return_item_ids=[],
            new_lines=[CartLine(product_id=p3.id, quantity=5)],
            created_by_user_id=actor_id,
        )
    sales_service.edit_sale(
        sale_id=s2.id,
        return_item_ids=[s2.items[0].id],
        new_lines=[CartLine(product_id=p1.id, quantity=2)],
        created_by_user_id=actor_id,
    )
    sales_service.return_sale(sale_id=s3.id, created_by_user_id=actor_id)
    customer_service.record_customer_payment(
        customer_id=customer.id,
        amount_cents=500,
        currency="LYD",
        exchange_rate=None,
        created_by_user_id=actor_id,
    )

    db.session.expire_all()
    report = reporting_service.verify_ledgers()
    assert report["ok"], report["mismatches"]

    for product in (p1, p2, p3):
        stock = inventory_service.get_stock(product.id)
        assert stock >= 0
        assert stock == inventory_service.fold_stock_movements(product.id)

    for sale in db.session.query(Sale).all():
        _assert_totals_consistent(sale)
