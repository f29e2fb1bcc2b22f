# Overview: Reconciliation report; rebuilds every materialized balance from its log and lists the differences.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Cashbox, Customer, Product, Sale, SaleItem
from ..models.sales import ITEM_STATUS_ACTIVE
from ..time_utils import utcnow, to_utc_z
from . import cashbox_service, customer_service, inventory_service


def _stock_mismatches() -> list[dict]:
    out = []
    for product in db.session.query(Product).order_by(Product.id).all():
        folded = inventory_service.fold_stock_movements(product.id)
        if folded != product.current_stock or product.current_stock < 0:
            out.append({
                "kind": "stock",
                "product_id": product.id,
                "sku": product.sku,
                "materialized": product.current_stock,
                "from_log": folded,
            })
    return out


def _cashbox_mismatches() -> list[dict]:
    out = []
    for box in db.session.query(Cashbox).order_by(Cashbox.id).all():
        usd, lyd = cashbox_service.fold_transactions(box.id)
        if (usd, lyd) != (box.balance_usd_cents, box.balance_lyd_cents):
            out.append({
                "kind": "cashbox",
                "cashbox_id": box.id,
                "materialized": {"usd": box.balance_usd_cents, "lyd": box.balance_lyd_cents},
                "from_log": {"usd": usd, "lyd": lyd},
            })
    return out


def _customer_mismatches() -> list[dict]:
    out = []
    for customer in db.session.query(Customer).order_by(Customer.id).all():
        balance, purchases = customer_service.fold_ledger(customer.id)
        if (balance, purchases) != (customer.balance_owed_cents, customer.total_purchases_cents):
            out.append({
                "kind": "customer",
                "customer_id": customer.id,
                "materialized": {
                    "balance_owed": customer.balance_owed_cents,
                    "total_purchases": customer.total_purchases_cents,
                },
                "from_log": {"balance_owed": balance, "total_purchases": purchases},
            })
    return out


def _sale_mismatches() -> list[dict]:
    line_sums = dict(
        db.session.query(SaleItem.sale_id, func.coalesce(func.sum(SaleItem.total_price_cents), 0))
        .filter(SaleItem.status == ITEM_STATUS_ACTIVE)
        .group_by(SaleItem.sale_id)
        .all()
    )
    out = []
    for sale in db.session.query(Sale).order_by(Sale.id).all():
        problems = []
        if sale.subtotal_cents != int(line_sums.get(sale.id, 0)):
            problems.append("subtotal != sum(active lines)")
        if sale.total_cents != sale.subtotal_cents - sale.discount_cents:
            problems.append("total != subtotal - discount")
        if sale.amount_due_cents != sale.total_cents - sale.amount_paid_cents:
            problems.append("amount_due != total - amount_paid")
        if problems:
            out.append({"kind": "sale", "sale_id": sale.id, "sale_number": sale.sale_number, "problems": problems})
    return out


def verify_ledgers() -> dict:
    """
    Fold every append-only log and compare it with its materialized aggregate.

    Read-only. An empty "mismatches" list means stock, cashbox balances,
    customer accounts and sale headers all agree with their logs.
    """
    mismatches = (
        _stock_mismatches()
        + _cashbox_mismatches()
        + _customer_mismatches()
        + _sale_mismatches()
    )
    return {
        "ok": not mismatches,
        "checked_at": to_utc_z(utcnow()),
        "counts": {
            "products": db.session.query(func.count(Product.id)).scalar(),
            "cashboxes": db.session.query(func.count(Cashbox.id)).scalar(),
            "customers": db.session.query(func.count(Customer.id)).scalar(),
            "sales": db.session.query(func.count(Sale.id)).scalar(),
        },
        "mismatches": mismatches,
    }
