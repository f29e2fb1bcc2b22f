from __future__ import annotations

from ..extensions import db
from ..money import cents_to_str, rate_to_str
from ..time_utils import to_utc_z

SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_PENDING = "pending"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_RETURNED = "returned"

PAYMENT_CASH = "cash"
PAYMENT_PARTIAL = "partial"

ITEM_STATUS_ACTIVE = "active"
ITEM_STATUS_RETURNED = "returned"


class Sale(db.Model):
    """
    Completed sale header.

    Sales are never deleted. Corrections (edit, return, cancel) append stock
    movements and cashbox transactions and rewrite the totals here, always
    keeping total = subtotal - discount and amount_due = total - amount_paid.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.CheckConstraint(
            "status IN ('completed', 'pending', 'cancelled', 'returned')",
            name="ck_sales_status",
        ),
        db.CheckConstraint("total_cents = subtotal_cents - discount_cents", name="ck_sales_total"),
        db.CheckConstraint("amount_due_cents = total_cents - amount_paid_cents", name="ck_sales_amount_due"),
        db.CheckConstraint("discount_cents >= 0", name="ck_sales_discount_non_negative"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "MD-20261019-0001")
    sale_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    # All amounts in cents of the sale currency
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_due_cents = db.Column(db.Integer, nullable=False, default=0)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)  # For over-tender

    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_CASH)
    currency = db.Column(db.String(3), nullable=False, default="LYD")
    exchange_rate = db.Column(db.Numeric(10, 4), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    # Reversal audit trail (return / cancel)
    closed_by_user_id = db.Column(db.Integer, nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy="dynamic"))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def active_items(self) -> list["SaleItem"]:
        return [item for item in self.items if item.status == ITEM_STATUS_ACTIVE]

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "subtotal": cents_to_str(self.subtotal_cents),
            "discount": cents_to_str(self.discount_cents),
            "total": cents_to_str(self.total_cents),
            "amount_paid": cents_to_str(self.amount_paid_cents),
            "amount_due": cents_to_str(self.amount_due_cents),
            "change_due": cents_to_str(self.change_due_cents),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "amount_due_cents": self.amount_due_cents,
            "change_due_cents": self.change_due_cents,
            "payment_method": self.payment_method,
            "currency": self.currency,
            "exchange_rate": rate_to_str(self.exchange_rate),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line fact on a sale.

    product_name / product_sku / unit_price / cost_price are a snapshot taken
    when the line was added; they are never refreshed from Product.
    Returned lines keep their row (status='returned') for the audit trail.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("total_price_cents = quantity * unit_price_cents", name="ck_sale_items_total"),
        db.CheckConstraint(
            "profit_cents = total_price_cents - quantity * cost_price_cents",
            name="ck_sale_items_profit",
        ),
        db.CheckConstraint("status IN ('active', 'returned')", name="ck_sale_items_status"),
        db.Index("ix_sale_items_sale_status", "sale_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_ACTIVE)
    added_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    returned_by_user_id = db.Column(db.Integer, nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sale = db.relationship(
        "Sale",
        backref=db.backref("items", lazy=True, order_by="SaleItem.id", cascade="all, delete-orphan"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price": cents_to_str(self.unit_price_cents),
            "cost_price": cents_to_str(self.cost_price_cents),
            "total_price": cents_to_str(self.total_price_cents),
            "profit": cents_to_str(self.profit_cents),
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "total_price_cents": self.total_price_cents,
            "profit_cents": self.profit_cents,
            "status": self.status,
            "added_by_user_id": self.added_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "returned_by_user_id": self.returned_by_user_id,
            "returned_at": to_utc_z(self.returned_at),
        }
