from __future__ import annotations

from ..extensions import db
from ..money import cents_to_str
from ..time_utils import to_utc_z

ENTRY_SALE = "sale"
ENTRY_SALE_EDIT = "sale_edit"
ENTRY_SALE_RETURN = "sale_return"
ENTRY_PAYMENT = "payment"
ENTRY_ADJUSTMENT = "adjustment"


class Customer(db.Model):
    """
    Customer account.

    balance_owed_cents and total_purchases_cents are denormalized aggregates in
    the base currency; both always equal the fold of CustomerLedgerEntry rows.
    balance_owed_cents may go negative (store credit carried forward).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("phone", name="uq_customers_phone"),
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    balance_owed_cents = db.Column(db.Integer, nullable=False, default=0)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "notes": self.notes,
            "balance_owed": cents_to_str(self.balance_owed_cents),
            "total_purchases": cents_to_str(self.total_purchases_cents),
            "balance_owed_cents": self.balance_owed_cents,
            "total_purchases_cents": self.total_purchases_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerLedgerEntry(db.Model):
    """
    Append-only ledger of customer account changes.

    ENTRY TYPES:
    - sale: debt and purchase total from a new sale
    - sale_edit: due/purchase change caused by editing a sale
    - sale_return: outstanding due cancelled by a return or cancellation
    - payment: customer paid down their balance
    - adjustment: manual correction

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "customer_ledger_entries"
    __table_args__ = (
        db.Index("ix_customer_ledger_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(16), nullable=False, index=True)
    balance_delta_cents = db.Column(db.Integer, nullable=False, default=0)
    purchase_delta_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("ledger_entries", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "entry_type": self.entry_type,
            "balance_delta_cents": self.balance_delta_cents,
            "purchase_delta_cents": self.purchase_delta_cents,
            "balance_after_cents": self.balance_after_cents,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
