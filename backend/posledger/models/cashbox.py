from __future__ import annotations

from ..extensions import db
from ..money import cents_to_str, rate_to_str
from ..time_utils import to_utc_z

TX_SALE = "sale"
TX_EXPENSE = "expense"
TX_DEPOSIT = "deposit"
TX_WITHDRAWAL = "withdrawal"
TX_ADJUSTMENT = "adjustment"
TX_REFUND = "refund"
TRANSACTION_TYPES = (TX_SALE, TX_EXPENSE, TX_DEPOSIT, TX_WITHDRAWAL, TX_ADJUSTMENT, TX_REFUND)


class Cashbox(db.Model):
    """
    Physical/logical cash holding with one balance per currency.

    The two balances are independent: nothing converts between them.
    Each balance is the running sum of CashboxTransaction amounts for its
    currency and is only written by the cashbox service.
    """
    __tablename__ = "cashboxes"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_cashboxes_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, default="Main Cashbox")

    balance_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_lyd_cents = db.Column(db.Integer, nullable=False, default=0)

    last_reconciliation_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "balance_usd": cents_to_str(self.balance_usd_cents),
            "balance_lyd": cents_to_str(self.balance_lyd_cents),
            "balance_usd_cents": self.balance_usd_cents,
            "balance_lyd_cents": self.balance_lyd_cents,
            "last_reconciliation_at": to_utc_z(self.last_reconciliation_at),
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CashboxTransaction(db.Model):
    """
    Append-only ledger of cash movements.

    Amounts are signed: money entering the box is positive, money leaving
    (refund, expense, withdrawal) is negative.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "cashbox_transactions"
    __table_args__ = (
        db.CheckConstraint(
            "type IN ('sale', 'expense', 'deposit', 'withdrawal', 'adjustment', 'refund')",
            name="ck_cashbox_transactions_type",
        ),
        db.Index("ix_cashbox_txns_cashbox_created", "cashbox_id", "created_at"),
        db.Index("ix_cashbox_txns_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashbox_id = db.Column(db.Integer, db.ForeignKey("cashboxes.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)

    amount_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_lyd_cents = db.Column(db.Integer, nullable=False, default=0)
    exchange_rate = db.Column(db.Numeric(10, 4), nullable=True)

    description = db.Column(db.String(255), nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cashbox = db.relationship("Cashbox", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashbox_id": self.cashbox_id,
            "type": self.type,
            "amount_usd": cents_to_str(self.amount_usd_cents),
            "amount_lyd": cents_to_str(self.amount_lyd_cents),
            "amount_usd_cents": self.amount_usd_cents,
            "amount_lyd_cents": self.amount_lyd_cents,
            "exchange_rate": rate_to_str(self.exchange_rate),
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
