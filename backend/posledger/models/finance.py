from __future__ import annotations

from ..extensions import db
from ..money import cents_to_str, rate_to_str
from ..time_utils import to_utc_z

EXPENSE_CATEGORIES = ("rent", "utilities", "salaries", "supplies", "maintenance", "marketing", "other")


class Expense(db.Model):
    """Money paid out of the cashbox for running costs."""
    __tablename__ = "expenses"
    __table_args__ = (
        db.UniqueConstraint("expense_number", name="uq_expenses_number"),
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_number = db.Column(db.String(32), nullable=False)
    category = db.Column(db.String(32), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="LYD")
    exchange_rate = db.Column(db.Numeric(10, 4), nullable=True)

    description = db.Column(db.String(255), nullable=False)
    person_name = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cashbox_transaction_id = db.Column(db.Integer, db.ForeignKey("cashbox_transactions.id"), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_number": self.expense_number,
            "category": self.category,
            "amount": cents_to_str(self.amount_cents),
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "exchange_rate": rate_to_str(self.exchange_rate),
            "description": self.description,
            "person_name": self.person_name,
            "occurred_at": to_utc_z(self.occurred_at),
            "cashbox_transaction_id": self.cashbox_transaction_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Revenue(db.Model):
    """Money received into the cashbox from something other than a sale."""
    __tablename__ = "revenues"
    __table_args__ = (
        db.UniqueConstraint("revenue_number", name="uq_revenues_number"),
        db.CheckConstraint("amount_cents > 0", name="ck_revenues_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    revenue_number = db.Column(db.String(32), nullable=False)
    source = db.Column(db.String(255), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="LYD")
    exchange_rate = db.Column(db.Numeric(10, 4), nullable=True)

    description = db.Column(db.String(255), nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cashbox_transaction_id = db.Column(db.Integer, db.ForeignKey("cashbox_transactions.id"), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "revenue_number": self.revenue_number,
            "source": self.source,
            "amount": cents_to_str(self.amount_cents),
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "exchange_rate": rate_to_str(self.exchange_rate),
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "cashbox_transaction_id": self.cashbox_transaction_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
