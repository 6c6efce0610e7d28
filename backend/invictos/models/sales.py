from __future__ import annotations

from ..extensions import db
from .auth import new_id
from invictos.time_utils import to_utc_z


PAYMENT_METHODS = ("cash", "card", "transfer")


class Sale(db.Model):
    """
    Completed sale (write-once).

    WHY: A sale is the historical record of what the customer paid and who
    sold it. seller_name is denormalized on purpose so the record still reads
    correctly after the account is renamed or deactivated.

    Only commission_paid / commission_paid_at change after creation, through
    commission_service.mark_paid.

    INVARIANT: total_cents = subtotal_cents - discount_cents,
    0 <= discount_cents <= subtotal_cents.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("discount_cents >= 0", name="ck_sales_discount_non_negative"),
        db.CheckConstraint("discount_cents <= subtotal_cents", name="ck_sales_discount_le_subtotal"),
        db.CheckConstraint("total_cents = subtotal_cents - discount_cents", name="ck_sales_total"),
        # Composite index for per-seller history and commission lookups
        db.Index("ix_sales_seller_created", "seller_id", "created_at"),
        db.Index("ix_sales_seller_paid", "seller_id", "commission_paid"),
    )

    id = db.Column(db.String(64), primary_key=True, default=new_id)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    # Seller attribution (denormalized name)
    seller_id = db.Column(db.String(64), db.ForeignKey("accounts.id"), nullable=False, index=True)
    seller_name = db.Column(db.String(128), nullable=False)

    # Amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # What the operator typed at checkout ("percent" / "amount")
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Numeric(12, 2), nullable=True)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")

    # Payout metadata
    commission_paid = db.Column(db.Boolean, nullable=False, default=False, index=True)
    commission_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    seller = db.relationship("Account", backref=db.backref("sales", lazy=True))

    @property
    def commission_cents(self) -> int:
        return sum(line.commission_amount_cents for line in self.lines)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "created_at": to_utc_z(self.created_at),
            "seller_id": self.seller_id,
            "seller_name": self.seller_name,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "discount_type": self.discount_type,
            "discount_value": float(self.discount_value) if self.discount_value is not None else None,
            "payment_method": self.payment_method,
            "commission_cents": self.commission_cents,
            "commission_paid": self.commission_paid,
            "commission_paid_at": to_utc_z(self.commission_paid_at) if self.commission_paid_at else None,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """
    Individual line item on a sale.

    commission_amount_cents is computed once at checkout and is authoritative
    afterwards; rate or config changes never rewrite it.
    """
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.String(64), db.ForeignKey("sales.id"), nullable=False, index=True)

    # Denormalized product snapshot
    product_id = db.Column(db.String(64), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(128), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Cost snapshot for gross profit reporting
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    commission_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    sale = db.relationship(
        "Sale",
        backref=db.backref("lines", lazy=True, order_by="SaleLine.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "category": self.category,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "commission_amount_cents": self.commission_amount_cents,
        }
