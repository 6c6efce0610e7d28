from __future__ import annotations

from ..extensions import db
from .auth import new_id
from invictos.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    Category and provider are stored by name, as they appear on labels and
    reports; renaming a category does not rewrite existing products.
    Stock is only decremented through an atomic increment (see entity_store).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category", "category"),
        db.Index("ix_products_name", "name"),
    )

    id = db.Column(db.String(64), primary_key=True, default=new_id)

    # Store-assigned code printed on the tag
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(128), nullable=True)
    provider = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "category": self.category,
            "provider": self.provider,
            "description": self.description,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "stock": self.stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    name = db.Column(db.String(128), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Provider(db.Model):
    __tablename__ = "providers"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    name = db.Column(db.String(128), nullable=False, unique=True)
    contact = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "contact": self.contact}
