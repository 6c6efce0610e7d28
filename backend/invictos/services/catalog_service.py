# Overview: Service-layer operations for the product catalog, categories and providers.

"""
Catalog Service

All reads and writes go through entity_store; this module owns the business
rules (unique codes and names, non-negative money and stock).
"""

from __future__ import annotations

from sqlalchemy import or_, func

from ..extensions import db
from ..models import Product, Category, Provider
from ..validation import (
    ModelValidationPolicy,
    ConflictError,
    ValidationError,
    validate_payload,
    enforce_rules_product,
)
from . import entity_store
from .entity_store import store_errors


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "category", "provider", "description", "price_cents", "cost_cents", "stock"},
    required_on_create={"code", "name", "price_cents"},
)

CATEGORY_POLICY = ModelValidationPolicy(writable_fields={"name"}, required_on_create={"name"})

PROVIDER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "contact"},
    required_on_create={"name"},
)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def list_products(search: str | None = None, category: str | None = None) -> list[Product]:
    """Products by name, optionally filtered by a name/code search and category."""
    with store_errors():
        query = db.session.query(Product)
        if search:
            term = f"%{search.strip().lower()}%"
            query = query.filter(or_(
                func.lower(Product.name).like(term),
                func.lower(Product.code).like(term),
            ))
        if category:
            query = query.filter(Product.category == category)
        return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: str) -> Product:
    return entity_store.get_by_id("products", product_id)


def _ensure_unique_code(code: str, exclude_id: str | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.code == code)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Product code already exists")


def create_product(payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    with store_errors():
        _ensure_unique_code(patch["code"])
    return entity_store.upsert("products", None, patch)


def update_product(product_id: str, payload: dict) -> Product:
    get_product(product_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    if "code" in patch:
        with store_errors():
            _ensure_unique_code(patch["code"], exclude_id=product_id)
    return entity_store.upsert("products", product_id, patch)


def delete_product(product_id: str) -> None:
    """Hard delete. Sales keep their product snapshot, so history is unaffected."""
    entity_store.delete("products", product_id)


def adjust_stock(product_id: str, delta) -> Product:
    """Restock or correct stock by a signed delta; never below zero."""
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("delta must be an integer")
    entity_store.increment_field("products", product_id, "stock", delta, floor=0)
    return get_product(product_id)


# ---------------------------------------------------------------------------
# Categories and providers
# ---------------------------------------------------------------------------

def _ensure_unique_name(model, name: str, exclude_id: str | None = None) -> None:
    query = db.session.query(model.id).filter(func.lower(model.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"{name} already exists")


def list_categories() -> list[Category]:
    return entity_store.get_all("categories")


def create_category(payload: dict) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    with store_errors():
        _ensure_unique_name(Category, patch["name"])
    return entity_store.upsert("categories", None, patch)


def update_category(category_id: str, payload: dict) -> Category:
    entity_store.get_by_id("categories", category_id)
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
    if "name" in patch:
        with store_errors():
            _ensure_unique_name(Category, patch["name"], exclude_id=category_id)
    return entity_store.upsert("categories", category_id, patch)


def delete_category(category_id: str) -> None:
    entity_store.delete("categories", category_id)


def list_providers() -> list[Provider]:
    return entity_store.get_all("providers")


def create_provider(payload: dict) -> Provider:
    patch = validate_payload(model=Provider, payload=payload, policy=PROVIDER_POLICY, partial=False)
    with store_errors():
        _ensure_unique_name(Provider, patch["name"])
    return entity_store.upsert("providers", None, patch)


def update_provider(provider_id: str, payload: dict) -> Provider:
    entity_store.get_by_id("providers", provider_id)
    patch = validate_payload(model=Provider, payload=payload, policy=PROVIDER_POLICY, partial=True)
    if "name" in patch:
        with store_errors():
            _ensure_unique_name(Provider, patch["name"], exclude_id=provider_id)
    return entity_store.upsert("providers", provider_id, patch)


def delete_provider(provider_id: str) -> None:
    entity_store.delete("providers", provider_id)
