"""
Sales Service - checkout and sales history

WHY: A sale is recorded in one step at the register. Everything is validated
before anything is written, so a bad line or discount never leaves a partial
sale or a half-decremented stock behind.

CHECKOUT FLOW:
1. Validate seller, payment method, items (known product, quantity >= 1,
   quantity <= stock) and discount
2. Snapshot name, category, price and cost per line
3. Compute subtotal, discount, total and frozen commissions
4. Insert Sale + SaleLines and decrement stock with atomic increments
5. Commit once
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..models import Account, Product, Sale, SaleLine
from ..models.sales import PAYMENT_METHODS
from ..validation import ConflictError, PermissionDeniedError, parse_decimal
from invictos.time_utils import utcnow, range_for_preset
from . import commission_service, entity_store
from .entity_store import store_errors


logger = logging.getLogger(__name__)


class SaleError(Exception):
    """Raised for checkout rule failures."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _normalize_items(items) -> dict[str, int]:
    """Merge cart items into {product_id: quantity}, keeping first-seen order."""
    if not isinstance(items, list) or not items:
        raise SaleError("Cart is empty")

    quantities: dict[str, int] = {}
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise SaleError("Invalid cart item", details={"index": index})
        product_id = item.get("product_id")
        quantity = item.get("quantity", 1)
        if not isinstance(product_id, str) or not product_id:
            raise SaleError("product_id is required", details={"index": index})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise SaleError("quantity must be a positive integer", details={"index": index})
        quantities[product_id] = quantities.get(product_id, 0) + quantity
    return quantities


def _load_products(quantities: dict[str, int]) -> dict[str, Product]:
    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(list(quantities))).all()
    }

    missing = [pid for pid in quantities if pid not in products]
    if missing:
        raise SaleError("Unknown product(s)", details={"product_ids": missing})

    insufficient = [
        {"product_id": pid, "requested_quantity": qty, "stock": products[pid].stock}
        for pid, qty in quantities.items()
        if products[pid].stock < qty
    ]
    if insufficient:
        raise SaleError("Insufficient stock", details={"items": insufficient})
    return products


def checkout(
    seller: Account,
    items: list[dict],
    discount_type: str | None = None,
    discount_value=None,
    payment_method: str = "cash",
) -> Sale:
    """
    Record a completed sale for `seller`.

    items: [{"product_id": str, "quantity": int}, ...]
    discount_type: "percent" or "amount" (cents); None for no discount
    Raises SaleError or InvalidDiscountError without writing anything.
    """
    if seller is None or not seller.is_active:
        raise SaleError("Seller account is not active")
    if payment_method not in PAYMENT_METHODS:
        raise SaleError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    quantities = _normalize_items(items)

    with store_errors():
        products = _load_products(quantities)

        line_totals = [products[pid].price_cents * qty for pid, qty in quantities.items()]
        subtotal = sum(line_totals)
        discount = commission_service.compute_discount(subtotal, discount_type, discount_value)
        total = subtotal - discount

        rate = commission_service.resolve_rate(seller, commission_service.get_config())
        commissions = commission_service.compute_line_commissions(line_totals, rate, subtotal, total)

        has_discount = discount_value is not None and str(discount_value).strip() != ""
        sale = Sale(
            created_at=utcnow(),
            seller_id=seller.id,
            seller_name=seller.name,
            subtotal_cents=subtotal,
            discount_cents=discount,
            total_cents=total,
            discount_type=(discount_type or commission_service.DISCOUNT_AMOUNT) if has_discount else None,
            discount_value=parse_decimal(discount_value, "discount_value") if has_discount else None,
            payment_method=payment_method,
            commission_paid=False,
        )
        db.session.add(sale)

        for (pid, qty), line_total, commission in zip(quantities.items(), line_totals, commissions):
            product = products[pid]
            db.session.add(SaleLine(
                sale=sale,
                product_id=product.id,
                product_name=product.name,
                category=product.category,
                quantity=qty,
                unit_price_cents=product.price_cents,
                line_total_cents=line_total,
                unit_cost_cents=product.cost_cents,
                commission_amount_cents=commission,
            ))

        try:
            for pid, qty in quantities.items():
                entity_store.increment_field("products", pid, "stock", -qty, floor=0, commit=False)
        except ConflictError:
            # Another checkout took the stock between validation and write
            db.session.rollback()
            raise SaleError("Insufficient stock", details={"product_ids": list(quantities)})

        db.session.commit()

    logger.info(
        "Sale %s by %s: total=%d commission=%d",
        sale.id, seller.id, sale.total_cents, sale.commission_cents,
    )
    return sale


def list_sales(
    viewer: Account,
    *,
    preset: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    seller_id: str | None = None,
    tz=None,
) -> list[Sale]:
    """
    Sales history, newest first.

    A preset (today/week/month/year/all) overrides start/end. Sellers only
    ever see their own sales.
    """
    if preset is not None:
        start, end = range_for_preset(preset, tz=tz)

    scoped = commission_service.visible_seller_id(viewer, seller_id)
    with store_errors():
        query = db.session.query(Sale)
        if scoped is not None:
            query = query.filter(Sale.seller_id == scoped)
        if start is not None:
            query = query.filter(Sale.created_at >= start)
        if end is not None:
            query = query.filter(Sale.created_at <= end)
        return query.order_by(Sale.created_at.desc(), Sale.id.asc()).all()


def get_sale(viewer: Account, sale_id: str) -> Sale:
    sale = entity_store.get_by_id("sales", sale_id)
    if not viewer.is_admin and sale.seller_id != viewer.id:
        raise PermissionDeniedError("You can only view your own sales")
    return sale
