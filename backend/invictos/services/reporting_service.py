# Overview: Service-layer operations for reporting; dashboard aggregates and CSV exports.

from __future__ import annotations

import csv
import io
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Account, Product, Sale, SaleLine
from invictos.time_utils import range_for_preset, to_utc_z
from . import commission_service
from .entity_store import store_errors


PRODUCT_RANKING_LIMIT = 10


def _scoped(query, viewer: Account, start: datetime | None = None, end: datetime | None = None):
    scoped = commission_service.visible_seller_id(viewer)
    if scoped is not None:
        query = query.filter(Sale.seller_id == scoped)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    return query


def dashboard(viewer: Account, preset: str = "today", *, now: datetime | None = None, tz=None) -> dict:
    """
    Role-aware dashboard for a date preset.

    Sellers see only their own numbers and never gross profit. Seller
    ranking covers all time; everything else covers the preset range.
    """
    start, end = range_for_preset(preset, now=now, tz=tz)
    threshold = int(current_app.config.get("LOW_STOCK_THRESHOLD", 5))

    with store_errors():
        revenue, sales_count = _scoped(
            db.session.query(func.coalesce(func.sum(Sale.total_cents), 0), func.count(Sale.id)),
            viewer, start, end,
        ).one()

        line_query = db.session.query(
            func.coalesce(func.sum(SaleLine.quantity), 0),
            func.coalesce(func.sum(SaleLine.quantity * func.coalesce(SaleLine.unit_cost_cents, 0)), 0),
        ).select_from(SaleLine).join(Sale, SaleLine.sale_id == Sale.id)
        items_sold, cost = _scoped(line_query, viewer, start, end).one()

        top_category = _scoped(
            db.session.query(SaleLine.category, func.sum(SaleLine.quantity).label("units"))
            .select_from(SaleLine).join(Sale, SaleLine.sale_id == Sale.id)
            .filter(SaleLine.category.isnot(None)),
            viewer, start, end,
        ).group_by(SaleLine.category).order_by(func.sum(SaleLine.quantity).desc(), SaleLine.category.asc()).first()

        product_rows = _scoped(
            db.session.query(
                SaleLine.product_id,
                SaleLine.product_name,
                func.sum(SaleLine.quantity),
                func.sum(SaleLine.line_total_cents),
            ).select_from(SaleLine).join(Sale, SaleLine.sale_id == Sale.id),
            viewer, start, end,
        ).group_by(SaleLine.product_id, SaleLine.product_name).order_by(
            func.sum(SaleLine.quantity).desc(), SaleLine.product_name.asc()
        ).all()

        sold_ids = {row[0] for row in product_rows}
        unsold = [
            {"product_id": p.id, "name": p.name, "stock": p.stock}
            for p in db.session.query(Product).order_by(Product.name.asc()).all()
            if p.id not in sold_ids
        ]

        low_stock_count = db.session.query(func.count(Product.id)).filter(Product.stock <= threshold).scalar()

        seller_rows = _scoped(
            db.session.query(
                Sale.seller_id,
                func.max(Sale.seller_name),
                func.count(Sale.id),
                func.sum(Sale.total_cents),
            ),
            viewer,
        ).group_by(Sale.seller_id).order_by(func.sum(Sale.total_cents).desc(), Sale.seller_id.asc()).all()

    return {
        "range": preset,
        "start": to_utc_z(start) if start else None,
        "end": to_utc_z(end),
        "revenue_cents": int(revenue or 0),
        "sales_count": int(sales_count or 0),
        "items_sold": int(items_sold or 0),
        "gross_profit_cents": int(revenue or 0) - int(cost or 0) if viewer.is_admin else None,
        "low_stock_count": int(low_stock_count or 0),
        "low_stock_threshold": threshold,
        "top_category": top_category[0] if top_category else None,
        "product_ranking": [
            {"product_id": pid, "name": name, "quantity": int(qty), "revenue_cents": int(total)}
            for pid, name, qty, total in product_rows[:PRODUCT_RANKING_LIMIT]
        ],
        "unsold_products": unsold,
        "seller_ranking": [
            {"seller_id": sid, "seller_name": name, "sales_count": int(count), "revenue_cents": int(total)}
            for sid, name, count, total in seller_rows
        ],
        "commission": {
            "pending_cents": commission_service.pending_balance(viewer),
            "generated_cents": commission_service.generated_in_range(viewer, None, start, end),
        },
    }


def _money(cents: int | None) -> str:
    if cents is None:
        return ""
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


def _to_csv(header: list[str], rows) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


def export_sales_csv(viewer: Account, preset: str = "all", *, now: datetime | None = None, tz=None) -> str:
    """One row per sale in range, newest first; amounts in currency units."""
    start, end = range_for_preset(preset, now=now, tz=tz)
    with store_errors():
        sales = _scoped(db.session.query(Sale), viewer, start, end).order_by(
            Sale.created_at.desc(), Sale.id.asc()
        ).all()

        rows = [
            [
                sale.id,
                to_utc_z(sale.created_at),
                sale.seller_name,
                sale.payment_method,
                sum(line.quantity for line in sale.lines),
                _money(sale.subtotal_cents),
                _money(sale.discount_cents),
                _money(sale.total_cents),
                _money(sale.commission_cents),
                "yes" if sale.commission_paid else "no",
            ]
            for sale in sales
        ]

    return _to_csv(
        ["sale_id", "created_at", "seller", "payment_method", "items", "subtotal", "discount", "total",
         "commission", "commission_paid"],
        rows,
    )


def export_inventory_csv() -> str:
    with store_errors():
        products = db.session.query(Product).order_by(Product.name.asc(), Product.id.asc()).all()
        rows = [
            [p.code, p.name, p.category or "", p.provider or "", _money(p.price_cents), _money(p.cost_cents), p.stock]
            for p in products
        ]
    return _to_csv(["code", "name", "category", "provider", "price", "cost", "stock"], rows)
