"""
Commission Calculation Service

WHY: Sellers earn a percentage of what the customer actually paid. The
amount is computed once at checkout and frozen on each sale line, so later
rate changes never rewrite history.

RATE RESOLUTION (highest priority first):
1. Account override (Account.commission_percentage)
2. Global default (AppConfig "global" row)
There is no per-product rate.

PER-SALE COMPUTATION:
- discount = min(subtotal, requested discount)
- ratio = total / subtotal (1 when the subtotal is 0)
- line commission = line_total * rate / 100 * ratio, rounded half-up to the
  cent once, at the end

VISIBILITY: an admin viewer aggregates across all sellers; a seller viewer
is always restricted to their own sales, whatever seller_id is passed. The
filter is applied inside every query, before aggregation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Account, AppConfig, Sale, SaleLine
from ..models.settings import GLOBAL_CONFIG_ID
from ..validation import ValidationError, PermissionDeniedError, parse_decimal, enforce_rules_percentage
from invictos.time_utils import utcnow, range_for_preset, to_utc_z
from . import auth_service
from .concurrency import lock_for_update
from .entity_store import store_errors


logger = logging.getLogger(__name__)

DISCOUNT_PERCENT = "percent"
DISCOUNT_AMOUNT = "amount"
DISCOUNT_TYPES = (DISCOUNT_PERCENT, DISCOUNT_AMOUNT)

_CENT = Decimal("1")
_HUNDRED = Decimal("100")


class InvalidDiscountError(ValidationError):
    """Requested discount is negative, not a number, or of an unknown type."""


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(_CENT, rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def get_config() -> AppConfig:
    """Return the global config row, creating it with the default rate if missing."""
    with store_errors():
        config = db.session.get(AppConfig, GLOBAL_CONFIG_ID)
        if config is None:
            default = current_app.config.get("DEFAULT_COMMISSION_PERCENTAGE", "0")
            config = AppConfig(id=GLOBAL_CONFIG_ID, commission_percentage=Decimal(str(default)))
            db.session.add(config)
            db.session.commit()
    return config


def resolve_rate(account: Account, config: AppConfig | None = None) -> Decimal:
    """Account override if set, else the global percentage."""
    if account.commission_percentage is not None:
        return Decimal(account.commission_percentage)
    if config is None:
        config = get_config()
    return Decimal(config.commission_percentage)


def _require_admin(acting: Account | None) -> None:
    if acting is not None and not acting.is_admin:
        raise PermissionDeniedError("Only administrators can change commission rates")


def set_global_rate(percentage, acting: Account | None = None) -> AppConfig:
    """
    Update the global default rate.

    Affects future sales only; frozen line commissions are never touched.
    """
    _require_admin(acting)
    if percentage is None:
        raise ValidationError("commission_percentage is required")
    patch = {"commission_percentage": parse_decimal(percentage, "commission_percentage")}
    enforce_rules_percentage(patch)

    config = get_config()
    with store_errors():
        config.commission_percentage = patch["commission_percentage"]
        config.updated_by_account_id = acting.id if acting else None
        config.updated_at = utcnow()
        db.session.commit()
    logger.info("Global commission rate set to %s%%", patch["commission_percentage"])
    return config


def set_account_rate(account_id: str, percentage, acting: Account | None = None) -> Account:
    """Set an account override, or clear it with None to fall back to the global rate."""
    _require_admin(acting)
    return auth_service.set_commission_override(account_id, percentage)


# ---------------------------------------------------------------------------
# Per-sale computation
# ---------------------------------------------------------------------------

def compute_discount(subtotal_cents: int, discount_type: str | None, discount_value) -> int:
    """
    Resolve the operator's discount into cents, clamped to the subtotal.

    - percent: discount_value is a percentage of the subtotal
    - amount: discount_value is a flat amount in cents
    No discount (type or value missing/blank) is 0.
    """
    if discount_value is None or (isinstance(discount_value, str) and not discount_value.strip()):
        return 0
    if discount_type is None:
        discount_type = DISCOUNT_AMOUNT
    if discount_type not in DISCOUNT_TYPES:
        raise InvalidDiscountError(f"discount_type must be one of: {', '.join(DISCOUNT_TYPES)}")

    try:
        value = parse_decimal(discount_value, "discount_value")
    except ValidationError:
        raise InvalidDiscountError("discount_value must be a number")
    if value < 0:
        raise InvalidDiscountError("discount_value cannot be negative")

    if discount_type == DISCOUNT_PERCENT:
        requested = _round_cents(Decimal(subtotal_cents) * value / _HUNDRED)
    else:
        requested = _round_cents(value)

    return min(subtotal_cents, requested)


def compute_line_commissions(
    line_totals: list[int],
    rate: Decimal,
    subtotal_cents: int,
    total_cents: int,
) -> list[int]:
    """
    Frozen commission per line, in cents.

    Computed as line_total * rate * total / (100 * subtotal) in exact decimal
    arithmetic and rounded once.
    """
    rate = Decimal(rate)
    if subtotal_cents == 0:
        return [_round_cents(Decimal(lt) * rate / _HUNDRED) for lt in line_totals]

    denominator = _HUNDRED * Decimal(subtotal_cents)
    return [
        _round_cents(Decimal(lt) * rate * Decimal(total_cents) / denominator)
        for lt in line_totals
    ]


# ---------------------------------------------------------------------------
# Aggregations (read-time)
# ---------------------------------------------------------------------------

def visible_seller_id(viewer: Account, seller_id: str | None = None) -> str | None:
    """
    The seller filter to apply for a viewer.

    Sellers always see only themselves. Admins see seller_id, or everyone
    when it is None.
    """
    if not viewer.is_admin:
        return viewer.id
    return seller_id


def _commission_query(viewer: Account, seller_id: str | None):
    scoped = visible_seller_id(viewer, seller_id)
    query = db.session.query(
        func.coalesce(func.sum(SaleLine.commission_amount_cents), 0)
    ).select_from(SaleLine).join(Sale, SaleLine.sale_id == Sale.id)
    if scoped is not None:
        query = query.filter(Sale.seller_id == scoped)
    return query


def _in_range(query, start: datetime | None, end: datetime | None):
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    return query


def pending_balance(viewer: Account, seller_id: str | None = None) -> int:
    """Unpaid frozen commission, all time."""
    with store_errors():
        query = _commission_query(viewer, seller_id).filter(Sale.commission_paid.is_(False))
        return int(query.scalar() or 0)


def generated_in_range(
    viewer: Account,
    seller_id: str | None,
    start: datetime | None,
    end: datetime | None,
) -> int:
    """Frozen commission of sales created in [start, end], paid or not."""
    with store_errors():
        query = _in_range(_commission_query(viewer, seller_id), start, end)
        return int(query.scalar() or 0)


def unpaid_sales(viewer: Account, seller_id: str | None = None) -> list[Sale]:
    """Unpaid sales, newest first, for picking a partial payout."""
    scoped = visible_seller_id(viewer, seller_id)
    with store_errors():
        query = db.session.query(Sale).filter(Sale.commission_paid.is_(False))
        if scoped is not None:
            query = query.filter(Sale.seller_id == scoped)
        return query.order_by(Sale.created_at.desc(), Sale.id.asc()).all()


def mark_paid(sale_ids: list[str]) -> dict:
    """
    Record a payout for the selected sales.

    Each unpaid sale gets commission_paid and commission_paid_at set.
    Already-paid ids are left untouched (their paid_at is not moved) and
    unknown ids are reported back, not raised.
    """
    if not isinstance(sale_ids, (list, tuple)) or not all(isinstance(s, str) for s in sale_ids):
        raise ValidationError("sale_ids must be a list of sale ids")
    wanted = list(dict.fromkeys(sale_ids))
    if not wanted:
        return {"paid": [], "already_paid": [], "not_found": [], "paid_at": None}

    now = utcnow()
    with store_errors():
        sales = lock_for_update(db.session.query(Sale).filter(Sale.id.in_(wanted))).all()
        known = {sale.id for sale in sales}

        paid_set = set()
        for sale in sales:
            if sale.commission_paid:
                continue
            sale.commission_paid = True
            sale.commission_paid_at = now
            paid_set.add(sale.id)
        db.session.commit()

    result = {
        "paid": [sid for sid in wanted if sid in paid_set],
        "already_paid": [sid for sid in wanted if sid in known and sid not in paid_set],
        "not_found": [sid for sid in wanted if sid not in known],
        "paid_at": to_utc_z(now) if paid_set else None,
    }
    logger.info("Marked %d sale commission(s) as paid", len(result["paid"]))
    return result


def _grouped(query, start=None, end=None) -> dict[str, int]:
    query = _in_range(query, start, end)
    return {seller_id: int(total or 0) for seller_id, total in query.group_by(Sale.seller_id).all()}


def team_summary(
    viewer: Account,
    preset: str = "month",
    *,
    now: datetime | None = None,
    tz=None,
) -> dict:
    """
    Per-seller commission overview.

    Each row: resolved rate, pending balance (all time), commission generated
    and sales count within the preset range. Sellers only get their own row.
    """
    start, end = range_for_preset(preset, now=now, tz=tz, end_of_day=True)
    config = get_config()
    scoped = visible_seller_id(viewer)

    with store_errors():
        accounts_query = db.session.query(Account)
        if scoped is not None:
            accounts_query = accounts_query.filter(Account.id == scoped)
        accounts = accounts_query.order_by(Account.name.asc(), Account.id.asc()).all()

        base = db.session.query(
            Sale.seller_id,
            func.sum(SaleLine.commission_amount_cents),
        ).join(SaleLine, SaleLine.sale_id == Sale.id)
        if scoped is not None:
            base = base.filter(Sale.seller_id == scoped)

        pending = _grouped(base.filter(Sale.commission_paid.is_(False)))
        generated = _grouped(base, start, end)

        counts_query = db.session.query(Sale.seller_id, func.count(Sale.id))
        if scoped is not None:
            counts_query = counts_query.filter(Sale.seller_id == scoped)
        counts = _grouped(counts_query, start, end)

    rows = []
    for account in accounts:
        # Deactivated accounts stay listed while they still have money owed
        if not account.is_active and not pending.get(account.id):
            continue
        rows.append({
            "account_id": account.id,
            "name": account.name,
            "role": account.role,
            "is_active": account.is_active,
            "rate": float(resolve_rate(account, config)),
            "rate_is_override": account.commission_percentage is not None,
            "pending_cents": pending.get(account.id, 0),
            "generated_cents": generated.get(account.id, 0),
            "sales_count": counts.get(account.id, 0),
        })

    return {
        "range": preset,
        "start": to_utc_z(start) if start else None,
        "end": to_utc_z(end),
        "global_rate": float(config.commission_percentage),
        "sellers": rows,
        "total_pending_cents": sum(row["pending_cents"] for row in rows),
    }
