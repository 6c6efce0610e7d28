# Overview: Collection-keyed document store contract over the SQLAlchemy models.

"""
Entity Store

WHY: Every screen of the store works against a handful of named collections
(users, products, sales, categories, providers, config). This module is the
single place that knows how a collection maps onto a table, so services can
read and write documents without caring about the storage engine.

CONTRACT:
- get_all(collection)                       -> list of models
- get_by_id(collection, id)                 -> model, or NotFoundError
- upsert(collection, id, document)          -> merge write, creates if missing
- delete(collection, id)                    -> hard delete
- increment_field(collection, id, field, d) -> atomic UPDATE col = col + d

FAILURES: connectivity problems surface as StoreUnavailableError. Nothing is
retried here; the caller decides whether to offer a retry.
"""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import Integer, update
from sqlalchemy.exc import OperationalError

from ..extensions import db
from ..models import Account, Product, Sale, Category, Provider, AppConfig
from ..validation import ConflictError, ValidationError


COLLECTIONS = {
    "users": Account,
    "products": Product,
    "sales": Sale,
    "categories": Category,
    "providers": Provider,
    "config": AppConfig,
}

_DEFAULT_ORDER = {
    "users": Account.name,
    "products": Product.name,
    "sales": Sale.created_at,
    "categories": Category.name,
    "providers": Provider.name,
    "config": AppConfig.id,
}


class EntityStoreError(Exception):
    """Base class for store failures."""


class StoreUnavailableError(EntityStoreError):
    """The store could not be reached (connection, lock timeout, permissions)."""


class NotFoundError(EntityStoreError):
    """Raised when a document id does not exist in its collection."""
    def __init__(self, collection: str, entity_id: str):
        super().__init__(f"{collection}/{entity_id} not found")
        self.collection = collection
        self.entity_id = entity_id


class AccountNotFoundError(NotFoundError):
    """Raised for unknown account ids. Fatal to the calling operation."""
    def __init__(self, entity_id: str):
        super().__init__("users", entity_id)


@contextmanager
def store_errors():
    """Translate driver-level connectivity failures into StoreUnavailableError."""
    try:
        yield
    except OperationalError as exc:
        db.session.rollback()
        raise StoreUnavailableError("Entity store unavailable") from exc


def model_for(collection: str):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValidationError(f"Unknown collection: {collection}")


def not_found(collection: str, entity_id: str) -> NotFoundError:
    if collection == "users":
        return AccountNotFoundError(entity_id)
    return NotFoundError(collection, entity_id)


def get_all(collection: str, **filters) -> list:
    """Return every document in a collection, optionally filtered by equality."""
    model = model_for(collection)
    with store_errors():
        query = db.session.query(model)
        if filters:
            query = query.filter_by(**filters)
        return query.order_by(_DEFAULT_ORDER[collection].asc(), model.id.asc()).all()


def get_by_id(collection: str, entity_id: str):
    model = model_for(collection)
    with store_errors():
        entity = db.session.get(model, entity_id)
    if entity is None:
        raise not_found(collection, entity_id)
    return entity


def upsert(collection: str, entity_id: str | None, document: dict, *, commit: bool = True):
    """
    Merge-write a document.

    Keys must be mapped columns of the collection's model. A missing id (or
    one that does not exist yet) creates the document.
    """
    model = model_for(collection)
    columns = {c.key for c in model.__mapper__.columns}
    unknown = sorted(k for k in document if k not in columns or k == "id")
    if unknown:
        raise ValidationError(f"Unknown field(s) for {collection}: {', '.join(unknown)}")

    with store_errors():
        entity = db.session.get(model, entity_id) if entity_id is not None else None
        if entity is None:
            entity = model(**document)
            if entity_id is not None:
                entity.id = entity_id
            db.session.add(entity)
        else:
            for key, value in document.items():
                setattr(entity, key, value)

        if commit:
            db.session.commit()
        else:
            db.session.flush()
    return entity


def delete(collection: str, entity_id: str, *, commit: bool = True) -> None:
    entity = get_by_id(collection, entity_id)
    with store_errors():
        db.session.delete(entity)
        if commit:
            db.session.commit()


def increment_field(
    collection: str,
    entity_id: str,
    field: str,
    delta: int,
    *,
    floor: int | None = None,
    commit: bool = True,
) -> int:
    """
    Atomically add `delta` to an integer field and return the new value.

    Runs as a single UPDATE ... SET field = field + delta, never a
    fetch-then-write. With `floor`, the update only applies when the result
    stays >= floor; otherwise ConflictError is raised and nothing changes.
    """
    model = model_for(collection)
    column = model.__mapper__.columns.get(field)
    if column is None or not isinstance(column.type, Integer) or column.primary_key:
        raise ValidationError(f"{collection}.{field} is not an incrementable field")
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("delta must be an integer")

    attr = getattr(model, field)
    stmt = update(model).where(model.id == entity_id)
    if floor is not None:
        stmt = stmt.where(attr + delta >= floor)
    stmt = stmt.values({field: attr + delta}).execution_options(synchronize_session="fetch")

    with store_errors():
        result = db.session.execute(stmt)
        if result.rowcount == 0:
            exists = db.session.query(model.id).filter(model.id == entity_id).first()
            if exists is None:
                raise not_found(collection, entity_id)
            raise ConflictError(f"{collection}.{field} cannot go below {floor}")

        value = db.session.query(attr).filter(model.id == entity_id).scalar()
        if commit:
            db.session.commit()
    return value
