"""
Entity store contract tests (collections, merge writes, atomic increments).
"""

import pytest
from sqlalchemy.exc import OperationalError

from invictos.extensions import db
from invictos.services import entity_store
from invictos.services.entity_store import (
    AccountNotFoundError,
    NotFoundError,
    StoreUnavailableError,
    store_errors,
)
from invictos.validation import ConflictError, ValidationError


class TestReads:

    def test_get_all_ordered_by_name(self, products):
        names = [p.name for p in entity_store.get_all("products")]
        assert names == sorted(names)

    def test_get_all_filters(self, admin, seller, seller2):
        assert {a.id for a in entity_store.get_all("users", role="seller")} == {"u2", "u3"}

    def test_get_by_id_missing(self, db_session):
        with pytest.raises(NotFoundError) as exc:
            entity_store.get_by_id("products", "nope")
        assert exc.value.collection == "products"

    def test_missing_user_is_account_not_found(self, db_session):
        with pytest.raises(AccountNotFoundError):
            entity_store.get_by_id("users", "nope")

    def test_unknown_collection(self, db_session):
        with pytest.raises(ValidationError):
            entity_store.get_all("customers")


class TestWrites:

    def test_upsert_creates_then_merges(self, db_session):
        entity_store.upsert("categories", "c9", {"name": "Gorras"})
        provider = entity_store.upsert("providers", "p9", {"name": "Proveedor", "contact": "555-1234"})

        entity_store.upsert("providers", "p9", {"name": "Proveedor SA"})

        assert provider.name == "Proveedor SA"
        assert provider.contact == "555-1234"
        assert entity_store.get_by_id("categories", "c9").name == "Gorras"

    def test_upsert_rejects_unknown_fields(self, db_session):
        with pytest.raises(ValidationError):
            entity_store.upsert("categories", "c9", {"name": "Gorras", "color": "red"})

    def test_delete(self, db_session):
        entity_store.upsert("categories", "c9", {"name": "Gorras"})
        entity_store.delete("categories", "c9")
        with pytest.raises(NotFoundError):
            entity_store.get_by_id("categories", "c9")


class TestIncrementField:

    def test_returns_new_value(self, products):
        assert entity_store.increment_field("products", "p-short", "stock", 5) == 13
        assert entity_store.increment_field("products", "p-short", "stock", -3) == 10

    def test_floor_rejects_without_change(self, products):
        with pytest.raises(ConflictError):
            entity_store.increment_field("products", "p-ball", "stock", -3, floor=0)
        db.session.expire_all()
        assert entity_store.get_by_id("products", "p-ball").stock == 2

    def test_missing_document(self, products):
        with pytest.raises(NotFoundError):
            entity_store.increment_field("products", "ghost", "stock", 1)

    @pytest.mark.parametrize("field,delta", [("name", 1), ("stock", 1.5), ("stock", True)])
    def test_rejects_bad_field_or_delta(self, products, field, delta):
        with pytest.raises(ValidationError):
            entity_store.increment_field("products", "p-short", field, delta)


class TestStoreErrors:

    def test_operational_error_becomes_unavailable(self, db_session):
        with pytest.raises(StoreUnavailableError):
            with store_errors():
                raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def test_other_errors_pass_through(self, db_session):
        with pytest.raises(KeyError):
            with store_errors():
                raise KeyError("x")
