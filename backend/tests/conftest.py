"""
Pytest fixtures for INVICTOS backend tests.

Provides an in-memory database, seeded accounts and products, and auth
headers for the Flask test client.
"""

from decimal import Decimal

import pytest

from invictos import create_app
from invictos.config import Config
from invictos.extensions import db
from invictos.models import Account, AppConfig, Product
from invictos.models.settings import GLOBAL_CONFIG_ID
from invictos.services import auth_service, session_service


class InMemoryConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    STORE_TIMEZONE = "UTC"
    # Cheap hashes keep the suite fast
    BCRYPT_LOG_ROUNDS = 4
    DEFAULT_COMMISSION_PERCENTAGE = "5"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(InMemoryConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        db.session.add(AppConfig(id=GLOBAL_CONFIG_ID, commission_percentage=Decimal("5")))
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin(db_session):
    """Administrator u1, PIN 1234."""
    return auth_service.create_account(
        {"name": "Administrador", "role": "admin", "pin": "1234"},
        account_id="u1",
    )


@pytest.fixture(scope='function')
def seller(db_session):
    """Seller u2, PIN 0000, 3% override."""
    return auth_service.create_account(
        {"name": "Vendedor 1", "role": "seller", "pin": "0000", "commission_percentage": 3},
        account_id="u2",
    )


@pytest.fixture(scope='function')
def seller2(db_session):
    """Seller u3, PIN 1111, no override (uses the global 5%)."""
    return auth_service.create_account(
        {"name": "Vendedor 2", "role": "seller", "pin": "1111"},
        account_id="u3",
    )


def _make_product(db_session, pid: str, price_cents: int, stock: int = 10, cost_cents: int = 0,
                 category: str = "Jerseys", name: str | None = None) -> Product:
    product = Product(
        id=pid,
        code=f"CODE-{pid}",
        name=name or f"Product {pid}",
        category=category,
        provider="Adidas Oficial",
        price_cents=price_cents,
        cost_cents=cost_cents,
        stock=stock,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def products(db_session):
    """A jersey ($650.00), a short ($250.00) and a ball with 2 in stock."""
    return {
        "jersey": _make_product(db_session, "p-jersey", 65000, stock=15, cost_cents=40000, name="Camiseta"),
        "short": _make_product(db_session, "p-short", 25000, stock=8, cost_cents=12000,
                              category="Shorts", name="Short"),
        "ball": _make_product(db_session, "p-ball", 45000, stock=2, cost_cents=25000,
                             category="Equipamiento", name="Pelota"),
    }


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(account: Account) -> dict:
    """Session headers without going through the PIN check."""
    _, token = session_service.create_session(account.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture(scope='function')
def seller_headers(seller):
    return headers_for(seller)


@pytest.fixture(scope='function')
def product_factory(db_session):
    """Build extra products: product_factory("p1", 10000, stock=3)."""
    def _factory(pid: str, price_cents: int, **kwargs) -> Product:
        return _make_product(db_session, pid, price_cents, **kwargs)
    return _factory


@pytest.fixture(scope='function')
def login_headers(db_session):
    """Session headers for any account: login_headers(account)."""
    return headers_for
