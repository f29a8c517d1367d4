"""
Pytest fixtures for Duka backend tests.

Provides an in-memory database, users, products and an authenticated client.
"""

import pytest

from duka import create_app
from duka.extensions import db
from duka.models import Product, User
from duka.models.auth import ROLE_ADMIN, ROLE_SELLER
from duka.services.auth_service import hash_password

TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVENTORY_LEDGER_STRICT': False,
        'ADMIN_EMAIL': 'owner@duka.test',
    })

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
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        app.config['INVENTORY_LEDGER_STRICT'] = False


def _make_user(db_session, username: str, role: str) -> User:
    user = User(
        username=username,
        full_name=username.title(),
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def seller(db_session):
    return _make_user(db_session, "seller", ROLE_SELLER)


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin", ROLE_ADMIN)


def make_product(db_session, item_code: str, *, quantity: int = 10, regular: int = 10000,
                 discount: int = 8000, buying: int = 6000, threshold: int = 7, low_stock: int = 5) -> Product:
    """Prices are cents: defaults are 100.00 regular, 80.00 from 7 units, 60.00 cost."""
    product = Product(
        item_code=item_code,
        description=f"Product {item_code}",
        quantity=quantity,
        buying_price_cents=buying,
        regular_price_cents=regular,
        discount_price_cents=discount,
        discount_threshold=threshold,
        low_stock_threshold=low_stock,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session):
    return make_product(db_session, "SOAP-001")


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def seller_headers(client, seller):
    return auth_headers(get_auth_token(client, seller.username))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.username))
