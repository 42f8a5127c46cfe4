"""
Pytest fixtures for RepairDesk backend tests.

Provides an in-memory database, one user per role, inventory items and a
test client with login helpers.
"""

import pytest

from repairdesk import create_app
from repairdesk.extensions import db
from repairdesk.models import InventoryItem, StockMovement
from repairdesk.models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_TECHNICIAN
from repairdesk.services.auth_service import create_user
from repairdesk.services.inventory_service import create_item

TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table before each test; the schema is kept."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def admin(db_session):
    return create_user(name="Admin", username="admin", password=TEST_PASSWORD, role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def cashier(db_session):
    return create_user(name="Kasir Satu", username="cashier", password=TEST_PASSWORD, role=ROLE_CASHIER)


@pytest.fixture(scope='function')
def technician(db_session):
    return create_user(name="Teknisi Satu", username="tech", password=TEST_PASSWORD, role=ROLE_TECHNICIAN)


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory: create an active item with an opening stock booked through the ledger."""
    counter = {"n": 0}

    def _make(stock=10, selling_price_cents=100, purchase_price_cents=50, **overrides):
        counter["n"] += 1
        payload = {
            "sku": f"ITEM-{counter['n']:03d}",
            "name": f"Item {counter['n']}",
            "category": "Sparepart",
            "purchase_price_cents": purchase_price_cents,
            "selling_price_cents": selling_price_cents,
            "stock": stock,
        }
        payload.update(overrides)
        return create_item(payload)

    return _make


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
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, "admin"))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier):
    return auth_headers(get_auth_token(client, "cashier"))


@pytest.fixture(scope='function')
def technician_headers(client, technician):
    return auth_headers(get_auth_token(client, "tech"))


def stock_of(item_id: int) -> int:
    """Current stock straight from the database."""
    return db.session.query(InventoryItem.stock).filter_by(id=item_id).scalar()


def movement_total(item_id: int) -> int:
    """Sum of all recorded movements for an item."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(StockMovement.quantity_delta), 0))
        .filter(StockMovement.item_id == item_id)
        .scalar()
    )
    return int(total)
