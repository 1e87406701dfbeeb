import pytest
import uuid
from datetime import datetime, timedelta, timezone

from config import TestConfig
from farmstore import create_app
from farmstore import database
from farmstore.models import Product, ProductVariant, Discount, Profile
from farmstore.services.cart_service import CartLedger
from farmstore.services.state_store import MemoryStateStore


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application instance for testing."""
    class _TestConfig(TestConfig):
        STATE_DIR = str(tmp_path_factory.mktemp('state'))

    app = create_app(_TestConfig)
    database.create_all()
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session; every table is emptied after the test."""
    session = database.get_session()
    yield session
    session.rollback()
    for table in reversed(database.Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    database.db_session.remove()


@pytest.fixture(scope='function')
def store():
    return MemoryStateStore()


@pytest.fixture(scope='function')
def ledger(store):
    """Empty cart ledger over an in-memory state store."""
    return CartLedger(store, f'test-cart-{uuid.uuid4().hex[:8]}')


def _profile(session, role):
    suffix = uuid.uuid4().hex[:8]
    profile = Profile(
        external_id=f'{role}-{suffix}',
        email=f'{role}-{suffix}@test.com',
        full_name=f'Test {role.title()}',
        role=role,
        active=True
    )
    session.add(profile)
    session.commit()
    # Detached with attributes loaded, so request teardown cannot expire it
    session.refresh(profile)
    session.expunge(profile)
    return profile


@pytest.fixture(scope='function')
def worker(session):
    """Staff profile allowed to use the POS."""
    return _profile(session, 'worker')


@pytest.fixture(scope='function')
def admin(session):
    return _profile(session, 'admin')


@pytest.fixture(scope='function')
def customer(session):
    """Storefront profile, not allowed to use the POS."""
    return _profile(session, 'customer')


@pytest.fixture(scope='function')
def layer_feed(session):
    """Layer Feed 50kg at 3000 with an active 10% discount."""
    now = datetime.now(timezone.utc)
    product = Product(name='Layer Feed 50kg', price=3000, stock=10, category='Feeds', active=True)
    session.add(product)
    session.flush()
    session.add(Discount(
        product_id=product.id,
        name='Feed promo',
        percentage=10,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=1)
    ))
    session.commit()
    return product


@pytest.fixture(scope='function')
def eggs_tray(session):
    """Eggs Tray at 450, no discount."""
    product = Product(name='Eggs Tray', price=450, stock=20, category='Eggs', active=True)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def chicks(session):
    """Product with size variants that carry their own stock."""
    product = Product(name='Kienyeji Chicks', price=150, stock=100, category='Poultry', active=True)
    session.add(product)
    session.flush()
    session.add_all([
        ProductVariant(product_id=product.id, attribute='1 week', stock=5),
        ProductVariant(product_id=product.id, attribute='1 month', stock=40),
    ])
    session.commit()
    return product


@pytest.fixture(scope='function')
def login(client):
    """Attach an identity provider user id to the test client session."""
    def _login(profile):
        with client.session_transaction() as sess:
            sess['user_id'] = profile.external_id
        return client
    return _login
