"""
Pytest fixtures for prodtrack backend tests.

Provides the test application, a wiped database per test, work stations,
an item master with a sample BOM, and the test client.
"""

import pytest

from prodtrack import create_app
from prodtrack.extensions import db
from prodtrack.services import bom_service, change_feed, zone_service
from prodtrack.services.bom_service import ComponentInput


SENDER = "sender@plant.local"
RECEIVER = "receiver@plant.local"

VIN_A = "1HGCM82633A004352"
VIN_B = "1HGCM82633A004353"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PRODUCTION_ZONE_COUNT': 23,
        'ALLOW_OTP_BYPASS': True,
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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def stations(db_session):
    """Work station rows for every zone."""
    zone_service.init_work_stations()
    db_session.commit()
    return zone_service.list_work_stations()


@pytest.fixture(scope='function')
def items(db_session):
    """Item master entries used by the sample BOM."""
    rows = [
        bom_service.upsert_item("BOLT-M8", "M8 bolt", unit="pcs"),
        bom_service.upsert_item("NUT-M8", "M8 nut", unit="pcs"),
        bom_service.upsert_item("SEAT-FR", "Front seat"),
    ]
    db_session.commit()
    return rows


@pytest.fixture(scope='function')
def seat_kit(db_session, items):
    """BOM SEAT-KIT: 1 seat, 4 bolts, 4 nuts per unit."""
    bom = bom_service.create_bom(
        "SEAT-KIT",
        "Seat mounting kit",
        [
            ComponentInput(sku="SEAT-FR", quantity=1),
            ComponentInput(sku="BOLT-M8", quantity=4),
            ComponentInput(sku="NUT-M8", quantity=4),
        ],
    )
    db_session.commit()
    return bom


@pytest.fixture(scope='function')
def feed_events():
    """Collect every delivered change feed event; unsubscribes afterwards."""
    received = []
    subscriptions = [
        change_feed.subscribe(channel, received.append, with_snapshot=False)
        for channel in change_feed.CHANNELS
    ]
    yield received
    for subscription in subscriptions:
        subscription.unsubscribe()


def actor_headers(email: str = SENDER) -> dict:
    """Helper to create the caller identity header."""
    return {'X-Actor-Email': email}
