"""
Pytest fixtures for LabTrace backend tests.

Provides test database setup, acting users per role, master data fixtures
and builders that walk a worksheet through production.
"""

import threading
from datetime import timedelta

import pytest
from labtrace import create_app
from labtrace.extensions import db, DOCUMENT_GENERATOR_KEY, EMAIL_SENDER_KEY
from labtrace.permissions import Role
from labtrace.services import catalog_service, material_service, order_service, qc_service, worksheet_service
from labtrace.services.permission_service import Actor
from labtrace.time_utils import utcnow


ADMIN = Actor(user_id=1, role=Role.ADMIN)
TECHNICIAN = Actor(user_id=2, role=Role.TECHNICIAN)
QC_INSPECTOR = Actor(user_id=3, role=Role.QC_INSPECTOR)
BILLING = Actor(user_id=4, role=Role.INVOICING)

ALL_CHECKS = {"aesthetics": True, "fit": True, "occlusion": True, "shade": True, "margins": True}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'EMAIL_RELAY_URL': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    """
    Application on a file database, for tests that run several threads.
    Every thread gets its own connection; BEGIN IMMEDIATE serializes writers.
    """
    file_app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
        "EMAIL_RELAY_URL": None,
    })
    with file_app.app_context():
        db.create_all()
    yield file_app
    with file_app.app_context():
        db.drop_all()
        db.engine.dispose()


def run_in_threads(app, target, items):
    """Call target(item) for every item, each in its own thread and app context."""
    errors = []
    results = []

    def _worker(item):
        with app.app_context():
            try:
                results.append(target(item))
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=_worker, args=(item,)) for item in items]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


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
        app.extensions.pop(DOCUMENT_GENERATOR_KEY, None)
        app.extensions.pop(EMAIL_SENDER_KEY, None)


@pytest.fixture
def headers():
    """Identity headers as forwarded by the auth gateway."""
    def _headers(role="ADMIN", user_id=1):
        return {"X-User-Id": str(user_id), "X-User-Role": role}
    return _headers


@pytest.fixture(scope='function')
def dentist(db_session):
    return catalog_service.create_dentist(
        {"clinic_name": "Smile Clinic", "dentist_name": "Dr. Novak", "email": "novak@smile.example"},
        actor=ADMIN,
    )


@pytest.fixture(scope='function')
def other_dentist(db_session):
    return catalog_service.create_dentist(
        {"clinic_name": "Bright Dental", "dentist_name": "Dr. Kranjc", "email": "kranjc@bright.example"},
        actor=ADMIN,
    )


@pytest.fixture(scope='function')
def product(db_session):
    return catalog_service.create_product(
        {"code": "ZR-CROWN", "name": "Zirconia crown", "category": "FIXED", "current_price": "100.00"},
        actor=ADMIN,
    )


@pytest.fixture(scope='function')
def material(db_session):
    return material_service.create_material(
        {
            "code": "ZR-DISC",
            "type": "ZIRCONIA",
            "name": "Zirconia disc 98mm",
            "manufacturer": "Ivoclar",
            "ce_marked": True,
            "ce_number": "CE0123",
            "unit": "g",
        },
        actor=ADMIN,
    )


@pytest.fixture
def make_lot(db_session):
    """record_arrival with arrival offsets in days (negative = in the past)."""
    def _make_lot(material, lot_number, quantity, *, arrived_days_ago=0, expires_in_days=365):
        now = utcnow()
        return material_service.record_arrival(
            material.id,
            lot_number,
            quantity,
            now + timedelta(days=expires_in_days) if expires_in_days is not None else None,
            arrival_date=now - timedelta(days=arrived_days_ago),
            supplier_name="Dental Supply d.o.o.",
            actor=ADMIN,
        )
    return _make_lot


@pytest.fixture(scope='function')
def order(dentist):
    return order_service.create_order(dentist.id, {"patient_name": "Jane Doe"}, actor=ADMIN)


@pytest.fixture(scope='function')
def worksheet(order, product):
    return worksheet_service.create_worksheet(
        order.id,
        {
            "device_description": "Zirconia crown 11",
            "products": [{"product_id": product.id, "quantity": 2}],
            "teeth": [{"tooth_number": "11", "work_type": "CROWN", "shade": "A2"}],
        },
        actor=ADMIN,
    )


@pytest.fixture
def approved_worksheet(product):
    """Build order + worksheet for a dentist and drive it to QC_APPROVED."""
    def _approved(dentist, *, quantity=1, patient_name="Patient"):
        order = order_service.create_order(dentist.id, {"patient_name": patient_name}, actor=ADMIN)
        ws = worksheet_service.create_worksheet(
            order.id,
            {"products": [{"product_id": product.id, "quantity": quantity}]},
            actor=ADMIN,
        )
        worksheet_service.transition_worksheet(ws.id, "IN_PRODUCTION", actor=TECHNICIAN)
        worksheet_service.transition_worksheet(ws.id, "QC_PENDING", actor=TECHNICIAN)
        qc_service.submit_qc(ws.id, {"result": "APPROVED", "checklist": ALL_CHECKS}, actor=QC_INSPECTOR)
        return worksheet_service.get_worksheet(ws.id)
    return _approved
