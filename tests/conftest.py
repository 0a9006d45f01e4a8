import os
from datetime import date

# Testit ajetaan muistinvaraista SQLitea vasten, ei MySQL:ää
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app as app_module
from database import FuelType, Location, Operator, Province, RackPrice, TaxRate, get_db, init_db

TODAY = date(2026, 10, 19)


class RecordingMailer:
    """Tallentaa lähetetyt viestit muistiin; failing-osoitteille nostaa virheen."""

    def __init__(self, failing=()):
        self.sent = []
        self.failing = set(failing)

    def send(self, to, subject, html):
        if to in self.failing:
            raise ConnectionRefusedError(f"Connection refused for {to}")
        self.sent.append({"to": to, "subject": subject, "html": html})


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded_db(db):
    """
    Toronto, ON (maakunta 7) hinnoilla REG 87 ja SUP 91, Montreal, QC
    (maakunta 8) ilman verokantoja.
    """
    db.add_all([
        Province(id=7, name="Ontario"),
        Province(id=8, name="Quebec"),
    ])
    db.add_all([
        Location(id=1, name="Toronto, ON", province_id=7),
        Location(id=2, name="Montreal, QC", province_id=8),
    ])
    db.add_all([
        FuelType(id=1, name="REG 87"),
        FuelType(id=2, name="DSL"),
        FuelType(id=3, name="SUP 91"),
    ])
    db.add_all([
        TaxRate(id=1, province_id=7, fuel_type_id=1, carbon_tax=0.0884,
                provincial_road_tax=0.147, federal_excise_tax=0.1),
        TaxRate(id=2, province_id=7, fuel_type_id=3, carbon_tax=0.0884,
                provincial_road_tax=0.147, federal_excise_tax=0.1),
    ])
    db.add_all([
        Operator(id=1, first_name="John", last_name="Doe", email="john@example.com",
                 location_id=1, discount=0.1),
        Operator(id=2, first_name="Jane", last_name="Roe", email="jane@example.com",
                 location_id=1, discount=0.0),
        Operator(id=3, first_name="No", last_name="Location", email="nolocation@example.com",
                 location_id=None, discount=0.0),
    ])
    db.commit()
    return db


@pytest.fixture
def todays_rack_prices(seeded_db):
    seeded_db.add_all([
        RackPrice(date=TODAY, location_id=1, fuel_type_id=1, base_price=1.0),
        RackPrice(date=TODAY, location_id=1, fuel_type_id=3, base_price=1.2),
    ])
    seeded_db.commit()
    return seeded_db


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(session_factory, mailer, monkeypatch):
    monkeypatch.delenv("ADMIN_TOKEN", raising=False)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app = app_module.app
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[app_module.get_today] = lambda: TODAY
    app.dependency_overrides[app_module.get_mailer] = lambda: mailer

    yield TestClient(app)

    app.dependency_overrides.clear()
