# -*- coding: utf-8 -*-
# Fuel Price Automation - Storage Layer (SQLAlchemy)
# Copyright (c) 2025 Jan Sarivuo

"""
Tietokantamalli ja sessiot.

Taulut: provinces, locations, fuel_types, tax_rates, operators,
rack_prices, email_logs. Rack-hinnoilla on yksilöivä avain
(date, location_id, fuel_type_id), jota CSV-tuonnin upsert käyttää.
"""

from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

import settings

engine = create_engine(settings.DATABASE_URL, echo=False, future=True, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --------------------------------------------------------------------
# Perustaulut
# --------------------------------------------------------------------


class Province(Base):
    __tablename__ = "provinces"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)


class Location(Base):
    """Rack-hinnoittelupiste, esim. 'Toronto, ON'."""

    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True, index=True)
    province_id = Column(Integer, ForeignKey("provinces.id"), nullable=False)

    province = relationship("Province")


class FuelType(Base):
    __tablename__ = "fuel_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False, unique=True, index=True)  # esim. 'REG 87'


class TaxRate(Base):
    """Verot per (maakunta, polttoainetyyppi), yksikkö: valuutta / litra."""

    __tablename__ = "tax_rates"
    __table_args__ = (UniqueConstraint("province_id", "fuel_type_id", name="uq_tax_rate"),)

    id = Column(Integer, primary_key=True, index=True)
    province_id = Column(Integer, ForeignKey("provinces.id"), nullable=False)
    fuel_type_id = Column(Integer, ForeignKey("fuel_types.id"), nullable=False)
    carbon_tax = Column(Float, nullable=False, default=0.0)
    provincial_road_tax = Column(Float, nullable=False, default=0.0)
    federal_excise_tax = Column(Float, nullable=False, default=0.0)

    province = relationship("Province")
    fuel_type = relationship("FuelType")


class Operator(Base):
    """Asemaoperaattori, joka saa päivittäisen hintasähköpostin."""

    __tablename__ = "operators"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    discount = Column(Float, nullable=False, default=0.0)  # valuutta / litra
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    location = relationship("Location")


class RackPrice(Base):
    __tablename__ = "rack_prices"
    __table_args__ = (
        UniqueConstraint("date", "location_id", "fuel_type_id", name="uq_rack_price_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    fuel_type_id = Column(Integer, ForeignKey("fuel_types.id"), nullable=False)
    base_price = Column(Float, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    location = relationship("Location")
    fuel_type = relationship("FuelType")


class EmailLog(Base):
    """
    Yksi rivi jokaista lähetysyritystä kohden (status 'sent' tai 'error').
    operator_id ei ole viiteavain, jotta loki säilyy operaattorin poiston jälkeen.
    """

    __tablename__ = "email_logs"

    id = Column(Integer, primary_key=True, index=True)
    operator_id = Column(Integer, nullable=False, index=True)
    sent_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    price_data = Column(JSON, nullable=True)


# --------------------------------------------------------------------
# Yhteinen DB-sessio / dependency
# --------------------------------------------------------------------


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Luo puuttuvat taulut (kehitys- ja testikäyttöön)."""
    Base.metadata.create_all(bind=bind or engine)
