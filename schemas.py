# -*- coding: utf-8 -*-
# Fuel Price Automation - Data Schemas (Pydantic)
# Copyright (c) 2025 Jan Sarivuo

"""
Tietomallit (Pydantic).

Tietokannan rivit validoidaan näihin malleihin heti tallennuskerroksen
rajalla, joten hinnoittelulogiikka ja rajapinnat käsittelevät aina
tyypitettyjä tietueita eivätkä geneerisiä rivi-olioita.
"""

import datetime as dt
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Record(BaseModel):
    """Tietokannasta luettu, muuttumaton tietue."""
    model_config = ConfigDict(from_attributes=True, frozen=True)


class CamelModel(BaseModel):
    """JSON-vastaukset camelCase-avaimilla (dashboard-frontendin muoto)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------------------------------------------------------
# 1. PERUSENTITEETIT
# -----------------------------------------------------------------------------

class ProvinceOut(Record):
    id: int
    name: str


class LocationOut(Record):
    id: int
    name: str
    province_id: int


class FuelTypeOut(Record):
    id: int
    name: str


class TaxRateOut(Record):
    id: int
    province_id: int
    fuel_type_id: int
    carbon_tax: float = Field(ge=0)
    provincial_road_tax: float = Field(ge=0)
    federal_excise_tax: float = Field(ge=0)
    province_name: Optional[str] = None
    fuel_type_name: Optional[str] = None


class OperatorOut(Record):
    id: int
    first_name: str
    last_name: str
    email: str
    location_id: Optional[int] = None
    discount: float = Field(ge=0)
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class RackPriceOut(Record):
    id: int
    date: dt.date
    location_id: int
    fuel_type_id: int
    base_price: float
    created_at: Optional[dt.datetime] = None


class EmailLogOut(Record):
    id: int
    operator_id: int
    operator_name: str
    sent_at: dt.datetime
    status: str
    error_message: Optional[str] = None
    price_data: Optional[Any] = None


# -----------------------------------------------------------------------------
# 2. HINTALASKENNAN SYÖTTEET (liitokset valmiiksi ratkaistuina)
# -----------------------------------------------------------------------------

class OperatorWithLocation(OperatorOut):
    """Operaattori, jonka toimipiste (ja siten maakunta) on tiedossa."""
    location: LocationOut


class RackPriceWithFuelType(RackPriceOut):
    fuel_type: FuelTypeOut


class TaxRateWithFuelType(TaxRateOut):
    fuel_type: FuelTypeOut


# -----------------------------------------------------------------------------
# 3. HINTALASKENNAN TULOKSET
# -----------------------------------------------------------------------------

class PricedLine(CamelModel):
    fuel_type_id: int
    fuel_type_name: str
    final_price: float
    base_price: float
    carbon_tax: float
    provincial_road_tax: float
    federal_excise_tax: float
    discount: float


class OperatorPriceResult(CamelModel):
    operator_id: int
    operator_name: str
    operator_email: str
    location: str
    prices: List[PricedLine]


# -----------------------------------------------------------------------------
# 4. HALLINTALOMAKKEET
# -----------------------------------------------------------------------------

class OperatorCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    location_id: Optional[int] = None
    discount: float = Field(0.0, ge=0)


class OperatorUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    location_id: Optional[int] = None
    discount: Optional[float] = Field(None, ge=0)


class TaxRateUpdate(BaseModel):
    carbon_tax: Optional[float] = Field(None, ge=0)
    provincial_road_tax: Optional[float] = Field(None, ge=0)
    federal_excise_tax: Optional[float] = Field(None, ge=0)


# -----------------------------------------------------------------------------
# 5. TRIGGER-RAJAPINTOJEN VASTAUKSET
# -----------------------------------------------------------------------------

class FetchPricesResponse(CamelModel):
    success: bool
    date: str
    total_rows: int
    inserted: int
    errors: List[str]


class EmailErrorItem(CamelModel):
    operator_id: int
    operator_email: str
    error: str


class DailyPricesResponse(CamelModel):
    success: bool
    date: str
    operators_processed: int
    emails_sent: int
    email_errors: List[EmailErrorItem]


class DashboardSummary(BaseModel):
    total_operators: int
    today: str
    todays_rack_prices: int
    recent_emails: int
    recent_errors: List[EmailLogOut]
