# -*- coding: utf-8 -*-
# Rack Price Import (HTTP -> CSV -> Database)
# Copyright (c) 2025 Jan Sarivuo

"""
ETL-skripti: päivän rack-hinnat.

Toiminta:
1. Noutaa rack-hinnaston CSV-muodossa konfiguroidusta osoitteesta (RACK_PRICES_URL).
2. Lukee CSV:n Pandasilla (sarakkeet: Date, Location, Fuel Type, Price).
3. Ratkaisee toimipisteen ja polttoainetyypin nimet tunnisteiksi.
4. Tallentaa hinnat "Upsert"-periaatteella avaimella (päivä, toimipiste, polttoaine).

Yksittäinen virheellinen rivi ei kaada koko ajoa: virhe kirjataan listaan
ja käsittely jatkuu seuraavasta rivistä. Uudelleenyrityksiä ei tehdä,
ajo käynnistetään tarvittaessa uudestaan.
"""

import io
import logging
import math
import sys
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import pandas as pd
import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import settings
from database import FuelType, Location, RackPrice, SessionLocal
from schemas import FetchPricesResponse

log = logging.getLogger("RackPriceImport")

REQUIRED_COLUMNS = ("Location", "Fuel Type", "Price")


class FeedError(Exception):
    """Syötteen nouto tai jäsennys epäonnistui, koko ajo keskeytyy."""

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class FeedNotConfiguredError(FeedError):
    pass


class FeedFetchError(FeedError):
    pass


class FeedParseError(FeedError):
    pass


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


# -----------------------------------------------------------------------------
# 1. EXTRACT
# -----------------------------------------------------------------------------

def fetch_rack_prices_csv(url: Optional[str] = None, timeout: Optional[int] = None) -> str:
    """Hakee CSV-tiedoston tekstinä."""
    url = url if url is not None else settings.RACK_PRICES_URL
    if not url:
        raise FeedNotConfiguredError("RACK_PRICES_URL environment variable not set")

    log.info(f"Fetching rack prices from {url}")
    try:
        resp = requests.get(url, timeout=timeout or settings.RACK_PRICES_TIMEOUT)
    except requests.RequestException as e:
        raise FeedFetchError(f"Failed to fetch rack prices CSV: {e}") from e

    if not resp.ok:
        raise FeedFetchError(f"Failed to fetch rack prices CSV: {resp.reason}")

    return resp.text


def parse_rack_prices_csv(csv_text: str) -> pd.DataFrame:
    """
    Lukee CSV:n merkkijonoina (dtype=str), jotta hinnan jäsennys tehdään
    rivikohtaisesti ja virheet voidaan raportoida riveittäin.
    Ylimääräiset sarakkeet sallitaan ja ohitetaan.

    Otsikkorivi luetaan datana (header=None), jotta Pandas ei tulkitse
    ylimääräisiä kenttiä indeksiksi ja siirrä sarakkeita. Rivi, jossa on
    enemmän kenttiä kuin otsikossa (myös loppupilkku), on jäsennysvirhe.
    """
    try:
        raw = pd.read_csv(
            io.StringIO(csv_text),
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise FeedParseError("Error parsing CSV", details=str(e)) from e

    df = raw.iloc[1:].reset_index(drop=True)
    df.columns = [str(c).strip() for c in raw.iloc[0]]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise FeedParseError("Error parsing CSV", details=f"Missing columns: {', '.join(missing)}")

    return df


# -----------------------------------------------------------------------------
# 2. TRANSFORM & LOAD
# -----------------------------------------------------------------------------

def parse_price(raw: str) -> Optional[float]:
    """Palauttaa hinnan liukulukuna tai None, jos arvo ei ole numeerinen."""
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def upsert_rack_price(db: Session, price_date: date, location_id: int,
                      fuel_type_id: int, base_price: float) -> None:
    existing = (
        db.query(RackPrice)
        .filter_by(date=price_date, location_id=location_id, fuel_type_id=fuel_type_id)
        .one_or_none()
    )
    if existing is not None:
        existing.base_price = base_price
    else:
        db.add(RackPrice(
            date=price_date,
            location_id=location_id,
            fuel_type_id=fuel_type_id,
            base_price=base_price,
        ))
    db.commit()


def store_rack_prices(db: Session, df: pd.DataFrame, price_date: date) -> FetchPricesResponse:
    """
    Tallentaa rivit päivälle price_date. Palauttaa yhteenvedon, jossa
    on rivikohtaiset virheet.
    """
    # Hakutaulut nimille: name -> id
    location_map: Dict[str, int] = dict(db.query(Location.name, Location.id).all())
    fuel_type_map: Dict[str, int] = dict(db.query(FuelType.name, FuelType.id).all())

    inserted = 0
    errors: List[str] = []

    for row in df.to_dict("records"):
        location_name = row["Location"]
        fuel_type_name = row["Fuel Type"]

        location_id = location_map.get(location_name)
        if location_id is None:
            errors.append(f"Location not found: {location_name}")
            continue

        fuel_type_id = fuel_type_map.get(fuel_type_name)
        if fuel_type_id is None:
            errors.append(f"Fuel type not found: {fuel_type_name}")
            continue

        base_price = parse_price(row["Price"])
        if base_price is None:
            errors.append(f"Invalid price format: {row['Price']}")
            continue

        try:
            upsert_rack_price(db, price_date, location_id, fuel_type_id, base_price)
        except SQLAlchemyError as e:
            db.rollback()
            errors.append(f"Database error: {e}")
            continue

        inserted += 1

    if errors:
        log.warning(f"{len(errors)} rows skipped: {errors[:5]}")
    log.info(f"Rack prices for {price_date.isoformat()}: rows={len(df)}, inserted={inserted}")

    return FetchPricesResponse(
        success=True,
        date=price_date.isoformat(),
        total_rows=len(df),
        inserted=inserted,
        errors=errors,
    )


def run_import(db: Session, price_date: Optional[date] = None,
               url: Optional[str] = None) -> FetchPricesResponse:
    """Pääprosessi: nouto, jäsennys ja tallennus."""
    price_date = price_date or utc_today()
    csv_text = fetch_rack_prices_csv(url)
    df = parse_rack_prices_csv(csv_text)
    return store_rack_prices(db, df, price_date)


# -----------------------------------------------------------------------------
# 3. MAIN
# -----------------------------------------------------------------------------

def main() -> int:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format=settings.LOG_FORMAT,
        datefmt=settings.LOG_DATEFMT,
    )
    db = SessionLocal()
    try:
        result = run_import(db)
    except FeedError as e:
        log.critical(f"Rack price import failed: {e.message} {e.details or ''}".strip())
        return 1
    finally:
        db.close()

    log.info(f"Import finished. Inserted: {result.inserted}, Errors: {len(result.errors)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
