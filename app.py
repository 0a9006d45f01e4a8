# -*- coding: utf-8 -*-
# Fuel Price Automation API (FastAPI)
# Copyright (c) 2025 Jan Sarivuo

"""
FastAPI-pohjainen taustajärjestelmä päivittäisten polttoainehintojen
laskentaan ja jakeluun.

Ominaisuudet:
- Rack-hintojen nouto CSV-syötteestä ja tallennus (upsert)
- Operaattorikohtainen hintalaskenta (rack + verot - alennus)
- Hintasähköpostit operaattoreille ja lähetysloki
- Hallintarajapinnat dashboardille (operaattorit, verokannat, lokit)
"""

__author__ = "Jan Sarivuo"
__version__ = "1.0.0"

import logging
from datetime import date
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

import settings
from database import (
    EmailLog,
    FuelType,
    Location,
    Operator,
    Province,
    RackPrice,
    TaxRate,
    get_db,
)
from email_sender import Mailer, SmtpMailer, send_price_emails
from pricing import PricingEngine, TaxRateNotFoundError
from rack_price_import import FeedError, run_import, utc_today
from schemas import (
    DailyPricesResponse,
    DashboardSummary,
    EmailLogOut,
    FetchPricesResponse,
    FuelTypeOut,
    LocationOut,
    OperatorCreate,
    OperatorOut,
    OperatorUpdate,
    OperatorWithLocation,
    ProvinceOut,
    RackPriceOut,
    RackPriceWithFuelType,
    TaxRateOut,
    TaxRateUpdate,
    TaxRateWithFuelType,
)

# Loggausasetukset
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format=settings.LOG_FORMAT,
    datefmt=settings.LOG_DATEFMT,
)
log = logging.getLogger("FuelPriceAPI")

# -----------------------------------------------------------------------------
# 1. SOVELLUKSEN ALUSTUS
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Fuel Price Automation API",
    description="Daily rack price ingestion, operator price calculation and email delivery.",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# -----------------------------------------------------------------------------
# 2. DEPENDENCYT
# -----------------------------------------------------------------------------


def get_today() -> date:
    """Päivä, jolle hinnat haetaan ja lasketaan (UTC)."""
    return utc_today()


def get_mailer() -> Mailer:
    return SmtpMailer.from_settings()


def require_admin(authorization: Optional[str] = Header(None)) -> None:
    """
    Yksinkertainen Bearer-token tarkistus. Jos ADMIN_TOKEN on tyhjä,
    tarkistus ohitetaan (kirjautuminen hoidetaan frontendin puolella).
    """
    expected_token = settings.get_admin_token()
    if not expected_token:
        return

    if not authorization or not authorization.startswith("Bearer ") or authorization.split(" ", 1)[1] != expected_token:
        log.warning("Unauthorized admin request")
        raise HTTPException(status_code=401, detail="Invalid or missing token")


# -----------------------------------------------------------------------------
# 3. APUFUNKTIOT
# -----------------------------------------------------------------------------


def load_calculation_inputs(db: Session, on_date: date):
    """
    Hakee hintalaskennan syötteet ja validoi ne tyypitetyiksi tietueiksi.
    Operaattorit ilman toimipistettä rajataan pois jo kyselyssä.
    """
    rack_rows = (
        db.query(RackPrice)
        .options(joinedload(RackPrice.fuel_type))
        .filter(RackPrice.date == on_date)
        .order_by(RackPrice.id)
        .all()
    )
    operator_rows = (
        db.query(Operator)
        .options(joinedload(Operator.location))
        .filter(Operator.location_id.isnot(None))
        .order_by(Operator.id)
        .all()
    )
    tax_rows = (
        db.query(TaxRate)
        .options(joinedload(TaxRate.fuel_type))
        .order_by(TaxRate.id)
        .all()
    )

    rack_prices = [RackPriceWithFuelType.model_validate(r) for r in rack_rows]
    operators = [OperatorWithLocation.model_validate(o) for o in operator_rows]
    tax_rates = [TaxRateWithFuelType.model_validate(t) for t in tax_rows]
    return operators, rack_prices, tax_rates


def operator_names(db: Session) -> Dict[int, str]:
    return {
        op_id: f"{first} {last}"
        for op_id, first, last in db.query(Operator.id, Operator.first_name, Operator.last_name).all()
    }


def to_email_log_out(row: EmailLog, names: Dict[int, str]) -> EmailLogOut:
    return EmailLogOut(
        id=row.id,
        operator_id=row.operator_id,
        operator_name=names.get(row.operator_id, f"Operator #{row.operator_id}"),
        sent_at=row.sent_at,
        status=row.status,
        error_message=row.error_message,
        price_data=row.price_data,
    )


def check_location_exists(db: Session, location_id: Optional[int]) -> None:
    if location_id is not None and db.get(Location, location_id) is None:
        raise HTTPException(status_code=422, detail=f"Location not found: {location_id}")


def get_operator_or_404(db: Session, operator_id: int) -> Operator:
    operator = db.get(Operator, operator_id)
    if operator is None:
        raise HTTPException(status_code=404, detail=f"Operator not found: {operator_id}")
    return operator


# -----------------------------------------------------------------------------
# 4. API RAJAPINNAT (TRIGGERIT)
# -----------------------------------------------------------------------------


@app.get("/health", tags=["meta"])
def health_check(db: Session = Depends(get_db)) -> dict:
    """Kevyt endpoint valvonnalle: tarkistaa myös tietokantayhteyden."""
    try:
        db.execute(select(1))
    except SQLAlchemyError as exc:
        log.error(f"Health check failed: {exc}")
        raise HTTPException(status_code=500, detail=str(exc))

    return {"status": "ok", "service": "fuel-price-api"}


@app.api_route(
    "/api/fetch-prices",
    methods=["GET", "POST"],
    response_model=FetchPricesResponse,
    tags=["triggers"],
    dependencies=[Depends(require_admin)],
)
def fetch_prices(db: Session = Depends(get_db), today: date = Depends(get_today)):
    """
    Noutaa päivän rack-hinnat syötteestä ja tallentaa ne.

    Rivikohtaiset virheet palautetaan listana, eikä niistä keskeytetä ajoa.
    Puuttuva syötteen osoite, epäonnistunut nouto tai jäsennysvirhe
    palauttaa 404-virheen.
    """
    try:
        return run_import(db, price_date=today)
    except FeedError as e:
        log.error(f"Rack price feed failed: {e.message} {e.details or ''}".strip())
        raise HTTPException(status_code=404, detail={"error": e.message, "details": e.details})
    except SQLAlchemyError as e:
        log.exception("Rack price import failed")
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to fetch and process rack prices", "details": str(e)},
        )


@app.api_route(
    "/api/daily-prices",
    methods=["GET", "POST"],
    response_model=DailyPricesResponse,
    tags=["triggers"],
    dependencies=[Depends(require_admin)],
)
def daily_prices(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    mailer: Mailer = Depends(get_mailer),
):
    """
    Laskee päivän hinnat kaikille operaattoreille ja lähettää sähköpostit.

    Logiikka:
    1. Haetaan päivän rack-hinnat, operaattorit ja verokannat.
    2. Lasketaan hinnat. Puuttuva verokanta keskeyttää koko erän (500).
    3. Lähetetään sähköpostit yksi kerrallaan, virheet kerätään listaan.
    """
    try:
        operators, rack_prices, tax_rates = load_calculation_inputs(db, today)
    except (SQLAlchemyError, ValidationError) as e:
        log.exception("Failed to load pricing inputs")
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to fetch pricing data", "details": str(e)},
        )

    if not rack_prices:
        raise HTTPException(status_code=404, detail=f"No rack prices found for {today.isoformat()}")
    if not operators:
        raise HTTPException(status_code=404, detail="No operators found")

    try:
        results = PricingEngine.calculate_prices_for_operators(operators, rack_prices, tax_rates)
    except TaxRateNotFoundError as e:
        log.error(f"Price calculation aborted: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to calculate and send daily prices", "details": str(e)},
        )

    email_errors = send_price_emails(db, results, mailer, today)

    return DailyPricesResponse(
        success=True,
        date=today.isoformat(),
        operators_processed=len(results),
        emails_sent=len(results) - len(email_errors),
        email_errors=email_errors,
    )


# -----------------------------------------------------------------------------
# 5. HALLINTARAJAPINNAT (DASHBOARD)
# -----------------------------------------------------------------------------


@app.get("/api/dashboard", response_model=DashboardSummary, tags=["admin"])
def dashboard(db: Session = Depends(get_db), today: date = Depends(get_today)):
    """Etusivun luvut: operaattorit, päivän rack-hinnat ja viimeisimmät lähetykset."""
    recent_logs = db.query(EmailLog).order_by(EmailLog.sent_at.desc(), EmailLog.id.desc()).limit(50).all()
    names = operator_names(db)

    return DashboardSummary(
        total_operators=db.query(func.count(Operator.id)).scalar(),
        today=today.isoformat(),
        todays_rack_prices=db.query(func.count(RackPrice.id)).filter(RackPrice.date == today).scalar(),
        recent_emails=len(recent_logs),
        recent_errors=[to_email_log_out(r, names) for r in recent_logs if r.status == "error"][:5],
    )


@app.get("/api/provinces", response_model=List[ProvinceOut], tags=["admin"])
def list_provinces(db: Session = Depends(get_db)):
    return [ProvinceOut.model_validate(p) for p in db.query(Province).order_by(Province.name).all()]


@app.get("/api/locations", response_model=List[LocationOut], tags=["admin"])
def list_locations(db: Session = Depends(get_db)):
    return [LocationOut.model_validate(loc) for loc in db.query(Location).order_by(Location.name).all()]


@app.get("/api/fuel-types", response_model=List[FuelTypeOut], tags=["admin"])
def list_fuel_types(db: Session = Depends(get_db)):
    return [FuelTypeOut.model_validate(ft) for ft in db.query(FuelType).order_by(FuelType.name).all()]


@app.get("/api/tax-rates", response_model=List[TaxRateOut], tags=["admin"])
def list_tax_rates(db: Session = Depends(get_db)):
    rows = (
        db.query(TaxRate)
        .options(joinedload(TaxRate.province), joinedload(TaxRate.fuel_type))
        .order_by(TaxRate.province_id, TaxRate.fuel_type_id)
        .all()
    )
    return [
        TaxRateOut.model_validate(tr).model_copy(update={
            "province_name": tr.province.name,
            "fuel_type_name": tr.fuel_type.name,
        })
        for tr in rows
    ]


@app.put(
    "/api/tax-rates/{tax_rate_id}",
    response_model=TaxRateOut,
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)
def update_tax_rate(tax_rate_id: int, payload: TaxRateUpdate, db: Session = Depends(get_db)):
    tax_rate = db.get(TaxRate, tax_rate_id)
    if tax_rate is None:
        raise HTTPException(status_code=404, detail=f"Tax rate not found: {tax_rate_id}")

    for field, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(tax_rate, field, value)
    db.commit()
    db.refresh(tax_rate)

    log.info(f"Tax rate {tax_rate_id} updated")
    return TaxRateOut.model_validate(tax_rate)


@app.get("/api/operators", response_model=List[OperatorOut], tags=["admin"])
def list_operators(db: Session = Depends(get_db)):
    return [OperatorOut.model_validate(o) for o in db.query(Operator).order_by(Operator.id).all()]


@app.post(
    "/api/operators",
    response_model=OperatorOut,
    status_code=201,
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)
def create_operator(payload: OperatorCreate, db: Session = Depends(get_db)):
    check_location_exists(db, payload.location_id)

    operator = Operator(**payload.model_dump())
    db.add(operator)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e.orig))
    db.refresh(operator)

    log.info(f"Operator {operator.id} created")
    return OperatorOut.model_validate(operator)


@app.put(
    "/api/operators/{operator_id}",
    response_model=OperatorOut,
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)
def update_operator(operator_id: int, payload: OperatorUpdate, db: Session = Depends(get_db)):
    operator = get_operator_or_404(db, operator_id)
    updates = payload.model_dump(exclude_unset=True)

    # location_id saa olla null (operaattori ilman toimipistettä), muut kentät eivät
    updates = {k: v for k, v in updates.items() if v is not None or k == "location_id"}
    check_location_exists(db, updates.get("location_id"))

    for field, value in updates.items():
        setattr(operator, field, value)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e.orig))
    db.refresh(operator)

    log.info(f"Operator {operator_id} updated")
    return OperatorOut.model_validate(operator)


@app.delete("/api/operators/{operator_id}", tags=["admin"], dependencies=[Depends(require_admin)])
def delete_operator(operator_id: int, db: Session = Depends(get_db)) -> dict:
    operator = get_operator_or_404(db, operator_id)
    db.delete(operator)
    db.commit()

    log.info(f"Operator {operator_id} deleted")
    return {"status": "deleted", "id": operator_id}


@app.get("/api/rack-prices", response_model=List[RackPriceOut], tags=["admin"])
def list_rack_prices(
    on_date: Optional[date] = Query(None, alias="date", description="Päivä muodossa YYYY-MM-DD"),
    db: Session = Depends(get_db),
):
    """Annetun päivän hinnat, muuten 20 viimeisintä päivämäärän mukaan."""
    query = db.query(RackPrice)
    if on_date is not None:
        query = query.filter(RackPrice.date == on_date).order_by(RackPrice.id)
    else:
        query = query.order_by(RackPrice.date.desc(), RackPrice.id.desc()).limit(20)
    return [RackPriceOut.model_validate(rp) for rp in query.all()]


@app.get("/api/email-logs", response_model=List[EmailLogOut], tags=["admin"])
def list_email_logs(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    rows = db.query(EmailLog).order_by(EmailLog.sent_at.desc(), EmailLog.id.desc()).limit(limit).all()
    names = operator_names(db)
    return [to_email_log_out(r, names) for r in rows]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host=settings.API_HOST, port=settings.API_PORT)
