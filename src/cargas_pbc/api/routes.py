# src/cargas_pbc/api/routes.py
"""
Load endpoints: create/read loads, price them, and settle them for billing.

Notes:
- Loads are addressed by their sequential ``numeric_id`` (the "Carga #N" shown to users).
- Quoting a load fills any missing route/vehicle parameter from the load itself;
  the ICMS route runs from the origin to the *last* destination.
"""

from __future__ import annotations

import logging
import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import SessionLocal
from ..models import Load, LoadStatus
from ..rules.freight_engine import (
    MAX_DISTANCE_KM,
    FreightEngine,
    FreightInput,
    IcmsRateError,
    PriceQuote,
)
from ..rules.rates_loader import active_icms_rates
from ..rules.settlement import quote_to_load_fields, settle_load
from ..settings import settings

logger = logging.getLogger("cargas-pbc-api")

router = APIRouter(prefix="/loads", tags=["Loads"])

# Concurrent creates can race for the next numeric_id
CREATE_LOAD_ATTEMPTS = 3

# ============ Pydantic Models ============

class QuoteRequest(BaseModel):
    distance_km: Optional[Decimal] = Field(
        None, le=MAX_DISTANCE_KM, example=500, description="Route distance; <= 0 or missing yields no quote"
    )
    cargo_class: Optional[str] = Field(None, example="general")
    vehicle_class: Optional[Union[int, str]] = Field(None, example=6, description="Axle count: 2, 3, 4, 5, 6, 7 or 9")
    toll_cost: Decimal = Field(Decimal("0"), ge=0, example="0")
    collection_fee: Decimal = Field(Decimal("0"), ge=0, example="0")
    invoice_value: Decimal = Field(Decimal("0"), ge=0, example="0")
    ad_valorem_rate_percent: Decimal = Field(Decimal("0"), ge=0, example="0")
    profit_margin_percent: Optional[Decimal] = Field(None, ge=0, example="20")
    origin: Optional[str] = Field(None, example="São Paulo, SP")
    destination: Optional[str] = Field(None, example="Rio de Janeiro, RJ")


class LoadIn(BaseModel):
    date: Optional[dt.date] = None
    client: str = Field(..., example="Agro Paraná Ltda")
    origin: str = Field(..., example="Maringá, PR")
    destinations: List[str] = Field(default_factory=list, example=["Santos, SP"])
    vehicle_type: Optional[Union[int, str]] = Field(None, example=6)
    cargo_type: Optional[str] = Field(None, example="bulk")
    weight: Decimal = Field(Decimal("0"), ge=0)
    driver_value: Decimal = Field(Decimal("0"), ge=0)
    pis_cofins: bool = True
    observation: Optional[str] = None


# ============ Database Dependency ============

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ============ Helpers ============

def get_freight_engine() -> FreightEngine:
    return FreightEngine(active_icms_rates(registry_path=settings.icms_rates_path))


def build_freight_input(req: QuoteRequest, load: Optional[Load] = None) -> FreightInput:
    origin = req.origin
    destination = req.destination
    cargo = req.cargo_class
    vehicle = req.vehicle_class
    if load is not None:
        origin = origin or load.origin
        destination = destination or (load.destinations[-1] if load.destinations else None)
        cargo = cargo or load.cargo_type
        vehicle = vehicle or load.vehicle_type

    margin = req.profit_margin_percent
    return FreightInput(
        distance_km=req.distance_km,
        cargo_class=cargo or settings.default_cargo_class,
        vehicle_class=vehicle or settings.default_vehicle_class,
        toll_cost=req.toll_cost,
        collection_fee=req.collection_fee,
        invoice_value=req.invoice_value,
        ad_valorem_rate_percent=req.ad_valorem_rate_percent,
        profit_margin_percent=settings.default_profit_margin if margin is None else margin,
        origin=origin or "",
        destination=destination or "",
    )


def price(engine: FreightEngine, freight: FreightInput) -> Optional[PriceQuote]:
    """Run the engine, mapping input errors to 422 and broken rate data to 500."""
    try:
        return engine.quote(freight)
    except IcmsRateError:
        logger.exception("ICMS rate table produced an unusable rate")
        raise HTTPException(status_code=500, detail="ICMS rate configuration error")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


def quote_payload(quote: Optional[PriceQuote]) -> Dict[str, Any]:
    if quote is None:
        return {
            "computed": False,
            "quote": None,
            "warnings": ["distance_km must be a positive number to compute a quote"],
        }
    warnings: List[str] = []
    if not quote.icms_resolved:
        warnings.append("ICMS rate could not be resolved from the route; priced with 0% ICMS")
    return {"computed": True, "quote": quote.as_dict(), "warnings": warnings}


def _load_out(load: Load) -> Dict[str, Any]:
    return {
        "numeric_id": load.numeric_id,
        "date": load.date.isoformat() if load.date else None,
        "client": load.client,
        "origin": load.origin,
        "destinations": list(load.destinations or []),
        "vehicle_type": load.vehicle_type,
        "cargo_type": load.cargo_type,
        "weight": str(load.weight),
        "company_value": str(load.company_value),
        "driver_value": str(load.driver_value),
        "final_value": str(load.final_value),
        "toll": str(load.toll),
        "ad_valorem": str(load.ad_valorem),
        "icms": load.icms,
        "pis_cofins": load.pis_cofins,
        "status": load.status.value,
        "observation": load.observation,
    }


def _get_load(db: Session, numeric_id: int) -> Load:
    load = db.execute(select(Load).where(Load.numeric_id == numeric_id)).scalar_one_or_none()
    if load is None:
        raise HTTPException(status_code=404, detail=f"Load {numeric_id} not found")
    return load


# ============ Loads ============

@router.post("", status_code=201)
def create_load(payload: LoadIn, db: Session = Depends(get_db)) -> Dict[str, Any]:
    vehicle_type = None if payload.vehicle_type is None else str(payload.vehicle_type)
    for attempt in range(1, CREATE_LOAD_ATTEMPTS + 1):
        last = db.execute(select(func.max(Load.numeric_id))).scalar()
        load = Load(
            numeric_id=(last or 0) + 1,
            date=payload.date or dt.date.today(),
            client=payload.client,
            origin=payload.origin,
            destinations=list(payload.destinations),
            vehicle_type=vehicle_type,
            cargo_type=payload.cargo_type,
            weight=payload.weight,
            driver_value=payload.driver_value,
            pis_cofins=payload.pis_cofins,
            observation=payload.observation,
            status=LoadStatus.PENDING,
        )
        db.add(load)
        try:
            db.commit()
            break
        except IntegrityError:
            db.rollback()
            logger.warning("Load number %s taken (attempt %s), retrying", load.numeric_id, attempt)
    else:
        raise HTTPException(status_code=409, detail="Could not allocate a load number, try again")
    db.refresh(load)
    logger.info("Created load #%s for %s", load.numeric_id, load.client)
    return _load_out(load)


@router.get("/{numeric_id}")
def get_load(numeric_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return _load_out(_get_load(db, numeric_id))


@router.post("/{numeric_id}/quote")
def quote_load(
    numeric_id: int,
    request: QuoteRequest,
    db: Session = Depends(get_db),
    engine: FreightEngine = Depends(get_freight_engine),
) -> Dict[str, Any]:
    """
    Price a load and store the result on it (company/final value, toll,
    ad valorem, ICMS flag). Nothing is written when no quote is produced.
    """
    load = _get_load(db, numeric_id)
    quote = price(engine, build_freight_input(request, load))
    payload = quote_payload(quote)

    if quote is not None:
        fields = quote_to_load_fields(quote)
        load.company_value = fields.company_value
        load.final_value = fields.final_value
        load.toll = fields.toll
        load.ad_valorem = fields.ad_valorem
        load.icms = fields.icms
        load.vehicle_type = quote.vehicle_class.value
        load.cargo_type = quote.cargo_class.value
        db.commit()
        db.refresh(load)
        logger.info("Load #%s priced at %s", load.numeric_id, fields.final_value)

    payload["load"] = _load_out(load)
    return payload


@router.get("/{numeric_id}/settlement")
def load_settlement(numeric_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    load = _get_load(db, numeric_id)
    s = settle_load(load.company_value, load.driver_value, load.toll, load.ad_valorem)
    return {
        "numeric_id": load.numeric_id,
        "company_value": str(s.company_value),
        "driver_value": str(s.driver_value),
        "toll": str(s.toll),
        "ad_valorem": str(s.ad_valorem),
        "gross_profit": str(s.gross_profit),
        "margin_percent": str(s.margin_percent) if s.margin_percent is not None else None,
        "icms_included": load.icms,
    }
