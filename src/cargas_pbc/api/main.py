from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from ..db import SessionLocal, init_db
from ..rules.antt_coefficients import ANTT_COEFFICIENTS
from ..rules.freight_engine import FreightEngine
from ..settings import settings
from .routes import (
    QuoteRequest,
    build_freight_input,
    get_freight_engine,
    price,
    quote_payload,
    router as loads_router,
)

# ---------------- Logging ----------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("cargas-pbc-api")

API_VERSION = "1.0.0"

# ---------- App ----------
app = FastAPI(
    title="Cargas PBC Freight Pricing",
    version=API_VERSION,
    description="ANTT minimum freight, ICMS gross-up and margin composition for road loads",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.include_router(loads_router)

# ----- CORS -----
allow_origins: List[str] = [o.strip() for o in settings.allow_origins.split(",") if o.strip()] or ["*"]
allow_all = (len(allow_origins) == 1 and allow_origins[0] == "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    # Browsers disallow credentials with "*"; use regex echo when fully open.
    allow_credentials=not allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=".*" if allow_all else None,
)


# ----- Startup -----
@app.on_event("startup")
def _startup():
    """Create tables on startup; pricing endpoints work even if the DB is down."""
    try:
        init_db()
        logger.info("Startup complete, DB initialized.")
    except Exception:
        logger.exception("DB init failed during startup; continuing without blocking app.")

    if settings.icms_rates_path:
        logger.info("ICMS rates registry → %s", settings.icms_rates_path)
    else:
        logger.info("ICMS rates registry → built-in table")


@app.get("/health", tags=["System"])
def health() -> Dict[str, Any]:
    db_ok = True
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1")).scalar()
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        db_ok = False
    return {
        "ok": True,
        "version": API_VERSION,
        "db_ok": db_ok,
        "icms_registry": settings.icms_rates_path or "built-in",
    }


# ----- Reference tables -----
@app.get("/antt/coefficients", tags=["Pricing"])
def antt_coefficients() -> Dict[str, Dict[str, Dict[str, str]]]:
    return {
        cargo.value: {
            vehicle.value: {"ccd": str(coef.ccd), "cc": str(coef.cc)}
            for vehicle, coef in row.items()
        }
        for cargo, row in ANTT_COEFFICIENTS.items()
    }


@app.get("/icms/rate", tags=["Pricing"])
def icms_rate(
    origin: str = Query(..., description='Origin as "City, UF"'),
    destination: str = Query(..., description='Destination as "City, UF"'),
    engine: FreightEngine = Depends(get_freight_engine),
) -> Dict[str, Any]:
    res = engine.resolve(origin, destination)
    return {
        "origin": origin,
        "destination": destination,
        "origin_state": res.origin_state,
        "destination_state": res.destination_state,
        "rate": str(res.rate),
        "resolved": res.resolved,
    }


# ----- Quotes -----
@app.post("/freight/quote", tags=["Pricing"])
def freight_quote(
    request: QuoteRequest,
    engine: FreightEngine = Depends(get_freight_engine),
) -> Dict[str, Any]:
    """
    Compute a freight quote. When the distance is missing or not positive the
    response carries ``computed: false`` and no quote, so the caller can
    prompt for it instead of handling an error.
    """
    return quote_payload(price(engine, build_freight_input(request)))
