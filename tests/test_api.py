from __future__ import annotations

import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cargas_pbc.api import main as api_main
from cargas_pbc.api.routes import get_db, get_freight_engine
from cargas_pbc.models import Base, Load
from cargas_pbc.rules.freight_engine import FreightEngine
from cargas_pbc.settings import settings


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def client(session_factory, monkeypatch):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    monkeypatch.setattr(api_main, "SessionLocal", session_factory)
    monkeypatch.setattr(settings, "icms_rates_path", None)
    monkeypatch.delenv("ICMS_RATES_PATH", raising=False)
    api_main.app.dependency_overrides[get_db] = _get_db
    yield TestClient(api_main.app)
    api_main.app.dependency_overrides.clear()


QUOTE_BODY = {
    "distance_km": 500,
    "cargo_class": "general",
    "vehicle_class": "6",
    "profit_margin_percent": 20,
    "origin": "São Paulo, SP",
    "destination": "Rio de Janeiro, RJ",
}


def test_health_reports_db(client):
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["db_ok"] is True
    assert payload["icms_registry"] == "built-in"


def test_coefficients_endpoint(client):
    payload = client.get("/antt/coefficients").json()
    assert payload["general"]["6"] == {"ccd": "6.50", "cc": "580.00"}
    assert set(payload) == {"general", "bulk", "frigo", "dangerous"}


def test_icms_rate_endpoint(client):
    response = client.get(
        "/icms/rate", params={"origin": "São Paulo, SP", "destination": "Rio de Janeiro, RJ"}
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["rate"] == "12"
    assert payload["resolved"] is True
    assert payload["origin_state"] == "SP"


def test_icms_rate_endpoint_flags_unresolved_route(client):
    payload = client.get(
        "/icms/rate", params={"origin": "Unknown Place", "destination": "Also Unknown"}
    ).json()
    assert payload["rate"] == "0"
    assert payload["resolved"] is False


def test_quote_endpoint(client):
    response = client.post("/freight/quote", json=QUOTE_BODY)
    assert response.status_code == 200
    payload = response.json()
    assert payload["computed"] is True
    assert payload["warnings"] == []
    quote = payload["quote"]
    assert quote["floor"] == "3830.00"
    assert quote["icms_value"] == "522.27"
    assert quote["profit"] == "766.00"
    assert quote["total"] == "5118.27"


def test_quote_endpoint_applies_settings_defaults(client):
    body = {"distance_km": 500, "origin": "São Paulo, SP", "destination": "Rio de Janeiro, RJ"}
    quote = client.post("/freight/quote", json=body).json()["quote"]
    assert quote["cargo_class"] == "general"
    assert quote["vehicle_class"] == "6"
    assert quote["total"] == "5118.27"


@pytest.mark.parametrize("distance", [0, -20, None])
def test_quote_endpoint_without_usable_distance(client, distance):
    body = dict(QUOTE_BODY, distance_km=distance)
    response = client.post("/freight/quote", json=body)
    assert response.status_code == 200
    payload = response.json()
    assert payload["computed"] is False
    assert payload["quote"] is None


def test_quote_endpoint_warns_on_unresolved_route(client):
    body = dict(QUOTE_BODY, destination="Rio de Janeiro")
    payload = client.post("/freight/quote", json=body).json()
    assert payload["computed"] is True
    assert payload["quote"]["icms_value"] == "0.00"
    assert payload["warnings"]


def test_quote_endpoint_rejects_negative_toll(client):
    response = client.post("/freight/quote", json=dict(QUOTE_BODY, toll_cost=-5))
    assert response.status_code == 422


def test_quote_endpoint_rejects_unknown_vehicle_class(client):
    response = client.post("/freight/quote", json=dict(QUOTE_BODY, vehicle_class="8"))
    assert response.status_code == 422
    assert "vehicle class" in response.json()["detail"]


def test_quote_endpoint_reports_broken_rate_table(client):
    api_main.app.dependency_overrides[get_freight_engine] = lambda: FreightEngine(
        rates={"SP": {"RJ": Decimal("100")}}
    )
    response = client.post("/freight/quote", json=QUOTE_BODY)
    assert response.status_code == 500


def test_quote_endpoint_uses_configured_registry(client, tmp_path, monkeypatch):
    path = tmp_path / "icms.json"
    path.write_text(json.dumps({"SP": {"RJ": 4}}))
    monkeypatch.setattr(settings, "icms_rates_path", str(path))

    quote = client.post("/freight/quote", json=QUOTE_BODY).json()["quote"]
    assert quote["icms_rate"] == "4"


def _create_load(client, /, **overrides):
    body = {
        "client": "Agro Paraná Ltda",
        "origin": "São Paulo, SP",
        "destinations": ["Campinas, SP", "Rio de Janeiro, RJ"],
        "vehicle_type": "6",
        "cargo_type": "general",
        "driver_value": "3500",
    }
    body.update(overrides)
    response = client.post("/loads", json=body)
    assert response.status_code == 201
    return response.json()


def test_create_and_get_load(client):
    first = _create_load(client)
    second = _create_load(client, client="Frigorífico Sul")

    assert first["numeric_id"] == 1
    assert second["numeric_id"] == 2
    assert first["status"] == "Pendente"

    fetched = client.get("/loads/2").json()
    assert fetched["client"] == "Frigorífico Sul"
    assert fetched["destinations"] == ["Campinas, SP", "Rio de Janeiro, RJ"]


def test_get_missing_load_is_404(client):
    assert client.get("/loads/999").status_code == 404


def test_quote_load_stores_price_and_settles(client):
    _create_load(client)

    response = client.post("/loads/1/quote", json={"distance_km": 500, "profit_margin_percent": 20})
    assert response.status_code == 200
    payload = response.json()
    # Route runs to the last destination (RJ, 12%)
    assert payload["quote"]["icms_rate"] == "12"
    assert payload["quote"]["total"] == "5118.27"

    load = payload["load"]
    assert Decimal(load["company_value"]) == Decimal("5118.27")
    assert Decimal(load["final_value"]) == Decimal("5118.27")
    assert Decimal(load["toll"]) == Decimal("0")
    assert load["icms"] is True

    settlement = client.get("/loads/1/settlement").json()
    assert Decimal(settlement["gross_profit"]) == Decimal("1618.27")
    assert Decimal(settlement["margin_percent"]) == Decimal("31.62")


def test_quote_load_without_distance_leaves_load_untouched(client):
    _create_load(client)

    payload = client.post("/loads/1/quote", json={}).json()

    assert payload["computed"] is False
    assert Decimal(payload["load"]["final_value"]) == Decimal("0")


def test_quote_endpoint_accepts_numeric_axle_count(client):
    response = client.post("/freight/quote", json=dict(QUOTE_BODY, vehicle_class=6))
    assert response.status_code == 200
    quote = response.json()["quote"]
    assert quote["vehicle_class"] == "6"
    assert quote["total"] == "5118.27"


@pytest.mark.parametrize("distance", ["1e26", "1e999999", 100001])
def test_quote_endpoint_rejects_absurd_distance(client, distance):
    response = client.post("/freight/quote", json=dict(QUOTE_BODY, distance_km=distance))
    assert response.status_code == 422


def test_quote_endpoint_rejects_oversized_invoice(client):
    response = client.post("/freight/quote", json=dict(QUOTE_BODY, invoice_value="1e20"))
    assert response.status_code == 422
    assert "invoice_value" in response.json()["detail"]


def test_create_load_with_numeric_vehicle_type(client):
    load = _create_load(client, vehicle_type=9)
    assert load["vehicle_type"] == "9"

    quote = client.post("/loads/1/quote", json={"distance_km": 100}).json()["quote"]
    assert quote["vehicle_class"] == "9"


def _stale_numbering(monkeypatch, times):
    """Make the next ``times`` numbering queries see an empty table, as a racing request would."""
    original_execute = Session.execute
    remaining = {"n": times}

    def execute(self, statement, *args, **kwargs):
        if remaining["n"] and "max" in str(statement).lower():
            remaining["n"] -= 1
            statement = select(func.max(Load.numeric_id)).where(Load.numeric_id < 0)
        return original_execute(self, statement, *args, **kwargs)

    monkeypatch.setattr(Session, "execute", execute)


def test_create_load_retries_when_number_is_taken(client, monkeypatch):
    _create_load(client)
    _stale_numbering(monkeypatch, times=1)

    second = _create_load(client, client="Frigorífico Sul")

    assert second["numeric_id"] == 2
    assert client.get("/loads/1").json()["client"] == "Agro Paraná Ltda"


def test_create_load_gives_up_after_repeated_collisions(client, monkeypatch):
    _create_load(client)
    _stale_numbering(monkeypatch, times=10)

    response = client.post("/loads", json={"client": "X", "origin": "Maringá, PR"})

    assert response.status_code == 409
