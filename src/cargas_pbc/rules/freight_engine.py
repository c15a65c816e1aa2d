# src/cargas_pbc/rules/freight_engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any, Dict, Optional, Union

from .antt_coefficients import (
    ANTT_COEFFICIENTS,
    AnttCoefficient,
    CargoClass,
    VehicleClass,
)
from .icms_rates import IcmsMatrix, IcmsResolution, resolve_route
from .rates_loader import MAX_ICMS_RATE, active_icms_rates

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

# Longest trip the calculator prices; anything above is a typo, not a route.
MAX_DISTANCE_KM = Decimal("100000")
# Ceiling for money amounts and percentages entering a quote.
MAX_AMOUNT = Decimal("1e15")


# -------------------------------
# Helpers
# -------------------------------

def _money(x: Decimal | int | float | str) -> Decimal:
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    # Enough digits to hold every integer digit plus cents.
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, x.adjusted() + 3)
        return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _usable_distance(value: Optional[Number]) -> Optional[Decimal]:
    """Distance as Decimal, or None when it is missing, NaN, infinite or not positive.

    Raises ValueError above ``MAX_DISTANCE_KM``.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        distance = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not distance.is_finite() or distance <= 0:
        return None
    if distance > MAX_DISTANCE_KM:
        raise ValueError(f"distance_km must be at most {MAX_DISTANCE_KM}, got {value!r}")
    return distance


def _non_negative(name: str, value: Optional[Number]) -> Decimal:
    if value is None:
        return _ZERO
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"{name} must be finite, got {value!r}")
    if amount < 0:
        raise ValueError(f"{name} must be >= 0, got {amount}")
    if amount >= MAX_AMOUNT:
        raise ValueError(f"{name} must be below {MAX_AMOUNT}, got {amount}")
    return amount


class IcmsRateError(ValueError):
    """An ICMS rate of 100% or more reached the gross-up; the rate table is broken."""


# -------------------------------
# Data models
# -------------------------------

@dataclass(frozen=True)
class FreightInput:
    """Everything needed to price one trip.

    Percentages are whole numbers (``18`` means 18%). Route endpoints are free
    text in the ``"City, UF"`` form produced by the city autocomplete.
    """
    distance_km: Optional[Number]
    cargo_class: Union[CargoClass, str]
    vehicle_class: Union[VehicleClass, str, int]
    toll_cost: Number = 0
    collection_fee: Number = 0
    invoice_value: Number = 0
    ad_valorem_rate_percent: Number = 0
    profit_margin_percent: Number = 0
    origin: str = ""
    destination: str = ""


@dataclass(frozen=True)
class PriceQuote:
    """Composed freight price. Amounts keep full precision; ``as_dict`` rounds to cents."""
    distance_km: Decimal
    cargo_class: CargoClass
    vehicle_class: VehicleClass
    floor: Decimal
    toll: Decimal
    collection_fee: Decimal
    ad_valorem_value: Decimal
    base_for_icms: Decimal
    icms_rate: Decimal
    icms_value: Decimal
    icms_resolved: bool
    price_before_profit: Decimal
    profit: Decimal
    total: Decimal

    @property
    def price_per_km(self) -> Decimal:
        return self.total / self.distance_km

    def as_dict(self) -> Dict[str, Any]:
        return {
            "distance_km": str(self.distance_km),
            "cargo_class": self.cargo_class.value,
            "vehicle_class": self.vehicle_class.value,
            "floor": str(_money(self.floor)),
            "toll": str(_money(self.toll)),
            "collection_fee": str(_money(self.collection_fee)),
            "ad_valorem_value": str(_money(self.ad_valorem_value)),
            "base_for_icms": str(_money(self.base_for_icms)),
            "icms_rate": str(self.icms_rate),
            "icms_value": str(_money(self.icms_value)),
            "icms_resolved": self.icms_resolved,
            "price_before_profit": str(_money(self.price_before_profit)),
            "profit": str(_money(self.profit)),
            "total": str(_money(self.total)),
            "price_per_km": str(_money(self.price_per_km)),
        }


# -------------------------------
# Engine
# -------------------------------

def gross_up_icms(base: Decimal, rate: Decimal) -> Decimal:
    """ICMS "por dentro": the tax that makes ``rate`` percent of the taxed total.

    ``base / (1 - rate/100) - base``; zero for non-positive rates.
    """
    if rate >= MAX_ICMS_RATE:
        raise IcmsRateError(f"ICMS rate {rate}% cannot be grossed up (must be below {MAX_ICMS_RATE}%)")
    if rate <= 0:
        return _ZERO
    return base / (1 - rate / _HUNDRED) - base


class FreightEngine:
    """
    ANTT floor price + fees + ICMS + margin.

    The rate matrix defaults to whatever ``active_icms_rates()`` returns
    (built-in table or the ICMS_RATES_PATH registry).
    """

    COEFFICIENTS = ANTT_COEFFICIENTS

    def __init__(self, rates: Optional[IcmsMatrix] = None):
        self.rates: IcmsMatrix = rates if rates is not None else active_icms_rates()

    def coefficient(self, cargo_class: CargoClass, vehicle_class: VehicleClass) -> AnttCoefficient:
        return self.COEFFICIENTS[cargo_class][vehicle_class]

    def resolve(self, origin: str, destination: str) -> IcmsResolution:
        return resolve_route(origin, destination, rates=self.rates)

    def quote(self, freight: FreightInput) -> Optional[PriceQuote]:
        """Price a trip, or return None when the distance is not usable yet."""
        distance = _usable_distance(freight.distance_km)
        if distance is None:
            logger.debug("No quote: distance %r is not a positive number", freight.distance_km)
            return None

        cargo = CargoClass.parse(freight.cargo_class)
        vehicle = VehicleClass.parse(freight.vehicle_class)
        toll = _non_negative("toll_cost", freight.toll_cost)
        collection_fee = _non_negative("collection_fee", freight.collection_fee)
        invoice_value = _non_negative("invoice_value", freight.invoice_value)
        ad_valorem_rate = _non_negative("ad_valorem_rate_percent", freight.ad_valorem_rate_percent)
        margin = _non_negative("profit_margin_percent", freight.profit_margin_percent)

        # Order matters: ICMS is grossed up on a base that includes ad valorem but not profit.
        coef = self.coefficient(cargo, vehicle)
        floor = coef.floor_price(distance)
        ad_valorem_value = invoice_value * (ad_valorem_rate / _HUNDRED)
        base_for_icms = floor + toll + collection_fee + ad_valorem_value

        resolution = self.resolve(freight.origin, freight.destination)
        icms_value = gross_up_icms(base_for_icms, resolution.rate)
        price_before_profit = base_for_icms + icms_value

        # Margin applies to the regulated transport cost only.
        profit = floor * (margin / _HUNDRED)
        total = price_before_profit + profit

        logger.debug(
            "Quote %s/%s %skm: floor=%s icms=%s%% (%s) total=%s",
            cargo.value,
            vehicle.value,
            distance,
            floor,
            resolution.rate,
            "resolved" if resolution.resolved else "fallback",
            total,
        )

        return PriceQuote(
            distance_km=distance,
            cargo_class=cargo,
            vehicle_class=vehicle,
            floor=floor,
            toll=toll,
            collection_fee=collection_fee,
            ad_valorem_value=ad_valorem_value,
            base_for_icms=base_for_icms,
            icms_rate=resolution.rate,
            icms_value=icms_value,
            icms_resolved=resolution.resolved,
            price_before_profit=price_before_profit,
            profit=profit,
            total=total,
        )


def calculate(freight: FreightInput, *, rates: Optional[IcmsMatrix] = None) -> Optional[PriceQuote]:
    """Module-level shortcut for ``FreightEngine(rates).quote(freight)``."""
    return FreightEngine(rates).quote(freight)
