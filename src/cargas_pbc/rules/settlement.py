"""Load-level money: quote → load record fields, and billing gross profit."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .freight_engine import PriceQuote, _money


@dataclass(frozen=True)
class LoadPricing:
    company_value: Decimal
    final_value: Decimal
    toll: Decimal
    ad_valorem: Decimal
    icms: bool


@dataclass(frozen=True)
class Settlement:
    company_value: Decimal
    driver_value: Decimal
    toll: Decimal
    ad_valorem: Decimal
    gross_profit: Decimal
    margin_percent: Optional[Decimal]


def quote_to_load_fields(quote: PriceQuote) -> LoadPricing:
    """Rounded values a quote contributes to a load record."""

    total = _money(quote.total)
    return LoadPricing(
        company_value=total,
        final_value=total,
        toll=_money(quote.toll),
        ad_valorem=_money(quote.ad_valorem_value),
        icms=quote.icms_value > 0,
    )


def gross_profit(
    company_value: Decimal | int | float | str,
    driver_value: Decimal | int | float | str,
    toll: Decimal | int | float | str = 0,
    ad_valorem: Decimal | int | float | str = 0,
) -> Decimal:
    """What the company keeps after paying the driver, tolls and ad valorem."""

    return _money(
        Decimal(str(company_value))
        - Decimal(str(driver_value))
        - Decimal(str(toll))
        - Decimal(str(ad_valorem))
    )


def settle_load(
    company_value: Decimal | int | float | str,
    driver_value: Decimal | int | float | str,
    toll: Decimal | int | float | str = 0,
    ad_valorem: Decimal | int | float | str = 0,
) -> Settlement:
    company = _money(company_value)
    profit = gross_profit(company_value, driver_value, toll, ad_valorem)
    margin = _money(profit / company * 100) if company != 0 else None
    return Settlement(
        company_value=company,
        driver_value=_money(driver_value),
        toll=_money(toll),
        ad_valorem=_money(ad_valorem),
        gross_profit=profit,
        margin_percent=margin,
    )
