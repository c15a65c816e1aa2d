"""Interstate ICMS rates for road freight.

Simplified CONFAZ rules (Res. SF 22/89), without special regimes:

  - internal operations (origin == destination) use the state's internal rate;
  - origins in the South/Southeast (plus ES) charge 12% into the
    South/Southeast block and 7% everywhere else;
  - every other origin charges 7% into the South/Southeast block and 12%
    everywhere else.

The South/Southeast block here is MG, PR, RJ, RS, SC and SP (ES is not part
of it as a *destination*).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

__all__ = [
    "ICMS_RATES",
    "IcmsResolution",
    "STATE_CODES",
    "extract_state",
    "resolve_rate",
    "resolve_route",
]

IcmsMatrix = Mapping[str, Mapping[str, Decimal]]

INTERNAL_RATES: Mapping[str, Decimal] = MappingProxyType(
    {
        "AC": Decimal("17"),
        "AL": Decimal("19"),
        "AM": Decimal("20"),
        "AP": Decimal("18"),
        "BA": Decimal("19"),
        "CE": Decimal("20"),
        "DF": Decimal("18"),
        "ES": Decimal("17"),
        "GO": Decimal("17"),
        "MA": Decimal("20"),
        "MG": Decimal("18"),
        "MS": Decimal("17"),
        "MT": Decimal("17"),
        "PA": Decimal("19"),
        "PB": Decimal("18"),
        "PE": Decimal("20.5"),
        "PI": Decimal("21"),
        "PR": Decimal("19"),
        "RJ": Decimal("20"),
        "RN": Decimal("20"),
        "RO": Decimal("17.5"),
        "RR": Decimal("20"),
        "RS": Decimal("17"),
        "SC": Decimal("17"),
        "SE": Decimal("19"),
        "SP": Decimal("18"),
        "TO": Decimal("20"),
    }
)

STATE_CODES = frozenset(INTERNAL_RATES)

_SOUTH_SOUTHEAST = frozenset({"MG", "PR", "RJ", "RS", "SC", "SP"})
_SOUTH_SOUTHEAST_ORIGINS = _SOUTH_SOUTHEAST | {"ES"}

_RATE_LOW = Decimal("7")
_RATE_HIGH = Decimal("12")


def _interstate_rate(origin: str, destination: str) -> Decimal:
    into_block = destination in _SOUTH_SOUTHEAST
    if origin in _SOUTH_SOUTHEAST_ORIGINS:
        return _RATE_HIGH if into_block else _RATE_LOW
    return _RATE_LOW if into_block else _RATE_HIGH


def _build_matrix() -> IcmsMatrix:
    matrix = {}
    for origin in sorted(STATE_CODES):
        row = {}
        for destination in sorted(STATE_CODES):
            if origin == destination:
                row[destination] = INTERNAL_RATES[origin]
            else:
                row[destination] = _interstate_rate(origin, destination)
        matrix[origin] = MappingProxyType(row)
    return MappingProxyType(matrix)


# origin UF -> destination UF -> rate in percent
ICMS_RATES: IcmsMatrix = _build_matrix()


@dataclass(frozen=True)
class IcmsResolution:
    rate: Decimal
    origin_state: Optional[str]
    destination_state: Optional[str]
    resolved: bool


def extract_state(endpoint: Optional[str]) -> Optional[str]:
    """Return the UF token of a ``"City, UF"`` string.

    The token is whatever follows the last comma (the whole text when there is
    no comma), trimmed and upper-cased. Empty tokens yield ``None``.
    """

    if not endpoint:
        return None
    token = endpoint.rsplit(",", 1)[-1].strip().upper()
    return token or None


def resolve_route(
    origin: Optional[str],
    destination: Optional[str],
    *,
    rates: Optional[IcmsMatrix] = None,
) -> IcmsResolution:
    """Resolve the ICMS rate for a route, reporting whether a table entry was found.

    Unknown or malformed endpoints fall back to a zero rate with
    ``resolved=False``; no exception is raised.
    """

    table = ICMS_RATES if rates is None else rates
    origin_state = extract_state(origin)
    destination_state = extract_state(destination)

    rate: Optional[Decimal] = None
    if origin_state and destination_state:
        origin_rates = table.get(origin_state)
        if origin_rates is not None:
            rate = origin_rates.get(destination_state)

    if rate is None:
        logger.warning(
            "ICMS rate unresolved for route %r -> %r (states %s -> %s); using 0",
            origin,
            destination,
            origin_state,
            destination_state,
        )
        return IcmsResolution(Decimal("0"), origin_state, destination_state, False)

    return IcmsResolution(Decimal(rate), origin_state, destination_state, True)


def resolve_rate(
    origin: Optional[str],
    destination: Optional[str],
    *,
    rates: Optional[IcmsMatrix] = None,
) -> Decimal:
    """ICMS rate in percent for ``origin`` -> ``destination`` (0 when unresolved)."""

    return resolve_route(origin, destination, rates=rates).rate
