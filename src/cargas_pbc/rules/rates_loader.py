"""ICMS rate registry loader."""
from __future__ import annotations

import json
import logging
import os
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping

from .icms_rates import ICMS_RATES, IcmsMatrix

logger = logging.getLogger(__name__)

__all__ = [
    "InvalidRateError",
    "MAX_ICMS_RATE",
    "active_icms_rates",
    "load_icms_rates",
]

# Gross-up divides by (1 - rate/100); anything at or above 100% is unusable.
MAX_ICMS_RATE = Decimal("100")


class InvalidRateError(ValueError):
    """Raised when a registry entry is not a usable ICMS rate."""

    def __init__(self, field_path: str, reason: str):
        super().__init__(field_path, reason)
        self.field_path = field_path
        self.reason = reason

    def __str__(self) -> str:  # pragma: no cover - tuple repr of ValueError is noisy
        return f"invalid ICMS rate at {self.field_path}: {self.reason}"


def _resolve_registry_path(path: str | os.PathLike[str] | None) -> Path | None:
    if path is not None:
        return Path(path)
    override = os.getenv("ICMS_RATES_PATH")
    if override:
        return Path(override)
    return None


def _to_rate(field_path: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidRateError(field_path, "expected a number")
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidRateError(field_path, f"not a number: {value!r}") from None
    if not rate.is_finite():
        raise InvalidRateError(field_path, f"not a finite number: {value!r}")
    if rate < 0:
        raise InvalidRateError(field_path, f"negative rate {rate}")
    if rate >= MAX_ICMS_RATE:
        raise InvalidRateError(field_path, f"rate {rate} must be below {MAX_ICMS_RATE}")
    return rate


def _normalise_state(field_path: str, code: Any) -> str:
    state = str(code).strip().upper()
    if len(state) != 2 or not state.isalpha():
        raise InvalidRateError(field_path, f"bad state code {code!r}")
    return state


def _normalise_registry(data: Mapping[str, Any]) -> IcmsMatrix:
    matrix: Dict[str, Mapping[str, Decimal]] = {}
    for raw_origin, row in data.items():
        origin = _normalise_state(str(raw_origin), raw_origin)
        if not isinstance(row, Mapping):
            raise InvalidRateError(origin, "expected a mapping of destination rates")
        destinations: Dict[str, Decimal] = {}
        for raw_dest, value in row.items():
            path = f"{origin}.{raw_dest}"
            destinations[_normalise_state(path, raw_dest)] = _to_rate(path, value)
        matrix[origin] = MappingProxyType(destinations)
    return MappingProxyType(matrix)


@lru_cache(maxsize=None)
def _load_registry(path_str: str) -> IcmsMatrix:
    path = Path(path_str)
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, Mapping):
        raise ValueError("ICMS registry must be a mapping of origin state to destination rates")
    matrix = _normalise_registry(data)
    logger.info("Loaded ICMS registry from %s (%d origin states)", path, len(matrix))
    return matrix


def load_icms_rates(path: str | os.PathLike[str]) -> IcmsMatrix:
    """Parse and validate an ICMS registry file."""

    return _load_registry(str(Path(path)))


def active_icms_rates(
    *,
    registry_path: str | os.PathLike[str] | None = None,
) -> IcmsMatrix:
    """Return the ICMS matrix in effect: an explicit/env registry, else the built-in table."""

    path = _resolve_registry_path(registry_path)
    if path is None:
        return ICMS_RATES
    return load_icms_rates(path)
