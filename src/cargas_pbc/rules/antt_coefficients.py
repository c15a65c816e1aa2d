"""ANTT minimum-freight coefficient table.

The ANTT floor price for a trip is

    floor = CCD × distance_km + CC

where CCD is the displacement cost (R$/km) and CC the fixed loading and
unloading cost (R$). Both depend on the cargo class and the number of axles
of the vehicle combination.

The values below are the simplified table used by the Cargas PBC calculator,
not the full official ANTT resolution. Replace them here when the regulated
table is adopted.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Tuple, Union


class CargoClass(Enum):
    GENERAL = "general"
    BULK = "bulk"
    FRIGO = "frigo"
    DANGEROUS = "dangerous"

    @classmethod
    def parse(cls, value: Union["CargoClass", str]) -> "CargoClass":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"unknown cargo class: {value!r}") from None


class VehicleClass(Enum):
    """Vehicle combination keyed by total axle count."""

    TOCO = "2"
    TRUCK = "3"
    BITRUCK = "4"
    CARRETA_2_EIXOS = "5"
    CARRETA_3_EIXOS = "6"
    BITREM = "7"
    RODOTREM = "9"

    @property
    def axles(self) -> int:
        return int(self.value)

    @classmethod
    def parse(cls, value: Union["VehicleClass", str, int]) -> "VehicleClass":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            raise ValueError(f"unknown vehicle class: {value!r}") from None


@dataclass(frozen=True)
class AnttCoefficient:
    ccd: Decimal  # R$ per km
    cc: Decimal   # R$ per trip

    def floor_price(self, distance_km: Decimal) -> Decimal:
        return self.ccd * distance_km + self.cc


def _row(*pairs: Tuple[str, str]) -> Mapping[VehicleClass, AnttCoefficient]:
    return MappingProxyType(
        {
            vehicle: AnttCoefficient(ccd=Decimal(ccd), cc=Decimal(cc))
            for vehicle, (ccd, cc) in zip(VehicleClass, pairs)
        }
    )


# Column order follows VehicleClass declaration: 2, 3, 4, 5, 6, 7, 9 axles.
ANTT_COEFFICIENTS: Mapping[CargoClass, Mapping[VehicleClass, AnttCoefficient]] = MappingProxyType(
    {
        CargoClass.GENERAL: _row(
            ("3.50", "280.00"), ("4.20", "350.00"), ("5.10", "420.00"), ("5.80", "500.00"),
            ("6.50", "580.00"), ("7.20", "650.00"), ("8.50", "750.00"),
        ),
        CargoClass.BULK: _row(
            ("3.60", "290.00"), ("4.40", "360.00"), ("5.30", "430.00"), ("6.00", "510.00"),
            ("6.80", "600.00"), ("7.50", "680.00"), ("8.80", "780.00"),
        ),
        CargoClass.FRIGO: _row(
            ("4.10", "320.00"), ("4.90", "400.00"), ("5.90", "480.00"), ("6.80", "560.00"),
            ("7.60", "650.00"), ("8.40", "720.00"), ("9.80", "850.00"),
        ),
        CargoClass.DANGEROUS: _row(
            ("4.50", "350.00"), ("5.40", "450.00"), ("6.50", "520.00"), ("7.40", "600.00"),
            ("8.30", "700.00"), ("9.20", "800.00"), ("10.50", "950.00"),
        ),
    }
)


def get_coefficient(
    cargo_class: Union[CargoClass, str],
    vehicle_class: Union[VehicleClass, str, int],
) -> AnttCoefficient:
    """Look up the (CCD, CC) pair for a cargo/vehicle combination."""

    return ANTT_COEFFICIENTS[CargoClass.parse(cargo_class)][VehicleClass.parse(vehicle_class)]
