from __future__ import annotations
from typing import Optional
import datetime
import enum
from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import JSON, String, Boolean, Numeric, Date, Integer, Text, Enum

class Base(DeclarativeBase):
    pass


class LoadStatus(enum.Enum):
    PENDING = "Pendente"
    LOADING = "Carregando"
    IN_TRANSIT = "Em Trânsito"
    DELIVERED = "Entregue"
    DELAYED = "Atrasado"
    CANCELLED = "Cancelado"


class Load(Base):
    """
    Shipment record, limited to the fields pricing reads or writes:
      - origin / destinations: "City, UF" strings fed to the ICMS resolver
      - company_value / final_value / toll / ad_valorem / icms: written from a quote
      - driver_value: paid to the driver, used in the billing settlement
    """

    __tablename__ = "loads"

    id: Mapped[int] = mapped_column(primary_key=True)
    numeric_id: Mapped[int] = mapped_column(Integer, unique=True)
    date: Mapped[Optional[datetime.date]] = mapped_column(Date)
    client: Mapped[str] = mapped_column(String(200))
    origin: Mapped[str] = mapped_column(String(200))
    destinations: Mapped[list[str]] = mapped_column(JSON, default=list)
    vehicle_type: Mapped[Optional[str]] = mapped_column(String(24))  # axle count, e.g. "6"
    cargo_type: Mapped[Optional[str]] = mapped_column(String(24))
    weight: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    company_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    driver_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    final_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    toll: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    ad_valorem: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    icms: Mapped[bool] = mapped_column(Boolean, default=True)
    pis_cofins: Mapped[bool] = mapped_column(Boolean, default=True)

    status: Mapped[LoadStatus] = mapped_column(
        Enum(LoadStatus, values_callable=lambda e: [m.value for m in e]),
        default=LoadStatus.PENDING,
    )
    observation: Mapped[Optional[str]] = mapped_column(Text)
