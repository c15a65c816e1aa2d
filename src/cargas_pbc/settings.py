from __future__ import annotations
import logging
from decimal import Decimal
from pydantic_settings import BaseSettings
from pydantic import Field
from urllib.parse import quote_plus

logger = logging.getLogger("cargas-pbc-api")

class Settings(BaseSettings):
    # Prefer a full DATABASE_URL; or supply PG* parts and we'll build it.
    # Without either, a local SQLite file is used.
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    pg_host: str | None = Field(default=None, alias="PGHOST")
    pg_port: int = Field(default=5432, alias="PGPORT")
    pg_user: str | None = Field(default=None, alias="PGUSER")
    pg_password: str | None = Field(default=None, alias="PGPASSWORD")
    pg_db: str | None = Field(default=None, alias="PGDATABASE")

    # Optional JSON registry replacing the built-in ICMS matrix.
    icms_rates_path: str | None = Field(default=None, alias="ICMS_RATES_PATH")

    # Calculator form defaults
    default_cargo_class: str = Field(default="general", alias="DEFAULT_CARGO_CLASS")
    default_vehicle_class: str = Field(default="6", alias="DEFAULT_VEHICLE_CLASS")
    default_profit_margin: Decimal = Field(default=Decimal("20"), alias="DEFAULT_PROFIT_MARGIN")

    allow_origins: str = Field(default="*", alias="ALLOW_ORIGINS")

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url

        if self.pg_host and self.pg_user and self.pg_password and self.pg_db:
            logger.info("DB config source → PG* environment variables (host=%s db=%s)", self.pg_host, self.pg_db)
            return (
                f"postgresql+psycopg://{quote_plus(self.pg_user)}:{quote_plus(self.pg_password)}"
                f"@{self.pg_host}:{self.pg_port}/{self.pg_db}?sslmode=require"
            )

        return "sqlite:///./cargas_pbc.db"

settings = Settings()
