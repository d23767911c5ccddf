from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/domabid.db",
        description="SQLAlchemy compatible database URL",
    )
    platform_fee_bps: int = Field(
        default=300,
        description="Platform fee charged on the settle price, in basis points",
        ge=0,
        le=10_000,
    )
    prediction_pool_bps: int = Field(
        default=2000,
        description="Share of the platform fee routed to the prediction pool, in basis points",
        ge=0,
        le=10_000,
    )
    scheduler_enabled: bool = Field(
        default=True,
        description="Run the expiry scheduler inside the API process",
    )
    settle_interval_seconds: int = Field(
        default=60,
        description="Seconds between expiry sweeps",
        gt=0,
    )
    exponential_decay_factor: float = Field(
        default=10.0,
        description="Exponential curves fall to reserve/factor by the end of the window",
        gt=1,
    )
    sigmoid_steepness: float = Field(
        default=10.0,
        description="Steepness of the logistic curve around the window midpoint",
        gt=0,
    )
    doma_orderbook_url: AnyUrl | str | None = Field(
        default=None,
        description="Base URL of the Doma orderbook relayer used for on-chain listings",
    )
    doma_orderbook_listing_path: str = Field(
        default="/v1/orderbook/dutch-auctions",
        description="Relative path for Dutch-auction listing submissions",
    )
    relayer_private_key: str | None = Field(
        default=None,
        description="Hex private key used to sign listing submissions",
    )
    dev_offchain: bool = Field(
        default=False,
        description="Force stub listings even when orderbook credentials are present",
    )
    doma_subgraph_url: AnyUrl | str | None = Field(
        default=None,
        description="GraphQL endpoint of the Doma names subgraph",
    )
    doma_subgraph_api_key: str | None = Field(
        default=None,
        description="API key sent as x-api-key to the Doma subgraph",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to outbound HTTP calls",
        gt=0,
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value

        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator(
        "doma_orderbook_url",
        "relayer_private_key",
        "doma_subgraph_url",
        "doma_subgraph_api_key",
        mode="before",
    )
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def resolved_database_url(self) -> str:
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    @property
    def onchain_listing_enabled(self) -> bool:
        return bool(self.doma_orderbook_url and self.relayer_private_key and not self.dev_offchain)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
