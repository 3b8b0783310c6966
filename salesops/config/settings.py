"""
Revenue Engine Configuration

Environment-driven settings for the order store, the report cache,
reconciliation tolerances and the external cost lookup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, ImportString, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Order store connection (PostgreSQL via asyncpg)"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    db: str = Field(default="salesops", alias="database")
    user: str = Field(default="salesops")
    password: SecretStr = Field(default="salesops")
    echo: bool = Field(default=False, description="Log every SQL statement")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full async URL, wins over the parts")

    @property
    def async_url(self) -> str:
        if self.url:
            return self.url
        secret = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{secret}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Report payload cache"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = Field(default=False, description="Cache assembled report payloads in Redis")
    host: str = Field(default="localhost")
    port: int = Field(default=6379)
    password: Optional[SecretStr] = Field(default=None)
    db: int = Field(default=0)
    max_connections: int = Field(default=10)
    socket_timeout: int = Field(default=5, description="Seconds before a cache call gives up")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Full URL, wins over the parts")

    def get_url(self) -> str:
        if self.url:
            return self.url
        auth = f":{self.password.get_secret_value()}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class ReconciliationSettings(BaseSettings):
    """Order reconciliation and attribution tolerances"""

    model_config = SettingsConfigDict(env_prefix="RECON_")

    tolerance: float = Field(default=0.02, description="Absolute subtotal/line-sum tolerance")
    order_epsilon: float = Field(default=0.0001, description="Minimum netEx for an order to count")
    default_currency: str = Field(default="GBP", description="Currency when the order set is empty")
    unassigned_label: str = Field(default="Unassigned", description="Bucket for orders without a rep")
    unknown_vendor_label: str = Field(default="Unknown", description="Bucket for lines without a vendor")


class CostLookupSettings(BaseSettings):
    """External variant cost lookup"""

    model_config = SettingsConfigDict(env_prefix="COST_LOOKUP_")

    max_batch_size: int = Field(default=200, description="Max missing variant ids per lookup")
    timeout_seconds: float = Field(default=10.0, description="Lookup timeout before continuing without costs")
    write_back: bool = Field(default=True, description="Persist fetched costs to the local cache table")
    hook: Optional[ImportString] = Field(
        default=None,
        description="Import path of an async fetch(variant_ids) -> {variant_id: unit_cost}; cache-only when unset",
    )


class ReportSettings(BaseSettings):
    """Report assembly defaults"""

    model_config = SettingsConfigDict(env_prefix="REPORT_")

    cache_ttl_seconds: int = Field(default=300, description="Payload cache TTL")
    default_vendor_window_days: int = Field(default=90, description="Vendor scorecard window when no start given")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Revenue engine settings.

    One section per concern. Each section reads its own prefixed
    environment variables, and `.env` is read when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="salesops-revenue-engine", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    cost_lookup: CostLookupSettings = Field(default_factory=CostLookupSettings)
    reports: ReportSettings = Field(default_factory=ReportSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        environments = ("development", "staging", "production", "testing")
        if v.lower() not in environments:
            raise ValueError(f"APP_ENV must be one of {', '.join(environments)}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """Settings are read from the environment once per process."""
    return Settings()
