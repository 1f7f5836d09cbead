from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "posting-notary"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    api_key: SecretStr | None = None
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    ledger_enabled: bool = False
    network_address: str = "wss://staging.cord.network"
    ss58_format: int = 29
    mnemonic_secret_key: SecretStr | None = None
    treasury_mnemonic: SecretStr | None = None
    funding_amount: int = 100 * 10**12
    connect_timeout_seconds: float = 60.0
    connect_poll_interval_seconds: float = 2.0
    socket_timeout_seconds: float = 30.0
    funding_timeout_seconds: float = 30.0
    did_probe_timeout_seconds: float = 30.0
    did_probe_interval_seconds: float = 1.0
    did_timeout_seconds: float = 60.0
    transaction_timeout_seconds: float = 60.0
    otel_enabled: bool = True
    otel_service_name: str = "posting-notary"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="NOTARY_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
