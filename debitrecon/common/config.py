"""Central environment-driven settings for the direct-debit engine.

The process loads this once at startup. Deployment-specific behavior (active
bank adapter, storage backend, fiscal issuer, transaction budgets) is
controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "direct-debit"
    log_level: str = "INFO"
    kafka_bootstrap_servers: str = "kafka:9092"
    postgres_dsn: str
    api_key: str
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    otel_enabled: bool = True

    pd_adapter: str = "debug_csv"
    pd_channel: str = "OFFICE_BANKING"
    pd_require_active_mandate: bool = True
    pd_selection_limit: int = 5000
    pd_list_limit: int = 300
    pd_tx_timeout_ms: int = 45_000
    pd_tx_max_wait_ms: int = 10_000
    pd_company_code: str = "0000000000"
    billing_timezone: str = "America/Argentina/Buenos_Aires"

    billing_batches_bucket: str | None = None
    s3_endpoint_url: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_region: str = "us-east-1"
    billing_batches_local_root: str = "/tmp/debitrecon-batches"

    fiscal_issuer_mode: str = "MOCK"
    fiscal_issuer_url: str = "http://fiscal-issuer:8010"
    fiscal_timeout_seconds: float = 15.0

    billing_events_topic: str = "billing.events"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
