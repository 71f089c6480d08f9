"""Central environment-driven settings for the bot process and operator scripts.

Loaded once at import. Core services take the values that change behavior
(admin id, retry ceiling, timeouts) as constructor arguments so tests can
override them without touching the environment.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "ledgerbot"
    log_level: str = "INFO"
    database_url: str
    bot_token: str = ""
    telegram_api_base: str = "https://api.telegram.org"
    webhook_secret: str = ""
    admin_external_id: str = ""
    send_timeout_seconds: float = 10.0
    outbox_max_retries: int = 5
    outbox_sweep_batch: int = 50
    outbox_sweep_interval_seconds: int = 30
    outbox_claim_timeout_seconds: int = 30
    history_limit: int = 10
    otel_exporter_otlp_endpoint: str = ""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
