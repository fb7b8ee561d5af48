from __future__ import annotations

from functools import lru_cache

from croniter import croniter
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SEED_IPS = (
    "173.212.203.145,173.212.220.65,161.97.97.41,192.190.136.36,192.190.136.37,"
    "192.190.136.38,192.190.136.28,192.190.136.29,207.244.255.1"
)
_PROD_ENV_NAMES = {"prod", "production"}


class Settings(BaseSettings):
    app_name: str = Field(default="pNode Watch")
    app_env: str = Field(default="dev")
    app_version: str = Field(default="0.1.0")
    public_base_url: str = Field(default="http://localhost:8000")

    database_url: str = Field(default="")

    log_level: str = Field(default="INFO")
    log_file: str = Field(default="data/app.log")
    log_format: str = Field(default="text")
    log_db_queries: bool = Field(default=False)
    log_db_query_params: bool = Field(default=False)
    log_sql_max_length: int = Field(default=400)
    metrics_enabled: bool = Field(default=True)

    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8000)

    prpc_seed_ips: str = Field(default=DEFAULT_SEED_IPS)
    prpc_port: int = Field(default=6000)
    prpc_path: str = Field(default="/rpc")
    prpc_timeout_seconds: float = Field(default=10.0)
    node_stats_timeout_seconds: float = Field(default=20.0)
    node_cache_ttl_seconds: float = Field(default=30.0)

    credits_url: str = Field(default="https://podcredits.xandeum.network/api/pods-credits")
    credits_cache_ttl_seconds: float = Field(default=60.0)
    credits_timeout_seconds: float = Field(default=10.0)

    status_offline_after_seconds: int = Field(default=300)
    status_degraded_uptime_percent: float = Field(default=50.0)
    status_degraded_min_free_percent: float = Field(default=5.0)
    uptime_window_seconds: int = Field(default=86400)
    issue_low_uptime_percent: float = Field(default=95.0)
    issue_high_latency_ms: float = Field(default=1000.0)
    issue_storage_full_percent: float = Field(default=90.0)
    issue_stale_after_seconds: int = Field(default=120)

    snapshot_cron: str = Field(default="*/5 * * * *")
    snapshot_scheduler_enabled: bool = Field(default=False)
    snapshot_min_interval_seconds: int = Field(default=240)
    snapshot_lease_ttl_seconds: int = Field(default=300)
    snapshot_retention_days: int = Field(default=30)
    auto_snapshot_stale_seconds: int = Field(default=3600)
    auto_snapshot_cooldown_seconds: int = Field(default=300)
    cron_secret: str = Field(default="")

    alert_dedupe_window_hours: float = Field(default=6.0)
    alert_suppress_while_unread: bool = Field(default=False)
    alert_retention_days: int = Field(default=30)
    verification_token_ttl_hours: int = Field(default=24)

    brevo_api_key: str = Field(default="")
    brevo_api_url: str = Field(default="https://api.brevo.com/v3/smtp/email")
    email_sender_address: str = Field(default="alerts@pnodewatch.local")
    email_sender_name: str = Field(default="pNode Watch")
    vapid_public_key: str = Field(default="")
    vapid_private_key: str = Field(default="")
    vapid_subject: str = Field(default="mailto:alerts@pnodewatch.local")

    telegram_bot_token: str = Field(default="")
    telegram_api_url: str = Field(default="https://api.telegram.org")
    discord_public_key: str = Field(default="")
    price_feed_url: str = Field(default="")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() in _PROD_ENV_NAMES

    @property
    def seed_ips(self) -> list[str]:
        return [item.strip() for item in self.prpc_seed_ips.split(",") if item.strip()]

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        if not self.database_url:
            raise ValueError("DATABASE_URL must be set in .env or environment variables.")
        if not croniter.is_valid(self.snapshot_cron):
            raise ValueError(f"SNAPSHOT_CRON is not a valid cron expression: {self.snapshot_cron!r}")
        if self.log_format not in {"text", "json"}:
            raise ValueError("LOG_FORMAT must be 'text' or 'json'.")
        if self.is_production:
            issues: list[str] = []
            if not self.cron_secret:
                issues.append("CRON_SECRET must be set in production.")
            elif len(self.cron_secret) < 16:
                issues.append("CRON_SECRET must be at least 16 characters in production.")
            if issues:
                raise ValueError(" ".join(issues))
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
