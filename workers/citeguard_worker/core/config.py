from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    api_base_url: str = "http://localhost:8000"
    module_id: str = "citeguard-scheduler"
    api_key: str = "local-scheduler-key"
    request_timeout_seconds: float = 120.0
    poll_interval_seconds: float = 5.0
    max_backoff_seconds: float = 60.0
    alert_cleanup_interval_seconds: float = 3600.0
    compliance_scan_interval_seconds: float = 86400.0
    compliance_scan_on_start: bool = False
    enqueue_broken_link_replacements: bool = True
    log_level: str = "INFO"
    otel_enabled: bool = True
    otel_service_name: str = "citeguard-scheduler"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CG_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
