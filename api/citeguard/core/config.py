from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "citeguard-api"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0

    completion_api_url: str = "https://api.perplexity.ai/chat/completions"
    completion_api_key: str | None = None
    completion_model: str = "sonar-pro"
    completion_timeout_seconds: float = 60.0
    completion_temperature: float = 0.2
    completion_max_tokens: int = 2000

    reachability_timeout_seconds: float = 5.0
    default_trust_score: int = 50
    diversity_max_results: int = 5
    auto_apply_confidence: float = 8.0

    replacement_chunk_size: int = 5
    chunk_stall_minutes: int = 5
    chunk_heartbeat_every: int = 5
    rollback_window_hours: int = 24

    banned_domains: str | None = None
    compliance_weight_banned_domain: float = 10.0
    compliance_weight_broken_link: float = 5.0
    compliance_weight_missing_inline: float = 2.0
    compliance_alert_threshold: int = 10
    compliance_scan_interval_hours: int = 24

    otel_enabled: bool = True
    otel_service_name: str = "citeguard-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CG_", extra="ignore")

    def banned_domain_set(self) -> set[str]:
        if not self.banned_domains:
            return set()
        return {
            item.strip().lower().removeprefix("www.")
            for item in self.banned_domains.split(",")
            if item.strip()
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
