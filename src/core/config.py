from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
    # Durable key-value store: "redis" in production, "memory" for local runs
    store_backend: str = "redis"
    redis_url: str = "redis://localhost:6379"
    market_data_provider: str = "coincap"
    coincap_api_key: str = ""
    coincap_base_url: str = "https://rest.coincap.io/v3"
    newsapi_key: str = ""
    newsapi_base_url: str = "https://newsapi.org/v2"
    cohere_api_key: str = ""
    cohere_base_url: str = "https://api.cohere.com/v2"
    cohere_model: str = "command-a-03-2025"
    llm_requests_per_minute: int = 20
    admin_purge_token: str = ""
    # Freshness / max-stale windows (seconds) per resource class
    price_fresh_seconds: float = 10
    price_max_stale_seconds: float = 60
    history_fresh_seconds: float = 10
    history_max_stale_seconds: float = 60
    news_fresh_seconds: float = 300
    news_max_stale_seconds: float = 1800
    sentiment_fresh_seconds: float = 60
    sentiment_max_stale_seconds: float = 600
    cache_ceiling_hours: float = 48
    sweep_interval_seconds: float = 900
    history_max_days: int = 30
    # Retry policy
    fetch_max_attempts: int = 2
    fetch_timeout_seconds: float = 5.0
    backoff_base_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    rate_limit_cap_seconds: float = 5.0
    transient_cap_seconds: float = 1.0
    # Narration budgets
    ai_model_timeout_seconds: float = 8.0
    ai_repair_timeout_seconds: float = 5.0
    ai_total_timeout_seconds: float = 12.0
    ai_price_timeout_seconds: float = 3.0
    log_level: str = "INFO"

settings = Settings()
