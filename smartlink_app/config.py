from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    SmartLink configuration.

    Values come from the environment first, then .env, then the defaults here.
    """

    # Environment
    environment: str = "development"
    debug: bool = True

    # Application
    app_name: str = "SmartLink"
    app_version: str = "1.0.0"

    # Database
    database_url: str = "sqlite:///./smartlink.db"

    # Short links
    base_url: str = "http://127.0.0.1:8000"
    short_url_length: int = 5
    max_retries: int = 5
    short_code_strategy: str = "base62"  # Options: "random", "base62"
    short_code_salt: int = 1256

    # Smart routing
    max_rules_per_url: int = 50
    max_conditions_per_rule: int = 20
    default_timezone: str = "UTC"
    forward_utm_params: bool = True  # Append incoming utm_* params to the target

    # A/B variants
    enforce_variant_weight_limit: bool = True  # Reject active weights summing above 100

    # Cache settings
    cache_backend: str = "redis"  # Options: "redis", "memory", "null"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl: int = 3600  # Redirect snapshot TTL in seconds

    # Queue settings
    queue_backend: str = "redis_streams"  # Options: "redis_streams", "memory"
    queue_name: str = "url_clicks"
    queue_consumer_group: str = "click_workers"
    queue_batch_size: int = 100
    queue_block_ms: int = 1000

    # Click worker
    counter_flush_interval: int = 5  # Seconds between counter flushes
    counter_flush_max_keys: int = 50  # Flush early once this many counters are pending
    max_flush_retries: int = 3

    # Click storage settings (analytics database)
    click_storage_backend: str = "sqlite"  # Options: "sqlite", "clickhouse"
    click_storage_sqlite_path: str = "analytics.db"
    click_storage_clickhouse_url: str = "http://localhost:8123"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()
