"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: Optional[str] = None

    # Environment
    environment: str = "development"

    # Aggregation Worker
    aggregation_interval_minutes: int = 5
    aggregation_startup_delay_seconds: int = 30  # let the app settle before the first sweep
    aggregation_lookback_days: int = 30  # day buckets
    aggregation_hour_lookback_days: int = 7  # hour buckets
    aggregation_month_lookback_months: int = 12  # month buckets
    aggregation_safety_margin_minutes: int = 0  # newest bucket start must be older than this
    aggregation_max_retries: int = 3
    aggregation_retry_base_seconds: float = 2.0  # backoff: 2s, 4s, 8s

    # Report Cache
    cache_default_ttl_minutes: int = 30  # windows of a day or longer
    cache_short_ttl_minutes: int = 2  # windows shorter than a day
    cache_recency_threshold_minutes: int = 10  # windows ending inside this are "recent"
    cache_maintenance_interval_seconds: int = 60

    # Request path
    report_query_timeout_seconds: float = 30.0

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
