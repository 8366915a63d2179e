"""Library configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Synckit settings loaded from environment variables."""

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"

    # Channels
    channel_default_capacity: int = 16

    # Registry: initializers slower than this (seconds) log a warning
    slow_init_threshold: float = 1.0

    # Prometheus instrumentation
    metrics_enabled: bool = True

    class Config:
        env_prefix = "SYNCKIT_"


settings = Settings()
