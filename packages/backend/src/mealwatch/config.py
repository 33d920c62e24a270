"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with MEALWATCH_ prefix.
The same settings object serves the API server (hub side) and the CLI
(consumer side); each only reads the fields it needs.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via MEALWATCH_* env vars."""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 5010

    # CORS — galleries are served from a different origin
    cors_origins: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Redis relay (empty = single-process, no relay)
    redis_url: str = ""

    # SSE stream
    stream_queue_size: int = 100  # frames buffered per connection before eviction
    keepalive_seconds: float = 15.0  # 0 disables keepalive comments

    # Stream consumer (CLI / client side)
    api_url: str = "http://localhost:5010"
    reconnect_delay: float = 1.0  # seconds, doubled per failed attempt
    max_reconnect_attempts: int = 5

    model_config = {"env_prefix": "MEALWATCH_"}

    @property
    def relay_enabled(self) -> bool:
        return bool(self.redis_url)


# Singleton — import this everywhere
settings = Settings()
