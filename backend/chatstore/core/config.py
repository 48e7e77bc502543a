from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Chat Store"
    debug: bool = False

    # Redis
    redis_url: str = ""  # e.g. redis://localhost:6379/0
    redis_connect_timeout: float = 5.0
    redis_max_retries: int = 3
    redis_backoff_base: float = 0.05
    redis_backoff_cap: float = 2.0
    redis_close_timeout: float = 5.0

    # Memory cache
    cache_ttl_seconds: float = 300.0
    cache_sweep_interval: float = 60.0

    # Compression
    compress_content: bool = False
    compression_threshold: int = 1000

    # Server
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "CHATSTORE_",
    }


settings = Settings()
