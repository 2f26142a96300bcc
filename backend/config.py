from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Market engine
    default_seed: Optional[int] = None  # random per session when unset
    default_open_price: float = 30000.0
    strict_dt: bool = False  # raise on dt <= 0 instead of treating it as a zero-time step

    # Session hosting
    session_cache_size: int = 256
    session_ttl_seconds: int = 3600
    max_steps_per_request: int = 1000
    stream_speed: float = 1.0  # SSE playback speed multiplier
    session_create_rate_limit: str = "30/minute"

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = True

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
