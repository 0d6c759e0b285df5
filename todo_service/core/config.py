from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from fastapi import Depends
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Annotated

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite+aiosqlite:///./todos.db"
    database_echo: bool = False
    create_tables_on_startup: bool = True

    cache_backend: Literal["memory", "redis"] = "memory"
    cache_maxsize: int = 2048
    cache_namespace: str = "todocache:"
    redis_dsn: str = "redis://localhost:6379/0"
    redis_pool_size: int = 5

    sweep_enabled: bool = True
    sweep_interval_seconds: float = 60.0  # fixed delay between sweep runs

    rate_limit_enabled: bool = True
    rate_limit_for_period: int = 100
    rate_limit_refresh_period_seconds: float = 1.0

    circuit_breaker_enabled: bool = True
    circuit_failure_rate_threshold: float = 50.0  # percent
    circuit_sliding_window_size: int = 10
    circuit_minimum_number_of_calls: int = 5
    circuit_wait_duration_open_seconds: float = 10.0
    circuit_permitted_calls_in_half_open: int = 3

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


SettingsDep = Annotated[Settings, Depends(get_settings)]
