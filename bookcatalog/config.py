import logging
import os
from dataclasses import dataclass


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def build_dsn() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    user = os.getenv("POSTGRES_USER", "catalog")
    password = os.getenv("POSTGRES_PASSWORD", "catalog")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    database = os.getenv("POSTGRES_DB", "catalog")
    return f"postgresql://{user}:{password}@{host}:{port}/{database}"


@dataclass(frozen=True)
class Settings:
    dsn: str
    pool_min_size: int = 1
    pool_max_size: int = 10
    pool_timeout: float = 30.0
    log_level: str = "INFO"
    run_migrations: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        min_size = max(0, _int_env("POOL_MIN_SIZE", 1))
        return cls(
            dsn=build_dsn(),
            pool_min_size=min_size,
            pool_max_size=max(min_size, 1, _int_env("POOL_MAX_SIZE", 10)),
            pool_timeout=_float_env("POOL_TIMEOUT", 30.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            run_migrations=os.getenv("RUN_MIGRATIONS", "1") != "0",
        )


def configure_logging(level_name: str = "INFO") -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
