from dataclasses import dataclass
import os
from pathlib import Path

LOG_LEVEL_ENV = "SQLOWSER_LOG_LEVEL"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class AppConfig:
    database_path: Path
    read_write: bool = False
    page_size: int = 100
    query_timeout_seconds: float = 30.0
    show_internal_tables: bool = False
    log_path: Path | None = None
    log_level: str = "INFO"


def _config_dir() -> Path:
    return Path.home() / ".config" / ".sqlowser"


def default_log_path() -> Path:
    return _config_dir() / "sqlowser.log"


def build_app_config(
    database_path: str | Path,
    *,
    read_write: bool = False,
    page_size: int = 100,
    query_timeout_seconds: float = 30.0,
    show_internal_tables: bool = False,
    log_path: str | Path | None = None,
    log_level: str = "INFO",
) -> AppConfig:
    if page_size < 1:
        raise ValueError(f"Page size must be at least 1: {page_size}")
    if query_timeout_seconds <= 0:
        raise ValueError(f"Query timeout must be positive: {query_timeout_seconds}")
    level = os.environ.get(LOG_LEVEL_ENV, "").strip().upper() or log_level.upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")
    return AppConfig(
        database_path=Path(database_path).expanduser(),
        read_write=read_write,
        page_size=page_size,
        query_timeout_seconds=query_timeout_seconds,
        show_internal_tables=show_internal_tables,
        log_path=Path(log_path).expanduser() if log_path else default_log_path(),
        log_level=level,
    )
