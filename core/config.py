import os
import sys
import logging
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Directory holding the static site-rule registry
CONFIG_DIR = BASE_DIR / "config"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime configuration, read from the environment (and .env)."""

    deepseek_api_key: Optional[str] = None
    deepseek_model: str = "deepseek-chat"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 2000

    browser_headless: bool = True
    navigation_timeout: float = Field(45.0, description="Seconds allowed for page navigation.")
    max_parse_attempts: int = 3
    limiter_idle_ttl: float = Field(3600.0, description="Evict per-origin limiters unused for this many seconds.")
    site_rules_path: Path = CONFIG_DIR / "site_rules.yaml"

    log_level: str = "INFO"
    log_file: Optional[str] = "app.log"

    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])
    api_rate_limit: str = "10/minute"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    values = {
        "deepseek_api_key": os.getenv("DEEPSEEK_API_KEY") or None,
        "deepseek_model": os.getenv("DEEPSEEK_MODEL", "deepseek-chat"),
        "llm_temperature": float(os.getenv("LLM_TEMPERATURE", "0.1")),
        "llm_max_tokens": int(os.getenv("LLM_MAX_TOKENS", "2000")),
        "browser_headless": _env_bool("BROWSER_HEADLESS", True),
        "navigation_timeout": float(os.getenv("NAVIGATION_TIMEOUT", "45")),
        "max_parse_attempts": int(os.getenv("MAX_PARSE_ATTEMPTS", "3")),
        "limiter_idle_ttl": float(os.getenv("LIMITER_IDLE_TTL", "3600")),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_file": os.getenv("LOG_FILE", "app.log") or None,
        "api_rate_limit": os.getenv("API_RATE_LIMIT", "10/minute"),
    }
    if os.getenv("SITE_RULES_PATH"):
        values["site_rules_path"] = Path(os.environ["SITE_RULES_PATH"])
    if os.getenv("CORS_ORIGINS"):
        values["cors_origins"] = [o.strip() for o in os.environ["CORS_ORIGINS"].split(",") if o.strip()]
    return Settings(**values)


settings = get_settings()


# --- Logging Configuration ---
def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None):
    """
    Configures the root logger for the application.
    - Clears existing handlers to prevent duplicate logs on reload.
    - Adds a stream handler for console output.
    - Adds a rotating file handler when a log file is configured.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel((level or settings.log_level).upper())

    # Clear existing handlers to prevent duplicates during reloads
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    log_formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] [%(name)s] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(log_formatter)
    root_logger.addHandler(stream_handler)

    log_file = log_file or settings.log_file
    if log_file:
        file_handler = RotatingFileHandler(log_file, maxBytes=10*1024*1024, backupCount=3)
        file_handler.setFormatter(log_formatter)
        root_logger.addHandler(file_handler)

    # Reduce noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.info("Logging configured (level=%s, file=%s)", root_logger.level, log_file)
