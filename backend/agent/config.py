"""
Configuration: environment-driven defaults for the turn processor.
"""
import os
import logging
from typing import Optional

from dotenv import load_dotenv

from agent.schemas import RoutingConfig

load_dotenv()

CHATBOT_NAME = os.getenv("CHATBOT_NAME", "Soof")
SHOP_NAME = os.getenv("SHOP_NAME", "Test Shop")
PRODUCT_CATEGORY = os.getenv("PRODUCT_CATEGORY", "nutritional supplements")

THREAD_DB_PATH = os.getenv("THREAD_DB_PATH", "threads.db")
CLAIMS_INDEX_DIR = os.getenv("CLAIMS_INDEX_DIR", "data/claims_index")
CLAIMS_EMBEDDING_MODEL = os.getenv("CLAIMS_EMBEDDING_MODEL", "all-MiniLM-L6-v2")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def ensure_configuration(overrides: Optional[dict] = None) -> RoutingConfig:
    """
    Builds a RoutingConfig from environment defaults, then applies caller overrides.
    Invalid values raise pydantic.ValidationError.
    """
    values = {
        "claims_validation_threshold": _env_float("CLAIMS_VALIDATION_THRESHOLD", 0.75),
        "max_regeneration_attempts": _env_int("MAX_REGENERATION_ATTEMPTS", 3),
        "context_window_size": _env_int("CONTEXT_WINDOW_SIZE", 10),
        "history_cap": _env_int("HISTORY_CAP", 30),
        "request_timeout": _env_float("REQUEST_TIMEOUT", 30.0),
        "uniform_passthrough": os.getenv("UNIFORM_PASSTHROUGH", "").lower() in {"1", "true", "yes"},
    }
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})
    return RoutingConfig(**values)


def configure_logging():
    """Root logging setup. Set LOG_FILE to write to a file instead of stderr."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_file = os.getenv("LOG_FILE")
    if log_file:
        logging.basicConfig(filename=log_file, level=level,
                            format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=level,
                            format="%(asctime)s %(levelname)s %(name)s: %(message)s")
