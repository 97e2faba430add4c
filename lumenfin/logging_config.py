# =============================================================================
# Logging Setup — Root Level Plus Per-Category Overrides
# =============================================================================
#
# Every module logs through `logging.getLogger(__name__)`. This module sets
# the levels once at startup (FastAPI lifespan, Celery worker init) so that
# noisy third-party loggers can be quieted without touching our own.
#
# USAGE:
#   from lumenfin.logging_config import setup_logging
#   setup_logging()
# =============================================================================

from __future__ import annotations

import logging
import sys

from lumenfin.config import Settings, settings as default_settings

# Settings field → logger names it controls
_CATEGORY_MAP: dict[str, list[str]] = {
    "log_level_sql": [
        "sqlalchemy.engine",
        "sqlalchemy.pool",
    ],
    "log_level_http": [
        "httpx",
        "httpcore",
        "openai",
        "anthropic",
        "chromadb",
    ],
}


def setup_logging(config: Settings | None = None) -> None:
    """Configure the root logger and the per-category levels. Idempotent."""
    config = config or default_settings

    root = logging.getLogger()
    root.setLevel(_parse_level(config.log_level))

    # uvicorn and celery install their own handlers; scripts and tests may not
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
        )
        root.addHandler(handler)

    for field_name, logger_names in _CATEGORY_MAP.items():
        level = _parse_level(getattr(config, field_name, "INFO"))
        for name in logger_names:
            logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).debug(
        "Logging configured (root=%s, sql=%s, http=%s)",
        config.log_level, config.log_level_sql, config.log_level_http,
    )


def _parse_level(raw: str) -> int:
    """Level name → logging constant, defaulting to INFO."""
    numeric = getattr(logging, raw.upper(), None)
    if isinstance(numeric, int):
        return numeric
    return logging.INFO
