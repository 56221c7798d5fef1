"""Logging setup shared by the API, the materialize CLI and the tests."""

import logging

from config import settings


def setup_logging() -> None:
    """Configure logging once per process.

    The root level comes from settings.LOG_LEVEL so materialization
    summaries (rows per upsert set, purges, exchange rate fallbacks) show at
    INFO. SQL echo and HTTP access logs are held at WARNING.
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, settings.LOG_LEVEL),
        force=True,
    )

    # Suppress noisy third-party loggers
    for name in (
        "sqlalchemy.engine",
        "sqlalchemy.pool",
        "httpx",
        "httpcore",
        "uvicorn.access",
    ):
        logging.getLogger(name).setLevel(logging.WARNING)
