"""Centralized logging configuration."""

import logging
import re

from config import settings

# access-sandbox-..., public-production-..., link-sandbox-...
_TOKEN_RE = re.compile(r"\b(access|public|link)-(sandbox|production)-[0-9A-Za-z-]+")


class TokenRedactingFilter(logging.Filter):
    """Masks Plaid tokens that end up in a formatted log message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _TOKEN_RE.sub(r"\1-\2-[REDACTED]", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging() -> None:
    """Configure logging for the application.

    Sets root logger level from settings.LOG_LEVEL, installs the token
    redaction filter on the root handlers and quiets the SQL and HTTP
    client loggers (the Plaid SDK logs request bodies at DEBUG).
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)s [%(threadName)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        level=getattr(logging, settings.LOG_LEVEL),
        force=True,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(TokenRedactingFilter())

    for name in ("sqlalchemy.engine", "sqlalchemy.pool", "urllib3", "plaid"):
        logging.getLogger(name).setLevel(logging.WARNING)
