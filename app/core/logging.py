"""
Custom logging filters and configuration.

Provides the application-wide logging setup and a filter that keeps the
internal API key out of log output.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
REDACTED = "[REDACTED]"


class SecretRedactionFilter(logging.Filter):
    """Mask a secret value wherever it appears in a log message."""

    def __init__(self, secret: str | None) -> None:
        super().__init__()
        self._secret = secret or None

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Replace the secret in the rendered message.

        Args:
            record: The log record to filter

        Returns:
            Always True; records are rewritten, never dropped
        """
        if not self._secret:
            return True

        message = record.getMessage()
        if self._secret in message:
            record.msg = message.replace(self._secret, REDACTED)
            record.args = None
        return True


def configure_logging(level: str = "INFO", secret: str | None = None) -> None:
    """
    Configure root logging for the application.

    Args:
        level: Root log level name (e.g. "INFO", "DEBUG")
        secret: Optional secret to mask in every handler's output
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )

    if secret:
        redaction = SecretRedactionFilter(secret)
        for handler in logging.getLogger().handlers:
            handler.addFilter(redaction)

    # SQLAlchemy echoes every statement at INFO when its logger is inherited
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
