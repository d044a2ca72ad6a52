"""Tests for logging configuration and secret redaction."""

from __future__ import annotations

import logging

from app.core.logging import REDACTED, SecretRedactionFilter


def _record(msg: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


class TestSecretRedactionFilter:
    """Test SecretRedactionFilter."""

    def test_masks_secret_in_message(self) -> None:
        record = _record("Authorization: Bearer s3cr3t-key")
        assert SecretRedactionFilter("s3cr3t-key").filter(record) is True
        assert record.getMessage() == f"Authorization: Bearer {REDACTED}"

    def test_masks_secret_in_args(self) -> None:
        """The secret is masked after %-formatting."""
        record = _record("token=%s", "s3cr3t-key")
        SecretRedactionFilter("s3cr3t-key").filter(record)
        assert "s3cr3t-key" not in record.getMessage()

    def test_other_messages_untouched(self) -> None:
        record = _record("Resolved %d rows", 3)
        SecretRedactionFilter("s3cr3t-key").filter(record)
        assert record.getMessage() == "Resolved 3 rows"

    def test_no_secret_configured(self) -> None:
        record = _record("anything")
        assert SecretRedactionFilter(None).filter(record) is True
        assert record.getMessage() == "anything"
