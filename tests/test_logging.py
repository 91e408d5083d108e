"""
Tests for logging setup and credential masking.
"""

import logging

import pytest

from hubsync.utils.logging import SecretFilter, redact, setup_logging


class TestRedact:
    @pytest.mark.parametrize(
        "text, hidden",
        [
            ("Authorization: Bearer sl.abc-123_XYZ", "sl.abc-123_XYZ"),
            ("code=HUBSYNC-CLOUD-eyJwIjoiZHJvcGJveCJ9", "eyJwIjoiZHJvcGJveCJ9"),
            ('{"access_token": "tok-1", "expires_in": 14400}', "tok-1"),
            ("grant_type=refresh_token&refresh_token=r3fr3sh&client_id=k", "r3fr3sh"),
            ("password='hunter2'", "hunter2"),
        ],
    )
    def test_masks(self, text, hidden):
        cleaned = redact(text)
        assert hidden not in cleaned
        assert "***" in cleaned

    def test_plain_text_untouched(self):
        assert redact("Polled 3 submissions from /hubsync/inbox") == "Polled 3 submissions from /hubsync/inbox"

    def test_surrounding_fields_kept(self):
        assert redact("grant_type=refresh_token&refresh_token=abc&client_id=k").endswith("&client_id=k")


class TestSecretFilter:
    def test_rewrites_formatted_message(self):
        record = logging.LogRecord("hubsync", logging.DEBUG, __file__, 1, "headers %s", ("Bearer abc",), None)
        assert SecretFilter().filter(record)
        assert record.getMessage() == "headers Bearer ***"

    def test_leaves_clean_record_alone(self):
        record = logging.LogRecord("hubsync", logging.INFO, __file__, 1, "pushed %d tables", (4,), None)
        SecretFilter().filter(record)
        assert record.args == (4,)


class TestSetupLogging:
    def test_file_log_is_masked(self, tmp_path):
        log_file = tmp_path / "logs" / "hubsync.log"
        logger = setup_logging(level="DEBUG", log_file=log_file, console_enabled=False)
        try:
            logger.debug("token response %s", {"access_token": "sl.secret"})
            for handler in logger.handlers:
                handler.flush()
            content = log_file.read_text()
            assert "sl.secret" not in content
            assert "token response" in content
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()

    def test_handlers_replaced_on_repeat(self):
        logger = setup_logging(level="INFO", format_string="%(message)s")
        logger = setup_logging(level="INFO", format_string="%(message)s")
        try:
            assert len(logger.handlers) == 1
            assert logger.level == logging.INFO
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
