"""
Structured logging tests - message shape and payload redaction.
"""

import logging

from reddog.util.logging import StructuredLogger, sanitize_payload


class TestStructuredLogger:

    def test_ledger_operation_format(self, caplog):
        log = StructuredLogger("reddog.test")
        log.logger.propagate = True

        with caplog.at_level(logging.INFO, logger="reddog.test"):
            log.log_ledger_operation("consume", "u1", 2, details={"operation": "farm_query"})

        assert "Operation: ledger.consume, Status: success" in caplog.text
        assert "'account_id': 'u1'" in caplog.text
        assert "'amount': 2" in caplog.text

    def test_rejections_log_as_warning(self, caplog):
        log = StructuredLogger("reddog.test")
        log.logger.propagate = True

        with caplog.at_level(logging.INFO, logger="reddog.test"):
            log.log_ledger_operation("consume", "u1", 5000, "rejected")

        assert caplog.records[-1].levelno == logging.WARNING

    def test_approval_request_never_logs_payload(self, caplog):
        log = StructuredLogger("reddog.test")
        log.logger.propagate = True

        with caplog.at_level(logging.INFO, logger="reddog.test"):
            log.log_approval_request("approval-1", "john-deere", "yield", {"payload": {"secret": "field"}})

        assert "[REDACTED]" in caplog.text
        assert "secret" not in caplog.text


class TestSanitizePayload:

    def test_redacts_sensitive_keys(self):
        assert sanitize_payload({"token": "abc", "provider": "x"}) == {"token": "[REDACTED]", "provider": "x"}

    def test_nested_and_lists(self):
        data = {"items": [{"password": "p"}], "meta": {"data": [1, 2]}}
        assert sanitize_payload(data) == {"items": [{"password": "[REDACTED]"}], "meta": {"data": "[REDACTED]"}}

    def test_truncates_long_strings(self):
        assert sanitize_payload("x" * 150) == "x" * 100 + "..."

    def test_reveal_sensitive(self):
        assert sanitize_payload({"token": "abc"}, reveal_sensitive=True) == {"token": "abc"}
