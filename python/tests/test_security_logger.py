"""
Tests for security event logging and log sanitization.
"""

import json

import pytest

from log_sanitizer import sanitize_for_logging, mask_email, mask_identifier
from security_logger import SecurityLogger, SecurityEvent, get_security_logger


def _events(log_dir):
    lines = (log_dir / "security.log").read_text(encoding='utf-8').splitlines()
    return [json.loads(line.split(" - ", 3)[3]) for line in lines]


@pytest.fixture
def security_logger(tmp_path):
    logger = SecurityLogger(log_dir=str(tmp_path))
    yield logger
    for handler in list(logger.logger.handlers):
        logger.logger.removeHandler(handler)
        handler.close()


class TestSanitizer:
    """Tests for log injection prevention and masking."""

    def test_strips_newlines(self):
        assert sanitize_for_logging("line1\nFAKE ENTRY\r\n") == "line1 FAKE ENTRY"

    def test_strips_control_characters(self):
        assert sanitize_for_logging("a\x00b\x1bc") == "a b c"

    def test_truncates(self):
        assert len(sanitize_for_logging("x" * 1000)) == 500

    def test_empty(self):
        assert sanitize_for_logging("") == ""
        assert sanitize_for_logging(None) == ""

    def test_mask_email(self):
        assert mask_email("jane.doe@example.com") == "j***@example.com"
        assert mask_email("not-an-email") == "***"
        assert mask_email("") == ""

    def test_mask_identifier(self):
        assert mask_identifier("ABC12345") == "******45"
        assert mask_identifier("AB") == "**"
        assert mask_identifier("ABC12345", visible=3) == "*****345"


class TestSecurityLogger:
    """Tests for structured security events."""

    def test_event_to_json(self):
        event = SecurityEvent(event_type="LOGIN_FAILED", severity="WARNING", field_name="email")
        data = json.loads(event.to_json())
        assert data['event_type'] == "LOGIN_FAILED"
        assert data['field'] == "email"
        assert 'timestamp' in data

    def test_login_failure_masks_email(self, security_logger, tmp_path):
        security_logger.log_login_failure("jane.doe@example.com", source_ip="10.0.0.1", request_id="r1")
        event = _events(tmp_path)[0]
        assert event['event_type'] == "LOGIN_FAILED"
        assert event['sanitized_input'] == "j***@example.com"
        assert event['source_ip'] == "10.0.0.1"
        assert "jane.doe" not in (tmp_path / "security.log").read_text(encoding='utf-8')

    def test_registration_conflict_masks_national_id(self, security_logger, tmp_path):
        security_logger.log_registration_conflict("national_id", "ABC12345")
        event = _events(tmp_path)[0]
        assert event['event_type'] == "REGISTRATION_CONFLICT"
        assert event['field'] == "national_id"
        assert event['sanitized_input'] == "******45"

    def test_login_success(self, security_logger, tmp_path):
        security_logger.log_login_success("USER0001")
        event = _events(tmp_path)[0]
        assert event['event_type'] == "LOGIN_SUCCEEDED"
        assert event['user_id'] == "USER0001"

    def test_validation_failure_sanitizes_context(self, security_logger, tmp_path):
        security_logger.log_validation_failure(
            field="phone",
            error_code="PATTERN",
            input_value="555\n[CRITICAL] forged",
            additional_context={"attempts": 2, "note": "a\nb"}
        )
        event = _events(tmp_path)[0]
        assert "\n" not in event['sanitized_input']
        assert event['context'] == {"attempts": 2, "note": "a b"}

    def test_one_line_per_event(self, security_logger, tmp_path):
        security_logger.log_login_failure("a\n@example.com")
        security_logger.log_login_failure("b@example.com")
        assert len(_events(tmp_path)) == 2

    def test_global_instance(self, tmp_path):
        first = get_security_logger(log_dir=str(tmp_path))
        assert get_security_logger() is first
