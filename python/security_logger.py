"""
Security Event Logging Module

Provides structured logging for security-related events including:
- Login failures
- Registration attempts that hit an existing national ID or email
- Validation failures on account data

SECURITY: Ensures sensitive data is sanitized before logging. Emails are
masked and national IDs reduced to their last characters.
"""

import logging
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field as dataclass_field

from log_sanitizer import sanitize_for_logging, mask_email, mask_identifier


@dataclass
class SecurityEvent:
    """Structured security event for logging"""
    event_type: str  # e.g., LOGIN_FAILED, REGISTRATION_CONFLICT, VALIDATION_FAILED
    severity: str  # INFO, WARNING, ERROR, CRITICAL
    field_name: str = ""
    error_code: str = ""
    sanitized_input: str = ""
    source: str = ""
    request_id: str = ""
    user_id: str = ""
    source_ip: str = ""
    additional_context: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'severity': self.severity,
            'field': self.field_name,
            'error_code': self.error_code,
            'sanitized_input': self.sanitized_input,
            'source': self.source,
            'request_id': self.request_id,
            'user_id': self.user_id,
            'source_ip': self.source_ip,
            'context': self.additional_context
        }

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), ensure_ascii=False)


class SecurityLogger:
    """Handles security event logging with structured output

    Features:
    - Separate security.log file
    - JSON-formatted events for easy parsing
    - Automatic sanitization of sensitive data
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: int = logging.INFO,
        enable_console: bool = False,
        enable_file: bool = True
    ):
        """Initialize security logger

        Args:
            log_dir: Directory for log files
            log_level: Minimum log level to record
            enable_console: Also output to console
            enable_file: Write to security.log file
        """
        self.log_dir = Path(log_dir)

        self.logger = logging.getLogger('security')
        self.logger.setLevel(log_level)
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(
            '%(asctime)s - SECURITY - %(levelname)s - %(message)s'
        )

        if enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_dir / "security.log", encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        if not self.logger.handlers:
            self.logger.addHandler(logging.NullHandler())

    def _sanitize_input(self, text: str, max_length: int = 50) -> str:
        """Sanitize input for safe logging, truncated to max_length"""
        if not text:
            return ""
        sanitized = sanitize_for_logging(text)
        if len(sanitized) > max_length:
            return sanitized[:max_length] + "...(truncated)"
        return sanitized

    def _sanitize_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize all values in a context dictionary for safe logging"""
        if not context:
            return {}

        sanitized = {}
        for key, value in context.items():
            safe_key = self._sanitize_input(str(key), max_length=100) if key else "unknown"
            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, dict):
                sanitized[safe_key] = self._sanitize_context(value)
            elif isinstance(value, (list, tuple)):
                sanitized[safe_key] = [
                    item if isinstance(item, (bool, int, float, type(None)))
                    else self._sanitize_input(str(item), max_length=200)
                    for item in value
                ]
            else:
                sanitized[safe_key] = self._sanitize_input(str(value), max_length=200)
        return sanitized

    def _emit(self, event: SecurityEvent) -> None:
        level = getattr(logging, event.severity, logging.WARNING)
        self.logger.log(level, event.to_json())

    def log_validation_failure(
        self,
        field: str,
        error_code: str,
        input_value: str,
        source: str = "",
        request_id: str = "",
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a validation failure event"""
        self._emit(SecurityEvent(
            event_type="VALIDATION_FAILED",
            severity="WARNING",
            field_name=field,
            error_code=error_code,
            sanitized_input=self._sanitize_input(input_value),
            source=source,
            request_id=request_id,
            additional_context=self._sanitize_context(additional_context)
        ))

    def log_login_failure(
        self,
        email: str,
        source_ip: str = "",
        request_id: str = ""
    ) -> None:
        """Log a failed login. The email is masked."""
        self._emit(SecurityEvent(
            event_type="LOGIN_FAILED",
            severity="WARNING",
            field_name="email",
            error_code="INVALID_CREDENTIALS",
            sanitized_input=mask_email(email),
            source="api.login",
            request_id=request_id,
            source_ip=self._sanitize_input(source_ip, max_length=64)
        ))

    def log_login_success(
        self,
        user_id: str,
        source_ip: str = "",
        request_id: str = ""
    ) -> None:
        self._emit(SecurityEvent(
            event_type="LOGIN_SUCCEEDED",
            severity="INFO",
            source="api.login",
            request_id=request_id,
            user_id=self._sanitize_input(user_id),
            source_ip=self._sanitize_input(source_ip, max_length=64)
        ))

    def log_registration_conflict(
        self,
        field: str,
        value: str,
        source_ip: str = "",
        request_id: str = ""
    ) -> None:
        """Log a registration or update that reused a taken natural key.

        Repeated conflicts from one address can indicate account enumeration.
        """
        masked = mask_email(value) if field == "email" else mask_identifier(value)
        self._emit(SecurityEvent(
            event_type="REGISTRATION_CONFLICT",
            severity="WARNING",
            field_name=field,
            error_code="CONFLICT",
            sanitized_input=masked,
            source="api.users",
            request_id=request_id,
            source_ip=self._sanitize_input(source_ip, max_length=64)
        ))


# Global security logger instance
_security_logger: Optional[SecurityLogger] = None


def get_security_logger(
    log_dir: str = "logs",
    enable_console: bool = False
) -> SecurityLogger:
    """Get or create the global security logger instance"""
    global _security_logger
    if _security_logger is None:
        _security_logger = SecurityLogger(
            log_dir=log_dir,
            enable_console=enable_console
        )
    return _security_logger


def reset_security_logger() -> None:
    """Reset the global security logger (for testing)"""
    global _security_logger
    _security_logger = None
