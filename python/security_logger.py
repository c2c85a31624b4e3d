"""
Security Event Logging Module

Provides structured logging for security-related events including:
- Request validation failures
- Webhook signature failures
- Geo-block denials at the eligibility gate
- Access control events (missing or invalid API key)

SECURITY: Ensures sensitive data is sanitized before logging.
"""

import logging
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field as dataclass_field

from log_utils import sanitize_for_logging


@dataclass
class SecurityEvent:
    """Structured security event for logging"""
    event_type: str  # e.g., VALIDATION_FAILED, INVALID_WEBHOOK_SIGNATURE, GEO_BLOCKED
    severity: str  # INFO, WARNING, ERROR, CRITICAL
    field_name: str = ""  # Field that triggered the event
    error_code: str = ""
    sanitized_input: str = ""  # First 50 chars, sanitized
    source: str = ""  # Module/function that detected the event
    request_id: str = ""
    wallet_address: str = ""
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
            'wallet_address': self.wallet_address,
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
    - Automatic sanitization of caller-supplied data
    - Request ID correlation
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
        self.logger.handlers.clear()

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

    def _sanitize_input(self, text: str, max_length: int = 50) -> str:
        """Sanitize input for safe logging

        Args:
            text: Input text to sanitize
            max_length: Maximum length to include

        Returns:
            Sanitized text safe for logging
        """
        if not text:
            return ""
        sanitized = sanitize_for_logging(text)
        if len(sanitized) > max_length:
            return sanitized[:max_length] + "...(truncated)"
        return sanitized

    def _sanitize_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize all values in a context dictionary for safe logging

        Args:
            context: Dictionary with context data

        Returns:
            Sanitized dictionary safe for JSON logging
        """
        if not context:
            return {}

        sanitized = {}
        for key, value in context.items():
            safe_key = self._sanitize_input(str(key), max_length=100) if key else "unknown"

            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, str):
                sanitized[safe_key] = self._sanitize_input(value, max_length=200)
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
        if event.severity == "CRITICAL":
            self.logger.critical(event.to_json())
        elif event.severity == "ERROR":
            self.logger.error(event.to_json())
        elif event.severity == "WARNING":
            self.logger.warning(event.to_json())
        else:
            self.logger.info(event.to_json())

    def log_validation_failure(
        self,
        field: str,
        error_code: str,
        input_value: str,
        source: str = "",
        request_id: str = "",
        source_ip: str = "",
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a request validation failure

        Args:
            field: Field name that failed validation
            error_code: Error code for the failure
            input_value: The input that failed (will be sanitized)
            source: Source module/function
            additional_context: Additional context data (will be sanitized)
        """
        self._emit(SecurityEvent(
            event_type="VALIDATION_FAILED",
            severity="WARNING",
            field_name=field,
            error_code=error_code,
            sanitized_input=self._sanitize_input(input_value),
            source=source,
            request_id=request_id,
            source_ip=self._sanitize_input(source_ip, max_length=64),
            additional_context=self._sanitize_context(additional_context)
        ))

    def log_security_event(
        self,
        event_type: str,
        severity: str = "ERROR",
        field: str = "",
        error_code: str = "",
        input_value: str = "",
        source: str = "",
        wallet_address: str = "",
        request_id: str = "",
        source_ip: str = "",
        blocked: bool = True,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a security event

        Args:
            event_type: Type of security event (INVALID_WEBHOOK_SIGNATURE, ...)
            severity: INFO, WARNING, ERROR, or CRITICAL
            field: Related field if applicable
            error_code: Error code
            input_value: Suspicious input (will be sanitized)
            source: Source module/function
            blocked: Whether the request was refused
            additional_context: Additional context (will be sanitized)
        """
        context = self._sanitize_context(additional_context)
        context['blocked'] = blocked

        self._emit(SecurityEvent(
            event_type=event_type,
            severity=severity,
            field_name=field,
            error_code=error_code,
            sanitized_input=self._sanitize_input(input_value),
            source=source,
            request_id=request_id,
            wallet_address=self._sanitize_input(wallet_address, max_length=100),
            source_ip=self._sanitize_input(source_ip, max_length=64),
            additional_context=context
        ))

    def log_invalid_signature(
        self,
        provider: str,
        signature: str = "",
        source: str = "kyc_webhook",
        source_ip: str = ""
    ) -> None:
        """Log a webhook whose signature is missing or does not verify"""
        self.log_security_event(
            event_type="INVALID_WEBHOOK_SIGNATURE",
            severity="ERROR",
            field="X-Provider-Signature",
            error_code="SIGNATURE_MISMATCH" if signature else "SIGNATURE_MISSING",
            input_value=signature,
            source=source,
            source_ip=source_ip,
            additional_context={"provider": provider}
        )

    def log_geo_block(
        self,
        wallet_address: str,
        country_code: Optional[str],
        source: str = "eligibility_gate",
        source_ip: str = ""
    ) -> None:
        """Log a KYC-approved wallet denied because of its country"""
        self.log_security_event(
            event_type="GEO_BLOCKED",
            severity="INFO",
            field="country",
            input_value=country_code or "",
            source=source,
            wallet_address=wallet_address,
            source_ip=source_ip,
            additional_context={"country": country_code}
        )

    def log_unauthorized(self, path: str, key_present: bool, source_ip: str = "") -> None:
        """Log a request refused for a missing or wrong API key"""
        self.log_security_event(
            event_type="UNAUTHORIZED_ACCESS",
            severity="WARNING",
            field="X-API-Key",
            error_code="API_KEY_INVALID" if key_present else "API_KEY_MISSING",
            source=path,
            source_ip=source_ip
        )


# Global security logger instance
_security_logger: Optional[SecurityLogger] = None


def get_security_logger(
    log_dir: str = "logs",
    enable_console: bool = False,
    enable_file: bool = True
) -> SecurityLogger:
    """Get or create the global security logger instance

    Args:
        log_dir: Directory for log files
        enable_console: Also output to console
        enable_file: Write to security.log

    Returns:
        SecurityLogger instance
    """
    global _security_logger
    if _security_logger is None:
        _security_logger = SecurityLogger(
            log_dir=log_dir,
            enable_console=enable_console,
            enable_file=enable_file
        )
    return _security_logger


def reset_security_logger() -> None:
    """Reset the global security logger (for testing)"""
    global _security_logger
    _security_logger = None
