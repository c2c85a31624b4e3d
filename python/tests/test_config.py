"""
Configuration and logging helper tests.
"""

import json
import logging

import pytest

from config_manager import ConfigManager, ConfigurationError, get_config
from log_utils import sanitize_for_logging, mask_address
from security_logger import SecurityLogger


def _write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


# ============================================
# CONFIG MANAGER TESTS
# ============================================

class TestConfigManager:
    """Tests for config loading and validation."""

    def test_defaults_when_file_missing(self, tmp_path):
        config = ConfigManager(str(tmp_path / "missing.yaml"))

        assert config.eligibility.blocked_countries == ['US', 'CN', 'IR', 'KP', 'SY']
        assert config.queue.ticket_ttl_minutes == 15
        assert config.queue.avg_service_seconds == 30
        assert config.distribution.default_batch_size == 50
        assert config.distribution.max_batch_size == 500
        assert config.kyc.allow_unsigned_webhooks is False

    def test_partial_file_keeps_defaults(self, tmp_path):
        config = ConfigManager(_write(tmp_path, "queue:\n  avg_service_seconds: 45\n"))

        assert config.queue.avg_service_seconds == 45
        assert config.queue.ticket_ttl_minutes == 15
        assert config.distribution.default_batch_size == 50

    def test_countries_are_uppercased(self, tmp_path):
        config = ConfigManager(_write(tmp_path, "eligibility:\n  blocked_countries: [ru, by]\n"))
        assert config.eligibility.blocked_countries == ['RU', 'BY']

    def test_repo_config_file_loads(self):
        from pathlib import Path
        config = ConfigManager(str(Path(__file__).parent.parent / "config.yaml"))
        assert config.distribution.max_recipients_per_job == 10000

    @pytest.mark.parametrize("text,match", [
        ("eligibility:\n  blocked_countries: [USA]\n", "ISO alpha-2"),
        ("eligibility:\n  blocked_countries: US\n", "must be a list"),
        ("queue:\n  ticket_ttl_minutes: 0\n", "positive integer"),
        ("distribution:\n  default_batch_size: 600\n", "cannot exceed"),
        ("distribution:\n  gas_cost_per_batch: -1\n", "non-negative"),
        ("logging:\n  level: LOUD\n", "logging.level"),
        ("kyc:\n  webhook_secrets: [a, b]\n", "mapping"),
        ("queue: 5\n", "must be a mapping"),
        ("- just\n- a list\n", "mapping at the top level"),
        ("queue: [unclosed\n", "Invalid YAML"),
    ])
    def test_invalid_config(self, tmp_path, text, match):
        with pytest.raises(ConfigurationError, match=match):
            ConfigManager(_write(tmp_path, text))

    def test_webhook_secret_from_config(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PERSONA_WEBHOOK_SECRET", raising=False)
        config = ConfigManager(_write(tmp_path, "kyc:\n  webhook_secrets:\n    Persona: s3cret\n"))

        assert config.get_webhook_secret("persona") == "s3cret"
        assert config.get_webhook_secret("PERSONA") == "s3cret"
        assert config.get_webhook_secret("onfido") is None

    def test_webhook_secret_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SUM_SUB_WEBHOOK_SECRET", "from-env")
        config = ConfigManager(_write(tmp_path, "kyc:\n  webhook_secrets:\n    sum-sub: from-file\n"))
        assert config.get_webhook_secret("sum-sub") == "from-env"

    def test_to_dict_masks_secrets(self, tmp_path):
        config = ConfigManager(_write(tmp_path, "kyc:\n  webhook_secrets:\n    persona: s3cret\n"))
        data = config.to_dict()

        assert data['kyc']['webhook_providers'] == ['persona']
        assert 's3cret' not in json.dumps(data)
        assert 'password' not in data['database']

    def test_singleton(self, tmp_path):
        ConfigManager.reset_instance()
        try:
            path = _write(tmp_path, "")
            assert get_config(path) is get_config()
        finally:
            ConfigManager.reset_instance()


# ============================================
# LOGGING HELPER TESTS
# ============================================

class TestLogUtils:
    """Tests for log sanitization."""

    def test_sanitize_strips_control_characters(self):
        assert sanitize_for_logging("line1\nFAKE ENTRY\r\x00") == "line1 FAKE ENTRY"

    def test_sanitize_truncates(self):
        assert len(sanitize_for_logging("a" * 1000)) == 500
        assert sanitize_for_logging("abcdef", max_length=3) == "abc"

    def test_sanitize_empty(self):
        assert sanitize_for_logging("") == ""
        assert sanitize_for_logging(None) == ""

    def test_mask_address(self):
        assert mask_address("0x1234567890abcdef1234567890abcdef12345678") == "0x1234...5678"
        assert mask_address("0xshort") == "0xshort"
        assert mask_address(None) == ""


class TestSecurityLogger:
    """Tests for structured security events."""

    def test_events_are_json(self, tmp_path):
        sec = SecurityLogger(log_dir=str(tmp_path), enable_file=True)
        sec.log_geo_block("0xABC", "US", source_ip="198.51.100.7")
        sec.log_invalid_signature("persona", "deadbeef" * 8, source_ip="198.51.100.7")

        for handler in sec.logger.handlers:
            handler.flush()
        lines = (tmp_path / "security.log").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2

        first = json.loads(lines[0].split(" - ", 3)[3])
        assert first["wallet_address"] == "0xABC"
        assert first["source_ip"] == "198.51.100.7"

        second = json.loads(lines[1].split(" - ", 3)[3])
        assert "deadbeef" * 8 not in json.dumps(second)

        for handler in list(sec.logger.handlers):
            handler.close()
            sec.logger.removeHandler(handler)

    def test_log_injection_is_neutralized(self, caplog):
        sec = SecurityLogger(enable_file=False)
        with caplog.at_level(logging.INFO, logger="security"):
            sec.log_validation_failure(
                field="walletAddress",
                error_code="REQUEST_VALIDATION",
                input_value="bad\nFAKE LOG LINE",
                source="/api/v1/eligibility/check",
            )
        assert caplog.records
        assert "\n" not in caplog.records[-1].getMessage()
