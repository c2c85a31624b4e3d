"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import os
import re
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)


@dataclass
class EligibilityConfig:
    """Eligibility gate policy"""
    blocked_countries: List[str] = field(default_factory=lambda: ['US', 'CN', 'IR', 'KP', 'SY'])


@dataclass
class QueueConfig:
    """Sale queue parameters"""
    ticket_ttl_minutes: int = 15
    avg_service_seconds: int = 30


@dataclass
class DistributionConfig:
    """Batch distribution planner parameters"""
    default_batch_size: int = 50
    max_batch_size: int = 500
    max_recipients_per_job: int = 10000
    gas_cost_per_batch: float = 0.01


@dataclass
class KYCConfig:
    """KYC provider integration"""
    webhook_secrets: Dict[str, str] = field(default_factory=dict)
    allow_unsigned_webhooks: bool = False


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = ""
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    security_log_dir: str = "logs"


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "launchpad"
    password: str = "launchpad"
    name: str = "launchpad"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


_COUNTRY_CODE = re.compile(r'^[A-Z]{2}$')
_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ConfigManager:
    """Manages service configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file (falls back to CONFIG_PATH)
        """
        config_path = config_path or os.getenv("CONFIG_PATH")
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.eligibility: EligibilityConfig = EligibilityConfig()
        self.queue: QueueConfig = QueueConfig()
        self.distribution: DistributionConfig = DistributionConfig()
        self.kyc: KYCConfig = KYCConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.database: DatabaseConfig = DatabaseConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._validate()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_eligibility()
        self._parse_queue()
        self._parse_distribution()
        self._parse_kyc()
        self._parse_logging()
        self._parse_database()
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Section '{name}' must be a mapping")
        return cfg

    def _parse_eligibility(self) -> None:
        """Parse eligibility configuration"""
        cfg = self._section('eligibility')
        countries = cfg.get('blocked_countries', self.eligibility.blocked_countries)
        if not isinstance(countries, list):
            raise ConfigurationError("eligibility.blocked_countries must be a list")
        self.eligibility = EligibilityConfig(
            blocked_countries=[str(c).strip().upper() for c in countries]
        )

    def _parse_queue(self) -> None:
        """Parse queue configuration"""
        cfg = self._section('queue')
        self.queue = QueueConfig(
            ticket_ttl_minutes=cfg.get('ticket_ttl_minutes', 15),
            avg_service_seconds=cfg.get('avg_service_seconds', 30)
        )

    def _parse_distribution(self) -> None:
        """Parse distribution configuration"""
        cfg = self._section('distribution')
        self.distribution = DistributionConfig(
            default_batch_size=cfg.get('default_batch_size', 50),
            max_batch_size=cfg.get('max_batch_size', 500),
            max_recipients_per_job=cfg.get('max_recipients_per_job', 10000),
            gas_cost_per_batch=cfg.get('gas_cost_per_batch', 0.01)
        )

    def _parse_kyc(self) -> None:
        """Parse KYC provider configuration"""
        cfg = self._section('kyc')
        secrets = cfg.get('webhook_secrets') or {}
        if not isinstance(secrets, dict):
            raise ConfigurationError("kyc.webhook_secrets must be a mapping of provider to secret")
        self.kyc = KYCConfig(
            webhook_secrets={str(k).lower(): str(v) for k, v in secrets.items() if v},
            allow_unsigned_webhooks=bool(cfg.get('allow_unsigned_webhooks', False))
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=str(cfg.get('level', 'INFO')).upper(),
            file=cfg.get('file', '') or '',
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format),
            security_log_dir=cfg.get('security_log_dir', 'logs')
        )

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def get_webhook_secret(self, provider: str) -> Optional[str]:
        """Resolve the signing secret for a KYC provider.

        The <PROVIDER>_WEBHOOK_SECRET environment variable wins over config.
        """
        provider = (provider or "").strip()
        env_name = re.sub(r'[^A-Z0-9]', '_', provider.upper()) + "_WEBHOOK_SECRET"
        return os.getenv(env_name) or self.kyc.webhook_secrets.get(provider.lower())

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (secrets masked)"""
        return {
            'eligibility': {
                'blocked_countries': list(self.eligibility.blocked_countries)
            },
            'queue': {
                'ticket_ttl_minutes': self.queue.ticket_ttl_minutes,
                'avg_service_seconds': self.queue.avg_service_seconds
            },
            'distribution': {
                'default_batch_size': self.distribution.default_batch_size,
                'max_batch_size': self.distribution.max_batch_size,
                'max_recipients_per_job': self.distribution.max_recipients_per_job,
                'gas_cost_per_batch': self.distribution.gas_cost_per_batch
            },
            'kyc': {
                'webhook_providers': sorted(self.kyc.webhook_secrets),
                'allow_unsigned_webhooks': self.kyc.allow_unsigned_webhooks
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            },
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name
            }
        }

    def _validate(self) -> None:
        """Validate configuration values

        Raises:
            ConfigurationError: On the first invalid value found
        """
        for code in self.eligibility.blocked_countries:
            if not _COUNTRY_CODE.match(code):
                raise ConfigurationError(
                    f"eligibility.blocked_countries: '{code}' is not an ISO alpha-2 code"
                )

        positive_ints = {
            'queue.ticket_ttl_minutes': self.queue.ticket_ttl_minutes,
            'queue.avg_service_seconds': self.queue.avg_service_seconds,
            'distribution.default_batch_size': self.distribution.default_batch_size,
            'distribution.max_batch_size': self.distribution.max_batch_size,
            'distribution.max_recipients_per_job': self.distribution.max_recipients_per_job,
            'database.port': self.database.port,
        }
        for name, value in positive_ints.items():
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        if self.distribution.default_batch_size > self.distribution.max_batch_size:
            raise ConfigurationError(
                "distribution.default_batch_size cannot exceed distribution.max_batch_size"
            )

        gas = self.distribution.gas_cost_per_batch
        if isinstance(gas, bool) or not isinstance(gas, (int, float)) or gas < 0:
            raise ConfigurationError(
                f"distribution.gas_cost_per_batch must be a non-negative number, got {gas!r}"
            )

        if self.logging.level not in _LOG_LEVELS:
            raise ConfigurationError(f"logging.level must be one of {', '.join(_LOG_LEVELS)}")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
