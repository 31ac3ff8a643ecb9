"""Configuration management for costpilot"""

import yaml
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
import logging

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ROLE_NAMES = ("readonly", "user", "admin")
RISK_LEVELS = ("low", "medium", "high", "critical")
EXECUTION_MODES = ("autonomous", "hitl")


class SchedulerConfig(BaseModel):
    """Control loop configuration"""
    enabled: bool = True
    tick_interval_seconds: float = 60.0
    max_workers: int = 8
    execution_workers: int = 4
    telemetry_timeout_seconds: float = 30.0
    shutdown_timeout_seconds: float = 30.0
    requeue_failed: bool = True
    resource_types: List[str] = Field(default_factory=list)


class ExecutionConfig(BaseModel):
    """Execution engine and retry policy configuration"""
    max_attempts: int = 4
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    jitter_ratio: float = 0.3
    action_timeout_seconds: float = 30.0
    claim_timeout_seconds: float = 900.0
    dry_run: bool = False


class DetectionConfig(BaseModel):
    """Waste predicate thresholds"""
    cpu_threshold: float = 20.0
    memory_threshold: float = 20.0
    function_memory_threshold: float = 50.0
    snapshot_max_age_days: float = 90.0
    nat_min_bytes_processed: float = 1073741824.0  # 1 GiB per observation window
    legacy_volume_classes: List[str] = Field(default_factory=lambda: ["gp2", "standard"])


class RiskRule(BaseModel):
    """Override for the static risk table"""
    risk_level: str
    execution_mode: str

    @field_validator("risk_level")
    @classmethod
    def _check_risk(cls, value: str) -> str:
        value = value.lower()
        if value not in RISK_LEVELS:
            raise ValueError(f"risk_level must be one of {RISK_LEVELS}")
        return value

    @field_validator("execution_mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        value = value.lower()
        if value not in EXECUTION_MODES:
            raise ValueError(f"execution_mode must be one of {EXECUTION_MODES}")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None
    audit_file: Optional[Path] = None
    console: bool = True
    structured: bool = False


class SecurityConfig(BaseModel):
    """Security configuration"""
    jwt_secret: Optional[SecretStr] = None
    jwt_algorithm: str = "HS256"
    approver_min_role: str = "user"

    @field_validator("approver_min_role")
    @classmethod
    def _check_role(cls, value: str) -> str:
        value = value.lower()
        if value not in ROLE_NAMES:
            raise ValueError(f"approver_min_role must be one of {ROLE_NAMES}")
        return value


class StorageConfig(BaseModel):
    """Recommendation store configuration"""
    backend: str = "memory"  # memory, json
    path: Path = Path("./costpilot-state.json")


class ApiConfig(BaseModel):
    """HTTP surface configuration"""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    subscriber_queue_size: int = 100


class Settings(BaseSettings):
    """Main application settings"""
    app_name: str = "costpilot"
    version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    risk_policy: Dict[str, RiskRule] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COSTPILOT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from YAML file"""
        if not path.exists():
            logger.warning(f"Configuration file {path} not found, using defaults")
            return cls()

        with open(path, 'r') as f:
            data = yaml.safe_load(f)

        return cls(**data if data else {})

    @classmethod
    def from_json(cls, path: Path) -> "Settings":
        """Load settings from JSON file"""
        if not path.exists():
            logger.warning(f"Configuration file {path} not found, using defaults")
            return cls()

        with open(path, 'r') as f:
            data = json.load(f)

        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save settings to YAML file"""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(self.model_dump(mode="json", exclude_unset=True), f, default_flow_style=False)

    def to_json(self, path: Path) -> None:
        """Save settings to JSON file"""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.model_dump(mode="json", exclude_unset=True), f, indent=2)


@dataclass
class ConfigValidationResult:
    """Outcome of validate_settings"""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def validate_settings(settings: Settings) -> ConfigValidationResult:
    """Check cross-field constraints. Pure: no I/O, no logging, no raising."""
    result = ConfigValidationResult()
    scheduler = settings.scheduler
    execution = settings.execution

    if scheduler.tick_interval_seconds <= 0:
        result.errors.append("scheduler.tick_interval_seconds must be positive")
    if scheduler.max_workers < 1 or scheduler.execution_workers < 1:
        result.errors.append("scheduler worker counts must be at least 1")
    if scheduler.telemetry_timeout_seconds <= 0:
        result.errors.append("scheduler.telemetry_timeout_seconds must be positive")

    if execution.max_attempts < 1:
        result.errors.append("execution.max_attempts must be at least 1")
    if execution.base_delay_seconds < 0 or execution.max_delay_seconds < 0:
        result.errors.append("execution delays must not be negative")
    if execution.base_delay_seconds > execution.max_delay_seconds:
        result.errors.append("execution.base_delay_seconds must not exceed max_delay_seconds")
    if not 0 <= execution.jitter_ratio <= 1:
        result.errors.append("execution.jitter_ratio must be between 0 and 1")
    if execution.action_timeout_seconds <= 0:
        result.errors.append("execution.action_timeout_seconds must be positive")
    if execution.claim_timeout_seconds <= execution.action_timeout_seconds:
        result.warnings.append(
            "execution.claim_timeout_seconds is not larger than one action timeout; "
            "slow executions may be reconciled as failed"
        )

    if settings.storage.backend not in ("memory", "json"):
        result.errors.append(f"storage.backend '{settings.storage.backend}' is not supported")

    secret = settings.security.jwt_secret.get_secret_value() if settings.security.jwt_secret else ""
    if settings.api.enabled:
        if not secret:
            result.errors.append("security.jwt_secret is required when the API is enabled")
        elif len(secret) < 32:
            result.errors.append(
                f"security.jwt_secret is too short ({len(secret)} characters, need at least 32)"
            )

    return result


def load_settings(path: Optional[Path] = None) -> Settings:
    """Build settings from a YAML/JSON file, or from the environment alone.

    Unreadable or malformed configuration raises ``ConfigurationError``.
    """
    try:
        if path is None:
            settings = Settings()
            logger.info("Using default configuration")
        elif path.suffix in (".yaml", ".yml"):
            settings = Settings.from_yaml(path)
            logger.info(f"Loaded configuration from {path}")
        else:
            settings = Settings.from_json(path)
            logger.info(f"Loaded configuration from {path}")
    except (PydanticValidationError, yaml.YAMLError, json.JSONDecodeError, TypeError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}")
    return settings
