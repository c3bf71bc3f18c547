"""
================================================================================
FILE: access_bridge/config/settings.py
================================================================================

PURPOSE:
    Bridge settings loaded from environment variables (+ optional .env file).
    Uses Pydantic BaseSettings for validation and type hints. Single source of
    truth for every component's configuration.

WORKFLOW:
    1. At startup, load .env into os.environ (python-dotenv)
    2. Build Settings from environment (aliases match env variable names)
    3. Validate types and ranges (fail fast on bad values)
    4. Components receive the Settings object (or values derived from it)

CONFIGURATION CATEGORIES:
    1. Environment & logging
    2. Controller (local door controller)
    3. Cloud (mobile-credential service)
    4. Site & mappings persistence
    5. Health monitor
    6. Circuit breaker
    7. Retry
    8. Event translator
    9. Webhook
    10. Server / management API

KEY FACTS:
    - All durations are seconds
    - Construct by field name in tests: Settings(webhook_secret="s")
    - load_settings() turns pydantic validation errors into ConfigurationError
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from access_bridge.config import constants
from access_bridge.core.exceptions import ConfigurationError
from access_bridge.utils.helpers import slugify

_CWD_ENV = Path(os.getcwd()) / ".env"
_REPO_ROOT_ENV = Path(__file__).resolve().parents[2] / ".env"
_ENV_PATH = _CWD_ENV if _CWD_ENV.exists() else _REPO_ROOT_ENV

load_dotenv(dotenv_path=_ENV_PATH, override=False)


class Settings(BaseSettings):
    """
    Bridge settings loaded from environment variables + .env.

    All fields have aliases matching .env variable names.
    """

    model_config = SettingsConfigDict(
        env_file=str(_ENV_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ========================================================================
    # ENVIRONMENT & LOGGING
    # ========================================================================

    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development", alias="ENVIRONMENT"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )
    log_file_enabled: bool = Field(default=False, alias="LOG_FILE_ENABLED")
    log_file_path: str = Field(default="./logs/bridge.log", alias="LOG_FILE_PATH")
    log_file_max_bytes: int = Field(
        default=constants.LOG_FILE_MAX_BYTES, gt=0, alias="LOG_FILE_MAX_BYTES"
    )
    log_file_backup_count: int = Field(
        default=constants.LOG_FILE_BACKUP_COUNT, ge=0, alias="LOG_FILE_BACKUP_COUNT"
    )
    log_buffer_size: int = Field(
        default=constants.LOG_BUFFER_SIZE, gt=0, alias="LOG_BUFFER_SIZE"
    )
    log_sanitization: bool = Field(default=True, alias="LOG_SANITIZATION")

    # ========================================================================
    # CONTROLLER
    # ========================================================================

    controller_provider: str = Field(default="simulated", alias="CONTROLLER_PROVIDER")
    controller_host: str = Field(default="localhost", alias="CONTROLLER_HOST")
    controller_port: int = Field(default=443, gt=0, le=65535, alias="CONTROLLER_PORT")
    controller_username: Optional[str] = Field(default=None, alias="CONTROLLER_USERNAME")
    controller_password: Optional[str] = Field(default=None, alias="CONTROLLER_PASSWORD")
    controller_api_key: Optional[str] = Field(default=None, alias="CONTROLLER_API_KEY")
    simulated_doors: List[Dict[str, Any]] = Field(
        default_factory=list,
        alias="SIMULATED_DOORS",
        description='JSON list, e.g. [{"id": "d1", "name": "Front"}]',
    )

    # ========================================================================
    # CLOUD
    # ========================================================================

    cloud_provider: str = Field(default="simulated", alias="CLOUD_PROVIDER")
    cloud_email: Optional[str] = Field(default=None, alias="CLOUD_EMAIL")
    cloud_password: Optional[str] = Field(default=None, alias="CLOUD_PASSWORD")
    cloud_api_token: Optional[str] = Field(default=None, alias="CLOUD_API_TOKEN")

    # ========================================================================
    # SITE & MAPPINGS
    # ========================================================================

    site_id: Optional[str] = Field(default=None, alias="SITE_ID")
    mappings_file: str = Field(default=constants.MAPPINGS_FILE, alias="MAPPINGS_FILE")
    mapping_save_delay: float = Field(
        default=constants.MAPPING_SAVE_DELAY_SECONDS, ge=0, alias="MAPPING_SAVE_DELAY"
    )

    # ========================================================================
    # HEALTH MONITOR
    # ========================================================================

    health_check_enabled: bool = Field(default=True, alias="HEALTH_CHECK_ENABLED")
    health_check_interval: float = Field(
        default=constants.HEALTH_CHECK_INTERVAL_SECONDS, gt=0, alias="HEALTH_CHECK_INTERVAL"
    )
    health_failure_threshold: int = Field(
        default=constants.HEALTH_FAILURE_THRESHOLD, ge=1, alias="HEALTH_FAILURE_THRESHOLD"
    )
    health_check_timeout: float = Field(
        default=constants.HEALTH_CHECK_TIMEOUT_SECONDS, gt=0, alias="HEALTH_CHECK_TIMEOUT"
    )

    # ========================================================================
    # CIRCUIT BREAKER
    # ========================================================================

    circuit_breaker_enabled: bool = Field(default=True, alias="CIRCUIT_BREAKER_ENABLED")
    circuit_breaker_failure_threshold: int = Field(
        default=constants.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
        ge=1,
        alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD",
    )
    circuit_breaker_success_threshold: int = Field(
        default=constants.CIRCUIT_BREAKER_SUCCESS_THRESHOLD,
        ge=1,
        alias="CIRCUIT_BREAKER_SUCCESS_THRESHOLD",
    )
    circuit_breaker_timeout: float = Field(
        default=constants.CIRCUIT_BREAKER_TIMEOUT_SECONDS,
        gt=0,
        alias="CIRCUIT_BREAKER_TIMEOUT",
    )

    # ========================================================================
    # RETRY
    # ========================================================================

    retry_enabled: bool = Field(default=True, alias="RETRY_ENABLED")
    retry_max_attempts: int = Field(
        default=constants.RETRY_MAX_ATTEMPTS, ge=1, alias="RETRY_MAX_ATTEMPTS"
    )
    retry_initial_delay: float = Field(
        default=constants.RETRY_INITIAL_DELAY_SECONDS, ge=0, alias="RETRY_INITIAL_DELAY"
    )
    retry_max_delay: float = Field(
        default=constants.RETRY_MAX_DELAY_SECONDS, ge=0, alias="RETRY_MAX_DELAY"
    )
    retry_backoff_multiplier: float = Field(
        default=constants.RETRY_BACKOFF_MULTIPLIER, ge=1, alias="RETRY_BACKOFF_MULTIPLIER"
    )

    # ========================================================================
    # EVENT TRANSLATOR
    # ========================================================================

    event_dedup_window: float = Field(
        default=constants.EVENT_DEDUP_WINDOW_SECONDS, ge=0, alias="EVENT_DEDUP_WINDOW"
    )
    event_max_queue_size: int = Field(
        default=constants.EVENT_MAX_QUEUE_SIZE, ge=1, alias="EVENT_MAX_QUEUE_SIZE"
    )
    event_processing_delay: float = Field(
        default=constants.EVENT_PROCESSING_DELAY_SECONDS, gt=0, alias="EVENT_PROCESSING_DELAY"
    )
    event_batch_size: int = Field(
        default=constants.EVENT_BATCH_SIZE, ge=1, alias="EVENT_BATCH_SIZE"
    )
    event_max_attempts: int = Field(
        default=constants.EVENT_MAX_ATTEMPTS, ge=1, alias="EVENT_MAX_ATTEMPTS"
    )

    # ========================================================================
    # WEBHOOK
    # ========================================================================

    webhook_enabled: bool = Field(default=True, alias="WEBHOOK_ENABLED")
    webhook_provider: str = Field(default="cloud", alias="WEBHOOK_PROVIDER")
    webhook_secret: Optional[str] = Field(default=None, alias="WEBHOOK_SECRET")
    webhook_verify_signature: bool = Field(default=True, alias="WEBHOOK_VERIFY_SIGNATURE")

    # ========================================================================
    # SERVER
    # ========================================================================

    server_host: str = Field(default=constants.DEFAULT_SERVER_HOST, alias="SERVER_HOST")
    server_port: int = Field(
        default=constants.DEFAULT_SERVER_PORT, gt=0, le=65535, alias="SERVER_PORT"
    )
    api_key: Optional[str] = Field(default=None, alias="API_KEY")

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("controller_provider", "cloud_provider", "webhook_provider")
    @classmethod
    def _normalize_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if not re.fullmatch(r"[a-z][a-z0-9_]*", v):
            raise ValueError(f"invalid provider name: {v!r}")
        return v

    # ========================================================================
    # DERIVED VALUES
    # ========================================================================

    @property
    def controller_base_url(self) -> str:
        if self.controller_port == 443:
            return f"https://{self.controller_host}"
        return f"https://{self.controller_host}:{self.controller_port}"

    @property
    def webhook_signature_header(self) -> str:
        return f"X-{self.webhook_provider.capitalize()}-Signature"

    @property
    def resolved_site_id(self) -> str:
        """Configured SITE_ID, or one derived from the controller host."""
        if self.site_id:
            return self.site_id
        slug = slugify(self.controller_host)
        return f"site-{slug or 'default'}"

    def breaker_kwargs(self) -> Dict[str, Any]:
        return {
            "failure_threshold": self.circuit_breaker_failure_threshold,
            "success_threshold": self.circuit_breaker_success_threshold,
            "timeout": self.circuit_breaker_timeout,
            "enabled": self.circuit_breaker_enabled,
        }

    def public_dict(self) -> Dict[str, Any]:
        """Settings as a dict keyed by env name, safe to echo over the API."""
        from access_bridge.core.log_sanitizer import sanitize_mapping

        return sanitize_mapping(self.model_dump(by_alias=True))


def load_settings(**overrides: Any) -> Settings:
    """
    Build Settings, converting validation failures into ConfigurationError.

    Args:
        **overrides: Field values that take precedence over the environment

    Raises:
        ConfigurationError: If any value fails validation
    """
    try:
        return Settings(**overrides)
    except PydanticValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigurationError(
            f"Invalid configuration: {len(fields)} field(s) failed validation",
            context={"fields": fields, "errors": str(e)},
        ) from e
