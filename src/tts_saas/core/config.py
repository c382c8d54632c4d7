"""
Configuration Management for tts-saas.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration objects
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (EXTERNAL_TTS_API_URL, DATABASE_URL, etc.)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    gateway:
      base_url: http://tts-engine.internal:8000
      timeout_s: 300

    ledger:
      database_url: sqlite:///./data/tts-saas.db

    generation:
      max_text_length: 50000
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import os
import yaml


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is thrown when a configuration value is outside
    acceptable bounds or of the wrong type.
    """
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Gateway: External synthesis service connection
        - Ledger: Subscription / generation record database
        - Storage: Persisted audio location
        - Generation: Request limits and record derivation
        - Auth: Identity headers set by the front proxy
        - Logging: Log level and formatting
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Synthesis Gateway
    # ─────────────────────────────────────────────────────────────────────────
    GATEWAY_BASE_URL = "http://localhost:8000"
    GATEWAY_API_KEY = ""
    GATEWAY_TIMEOUT_S = 300.0           # Long text can take minutes
    GATEWAY_CONNECT_TIMEOUT_S = 10.0
    GATEWAY_HEALTH_TIMEOUT_S = 10.0     # Also used for /languages

    # ─────────────────────────────────────────────────────────────────────────
    # Ledger
    # ─────────────────────────────────────────────────────────────────────────
    LEDGER_DATABASE_URL = "sqlite:///./data/tts-saas.db"

    # ─────────────────────────────────────────────────────────────────────────
    # Audio Storage
    # ─────────────────────────────────────────────────────────────────────────
    STORAGE_AUDIO_DIR = "./storage/audio"
    STORAGE_URL_PREFIX = "/v1/audio"

    # ─────────────────────────────────────────────────────────────────────────
    # Generation
    # ─────────────────────────────────────────────────────────────────────────
    GENERATION_MAX_TEXT_LENGTH = 50_000
    GENERATION_STORED_TEXT_CHARS = 500  # Text kept on the record
    GENERATION_CHARS_PER_SECOND = 15.0  # Duration estimate

    # ─────────────────────────────────────────────────────────────────────────
    # Auth
    # ─────────────────────────────────────────────────────────────────────────
    AUTH_USER_HEADER = "X-User-Id"
    AUTH_ROLE_HEADER = "X-User-Role"
    AUTH_PROXY_SECRET = ""

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


@dataclass
class GatewayConfig:
    """
    External synthesis service configuration.

    The API key is sent as a bearer token when non-empty.
    """
    base_url: str = Defaults.GATEWAY_BASE_URL
    api_key: str = Defaults.GATEWAY_API_KEY
    timeout_s: float = Defaults.GATEWAY_TIMEOUT_S
    connect_timeout_s: float = Defaults.GATEWAY_CONNECT_TIMEOUT_S
    health_timeout_s: float = Defaults.GATEWAY_HEALTH_TIMEOUT_S


@dataclass
class LedgerConfig:
    """Ledger database configuration (SQLite or PostgreSQL URL)."""
    database_url: str = Defaults.LEDGER_DATABASE_URL


@dataclass
class StorageConfig:
    """
    Persisted audio configuration.

    Files are written under audio_dir and exposed to clients as
    {url_prefix}/{filename}.
    """
    audio_dir: str = Defaults.STORAGE_AUDIO_DIR
    url_prefix: str = Defaults.STORAGE_URL_PREFIX


@dataclass
class GenerationConfig:
    """Request limits and generation record derivation."""
    max_text_length: int = Defaults.GENERATION_MAX_TEXT_LENGTH
    stored_text_chars: int = Defaults.GENERATION_STORED_TEXT_CHARS
    chars_per_second: float = Defaults.GENERATION_CHARS_PER_SECOND


@dataclass
class AuthConfig:
    """
    Identity header configuration.

    The service sits behind an authenticating proxy which forwards the
    caller's identity in headers. When proxy_secret is set, requests must
    also carry it in X-Proxy-Secret.
    """
    user_header: str = Defaults.AUTH_USER_HEADER
    role_header: str = Defaults.AUTH_ROLE_HEADER
    proxy_secret: str = Defaults.AUTH_PROXY_SECRET


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Request lifecycle, ledger changes (default)
        3 = VERBOSE: Per-stage timing, detailed flow
        4 = DEBUG: Internal state, full tracing
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class ServiceConfig:
    """
    Validated configuration for the service container.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = ServiceConfig.from_settings(settings)
        print(config.gateway.timeout_s)
    """
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ServiceConfig":
        """
        Create ServiceConfig from Settings with validation.

        Args:
            settings: Raw Settings object loaded from YAML.

        Returns:
            Validated ServiceConfig instance.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Gateway configuration
        # ─────────────────────────────────────────────────────────────────────
        gateway_raw = raw.get("gateway", {}) or {}
        gateway = GatewayConfig(
            base_url=str(gateway_raw.get("base_url", Defaults.GATEWAY_BASE_URL)).rstrip("/"),
            api_key=str(gateway_raw.get("api_key") or Defaults.GATEWAY_API_KEY),
            timeout_s=float(gateway_raw.get("timeout_s", Defaults.GATEWAY_TIMEOUT_S)),
            connect_timeout_s=float(gateway_raw.get("connect_timeout_s", Defaults.GATEWAY_CONNECT_TIMEOUT_S)),
            health_timeout_s=float(gateway_raw.get("health_timeout_s", Defaults.GATEWAY_HEALTH_TIMEOUT_S)),
        )
        if not gateway.base_url:
            raise ConfigValidationError("gateway.base_url must not be empty")
        cls._validate_positive("gateway.timeout_s", gateway.timeout_s)
        cls._validate_positive("gateway.connect_timeout_s", gateway.connect_timeout_s)
        cls._validate_positive("gateway.health_timeout_s", gateway.health_timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Ledger configuration
        # ─────────────────────────────────────────────────────────────────────
        ledger_raw = raw.get("ledger", {}) or {}
        ledger = LedgerConfig(
            database_url=str(ledger_raw.get("database_url", Defaults.LEDGER_DATABASE_URL)),
        )

        # ─────────────────────────────────────────────────────────────────────
        # Storage configuration
        # ─────────────────────────────────────────────────────────────────────
        storage_raw = raw.get("storage", {}) or {}
        storage = StorageConfig(
            audio_dir=str(storage_raw.get("audio_dir", Defaults.STORAGE_AUDIO_DIR)),
            url_prefix="/" + str(storage_raw.get("url_prefix", Defaults.STORAGE_URL_PREFIX)).strip("/"),
        )

        # ─────────────────────────────────────────────────────────────────────
        # Generation configuration
        # ─────────────────────────────────────────────────────────────────────
        generation_raw = raw.get("generation", {}) or {}
        generation = GenerationConfig(
            max_text_length=int(generation_raw.get("max_text_length", Defaults.GENERATION_MAX_TEXT_LENGTH)),
            stored_text_chars=int(generation_raw.get("stored_text_chars", Defaults.GENERATION_STORED_TEXT_CHARS)),
            chars_per_second=float(generation_raw.get("chars_per_second", Defaults.GENERATION_CHARS_PER_SECOND)),
        )
        cls._validate_positive("generation.max_text_length", generation.max_text_length)
        cls._validate_non_negative("generation.stored_text_chars", generation.stored_text_chars)
        cls._validate_positive("generation.chars_per_second", generation.chars_per_second)

        # ─────────────────────────────────────────────────────────────────────
        # Auth configuration
        # ─────────────────────────────────────────────────────────────────────
        auth_raw = raw.get("auth", {}) or {}
        auth = AuthConfig(
            user_header=str(auth_raw.get("user_header", Defaults.AUTH_USER_HEADER)),
            role_header=str(auth_raw.get("role_header", Defaults.AUTH_ROLE_HEADER)),
            proxy_secret=str(auth_raw.get("proxy_secret") or Defaults.AUTH_PROXY_SECRET),
        )

        # ─────────────────────────────────────────────────────────────────────
        # Logging configuration
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # Handle string log levels (e.g., "INFO", "DEBUG")
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            gateway=gateway,
            ledger=ledger,
            storage=storage,
            generation=generation,
            auth=auth,
            logging=logging_cfg,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_service_config() to get the validated ServiceConfig.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    def get_service_config(self) -> ServiceConfig:
        """
        Get validated ServiceConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return ServiceConfig.from_settings(self)


# Environment variable -> (section, key)
_ENV_OVERRIDES = {
    "EXTERNAL_TTS_API_URL": ("gateway", "base_url"),
    "EXTERNAL_TTS_API_KEY": ("gateway", "api_key"),
    "DATABASE_URL": ("ledger", "database_url"),
    "TTS_SAAS_AUDIO_DIR": ("storage", "audio_dir"),
}


def apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides in place and return raw."""
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            raw.setdefault(section, {})[key] = value
    return raw


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings from a YAML configuration file.

    The path defaults to $TTS_SAAS_SETTINGS, then config/settings.yaml.

    Environment variable overrides:
        - EXTERNAL_TTS_API_URL: gateway.base_url
        - EXTERNAL_TTS_API_KEY: gateway.api_key
        - DATABASE_URL: ledger.database_url
        - TTS_SAAS_AUDIO_DIR: storage.audio_dir

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
    """
    p = Path(path or os.getenv("TTS_SAAS_SETTINGS", "config/settings.yaml"))
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    return Settings(raw=apply_env_overrides(raw))
