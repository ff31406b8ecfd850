"""
Workspace session settings from YAML with environment overrides.

Configuration priority (highest to lowest):
1. Environment variables (CACHE_TTL, REQUEST_TIMEOUT, ...)
2. settings YAML file (under the 'synapse:' key); ``${VAR}`` and
   ``${VAR:-default}`` references are expanded
3. Dataclass defaults

Tenant records live in a separate document (SYNAPSE_CONFIG_PATH), loaded by
``TenantRegistry.load``.
"""

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from synapse_core.errors.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("config") / "settings.yaml"
DEFAULT_TENANTS_PATH = Path("config") / "tenants.json"

_ENV_REF_PATTERN = re.compile(r"\$\{([^}:]+)(?::-(([^}]*))?)?\}")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file and return dict (empty when the file is missing)."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def expand_env_vars(data: Any, environ: Mapping[str, str] | None = None) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} in config data."""
    env = os.environ if environ is None else environ
    if isinstance(data, dict):
        return {key: expand_env_vars(value, env) for key, value in data.items()}
    if isinstance(data, list):
        return [expand_env_vars(item, env) for item in data]
    if isinstance(data, str):

        def replacer(match):
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return env.get(match.group(1), default_value)

        return _ENV_REF_PATTERN.sub(replacer, data)
    return data


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class WorkspaceSettings:
    """Runtime settings for the session layer.

    Load with WorkspaceSettings.load(), which reads settings.yaml with
    environment variable overrides.
    """

    # Result cache
    cache_ttl_seconds: float = 300.0
    cache_check_period_seconds: float = 60.0
    cache_max_entries: int = 1000

    # SQL sessions
    connect_timeout_seconds: int = 30
    request_timeout_seconds: int = 30
    odbc_driver: str = "ODBC Driver 18 for SQL Server"

    # Retry executor
    retry_max_attempts: int = 4
    retry_base_delay_seconds: float = 1.0

    # Tokens
    token_expiry_buffer_seconds: float = 300.0

    # REST
    api_version: str = "2020-12-01"

    # Tenants document
    tenants_path: Path = DEFAULT_TENANTS_PATH

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # key -> environment variable
    ENV_OVERRIDES = {
        "cache_ttl_seconds": "CACHE_TTL",
        "cache_check_period_seconds": "CACHE_CHECK_PERIOD",
        "cache_max_entries": "CACHE_MAX_ENTRIES",
        "connect_timeout_seconds": "SQL_CONNECT_TIMEOUT",
        "request_timeout_seconds": "REQUEST_TIMEOUT",
        "odbc_driver": "ODBC_DRIVER",
        "retry_max_attempts": "RETRY_MAX_ATTEMPTS",
        "retry_base_delay_seconds": "RETRY_BASE_DELAY",
        "token_expiry_buffer_seconds": "TOKEN_EXPIRY_BUFFER",
        "api_version": "SYNAPSE_API_VERSION",
        "tenants_path": "SYNAPSE_CONFIG_PATH",
        "log_level": "LOG_LEVEL",
        "log_json": "LOG_JSON",
    }

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "WorkspaceSettings":
        """Load settings from YAML and environment, then validate.

        Args:
            config_path: settings YAML (default: SYNAPSE_SETTINGS_PATH or
                config/settings.yaml)
            environ: Environment mapping (default: os.environ)

        Raises:
            ConfigurationError: A value is malformed or out of range
        """
        env = os.environ if environ is None else environ
        config_path = Path(config_path or env.get("SYNAPSE_SETTINGS_PATH") or DEFAULT_SETTINGS_PATH)

        try:
            raw = load_yaml(config_path)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid settings file: {config_path}",
                cause=e,
                context={"config_path": str(config_path)},
            ) from e
        data: dict[str, Any] = dict(expand_env_vars(raw.get("synapse", {}) or {}, env))

        for key, env_name in cls.ENV_OVERRIDES.items():
            value = env.get(env_name)
            if value not in (None, ""):
                data[key] = value

        unknown = sorted(set(data) - set(cls.ENV_OVERRIDES))
        if unknown:
            logger.warning(
                "Ignoring unknown settings keys",
                extra={"config_path": str(config_path), "error_message": ", ".join(unknown)},
            )

        try:
            settings = cls(
                cache_ttl_seconds=float(data.get("cache_ttl_seconds", 300)),
                cache_check_period_seconds=float(data.get("cache_check_period_seconds", 60)),
                cache_max_entries=int(data.get("cache_max_entries", 1000)),
                connect_timeout_seconds=int(data.get("connect_timeout_seconds", 30)),
                request_timeout_seconds=int(data.get("request_timeout_seconds", 30)),
                odbc_driver=str(data.get("odbc_driver", cls.odbc_driver)),
                retry_max_attempts=int(data.get("retry_max_attempts", 4)),
                retry_base_delay_seconds=float(data.get("retry_base_delay_seconds", 1.0)),
                token_expiry_buffer_seconds=float(data.get("token_expiry_buffer_seconds", 300)),
                api_version=str(data.get("api_version", cls.api_version)),
                tenants_path=Path(data.get("tenants_path", DEFAULT_TENANTS_PATH)),
                log_level=str(data.get("log_level", "INFO")).upper(),
                log_json=_parse_bool(data.get("log_json", False)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid settings value: {e}",
                cause=e,
                context={"config_path": str(config_path)},
            ) from e

        settings.validate()
        return settings

    def validate(self) -> None:
        """Range-check values; raises ConfigurationError on the first problem."""
        self._validate_min("cache_ttl_seconds", self.cache_ttl_seconds, 0)
        self._validate_min("cache_check_period_seconds", self.cache_check_period_seconds, 0)
        self._validate_min("cache_max_entries", self.cache_max_entries, 1)
        self._validate_min("connect_timeout_seconds", self.connect_timeout_seconds, 1)
        self._validate_range("request_timeout_seconds", self.request_timeout_seconds, 1, 300)
        self._validate_min("retry_max_attempts", self.retry_max_attempts, 1)
        self._validate_min("retry_base_delay_seconds", self.retry_base_delay_seconds, 0)
        self._validate_min("token_expiry_buffer_seconds", self.token_expiry_buffer_seconds, 0)
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"log_level must be a logging level name, got {self.log_level!r}")

    @staticmethod
    def _validate_min(name: str, value: float, minimum: float) -> None:
        if value < minimum:
            raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")

    @staticmethod
    def _validate_range(name: str, value: float, minimum: float, maximum: float) -> None:
        if not minimum <= value <= maximum:
            raise ConfigurationError(f"{name} must be between {minimum} and {maximum}, got {value}")


__all__ = [
    "WorkspaceSettings",
    "DEFAULT_SETTINGS_PATH",
    "DEFAULT_TENANTS_PATH",
    "load_yaml",
    "expand_env_vars",
]
