"""Configuration loader for the CORS Relay."""

import json
import os
from typing import Dict, Any, Optional

try:
    import boto3

    BOTO3_AVAILABLE = True
except ImportError:
    BOTO3_AVAILABLE = False

from config.models import (
    Environment,
    MonitoringConfig,
    ProxyConfig,
    RelayPolicy,
    SecurityConfig,
)
from utils.logger import get_logger

logger = get_logger(__name__)

MAX_TIMEOUT_MS = 300000
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""


class ConfigLoader:
    """Loads and validates relay configuration from S3, a local file or defaults."""

    def __init__(
        self,
        s3_bucket: str = None,
        s3_key: str = None,
        config_path: str = None,
    ) -> None:
        """
        Initialize the config loader.

        Args:
            s3_bucket: S3 bucket name for configuration.
            s3_key: S3 key for configuration file.
            config_path: Path to the local configuration file (fallback).
        """
        # S3 configuration (priority)
        self._s3_bucket = s3_bucket or os.environ.get("CORS_RELAY_CONFIG_S3_BUCKET")
        self._s3_key = s3_key or os.environ.get("CORS_RELAY_CONFIG_S3_KEY")
        self._s3_client = None
        # Local file configuration (fallback); no path means built-in defaults
        self.config_path = config_path or os.environ.get("CORS_RELAY_CONFIG_PATH")
        if self._check_s3_config():
            self._initialize_s3_client()

    def _initialize_s3_client(self) -> None:
        if not BOTO3_AVAILABLE:
            logger.warning(
                "S3 configuration provided but boto3 is not available. "
                "Install boto3 to use S3 config source."
            )
            return
        try:
            self._s3_client = boto3.client("s3")
        except Exception as e:
            # Fall back to the local file or defaults
            logger.warning("Failed to initialize S3 client: %s", e)

    def _check_s3_config(self) -> bool:
        return bool(self._s3_bucket and self._s3_key)

    def load_config(self) -> ProxyConfig:
        """
        Load and validate the relay configuration.

        Tries S3 first (if configured), then the local file, then the
        built-in defaults. Environment overrides are applied last.

        Returns:
            `ProxyConfig`: The validated configuration object.

        Raises:
            `ConfigurationError`: If configuration is invalid or cannot be
            loaded.
        """
        config_data = None

        if self._s3_client and self._check_s3_config():
            try:
                config_data = self._load_from_s3()
            except ConfigurationError as e:
                logger.warning(
                    "Failed to load config from S3 (bucket=%s, key=%s), "
                    "falling back to local file. Reason: %s",
                    self._s3_bucket, self._s3_key, str(e)
                )

        if config_data is None and self.config_path:
            config_data = self._load_from_file()
        if config_data is None:
            logger.info("No configuration source set, using defaults")
            config_data = {}

        config_data = self._apply_env_overrides(config_data)
        return self._parse_config(config_data)

    def _load_from_s3(self) -> Dict[str, Any]:
        """Load configuration from S3.

        Returns:
            `Dict`: Configuration data.

        Raises:
            `ConfigurationError`: If S3 load fails.
        """
        try:
            response = self._s3_client.get_object(
                Bucket=self._s3_bucket, Key=self._s3_key
            )
            config_content = response["Body"].read().decode("utf-8")
            return json.loads(config_content)
        except Exception as e:
            raise ConfigurationError("Unexpected error loading from S3") from e

    def _load_from_file(self) -> Dict[str, Any]:
        """Load configuration from local file.

        Returns:
            `Dict`: Configuration data.

        Raises:
            `ConfigurationError`: If file load fails.
        """
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise ConfigurationError(
                f"Configuration file not found: {self.config_path}"
            )
        except json.JSONDecodeError as e:
            raise ConfigurationError("Invalid JSON in configuration file") from e

    @staticmethod
    def _apply_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay CORS_RELAY_ENV and CORS_RELAY_TIMEOUT_MS onto the raw data."""
        data = dict(config_data)
        environment = os.environ.get("CORS_RELAY_ENV")
        if environment:
            data["environment"] = environment
        timeout = os.environ.get("CORS_RELAY_TIMEOUT_MS")
        if timeout:
            try:
                timeout_ms = int(timeout)
            except ValueError as e:
                raise ConfigurationError(
                    f"CORS_RELAY_TIMEOUT_MS must be an integer, got {timeout!r}"
                ) from e
            data["policy"] = {**data.get("policy", {}), "timeout": timeout_ms}
        return data

    def _parse_config(self, config_data: Dict[str, Any]) -> ProxyConfig:
        """Parse configuration data into structured objects.

        Args:
            config_data: Raw configuration dictionary.

        Returns:
            `ProxyConfig`: Parsed configuration object.

        Raises:
            `ConfigurationError`: If configuration structure is invalid.
        """
        if not isinstance(config_data, dict):
            raise ConfigurationError("Configuration must be a JSON object")
        return ProxyConfig(
            environment=self._environment(config_data.get("environment")),
            policy=self._policy_config(config_data.get("policy", {})),
            security=self._security_config(config_data.get("security", {})),
            monitoring=self._monitoring_config(config_data.get("monitoring", {})),
        )

    @staticmethod
    def _environment(value: Optional[str]) -> Environment:
        if value is None:
            return Environment.DEVELOPMENT
        try:
            return Environment(str(value).lower())
        except ValueError as e:
            raise ConfigurationError(
                "Environment must be one of "
                + ", ".join(env.value for env in Environment)
            ) from e

    def _policy_config(self, policy_data: Dict[str, Any]) -> RelayPolicy:
        """Parse a relay policy configuration.

        Args:
            policy_data: Raw policy configuration dictionary.

        Returns:
            `RelayPolicy`: Parsed policy configuration object.
        """
        defaults = RelayPolicy()
        policy = RelayPolicy(
            timeout=policy_data.get("timeout", defaults.timeout),
            blocked_hosts=policy_data.get("blockedHosts", defaults.blocked_hosts),
            blocked_host_suffixes=policy_data.get(
                "blockedHostSuffixes", defaults.blocked_host_suffixes
            ),
            user_agent=policy_data.get("userAgent", defaults.user_agent),
        )
        self._validate_policy_config(policy)
        return policy

    @staticmethod
    def _validate_policy_config(policy: RelayPolicy) -> None:
        try:
            assert isinstance(policy.timeout, int)
            assert not isinstance(policy.timeout, bool)
            assert 0 < policy.timeout <= MAX_TIMEOUT_MS
        except AssertionError as e:
            raise ConfigurationError(
                f"Policy timeout must be an integer between 0 and {MAX_TIMEOUT_MS}"
            ) from e
        for name, values in (("blockedHosts", policy.blocked_hosts),
                             ("blockedHostSuffixes", policy.blocked_host_suffixes)):
            if not isinstance(values, list) or not all(
                    isinstance(value, str) for value in values):
                raise ConfigurationError(f"Policy {name} must be a list of strings")
        if not policy.user_agent:
            raise ConfigurationError("Policy user agent cannot be empty")

    def _security_config(self, security_data: Dict[str, Any]) -> SecurityConfig:
        """Parse a security configuration.

        Args:
            security_data: Raw security configuration dictionary.

        Returns:
            `SecurityConfig`: Parsed security configuration object.
        """
        defaults = SecurityConfig()
        security_config = SecurityConfig(
            allowed_origins=security_data.get("allowedOrigins",
                                              defaults.allowed_origins),
            allow_credentials=security_data.get("allowCredentials",
                                                defaults.allow_credentials),
            max_age=security_data.get("maxAge", defaults.max_age),
        )
        self._validate_security_config(security_config)
        return security_config

    @staticmethod
    def _validate_security_config(security_config: SecurityConfig) -> None:
        if not security_config.allowed_origins:
            raise ConfigurationError("At least one allowed origin must be configured")
        if not isinstance(security_config.max_age, int) or security_config.max_age < 0:
            raise ConfigurationError("Security max age must be a non-negative integer")

    @staticmethod
    def _monitoring_config(monitoring_data: Dict[str, Any]) -> MonitoringConfig:
        log_level = str(monitoring_data.get("logLevel", "INFO")).upper()
        if log_level not in _LOG_LEVELS:
            raise ConfigurationError(
                "Log level must be one of " + ", ".join(sorted(_LOG_LEVELS))
            )
        return MonitoringConfig(log_level=log_level)
