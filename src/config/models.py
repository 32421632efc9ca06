"""Configuration models for the CORS Relay."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class Environment(Enum):
    """Deployment environment of the relay."""
    PRODUCTION = "production"
    DEVELOPMENT = "development"
    TEST = "test"

    def __str__(self):
        return self.value


@dataclass
class RelayPolicy:
    """Policies applied to every forwarded request."""

    timeout: int = 30000  # Timeout in milliseconds
    blocked_hosts: List[str] = field(
        default_factory=lambda: ["localhost", "127.0.0.1"]
    )
    blocked_host_suffixes: List[str] = field(default_factory=lambda: [".local"])
    user_agent: str = "CORS-Relay/1.0"

    def is_blocked_host(self, hostname: str) -> bool:
        host = hostname.lower()
        if host in self.blocked_hosts:
            return True
        return any(host.endswith(suffix) for suffix in self.blocked_host_suffixes)


@dataclass
class SecurityConfig:
    """Security configuration for CORS headers."""

    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    allow_credentials: bool = True
    max_age: int = 86400  # Preflight cache lifetime in seconds


@dataclass
class MonitoringConfig:
    """Monitoring and logging configuration."""

    log_level: str = "INFO"


@dataclass
class ProxyConfig:
    """Main configuration for the relay."""

    environment: Environment = Environment.DEVELOPMENT
    policy: RelayPolicy = field(default_factory=RelayPolicy)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION
