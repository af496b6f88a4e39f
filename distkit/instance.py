"""Service instances and service discovery configuration."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional, Union

Address = tuple[str, int]


@dataclass
class ServiceInstance:
    """One running instance of a named service.

    Durations and timestamps are in seconds; ``last_updated`` is a
    ``time.monotonic()`` reading.
    """

    id: str
    name: str
    address: Address
    metadata: dict[str, str] = field(default_factory=dict)
    health_check_url: Optional[str] = None
    weight: int = 1
    last_updated: float = field(default_factory=time.monotonic)
    is_healthy: bool = True

    def with_health_check_url(self, url: str) -> "ServiceInstance":
        """Set the health check URL and return the instance."""
        self.health_check_url = url
        return self

    def with_weight(self, weight: int) -> "ServiceInstance":
        """Set the load-balancing weight and return the instance."""
        self.weight = weight
        return self

    def update_health(self, is_healthy: bool) -> None:
        """Record a health result and refresh the update time."""
        self.is_healthy = is_healthy
        self.last_updated = time.monotonic()

    def is_expired(self, ttl: float) -> bool:
        """Return True if the instance was last updated more than ``ttl`` seconds ago."""
        return time.monotonic() - self.last_updated > ttl


@dataclass(frozen=True)
class DnsStrategy:
    """Discover services through DNS lookups."""

    dns_server: str
    query_interval: float


@dataclass(frozen=True)
class ConfigStrategy:
    """Discover services from a configuration file."""

    config_path: str
    reload_interval: float


@dataclass(frozen=True)
class RegistryStrategy:
    """Discover services through a registry."""

    registry_url: str
    heartbeat_interval: float


@dataclass(frozen=True)
class HybridStrategy:
    """A primary strategy with a fallback."""

    primary: "DiscoveryStrategy"
    fallback: "DiscoveryStrategy"


DiscoveryStrategy = Union[DnsStrategy, ConfigStrategy, RegistryStrategy, HybridStrategy]


def _default_strategy() -> DiscoveryStrategy:
    return ConfigStrategy(config_path="services.json", reload_interval=30.0)


@dataclass
class ServiceDiscoveryConfig:
    """Settings for service discovery; durations are in seconds."""

    strategy: DiscoveryStrategy = field(default_factory=_default_strategy)
    service_ttl: float = 300.0
    health_check_interval: float = 30.0
    max_retries: int = 3
    timeout: float = 5.0