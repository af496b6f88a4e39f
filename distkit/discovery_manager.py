"""A service discovery front end with a TTL-bounded instance cache."""

from __future__ import annotations

import copy
import threading
from typing import Optional

from .discovery import (
    ConfigServiceDiscovery,
    DnsServiceDiscovery,
    HealthChecker,
    RegistryServiceDiscovery,
)
from .instance import (
    Address,
    ConfigStrategy,
    DiscoveryStrategy,
    DnsStrategy,
    HybridStrategy,
    RegistryStrategy,
    ServiceDiscoveryConfig,
    ServiceInstance,
)


def _instances_from_addresses(
    service_name: str, addresses: list[Address]
) -> list[ServiceInstance]:
    return [
        ServiceInstance(f"{service_name}-{i}", service_name, address, {})
        for i, address in enumerate(addresses)
    ]


class ServiceDiscoveryManager:
    """Discovers service instances through the configured strategy and caches them."""

    def __init__(self, config: ServiceDiscoveryConfig) -> None:
        self._config = config
        self._dns: Optional[DnsServiceDiscovery] = None
        self._config_discovery: Optional[ConfigServiceDiscovery] = None
        self._registry: Optional[RegistryServiceDiscovery] = None
        self._cache: dict[str, list[ServiceInstance]] = {}
        self._lock = threading.RLock()
        self._health_checker = HealthChecker(config.health_check_interval)

        strategy = config.strategy
        if isinstance(strategy, HybridStrategy):
            # Only the primary back end is set up; the fallback is never used.
            self._init_backend(strategy.primary)
        else:
            self._init_backend(strategy)

    def _init_backend(self, strategy: DiscoveryStrategy) -> None:
        if isinstance(strategy, DnsStrategy):
            self._dns = DnsServiceDiscovery(strategy.dns_server, strategy.query_interval)
        elif isinstance(strategy, ConfigStrategy):
            self._config_discovery = ConfigServiceDiscovery(
                strategy.config_path, strategy.reload_interval
            )
        elif isinstance(strategy, RegistryStrategy):
            self._registry = RegistryServiceDiscovery(
                strategy.registry_url, strategy.heartbeat_interval
            )

    def _primary_addresses(
        self, primary: DiscoveryStrategy, service_name: str
    ) -> Optional[list[Address]]:
        """Addresses from the hybrid primary, or None if it is unavailable."""
        if isinstance(primary, DnsStrategy):
            if self._dns is None:
                return None
            return self._dns.force_query_dns(service_name)
        if isinstance(primary, ConfigStrategy):
            if self._config_discovery is None:
                return None
            self._config_discovery.force_load_services()
            return [i.address for i in self._config_discovery.get_services(service_name)]
        if isinstance(primary, RegistryStrategy):
            if self._registry is None:
                return None
            return [i.address for i in self._registry.get_services(service_name)]
        return None

    def discover_services(self, service_name: str) -> list[ServiceInstance]:
        """Return the instances of a service, from cache while they are fresh."""
        ttl = self._config.service_ttl
        with self._lock:
            cached = self._cache.get(service_name)
            if cached is not None:
                valid = [copy.deepcopy(i) for i in cached if not i.is_expired(ttl)]
                if valid:
                    return valid

        instances: list[ServiceInstance] = []
        strategy = self._config.strategy
        if isinstance(strategy, DnsStrategy):
            if self._dns is not None:
                instances = _instances_from_addresses(
                    service_name, self._dns.force_query_dns(service_name)
                )
        elif isinstance(strategy, ConfigStrategy):
            if self._config_discovery is not None:
                self._config_discovery.force_load_services()
                instances = self._config_discovery.get_services(service_name)
        elif isinstance(strategy, RegistryStrategy):
            if self._registry is not None:
                instances = self._registry.get_services(service_name)
        elif isinstance(strategy, HybridStrategy):
            addresses = self._primary_addresses(strategy.primary, service_name)
            if addresses is not None:
                instances = _instances_from_addresses(service_name, addresses)

        self._health_checker.check_health(instances)

        with self._lock:
            self._cache[service_name] = copy.deepcopy(instances)
        return instances

    def register_service(self, instance: ServiceInstance) -> None:
        """Register an instance with the registry, if any, and cache it."""
        if self._registry is not None:
            self._registry.register_service(copy.deepcopy(instance))
        with self._lock:
            self._cache.setdefault(instance.name, []).append(instance)

    def unregister_service(self, service_name: str, instance_id: str) -> None:
        """Remove an instance from the registry, if any, and from the cache."""
        if self._registry is not None:
            self._registry.unregister_service(service_name, instance_id)
        with self._lock:
            instances = self._cache.get(service_name)
            if instances is None:
                return
            remaining = [i for i in instances if i.id != instance_id]
            if remaining:
                self._cache[service_name] = remaining
            else:
                del self._cache[service_name]

    def get_all_services(self) -> dict[str, list[ServiceInstance]]:
        """Return a copy of the whole cache."""
        with self._lock:
            return copy.deepcopy(self._cache)

    def set_cache_for(
        self, service_name: str, instances: list[ServiceInstance], replace: bool
    ) -> None:
        """Write instances straight into the cache, replacing or extending."""
        with self._lock:
            if replace:
                self._cache[service_name] = list(instances)
            else:
                self._cache.setdefault(service_name, []).extend(instances)

    def clear_cache_for(self, service_name: str) -> None:
        """Drop the cached instances of a service."""
        with self._lock:
            self._cache.pop(service_name, None)

    def cleanup_expired_services(self) -> None:
        """Remove expired instances and services left with none."""
        ttl = self._config.service_ttl
        with self._lock:
            fresh = {
                name: [i for i in instances if not i.is_expired(ttl)]
                for name, instances in self._cache.items()
            }
            self._cache = {name: insts for name, insts in fresh.items() if insts}

    @property
    def config(self) -> ServiceDiscoveryConfig:
        """The current configuration."""
        return self._config

    def update_config(self, config: ServiceDiscoveryConfig) -> None:
        """Replace the configuration; back ends are left as they are."""
        self._config = config