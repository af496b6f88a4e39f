"""Service discovery back ends and instance health checking.

The DNS and configuration back ends answer from fixed, simulated data.
"""

from __future__ import annotations

import copy
import time
from typing import Iterable

from .instance import Address, ServiceInstance

_LOCALHOST = "127.0.0.1"

_DNS_RECORDS: dict[str, list[Address]] = {
    "user-service": [(_LOCALHOST, 8080), (_LOCALHOST, 8081)],
    "order-service": [(_LOCALHOST, 8082), (_LOCALHOST, 8083)],
}

_HEALTHY_SERVICES = frozenset({"user-service", "order-service"})


def _resolve(service_name: str) -> list[Address]:
    return list(_DNS_RECORDS.get(service_name, []))


def _configured_services() -> dict[str, list[ServiceInstance]]:
    return {
        "user-service": [
            ServiceInstance(
                "user-1",
                "user-service",
                (_LOCALHOST, 8080),
                {"version": "1.0.0", "region": "us-east-1"},
            ).with_weight(10),
            ServiceInstance(
                "user-2",
                "user-service",
                (_LOCALHOST, 8081),
                {"version": "1.0.0", "region": "us-west-1"},
            ).with_weight(5),
        ],
        "order-service": [
            ServiceInstance(
                "order-1",
                "order-service",
                (_LOCALHOST, 8082),
                {"version": "2.0.0", "region": "us-east-1"},
            ).with_weight(8),
        ],
    }


class DnsServiceDiscovery:
    """Looks up service addresses, at most once per query interval."""

    def __init__(self, dns_server: str, query_interval: float) -> None:
        self._dns_server = dns_server
        self.query_interval = query_interval
        self._last_query = time.monotonic()

    def query_dns(self, service_name: str) -> list[Address]:
        """Resolve a service, or return nothing if queried too recently."""
        if time.monotonic() - self._last_query < self.query_interval:
            return []
        return self.force_query_dns(service_name)

    def force_query_dns(self, service_name: str) -> list[Address]:
        """Resolve a service regardless of the query interval."""
        self._last_query = time.monotonic()
        return _resolve(service_name)


class ConfigServiceDiscovery:
    """Loads service instances from configuration, at most once per reload interval."""

    def __init__(self, config_path: str, reload_interval: float) -> None:
        self._config_path = config_path
        self.reload_interval = reload_interval
        self._last_reload = time.monotonic()
        self._services: dict[str, list[ServiceInstance]] = {}

    def load_services(self) -> None:
        """Reload the services unless the last reload was too recent."""
        if time.monotonic() - self._last_reload < self.reload_interval:
            return
        self.force_load_services()

    def force_load_services(self) -> None:
        """Reload the services regardless of the reload interval."""
        self._last_reload = time.monotonic()
        self._services = _configured_services()

    def get_services(self, service_name: str) -> list[ServiceInstance]:
        """Return copies of the known instances of a service."""
        return copy.deepcopy(self._services.get(service_name, []))


class RegistryServiceDiscovery:
    """An in-process service registry with heartbeats."""

    def __init__(self, registry_url: str, heartbeat_interval: float) -> None:
        self._registry_url = registry_url
        self.heartbeat_interval = heartbeat_interval
        self._last_heartbeat = time.monotonic()
        self._registered: dict[str, list[ServiceInstance]] = {}

    def register_service(self, instance: ServiceInstance) -> None:
        """Add an instance under its service name."""
        self._registered.setdefault(instance.name, []).append(instance)

    def unregister_service(self, service_name: str, instance_id: str) -> None:
        """Remove an instance; drop the service once it has none left."""
        instances = self._registered.get(service_name)
        if instances is None:
            return
        remaining = [i for i in instances if i.id != instance_id]
        if remaining:
            self._registered[service_name] = remaining
        else:
            del self._registered[service_name]

    def send_heartbeat(self) -> None:
        """Mark all instances healthy unless the last heartbeat was too recent."""
        if time.monotonic() - self._last_heartbeat < self.heartbeat_interval:
            return
        self.force_send_heartbeat()

    def force_send_heartbeat(self) -> None:
        """Mark all instances healthy regardless of the heartbeat interval."""
        self._last_heartbeat = time.monotonic()
        for instances in self._registered.values():
            for instance in instances:
                instance.update_health(True)

    def get_services(self, service_name: str) -> list[ServiceInstance]:
        """Return copies of the registered instances of a service."""
        return copy.deepcopy(self._registered.get(service_name, []))


class HealthChecker:
    """Updates the health of instances, at most once per check interval."""

    def __init__(self, check_interval: float) -> None:
        self.check_interval = check_interval
        self._last_check = time.monotonic()

    def check_health(self, instances: Iterable[ServiceInstance]) -> None:
        """Check the instances unless the last check was too recent."""
        if time.monotonic() - self._last_check < self.check_interval:
            return
        self.force_check_health(instances)

    def force_check_health(self, instances: Iterable[ServiceInstance]) -> None:
        """Check the instances regardless of the check interval."""
        self._last_check = time.monotonic()
        for instance in instances:
            instance.update_health(instance.name in _HEALTHY_SERVICES)