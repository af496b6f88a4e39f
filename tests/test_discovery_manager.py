import time

from distkit.discovery_manager import ServiceDiscoveryManager
from distkit.instance import (
    ConfigStrategy,
    DnsStrategy,
    HybridStrategy,
    RegistryStrategy,
    ServiceDiscoveryConfig,
    ServiceInstance,
)


def _instance(iid, name="test-service", port=8080):
    return ServiceInstance(iid, name, ("127.0.0.1", port), {})


def _registry_manager(**kwargs):
    return ServiceDiscoveryManager(
        ServiceDiscoveryConfig(
            strategy=RegistryStrategy("http://localhost:8500", 30.0), **kwargs
        )
    )


def test_config_strategy_discovers_user_service():
    config = ServiceDiscoveryConfig(
        strategy=ConfigStrategy("services.json", 30.0),
        service_ttl=300.0,
        health_check_interval=30.0,
        max_retries=3,
        timeout=5.0,
    )
    manager = ServiceDiscoveryManager(config)
    instances = manager.discover_services("user-service")
    assert instances
    assert {i.id for i in instances} == {"user-1", "user-2"}


def test_discovery_populates_cache():
    manager = ServiceDiscoveryManager(ServiceDiscoveryConfig())
    manager.discover_services("order-service")
    cache = manager.get_all_services()
    assert [i.id for i in cache["order-service"]] == ["order-1"]


def test_unknown_service_yields_nothing():
    manager = ServiceDiscoveryManager(ServiceDiscoveryConfig())
    assert manager.discover_services("missing-service") == []


def test_dns_strategy_builds_numbered_instances():
    manager = ServiceDiscoveryManager(
        ServiceDiscoveryConfig(strategy=DnsStrategy("8.8.8.8", 30.0))
    )
    instances = manager.discover_services("user-service")
    assert [i.id for i in instances] == ["user-service-0", "user-service-1"]
    assert [i.address for i in instances] == [("127.0.0.1", 8080), ("127.0.0.1", 8081)]


def test_hybrid_strategy_uses_primary():
    strategy = HybridStrategy(
        primary=ConfigStrategy("services.json", 30.0),
        fallback=DnsStrategy("8.8.8.8", 30.0),
    )
    manager = ServiceDiscoveryManager(ServiceDiscoveryConfig(strategy=strategy))
    instances = manager.discover_services("user-service")
    assert [i.id for i in instances] == ["user-service-0", "user-service-1"]
    assert all(i.metadata == {} for i in instances)


def test_hybrid_with_nested_hybrid_primary_finds_nothing():
    inner = HybridStrategy(
        primary=DnsStrategy("8.8.8.8", 30.0), fallback=DnsStrategy("8.8.8.8", 30.0)
    )
    strategy = HybridStrategy(primary=inner, fallback=DnsStrategy("8.8.8.8", 30.0))
    manager = ServiceDiscoveryManager(ServiceDiscoveryConfig(strategy=strategy))
    assert manager.discover_services("user-service") == []


def test_register_then_discover_from_cache():
    manager = _registry_manager()
    manager.register_service(_instance("test-1"))
    found = manager.discover_services("test-service")
    assert [i.id for i in found] == ["test-1"]


def test_registry_discovery_after_cache_cleared():
    manager = _registry_manager()
    manager.register_service(_instance("test-1"))
    manager.clear_cache_for("test-service")
    assert "test-service" not in manager.get_all_services()
    found = manager.discover_services("test-service")
    assert [i.id for i in found] == ["test-1"]


def test_health_check_runs_when_interval_elapsed():
    manager = _registry_manager(health_check_interval=0.0)
    manager.register_service(_instance("b-1", name="billing"))
    manager.clear_cache_for("billing")
    found = manager.discover_services("billing")
    assert len(found) == 1
    assert found[0].is_healthy is False


def test_unregister_removes_from_cache():
    manager = _registry_manager()
    manager.register_service(_instance("test-1"))
    manager.register_service(_instance("test-2", port=8081))
    manager.unregister_service("test-service", "test-1")
    assert [i.id for i in manager.get_all_services()["test-service"]] == ["test-2"]
    manager.unregister_service("test-service", "test-2")
    assert "test-service" not in manager.get_all_services()


def test_set_cache_for_replace_and_merge():
    manager = ServiceDiscoveryManager(ServiceDiscoveryConfig())
    manager.set_cache_for("svc", [_instance("a", name="svc")], replace=True)
    manager.set_cache_for("svc", [_instance("b", name="svc")], replace=False)
    assert [i.id for i in manager.get_all_services()["svc"]] == ["a", "b"]
    manager.set_cache_for("svc", [_instance("c", name="svc")], replace=True)
    assert [i.id for i in manager.get_all_services()["svc"]] == ["c"]


def test_cached_instances_are_returned_first():
    manager = ServiceDiscoveryManager(ServiceDiscoveryConfig())
    manager.set_cache_for("user-service", [_instance("cached", name="user-service")], True)
    assert [i.id for i in manager.discover_services("user-service")] == ["cached"]


def test_expired_cache_triggers_rediscovery():
    manager = ServiceDiscoveryManager(ServiceDiscoveryConfig(service_ttl=10.0))
    stale = _instance("stale", name="user-service")
    stale.last_updated = time.monotonic() - 100.0
    manager.set_cache_for("user-service", [stale], True)
    ids = {i.id for i in manager.discover_services("user-service")}
    assert ids == {"user-1", "user-2"}


def test_cleanup_expired_services():
    manager = ServiceDiscoveryManager(ServiceDiscoveryConfig(service_ttl=10.0))
    stale = _instance("stale", name="old")
    stale.last_updated = time.monotonic() - 100.0
    fresh = _instance("fresh", name="mixed")
    old_in_mixed = _instance("old-in-mixed", name="mixed")
    old_in_mixed.last_updated = time.monotonic() - 100.0
    manager.set_cache_for("old", [stale], True)
    manager.set_cache_for("mixed", [fresh, old_in_mixed], True)
    manager.cleanup_expired_services()
    cache = manager.get_all_services()
    assert set(cache) == {"mixed"}
    assert [i.id for i in cache["mixed"]] == ["fresh"]


def test_update_config_replaces_config():
    manager = ServiceDiscoveryManager(ServiceDiscoveryConfig())
    new_config = ServiceDiscoveryConfig(service_ttl=42.0, max_retries=7)
    manager.update_config(new_config)
    assert manager.config.service_ttl == 42.0
    assert manager.config.max_retries == 7