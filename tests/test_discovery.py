from distkit.discovery import (
    ConfigServiceDiscovery,
    DnsServiceDiscovery,
    HealthChecker,
    RegistryServiceDiscovery,
)
from distkit.instance import ServiceInstance


def _instance(instance_id, name, port):
    return ServiceInstance(instance_id, name, ("127.0.0.1", port), {})


def test_dns_service_discovery():
    dns = DnsServiceDiscovery("8.8.8.8", 30.0)
    addresses = dns.force_query_dns("user-service")
    assert addresses == [("127.0.0.1", 8080), ("127.0.0.1", 8081)]


def test_dns_order_service_and_unknown():
    dns = DnsServiceDiscovery("8.8.8.8", 30.0)
    assert dns.force_query_dns("order-service") == [("127.0.0.1", 8082), ("127.0.0.1", 8083)]
    assert dns.force_query_dns("missing-service") == []


def test_dns_query_respects_interval():
    assert DnsServiceDiscovery("8.8.8.8", 30.0).query_dns("user-service") == []
    assert len(DnsServiceDiscovery("8.8.8.8", 0.0).query_dns("user-service")) == 2


def test_config_service_discovery():
    config = ConfigServiceDiscovery("services.json", 30.0)
    config.force_load_services()
    services = config.get_services("user-service")
    assert services
    assert services[0].name == "user-service"
    assert [s.weight for s in services] == [10, 5]
    assert services[1].metadata["region"] == "us-west-1"


def test_config_load_respects_interval():
    config = ConfigServiceDiscovery("services.json", 30.0)
    config.load_services()
    assert config.get_services("order-service") == []
    eager = ConfigServiceDiscovery("services.json", 0.0)
    eager.load_services()
    assert [s.id for s in eager.get_services("order-service")] == ["order-1"]


def test_config_get_services_returns_copies():
    config = ConfigServiceDiscovery("services.json", 30.0)
    config.force_load_services()
    first = config.get_services("user-service")
    first[0].weight = 99
    assert config.get_services("user-service")[0].weight == 10


def test_registry_service_discovery():
    registry = RegistryServiceDiscovery("http://localhost:8500", 30.0)
    registry.register_service(_instance("test-1", "test-service", 8080))
    services = registry.get_services("test-service")
    assert len(services) == 1
    assert services[0].id == "test-1"


def test_registry_unregister_removes_empty_service():
    registry = RegistryServiceDiscovery("http://localhost:8500", 30.0)
    registry.register_service(_instance("test-1", "test-service", 8080))
    registry.register_service(_instance("test-2", "test-service", 8081))
    registry.unregister_service("test-service", "test-1")
    assert [s.id for s in registry.get_services("test-service")] == ["test-2"]
    registry.unregister_service("test-service", "test-2")
    assert registry.get_services("test-service") == []
    registry.unregister_service("absent", "x")
    assert registry.get_services("absent") == []


def test_registry_heartbeat_marks_healthy():
    registry = RegistryServiceDiscovery("http://localhost:8500", 30.0)
    instance = _instance("test-1", "test-service", 8080)
    instance.update_health(False)
    registry.register_service(instance)
    registry.send_heartbeat()
    assert registry.get_services("test-service")[0].is_healthy is False
    registry.force_send_heartbeat()
    assert registry.get_services("test-service")[0].is_healthy is True


def test_health_checker():
    checker = HealthChecker(1.0)
    instances = [
        _instance("test-1", "user-service", 8080),
        _instance("test-2", "unknown-service", 8081),
    ]
    checker.force_check_health(instances)
    assert instances[0].is_healthy
    assert not instances[1].is_healthy


def test_health_checker_respects_interval():
    checker = HealthChecker(30.0)
    instances = [_instance("test-2", "unknown-service", 8081)]
    checker.check_health(instances)
    assert instances[0].is_healthy is True
    HealthChecker(0.0).check_health(instances)
    assert instances[0].is_healthy is False