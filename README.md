# distkit

Small, dependency-free building blocks for distributed systems. Everything
runs in-process, so the pieces can be composed, tested and simulated without
a network.

## What is inside

- `distkit.instance` – `ServiceInstance` (address, metadata, weight, health,
  expiry by TTL) and the discovery settings `ServiceDiscoveryConfig` with the
  strategies `DnsStrategy`, `ConfigStrategy`, `RegistryStrategy` and
  `HybridStrategy`.
- `distkit.discovery` – the discovery back ends `DnsServiceDiscovery`,
  `ConfigServiceDiscovery` and `RegistryServiceDiscovery`, and
  `HealthChecker`. Each back end has a rate-limited method (`query_dns`,
  `load_services`, `send_heartbeat`, `check_health`) and a `force_` variant
  that ignores the interval.
- `distkit.discovery_manager` – `ServiceDiscoveryManager`, a front end that
  discovers instances through the configured strategy and caches them until
  they expire (`discover_services`, `register_service`, `unregister_service`,
  `get_all_services`, `set_cache_for`, `clear_cache_for`,
  `cleanup_expired_services`, `config`, `update_config`).
- `distkit.security` – `AclManager` (first matching `AclRule` decides, deny
  by default), `Auditor` (bounded log of `AuditEvent`s, newest first from
  `recent`), `TokenBucket` rate limiting, `CircuitBreaker` with closed, open
  and half-open states, and the `Governance` container.
- `distkit.monitoring` – `Counter`, `Gauge`, `Histogram`, `MetricRegistry`,
  `MetricCollector` with `export_prometheus`, `SystemHealthChecker` with an
  overall `HealthStatus`, and `PerformanceMonitor`.
- `distkit.rpc` – `InMemoryRpcServer`, `InMemoryRpcClient` (`call`,
  `call_async`, `call_batch`), `ConnectionPool`, and `RetryClient` with
  exponential backoff driven by `RetryPolicy`. Failures raise `NetworkError`,
  a subclass of `DistributedError`.

Durations are in seconds throughout, except where a name says otherwise
(`open_ms`, `backoff_base_ms`).

## Installation

```
pip install distkit
```

## Examples

Service discovery with the default configuration strategy:

```python
from distkit.instance import ServiceDiscoveryConfig
from distkit.discovery_manager import ServiceDiscoveryManager

manager = ServiceDiscoveryManager(ServiceDiscoveryConfig())
for instance in manager.discover_services("user-service"):
    print(instance.id, instance.address, instance.weight)
# user-1 ('127.0.0.1', 8080) 10
# user-2 ('127.0.0.1', 8081) 5
```

Metrics with Prometheus export:

```python
from distkit.monitoring import MetricCollector

collector = MetricCollector()
requests = collector.counter("requests_total", {"service": "api"})
requests.add(3)
print(collector.export_prometheus(), end="")
# # TYPE requests_total counter
# requests_total{service="api"} 3
```

Access control, rate limiting and a circuit breaker:

```python
from distkit.security import (
    AclManager, AclRule, Action, CircuitBreaker, CircuitConfig,
    Principal, Resource, TokenBucket,
)

acl = AclManager([AclRule(Principal.user("alice"), Resource("orders"), Action.READ, True)])
assert acl.is_allowed(Principal.user("alice"), Resource("orders"), Action.READ)
assert not acl.is_allowed(Principal.user("alice"), Resource("orders"), Action.WRITE)

bucket = TokenBucket(capacity=2, refill_per_sec=1)
print([bucket.allow() for _ in range(3)])   # [True, True, False]

breaker = CircuitBreaker(CircuitConfig(error_threshold=2, open_ms=1000))
breaker.on_result(False)
breaker.on_result(False)
print(breaker.state())                       # CircuitState.OPEN
```

In-memory RPC with retries:

```python
from distkit.rpc import InMemoryRpcClient, InMemoryRpcServer, RetryClient, RetryPolicy

server = InMemoryRpcServer()
server.register("echo", lambda payload: payload)
client = RetryClient(InMemoryRpcClient(server), RetryPolicy(max_retries=3))
assert client.call("echo", b"hi") == b"hi"
```

## What it does not do

- Nothing goes over a network. The RPC server and client call handlers
  directly in the same process, and the connection pool only hands out
  identifiers.
- The DNS and configuration discovery back ends answer from fixed, simulated
  data; they do not query a DNS server or read a configuration file. Health
  checks are simulated in the same way.
- There are no load balancers, no cluster membership tracking and no
  distributed locks in this package.
- There is no command-line tool or server to run; it is a library.

## Running the tests

```
pip install -e .[test]
pytest
```