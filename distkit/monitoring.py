"""Metrics, Prometheus text export, health checks and request monitoring."""

from __future__ import annotations

import dataclasses
import math
import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, Union

MetricLabels = dict[str, str]

_MASK64 = (1 << 64) - 1


def _now_ms() -> int:
    return int(time.time() * 1000)


class MetricType(Enum):
    """Kinds of metric."""

    COUNTER = "Counter"
    GAUGE = "Gauge"
    HISTOGRAM = "Histogram"
    SUMMARY = "Summary"


@dataclass(frozen=True)
class HistogramBucket:
    """Observations that fell into one bucket."""

    upper_bound: float
    count: int


@dataclass(frozen=True)
class HistogramData:
    """A snapshot of a histogram."""

    count: int
    sum: float
    buckets: list[HistogramBucket]


@dataclass(frozen=True)
class Quantile:
    """One quantile of a summary."""

    quantile: float
    value: float


@dataclass(frozen=True)
class SummaryData:
    """A snapshot of a summary."""

    count: int
    sum: float
    quantiles: list[Quantile]


MetricValue = Union[float, HistogramData, SummaryData]


@dataclass(frozen=True)
class Metric:
    """A metric reading; ``timestamp`` is milliseconds since the epoch."""

    name: str
    metric_type: MetricType
    labels: MetricLabels
    value: MetricValue
    timestamp: int

    def to_dict(self) -> dict:
        """A JSON-ready representation with the value tagged by its type."""
        value = self.value
        if isinstance(value, (HistogramData, SummaryData)):
            payload: object = dataclasses.asdict(value)
        else:
            payload = float(value)
        return {
            "name": self.name,
            "metric_type": self.metric_type.value,
            "labels": dict(self.labels),
            "value": {self.metric_type.value: payload},
            "timestamp": self.timestamp,
        }


class Counter:
    """A monotonically increasing unsigned 64-bit counter."""

    metric_type = MetricType.COUNTER

    def __init__(self, name: str, labels: Optional[MetricLabels] = None) -> None:
        self.name = name
        self.labels = dict(labels or {})
        self._value = 0
        self._lock = threading.Lock()

    def inc(self) -> None:
        """Add one."""
        self.add(1)

    def add(self, delta: int) -> None:
        """Add a non-negative amount."""
        if delta < 0:
            raise ValueError("a counter cannot decrease")
        with self._lock:
            self._value = (self._value + delta) & _MASK64

    def get(self) -> int:
        """The current value."""
        with self._lock:
            return self._value

    def metric(self) -> Metric:
        """A snapshot of the counter."""
        return Metric(self.name, MetricType.COUNTER, dict(self.labels), float(self.get()), _now_ms())


class Gauge:
    """An unsigned 64-bit value that can move both ways; wraps like the hardware type."""

    metric_type = MetricType.GAUGE

    def __init__(self, name: str, labels: Optional[MetricLabels] = None) -> None:
        self.name = name
        self.labels = dict(labels or {})
        self._value = 0
        self._lock = threading.Lock()

    def set(self, value: int) -> None:
        """Store a value in the unsigned 64-bit range."""
        if not 0 <= value <= _MASK64:
            raise ValueError("gauge value out of range")
        with self._lock:
            self._value = value

    def inc(self) -> None:
        """Add one."""
        with self._lock:
            self._value = (self._value + 1) & _MASK64

    def dec(self) -> None:
        """Subtract one."""
        with self._lock:
            self._value = (self._value - 1) & _MASK64

    def get(self) -> int:
        """The current value."""
        with self._lock:
            return self._value

    def metric(self) -> Metric:
        """A snapshot of the gauge."""
        return Metric(self.name, MetricType.GAUGE, dict(self.labels), float(self.get()), _now_ms())


def _scaled(value: float) -> int:
    scaled = value * 1000.0
    if math.isnan(scaled) or scaled <= 0:
        return 0
    if scaled >= 2.0**64:
        return _MASK64
    return int(scaled)


class Histogram:
    """Counts observations into the first bucket whose bound they do not exceed.

    The sum is kept in thousandths.
    """

    metric_type = MetricType.HISTOGRAM

    def __init__(
        self, name: str, labels: Optional[MetricLabels] = None, buckets: Optional[list[float]] = None
    ) -> None:
        self.name = name
        self.labels = dict(labels or {})
        self.buckets = list(buckets or [])
        self._counts = [0] * len(self.buckets)
        self._sum = 0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        """Record one observation."""
        with self._lock:
            self._count += 1
            self._sum = (self._sum + _scaled(value)) & _MASK64
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    self._counts[i] += 1
                    break

    def get_data(self) -> HistogramData:
        """A snapshot of the counts and sum."""
        with self._lock:
            return HistogramData(
                count=self._count,
                sum=self._sum / 1000.0,
                buckets=[
                    HistogramBucket(bound, count)
                    for bound, count in zip(self.buckets, self._counts)
                ],
            )

    def metric(self) -> Metric:
        """A snapshot of the histogram."""
        return Metric(self.name, MetricType.HISTOGRAM, dict(self.labels), self.get_data(), _now_ms())


_AnyMetric = Union[Counter, Gauge, Histogram]


class MetricRegistry:
    """Metrics by name; registering a name again replaces the old metric."""

    def __init__(self) -> None:
        self._metrics: dict[str, _AnyMetric] = {}

    def register_counter(self, name: str, labels: Optional[MetricLabels] = None) -> Counter:
        """Create and register a counter."""
        counter = Counter(name, labels)
        self._metrics[name] = counter
        return counter

    def register_gauge(self, name: str, labels: Optional[MetricLabels] = None) -> Gauge:
        """Create and register a gauge."""
        gauge = Gauge(name, labels)
        self._metrics[name] = gauge
        return gauge

    def register_histogram(
        self, name: str, labels: Optional[MetricLabels], buckets: list[float]
    ) -> Histogram:
        """Create and register a histogram."""
        histogram = Histogram(name, labels, buckets)
        self._metrics[name] = histogram
        return histogram

    def get_all_metrics(self) -> list[Metric]:
        """Snapshots of all registered metrics."""
        return [m.metric() for m in list(self._metrics.values())]

    def get_metric(self, name: str) -> Optional[Metric]:
        """A snapshot of one metric, or None."""
        metric = self._metrics.get(name)
        return metric.metric() if metric is not None else None


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _format_labels(labels: MetricLabels) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in labels.items()) + "}"


class MetricCollector:
    """Creates metrics and exports them."""

    def __init__(self) -> None:
        self._registry = MetricRegistry()

    def counter(self, name: str, labels: Optional[MetricLabels] = None) -> Counter:
        """Register a counter."""
        return self._registry.register_counter(name, labels)

    def gauge(self, name: str, labels: Optional[MetricLabels] = None) -> Gauge:
        """Register a gauge."""
        return self._registry.register_gauge(name, labels)

    def histogram(
        self, name: str, labels: Optional[MetricLabels], buckets: list[float]
    ) -> Histogram:
        """Register a histogram."""
        return self._registry.register_histogram(name, labels, buckets)

    def get_all_metrics(self) -> list[Metric]:
        """Snapshots of all metrics."""
        return self._registry.get_all_metrics()

    def export_prometheus(self) -> str:
        """Render all metrics in Prometheus text format."""
        lines: list[str] = []
        for metric in self.get_all_metrics():
            labels = _format_labels(metric.labels)
            value = metric.value
            if metric.metric_type in (MetricType.COUNTER, MetricType.GAUGE):
                kind = "counter" if metric.metric_type is MetricType.COUNTER else "gauge"
                lines.append(f"# TYPE {metric.name} {kind}")
                lines.append(f"{metric.name}{labels} {_format_float(float(value))}")
            elif isinstance(value, HistogramData):
                lines.append(f"# TYPE {metric.name} histogram")
                for bucket in value.buckets:
                    lines.append(
                        f"{metric.name}_bucket{labels} {bucket.count} "
                        f"{_format_float(bucket.upper_bound)}"
                    )
                lines.append(f"{metric.name}_count{labels} {value.count}")
                lines.append(f"{metric.name}_sum{labels} {_format_float(value.sum)}")
        return "".join(line + "\n" for line in lines)


class HealthStatus(Enum):
    """Health of a component."""

    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"
    DEGRADED = "Degraded"


@dataclass(frozen=True)
class HealthCheck:
    """The result of one health check; ``timestamp`` is milliseconds since the epoch."""

    name: str
    status: HealthStatus
    message: str
    timestamp: int = field(default_factory=_now_ms)
    duration_ms: int = 0


class SystemHealthChecker:
    """Runs registered health checks."""

    def __init__(self) -> None:
        self._checks: dict[str, Callable[[], HealthCheck]] = {}

    def register_check(self, name: str, check: Callable[[], HealthCheck]) -> None:
        """Register or replace a named check."""
        self._checks[name] = check

    def run_all_checks(self) -> list[HealthCheck]:
        """Run every check."""
        return [check() for check in list(self._checks.values())]

    def run_check(self, name: str) -> Optional[HealthCheck]:
        """Run one check, or return None if it is unknown."""
        check = self._checks.get(name)
        return check() if check is not None else None

    def get_overall_status(self) -> HealthStatus:
        """Unhealthy if any check is, else degraded if any is, else healthy."""
        statuses = {r.status for r in self.run_all_checks()}
        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY
        if HealthStatus.DEGRADED in statuses:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY


class PerformanceMonitor:
    """Request, error and connection metrics registered on a collector."""

    def __init__(self, collector: MetricCollector) -> None:
        self._requests = collector.counter("requests_total", {})
        self._duration = collector.histogram(
            "request_duration_seconds",
            {},
            [0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
        )
        self._errors = collector.counter("errors_total", {})
        self._connections = collector.gauge("active_connections", {})

    def __repr__(self) -> str:
        return (
            f"PerformanceMonitor(request_count={self._requests.get()}, "
            f"error_count={self._errors.get()}, "
            f"active_connections={self._connections.get()})"
        )

    def record_request(self, duration: float) -> None:
        """Count a request and observe its duration in seconds."""
        self._requests.inc()
        self._duration.observe(duration)

    def record_error(self) -> None:
        """Count an error."""
        self._errors.inc()

    def set_active_connections(self, count: int) -> None:
        """Set the number of active connections."""
        self._connections.set(count)