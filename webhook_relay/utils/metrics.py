"""
Prometheus Metrics Collector

In-process metrics for the relay, exported in Prometheus text exposition
format (text/plain; version=0.0.4).
"""
import time
import threading
from typing import Dict, List, Optional
from dataclasses import dataclass, field


@dataclass
class MetricValue:
    """Single metric value with optional labels."""
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


class _Metric:
    """Shared label bookkeeping for all metric kinds."""

    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[List[str]] = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._values: Dict[tuple, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _label_key(labels: Dict[str, str]) -> tuple:
        return tuple(sorted(labels.items()))

    def get(self, **labels: str) -> float:
        """Current value for a label set (0.0 if never touched)."""
        with self._lock:
            return self._values.get(self._label_key(labels), 0.0)

    def collect(self) -> List[MetricValue]:
        with self._lock:
            return [
                MetricValue(value=v, labels=dict(k))
                for k, v in self._values.items()
            ]


class Counter(_Metric):
    """Monotonic counter: ingress requests, delivery outcomes, dead letters."""

    kind = "counter"

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        key = self._label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount


class Gauge(_Metric):
    """Point-in-time value: queue depth, in-flight messages."""

    kind = "gauge"

    def set(self, value: float, **labels: str) -> None:
        with self._lock:
            self._values[self._label_key(labels)] = value


class Histogram(_Metric):
    """
    Prometheus Histogram metric.

    Buckets are stored cumulatively, as the exposition format expects.
    """

    kind = "histogram"

    # Destination round trips, in seconds
    DEFAULT_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[tuple] = None
    ):
        super().__init__(name, description, labels)
        self.buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        self._observations: Dict[tuple, Dict] = {}

    def observe(self, value: float, **labels: str) -> None:
        key = self._label_key(labels)
        with self._lock:
            data = self._observations.setdefault(
                key,
                {"buckets": dict.fromkeys(self.buckets, 0), "sum": 0.0, "count": 0},
            )
            data["sum"] += value
            data["count"] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    data["buckets"][bucket] += 1

    def collect(self) -> List[MetricValue]:
        result = []
        with self._lock:
            for key, data in self._observations.items():
                base = dict(key)
                for bucket in self.buckets:
                    result.append(MetricValue(data["buckets"][bucket], {**base, "le": str(bucket)}))
                result.append(MetricValue(data["count"], {**base, "le": "+Inf"}))
                result.append(MetricValue(data["sum"], {**base, "_metric": "sum"}))
                result.append(MetricValue(data["count"], {**base, "_metric": "count"}))
        return result


class Timer:
    """Context manager for timing code blocks."""

    def __init__(self, histogram: Histogram, **labels: str):
        self.histogram = histogram
        self.labels = labels
        self.start_time: Optional[float] = None
        self.elapsed: float = 0.0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        if self.start_time is not None:
            self.elapsed = time.perf_counter() - self.start_time
            self.histogram.observe(self.elapsed, **self.labels)


class MetricsRegistry:
    """
    Central registry for all relay metrics.

    Provides singleton access and Prometheus text format export.
    """

    _instance: Optional["MetricsRegistry"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsRegistry":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._metrics: Dict[str, _Metric] = {}
        self._initialized = True
        self._setup_metrics()

    def _setup_metrics(self) -> None:
        """Initialize all relay metrics."""

        # ============================================
        # INGRESS
        # ============================================
        self.ingress_requests = self.register(Counter(
            "relay_ingress_requests_total",
            "Ingress requests by topology and result",
            ["topology", "result"]
        ))

        # ============================================
        # DELIVERY
        # ============================================
        self.delivery_outcomes = self.register(Counter(
            "relay_delivery_outcomes_total",
            "Delivery attempts by outcome",
            ["outcome"]
        ))

        self.delivery_duration = self.register(Histogram(
            "relay_delivery_duration_seconds",
            "Delivery attempt duration in seconds",
            ["topology"]
        ))

        self.payload_cleanup_failures = self.register(Counter(
            "relay_payload_cleanup_failures_total",
            "Stored payloads that could not be deleted after delivery"
        ))

        self.test_notifications = self.register(Counter(
            "relay_test_notifications_total",
            "Payload store test notifications acknowledged without delivery"
        ))

        # ============================================
        # QUEUE
        # ============================================
        self.queue_visible = self.register(Gauge(
            "relay_queue_visible",
            "Messages visible to consumers"
        ))

        self.queue_in_flight = self.register(Gauge(
            "relay_queue_in_flight",
            "Messages received but not yet acknowledged"
        ))

        self.queue_dead_letter = self.register(Gauge(
            "relay_queue_dead_letter",
            "Messages in the dead-letter queue"
        ))

        self.dead_lettered = self.register(Counter(
            "relay_dead_lettered_total",
            "Messages diverted to the dead-letter queue by reason",
            ["reason"]
        ))

    def register(self, metric):
        """Register a metric under its name and return it."""
        self._metrics[metric.name] = metric
        return metric

    def export(self) -> str:
        """
        Export all metrics in Prometheus text exposition format.

        Format specification:
        https://prometheus.io/docs/instrumenting/exposition_formats/
        """
        lines = []

        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {metric.kind}")

            for mv in metric.collect():
                labels = dict(mv.labels)
                metric_name = name
                if isinstance(metric, Histogram):
                    if "_metric" in labels:
                        metric_name = f"{name}_{labels.pop('_metric')}"
                    else:
                        metric_name = f"{name}_bucket"

                lines.append(f"{metric_name}{self._format_labels(labels)} {mv.value}")

            lines.append("")

        return "\n".join(lines)

    def _format_labels(self, labels: Dict[str, str]) -> str:
        if not labels:
            return ""

        parts = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(parts) + "}"

    def reset(self) -> None:
        """Reset all metrics. Useful for testing."""
        self._metrics.clear()
        self._setup_metrics()


# Global metrics instance
metrics = MetricsRegistry()
