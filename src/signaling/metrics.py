"""Prometheus-compatible metrics for signaling relay observability.

This module provides metrics collection for monitoring:
- Connection churn (accepted, rejected, active)
- Room occupancy (active rooms, joins, duplicate joins)
- Relay effectiveness (signals relayed vs. dropped, send failures)
- Dispatch latency (time to handle one inbound event)

Metrics are collected in-memory and exposed via the /metrics endpoint in
Prometheus exposition format.
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class HistogramBucket:
    """Histogram bucket for latency distributions."""

    le: float  # Upper bound (less-than-or-equal)
    count: int = 0  # Number of observations <= le


@dataclass
class Histogram:
    """Histogram metric for tracking distributions.

    Uses fixed bucket boundaries for consistent memory footprint.
    """

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)

    # Dispatch is in-memory work plus a socket write, so buckets start at 100µs
    buckets: list[HistogramBucket] = field(
        default_factory=lambda: [
            HistogramBucket(le=0.0001),
            HistogramBucket(le=0.0005),
            HistogramBucket(le=0.001),
            HistogramBucket(le=0.005),
            HistogramBucket(le=0.010),
            HistogramBucket(le=0.050),
            HistogramBucket(le=0.100),
            HistogramBucket(le=0.500),
            HistogramBucket(le=1.000),
            HistogramBucket(le=float("inf")),
        ]
    )

    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        """Record an observation.

        Args:
            value: Observed value in seconds
        """
        self.sum += value
        self.count += 1

        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1

    def quantile(self, q: float) -> float | None:
        """Calculate approximate quantile (e.g., 0.95 for p95).

        Bucket counts are cumulative; the result is linearly interpolated
        within the bucket holding the target rank.

        Args:
            q: Quantile to calculate (0.0 to 1.0)

        Returns:
            Approximate quantile value, or None if no data
        """
        if self.count == 0:
            return None

        target_rank = int(q * self.count)

        prev_count = 0
        for i, bucket in enumerate(self.buckets):
            if bucket.count >= target_rank:
                if i == 0:
                    return bucket.le / 2.0

                prev_bucket = self.buckets[i - 1]
                if bucket.le == float("inf"):
                    return prev_bucket.le

                bucket_count = bucket.count - prev_count
                if bucket_count == 0:
                    return bucket.le

                rank_in_bucket = target_rank - prev_count
                bucket_width = bucket.le - prev_bucket.le
                return prev_bucket.le + (rank_in_bucket / bucket_count) * bucket_width

            prev_count = bucket.count

        return self.buckets[-1].le


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        """Increment counter.

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError("Counter can only increase")
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


class MetricsCollector:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self._lock = threading.RLock()

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

        self._init_connection_metrics()
        self._init_room_metrics()
        self._init_relay_metrics()

        logger.debug("MetricsCollector initialized")

    def _init_connection_metrics(self) -> None:
        self._counters["connections_total"] = Counter(
            name="connections_total",
            help="Total number of client connections accepted",
        )
        self._counters["connections_rejected_total"] = Counter(
            name="connections_rejected_total",
            help="Connections refused because the server was at capacity",
        )
        self._gauges["connections_active"] = Gauge(
            name="connections_active",
            help="Currently registered client connections",
        )
        self._counters["invalid_messages_total"] = Counter(
            name="invalid_messages_total",
            help="Inbound frames rejected as malformed",
        )

    def _init_room_metrics(self) -> None:
        self._gauges["rooms_active"] = Gauge(
            name="rooms_active",
            help="Rooms with at least one member",
        )
        self._counters["joins_total"] = Counter(
            name="joins_total",
            help="Total join-room events handled",
        )
        self._counters["duplicate_joins_total"] = Counter(
            name="duplicate_joins_total",
            help="join-room events from clients already in that room",
        )
        self._counters["peer_left_notices_total"] = Counter(
            name="peer_left_notices_total",
            help="peer-left notices queued for delivery",
        )

    def _init_relay_metrics(self) -> None:
        self._counters["signals_relayed_total"] = Counter(
            name="signals_relayed_total",
            help="Offers and answers forwarded to a live target",
        )
        self._counters["signals_dropped_total"] = Counter(
            name="signals_dropped_total",
            help="Offers and answers dropped because the target was not live",
        )
        self._counters["send_failures_total"] = Counter(
            name="send_failures_total",
            help="Outbound messages that failed at the transport",
        )
        self._histograms["event_dispatch_seconds"] = Histogram(
            name="event_dispatch_seconds",
            help="Time to handle one inbound event including delivery",
        )

    # === Connection metrics ===

    def record_connection_open(self) -> None:
        with self._lock:
            self._counters["connections_total"].inc()
            self._gauges["connections_active"].inc()

    def record_connection_close(self) -> None:
        with self._lock:
            self._gauges["connections_active"].dec()

    def record_connection_rejected(self) -> None:
        with self._lock:
            self._counters["connections_rejected_total"].inc()

    def record_invalid_message(self) -> None:
        with self._lock:
            self._counters["invalid_messages_total"].inc()

    # === Room metrics ===

    def set_rooms_active(self, count: int) -> None:
        """Set number of non-empty rooms.

        Args:
            count: Current room count
        """
        with self._lock:
            self._gauges["rooms_active"].set(float(count))

    def record_join(self, duplicate: bool = False) -> None:
        """Record a handled join-room event.

        Args:
            duplicate: Whether the client was already a member
        """
        with self._lock:
            self._counters["joins_total"].inc()
            if duplicate:
                self._counters["duplicate_joins_total"].inc()

    def record_peer_left_notices(self, count: int) -> None:
        with self._lock:
            self._counters["peer_left_notices_total"].inc(float(count))

    # === Relay metrics ===

    def record_signal(self, delivered: bool) -> None:
        """Record a forwarded offer or answer.

        Args:
            delivered: False when the target was not live and the signal was dropped
        """
        with self._lock:
            if delivered:
                self._counters["signals_relayed_total"].inc()
            else:
                self._counters["signals_dropped_total"].inc()

    def record_send_failure(self) -> None:
        with self._lock:
            self._counters["send_failures_total"].inc()

    def record_dispatch(self, duration_seconds: float) -> None:
        with self._lock:
            self._histograms["event_dispatch_seconds"].observe(duration_seconds)

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Returns:
            Metrics in Prometheus text format for scraping
        """
        with self._lock:
            lines: list[str] = []

            for counter in self._counters.values():
                lines.append(f"# HELP {counter.name} {counter.help}")
                lines.append(f"# TYPE {counter.name} counter")
                labels_str = self._format_labels(counter.labels)
                lines.append(f"{counter.name}{labels_str} {counter.value}")

            for gauge in self._gauges.values():
                lines.append(f"# HELP {gauge.name} {gauge.help}")
                lines.append(f"# TYPE {gauge.name} gauge")
                labels_str = self._format_labels(gauge.labels)
                lines.append(f"{gauge.name}{labels_str} {gauge.value}")

            for histogram in self._histograms.values():
                lines.append(f"# HELP {histogram.name} {histogram.help}")
                lines.append(f"# TYPE {histogram.name} histogram")

                labels_str = self._format_labels(histogram.labels)

                for bucket in histogram.buckets:
                    le = "+Inf" if bucket.le == float("inf") else str(bucket.le)
                    bucket_labels = {**histogram.labels, "le": le}
                    bucket_labels_str = self._format_labels(bucket_labels)
                    lines.append(f"{histogram.name}_bucket{bucket_labels_str} {bucket.count}")

                lines.append(f"{histogram.name}_sum{labels_str} {histogram.sum}")
                lines.append(f"{histogram.name}_count{labels_str} {histogram.count}")

            return "\n".join(lines) + "\n"

    def _format_labels(self, labels: dict[str, str]) -> str:
        """Format labels for Prometheus output.

        Returns:
            Formatted label string (e.g., '{label1="value1",label2="value2"}')
        """
        if not labels:
            return ""

        label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(label_pairs) + "}"

    # === Summary statistics ===

    def get_summary(self) -> dict[str, float | None]:
        """Get summary statistics for monitoring dashboard.

        Returns:
            Dictionary with key metrics and dispatch percentiles
        """
        with self._lock:
            dispatch_hist = self._histograms["event_dispatch_seconds"]
            p50 = dispatch_hist.quantile(0.50)
            p95 = dispatch_hist.quantile(0.95)

            return {
                "connections_total": self._counters["connections_total"].value,
                "connections_active": self._gauges["connections_active"].value,
                "connections_rejected": self._counters["connections_rejected_total"].value,
                "invalid_messages": self._counters["invalid_messages_total"].value,
                "rooms_active": self._gauges["rooms_active"].value,
                "joins_total": self._counters["joins_total"].value,
                "duplicate_joins": self._counters["duplicate_joins_total"].value,
                "peer_left_notices": self._counters["peer_left_notices_total"].value,
                "signals_relayed": self._counters["signals_relayed_total"].value,
                "signals_dropped": self._counters["signals_dropped_total"].value,
                "send_failures": self._counters["send_failures_total"].value,
                "dispatch_p50_ms": p50 * 1000 if p50 is not None else None,
                "dispatch_p95_ms": p95 * 1000 if p95 is not None else None,
            }


# Global metrics collector singleton
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector


def reset_metrics_collector() -> None:
    """Drop the global collector so the next call creates a fresh one (tests)."""
    global _metrics_collector

    with _collector_lock:
        _metrics_collector = None
