"""
Prometheus metrics exporter for the rate-limit governor.

Exports low-cardinality metrics only. Bucket keys embed resource ids, so they
are never used as labels; per-bucket detail is available from
Dispatcher.registry.snapshot() instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from restgovernor.client.dispatcher import Dispatcher

# Labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "bucket_key",
        "bucket",
        "endpoint",
        "path",
        "channel_id",
        "guild_id",
        "webhook_id",
        "token",
    }
)

# Dispatcher counter field -> exported counter name (without _total suffix)
_DISPATCHER_COUNTERS: dict[str, tuple[str, str]] = {
    "dispatched": (
        "restgovernor_requests_dispatched",
        "Total dispatch() calls",
    ),
    "succeeded": (
        "restgovernor_requests_succeeded",
        "Total dispatch() calls that returned a response body",
    ),
    "transport_calls": (
        "restgovernor_transport_calls",
        "Total HTTP calls made, including retries",
    ),
    "ratelimited_bucket": (
        "restgovernor_ratelimited_bucket",
        "Total bucket-scoped 429 responses",
    ),
    "ratelimited_global": (
        "restgovernor_ratelimited_global",
        "Total account-wide 429 responses",
    ),
    "server_errors": (
        "restgovernor_server_errors",
        "Total 5xx responses",
    ),
    "network_errors": (
        "restgovernor_network_errors",
        "Total transport failures",
    ),
    "client_errors": (
        "restgovernor_client_errors",
        "Total non-429 4xx responses",
    ),
    "retries": (
        "restgovernor_retries",
        "Total internal retries",
    ),
}


class MetricsExporter:
    """
    Prometheus exporter for Dispatcher, GlobalLimiter and bucket metrics.

    Usage:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        exporter.update(dispatcher)
        # generate_latest(registry) -> bytes for /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._counters: dict[str, Counter] = {
            field_name: Counter(name, doc, registry=self._registry)
            for field_name, (name, doc) in _DISPATCHER_COUNTERS.items()
        }
        self._failures = Counter(
            "restgovernor_requests_failed",
            "Total dispatch() calls that surfaced a retry-budget error",
            ["kind"],
            registry=self._registry,
        )

        self._buckets = Gauge(
            "restgovernor_buckets",
            "Number of bucket limiters currently tracked",
            registry=self._registry,
        )
        self._buckets_locked = Gauge(
            "restgovernor_buckets_exhausted",
            "Number of buckets currently waiting for their window to reset",
            registry=self._registry,
        )
        self._preemptive_waits = Counter(
            "restgovernor_preemptive_waits",
            "Total pre-emptive waits on exhausted buckets",
            registry=self._registry,
        )
        self._global_locked = Gauge(
            "restgovernor_global_locked",
            "1 while the account-wide rate limit lock is active",
            registry=self._registry,
        )
        self._global_activations = Counter(
            "restgovernor_global_lock_activations",
            "Total account-wide lock activations",
            registry=self._registry,
        )

        # Counters are monotonic: track last seen values and increment by delta
        self._last: dict[str, int] = {}

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def _inc(self, counter: Counter, name: str, current: int) -> None:
        delta = current - self._last.get(name, 0)
        if delta > 0:
            counter.inc(delta)
        self._last[name] = current

    def update(self, dispatcher: Dispatcher) -> None:
        """
        Sync exported metrics from a dispatcher.

        Call periodically or on every scrape.
        """
        metrics = dispatcher.metrics
        for field_name, counter in self._counters.items():
            self._inc(counter, field_name, getattr(metrics, field_name))

        self._inc(self._failures.labels(kind="ratelimit"), "failed_ratelimit", metrics.failed_ratelimit)
        self._inc(self._failures.labels(kind="server"), "failed_server", metrics.failed_server)
        self._inc(self._failures.labels(kind="network"), "failed_network", metrics.failed_network)

        limiters = list(dispatcher.registry)
        self._buckets.set(len(limiters))
        self._buckets_locked.set(sum(1 for limiter in limiters if limiter.wait_time_ms() > 0))
        # Kept on the dispatcher: per-bucket counts vanish when a bucket is pruned
        self._inc(self._preemptive_waits, "preemptive_waits", metrics.preemptive_waits)

        global_limiter = dispatcher.global_limiter
        self._global_locked.set(1 if global_limiter.is_locked() else 0)
        self._inc(
            self._global_activations,
            "global_activations",
            global_limiter.metrics.activations,
        )

    def reset_counter_tracking(self) -> None:
        """
        Reset internal counter tracking.

        Use when the dispatcher is replaced. Does NOT reset the Prometheus
        counters themselves.
        """
        self._last.clear()


# Names as exported by prometheus_client (counters get a _total suffix)
REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {f"{name}_total" for name, _ in _DISPATCHER_COUNTERS.values()}
    | {
        "restgovernor_requests_failed_total",
        "restgovernor_buckets",
        "restgovernor_buckets_exhausted",
        "restgovernor_preemptive_waits_total",
        "restgovernor_global_locked",
        "restgovernor_global_lock_activations_total",
    }
)
