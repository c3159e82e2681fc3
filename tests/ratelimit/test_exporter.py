"""
Tests for Prometheus metrics exporter.

Validates exporter correctness:
- No forbidden high-cardinality labels
- Every required metric name is exported
- Counters follow dispatcher totals by delta
"""

from __future__ import annotations

import re

import pytest
from prometheus_client import generate_latest
from prometheus_client.registry import CollectorRegistry

from restgovernor.client.dispatcher import Dispatcher
from restgovernor.client.types import GovernorConfig
from restgovernor.errors import RateLimitExceeded
from restgovernor.ratelimit.exporter import FORBIDDEN_LABELS, REQUIRED_METRIC_NAMES, MetricsExporter
from restgovernor.ratelimit.route import Route
from tests.fixtures.governor import (
    FakeClock,
    FakeTransport,
    make_response,
    ratelimit_headers,
    too_many_requests,
)


def _dispatcher(transport: FakeTransport, clock: FakeClock) -> Dispatcher:
    return Dispatcher(
        transport,
        "https://api.test/v10",
        _time_fn=clock.time_fn,
        _sleep_fn=clock.sleep,
    )


def _output(registry: CollectorRegistry) -> str:
    return generate_latest(registry).decode("utf-8")


class TestNoForbiddenLabels:
    """Verify no high-cardinality labels are used."""

    @pytest.mark.asyncio
    async def test_exporter_has_no_forbidden_labels(self) -> None:
        """Exporter metrics must not contain bucket keys or resource ids."""
        clock = FakeClock()
        transport = FakeTransport([make_response(200, {}, ratelimit_headers(remaining=1))])
        dispatcher = _dispatcher(transport, clock)
        await dispatcher.dispatch(Route.build("GET", "/channels/{channel_id}", channel_id=1))

        registry = CollectorRegistry()
        MetricsExporter(registry=registry).update(dispatcher)
        output = _output(registry)

        found_labels: set[str] = set()
        for match in re.finditer(r"\{([^}]+)\}", output):
            for pair in match.group(1).split(","):
                if "=" in pair:
                    found_labels.add(pair.split("=")[0].strip())

        assert found_labels <= {"kind"}
        assert not found_labels & FORBIDDEN_LABELS
        assert "/channels/1" not in output


class TestRequiredMetrics:
    """Verify every documented metric is exported."""

    def test_exporter_exports_all_required_metrics(self) -> None:
        clock = FakeClock()
        registry = CollectorRegistry()
        MetricsExporter(registry=registry).update(_dispatcher(FakeTransport(), clock))

        output = _output(registry)
        missing = [name for name in REQUIRED_METRIC_NAMES if name not in output]

        assert not missing, f"Missing required metrics: {missing}\nMetrics output:\n{output}"


class TestMetricValues:
    """Verify exported values follow the dispatcher."""

    @pytest.mark.asyncio
    async def test_counters_and_gauges(self) -> None:
        clock = FakeClock()
        transport = FakeTransport(
            [
                too_many_requests(1.0),
                make_response(200, {}, ratelimit_headers(remaining=0, reset_after=5.0)),
            ]
        )
        dispatcher = _dispatcher(transport, clock)
        await dispatcher.dispatch(Route.build("POST", "/channels/{channel_id}/messages", channel_id=1))

        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        exporter.update(dispatcher)
        output = _output(registry)

        assert "restgovernor_requests_dispatched_total 1.0" in output
        assert "restgovernor_transport_calls_total 2.0" in output
        assert "restgovernor_ratelimited_bucket_total 1.0" in output
        assert "restgovernor_retries_total 1.0" in output
        assert "restgovernor_buckets 1.0" in output
        assert "restgovernor_buckets_exhausted 1.0" in output
        assert "restgovernor_global_locked 0.0" in output

    @pytest.mark.asyncio
    async def test_repeated_update_does_not_double_count(self) -> None:
        clock = FakeClock()
        transport = FakeTransport([make_response(200, {}), make_response(200, {})])
        dispatcher = _dispatcher(transport, clock)
        route = Route.build("GET", "/gateway/bot")

        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        await dispatcher.dispatch(route)
        exporter.update(dispatcher)
        exporter.update(dispatcher)
        await dispatcher.dispatch(route)
        exporter.update(dispatcher)

        assert "restgovernor_requests_succeeded_total 2.0" in _output(registry)

    @pytest.mark.asyncio
    async def test_failures_labelled_by_kind(self) -> None:
        clock = FakeClock()
        transport = FakeTransport([too_many_requests(1.0, is_global=True)])
        dispatcher = Dispatcher(
            transport,
            "https://api.test/v10",
            GovernorConfig(max_ratelimit_retries=1),
            _time_fn=clock.time_fn,
            _sleep_fn=clock.sleep,
        )
        with pytest.raises(RateLimitExceeded):
            await dispatcher.dispatch(Route.build("GET", "/gateway/bot"))

        registry = CollectorRegistry()
        MetricsExporter(registry=registry).update(dispatcher)
        output = _output(registry)

        assert 'restgovernor_requests_failed_total{kind="ratelimit"} 1.0' in output
        assert 'restgovernor_requests_failed_total{kind="server"} 0.0' in output
        assert "restgovernor_global_locked 1.0" in output
        assert "restgovernor_global_lock_activations_total 1.0" in output


    @pytest.mark.asyncio
    async def test_preemptive_waits_survive_prune(self) -> None:
        """Waits are counted even when their bucket is pruned before the next scrape."""
        clock = FakeClock()
        transport = FakeTransport(
            [
                make_response(200, {}, ratelimit_headers(remaining=0, reset_after=1.0)),
                make_response(200, {}, ratelimit_headers(remaining=4, reset_after=1.0)),
            ]
        )
        dispatcher = _dispatcher(transport, clock)
        route = Route.build("POST", "/channels/{channel_id}/messages", channel_id=1)
        await dispatcher.dispatch(route)
        await dispatcher.dispatch(route)
        clock.advance(1000)
        assert dispatcher.registry.prune_idle() == 1

        registry = CollectorRegistry()
        MetricsExporter(registry=registry).update(dispatcher)
        output = _output(registry)

        assert dispatcher.metrics.preemptive_waits == 1
        assert "restgovernor_preemptive_waits_total 1.0" in output
        assert "restgovernor_buckets 0.0" in output
