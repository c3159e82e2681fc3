"""
Minimal HTTP server for Prometheus /metrics and /healthz endpoints.

/metrics refreshes the exporter from the dispatcher on every scrape and
serves generate_latest(registry). /healthz returns dispatcher status as JSON.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import orjson
from aiohttp import web
from prometheus_client import generate_latest

if TYPE_CHECKING:
    from restgovernor.client.dispatcher import Dispatcher
    from restgovernor.ratelimit.exporter import MetricsExporter

logger = logging.getLogger(__name__)

_Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _make_metrics_handler(exporter: MetricsExporter, dispatcher: Dispatcher) -> _Handler:
    """Create GET /metrics handler bound to an exporter."""

    async def handler(request: web.Request) -> web.Response:
        exporter.update(dispatcher)
        return web.Response(
            body=generate_latest(exporter.registry),
            content_type="text/plain; version=0.0.4",
            charset="utf-8",
        )

    return handler


def _make_healthz_handler(dispatcher: Dispatcher) -> _Handler:
    """Create GET /healthz handler."""

    async def handler(request: web.Request) -> web.Response:
        info = {"status": "ok", **dispatcher.get_status()}
        return web.Response(body=orjson.dumps(info), content_type="application/json")

    return handler


def create_metrics_app(exporter: MetricsExporter, dispatcher: Dispatcher) -> web.Application:
    """Create aiohttp Application with /metrics and /healthz routes."""
    app = web.Application()
    app.router.add_get("/metrics", _make_metrics_handler(exporter, dispatcher))
    app.router.add_get("/healthz", _make_healthz_handler(dispatcher))
    return app


async def start_metrics_server(
    exporter: MetricsExporter,
    dispatcher: Dispatcher,
    host: str = "127.0.0.1",
    port: int = 9090,
) -> web.AppRunner:
    """
    Start the metrics HTTP server.

    Returns:
        AppRunner (pass to stop_metrics_server() on shutdown).
    """
    app = create_metrics_app(exporter, dispatcher)
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Metrics server started on http://%s:%d/metrics", host, port)
    return runner


async def stop_metrics_server(runner: web.AppRunner) -> None:
    """Stop the metrics HTTP server."""
    await runner.cleanup()
    logger.info("Metrics server stopped")
