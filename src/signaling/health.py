"""Health check endpoints for the signaling relay.

Provides HTTP endpoints for load balancers, monitoring systems, and
orchestration tools (e.g., Docker healthcheck, Kubernetes liveness probe),
plus Prometheus metrics scraping.
"""

import logging
import time
from typing import Any

from aiohttp import web

from signaling.metrics import get_metrics_collector

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the relay.

    /health reports whether the transport is accepting connections, along
    with current room and connection counts from the router.
    """

    def __init__(self, transport: Any = None, router: Any = None) -> None:
        """Initialize health check handler.

        Args:
            transport: Transport instance (optional)
            router: SignalingRouter instance (optional)
        """
        self.transport = transport
        self.router = router
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Returns:
            200 OK: Transport is running
            503 Service Unavailable: Transport is stopped or missing

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "transport": {"type": str | null, "running": bool},
            "rooms": int,
            "connections": int
        }
        """
        running = bool(self.transport is not None and self.transport.is_running)
        status_code = 200 if running else 503

        response_data = {
            "status": "healthy" if running else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "transport": {
                "type": self.transport.transport_type if self.transport is not None else None,
                "running": running,
            },
            "rooms": self.router.room_count if self.router is not None else 0,
            "connections": self.router.connection_count if self.router is not None else 0,
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})

        return web.json_response(response_data, status=status_code)

    async def readiness_check(self, request: web.Request) -> web.Response:
        """Readiness check endpoint; ready means the transport accepts connections."""
        return await self.health_check(request)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Returns OK if the process is running, even if the transport is down.
        """
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Returns:
            200 OK: Metrics in Prometheus text format
        """
        try:
            metrics_text = get_metrics_collector().export_prometheus()

            return web.Response(
                text=metrics_text,
                content_type="text/plain",
                headers={"X-Prometheus-Format": "0.0.4"},
                status=200,
            )

        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary endpoint."""
        try:
            summary = get_metrics_collector().get_summary()

            return web.json_response(
                {
                    "status": "ok",
                    "uptime_seconds": time.time() - self.start_time,
                    "metrics": summary,
                },
                status=200,
            )

        except Exception as e:
            logger.error(
                "Failed to generate metrics summary",
                extra={"error": str(e)},
                exc_info=True,
            )
            return web.json_response({"status": "error", "error": str(e)}, status=500)


def setup_health_routes(
    app: web.Application,
    transport: Any = None,
    router: Any = None,
) -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        transport: Transport instance (optional)
        router: SignalingRouter instance (optional)
    """
    handler = HealthCheckHandler(transport=transport, router=router)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/readiness", handler.readiness_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info(
        "Health check endpoints configured: "
        "/health, /readiness, /liveness, /metrics, /metrics/summary"
    )
