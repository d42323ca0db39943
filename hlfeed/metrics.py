"""메트릭 모듈 - Prometheus 카운터/게이지 및 /metrics, /health HTTP 엔드포인트"""

from __future__ import annotations

import logging
from typing import Callable

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest,
)

from hlfeed.health import HealthStatus

logger = logging.getLogger(__name__)


class FeedMetrics:
    """피드 클라이언트 메트릭 (인스턴스별 레지스트리)"""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.messages_received = Counter(
            "hlfeed_messages_received", "Text messages received", registry=self.registry)
        self.trades_received = Counter(
            "hlfeed_trades", "Trades emitted to consumers", registry=self.registry)
        self.reconnects = Counter(
            "hlfeed_reconnects", "Failed sessions followed by a reconnect decision",
            registry=self.registry)
        self.duplicate_trades = Counter(
            "hlfeed_duplicate_trades", "Trades rejected as duplicates", registry=self.registry)
        self.invalid_timestamps = Counter(
            "hlfeed_invalid_timestamps", "Trades with implausible timestamps",
            registry=self.registry)
        self.unparsed_messages = Counter(
            "hlfeed_unparsed_messages", "Messages no classifier path accepted",
            registry=self.registry)
        self.connected = Gauge(
            "hlfeed_connected", "1 while a session is connected", registry=self.registry)

    def render(self) -> bytes:
        return generate_latest(self.registry)


class MetricsServer:
    """aiohttp 기반 /metrics, /health 서버"""

    def __init__(self, metrics: FeedMetrics, status_provider: Callable[[], HealthStatus],
                 host: str = "0.0.0.0", port: int = 9090):
        self.metrics = metrics
        self.status_provider = status_provider
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/health", self._handle_health)
        return app

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(body=self.metrics.render(),
                            headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def _handle_health(self, request: web.Request) -> web.Response:
        status = self.status_provider()
        return web.json_response(status.to_json(), status=200 if status.is_healthy else 503)

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"[메트릭] http://{self.host}:{self.port}/metrics, /health 시작")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
