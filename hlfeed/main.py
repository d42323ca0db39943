"""메인 애플리케이션 - CLI 인자 처리, 컴포넌트 초기화, 세션 실행"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import suppress
from pathlib import Path

from hlfeed.config import BACKOFF_MODES, OUTPUT_FORMATS, Config
from hlfeed.console import EventConsole
from hlfeed.errors import MaxReconnectsExceeded
from hlfeed.event_bus import EventBus, Subscription
from hlfeed.integrity import IntegrityTracker
from hlfeed.metrics import FeedMetrics, MetricsServer
from hlfeed.session import ConnectionSession
from hlfeed.telegram_reporter import TelegramReporter
from hlfeed.transport import WebSocketTransport

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hlfeed", description="Hyperliquid market data WebSocket client")
    parser.add_argument("--config", default="config.yaml", help="YAML config path")
    parser.add_argument("-c", "--coin", help="coin to subscribe to (BTC, ETH, SOL ...)")
    parser.add_argument("-u", "--url", help="WebSocket endpoint URL")
    parser.add_argument("--subscription-type", dest="subscription_type",
                        help="trades, l2Book, bbo, allMids, candle, ...")
    parser.add_argument("--candle-interval", dest="candle_interval")
    parser.add_argument("--timeout", dest="connect_timeout", type=float,
                        help="connect timeout in seconds")
    parser.add_argument("--reconnect-delay", dest="reconnect_delay", type=float)
    parser.add_argument("--max-reconnects", dest="max_reconnects", type=int,
                        help="maximum reconnect attempts (0 = unlimited)")
    parser.add_argument("--backoff", choices=BACKOFF_MODES)
    parser.add_argument("--health-check-interval", dest="health_check_interval", type=float)
    parser.add_argument("--log-level", dest="log_level")
    parser.add_argument("--log-dir", dest="log_dir")
    parser.add_argument("--metrics", dest="metrics_enabled", action="store_true", default=None,
                        help="serve /metrics and /health")
    parser.add_argument("--metrics-port", dest="metrics_port", type=int)
    parser.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS)
    parser.add_argument("--verbose-trades", dest="verbose_trades", action="store_true",
                        default=None, help="print buyer/seller addresses")
    return parser


def load_config(args: argparse.Namespace) -> Config:
    """config.yaml 로드 후 CLI 인자로 덮어쓰기"""
    overrides = {k: v for k, v in vars(args).items() if k != "config"}
    config = Config.from_yaml(args.config).with_overrides(**overrides)
    config.validate()
    return config


def setup_logging(config: Config) -> None:
    """콘솔(stderr) + 파일 로깅, 표준 출력은 체결 데이터 전용"""
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(Path(config.log_dir) / "hlfeed.log", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr), file_handler],
    )


async def periodic_stats(tracker: IntegrityTracker, interval: float) -> None:
    """주기적 무결성 통계 기록"""
    while True:
        await asyncio.sleep(interval)
        await tracker.write_periodic_log()
        logger.info(
            f"[통계] 메시지 {tracker.total_messages}건, 중복 {tracker.duplicate_trades}건, "
            f"타임스탬프 이상 {tracker.invalid_timestamps}건"
        )


def start_consumer(name: str, handler, subscription: Subscription) -> asyncio.Task:
    """소비자 태스크 시작, 태스크가 끝나면 구독 해제"""
    task = asyncio.create_task(handler(subscription))

    def _on_done(t: asyncio.Task) -> None:
        subscription.unsubscribe()
        if not t.cancelled() and t.exception() is not None:
            exc = t.exception()
            logger.error(f"[소비자] {name} 비정상 종료: {type(exc).__name__}: {exc}")

    task.add_done_callback(_on_done)
    return task


async def main(config: Config) -> int:
    """컴포넌트 초기화 후 세션 실행, 종료 코드 반환"""
    bus = EventBus(config.event_bus_capacity)
    tracker = IntegrityTracker(config.log_dir)
    metrics = FeedMetrics()
    session = ConnectionSession(config, WebSocketTransport(), bus,
                                tracker=tracker, metrics=metrics)

    # 소비자는 세션 시작 전에 구독 (늦은 구독자는 과거 이벤트를 받지 못함)
    console = EventConsole(config.output_format, config.verbose_trades)
    consumers = [start_consumer("console", console.run, bus.subscribe())]
    telegram = TelegramReporter(config)
    if telegram.enabled:
        consumers.append(start_consumer("telegram", telegram.run, bus.subscribe()))

    metrics_server = None
    if config.metrics_enabled:
        metrics_server = MetricsServer(metrics, session.health_status, port=config.metrics_port)
        await metrics_server.start()

    stats_task = asyncio.create_task(periodic_stats(tracker, config.stats_interval))

    loop = asyncio.get_running_loop()

    def _signal_handler():
        logger.info("종료 신호 수신, 연결 정리 중...")
        session.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    logger.info("=== 하이퍼리퀴드 피드 클라이언트 시작 ===")
    logger.info(f"구독: {config.subscription_type} {config.coin} ({config.url})")

    exit_code = 0
    try:
        await session.run()
    except MaxReconnectsExceeded as e:
        logger.error(f"[종료] {e}")
        exit_code = 1
    finally:
        stats_task.cancel()
        with suppress(asyncio.CancelledError):
            await stats_task
        await tracker.write_periodic_log()
        if metrics_server is not None:
            await metrics_server.stop()
        await bus.close()
        await asyncio.gather(*consumers, return_exceptions=True)
        logger.info("=== 시스템 종료 ===")
    return exit_code


def cli(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args)
    except ValueError as e:
        parser.error(str(e))
    setup_logging(config)
    return asyncio.run(main(config))


if __name__ == "__main__":
    sys.exit(cli())
