"""연결 세션 모듈 - 연결/핸드셰이크/구독/수신/재연결 상태 머신"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from enum import Enum
from typing import TYPE_CHECKING

from hlfeed.classifier import MessageClassifier, preview
from hlfeed.errors import (
    ConnectTimeoutError, ConnectionClosedError, HealthCheckError,
    MaxReconnectsExceeded, RECOVERABLE_ERRORS,
)
from hlfeed.events import (
    ClientEvent, Connected, Connecting, ConnectionFailed, Disconnected,
    HealthCheckFailed, MessageReceived, Reconnecting, Starting, Stopping,
    SubscriptionConfirmed, SubscriptionSent, TradeReceived,
)
from hlfeed.health import HealthMonitor, HealthStatus
from hlfeed.integrity import IntegrityTracker
from hlfeed.metrics import FeedMetrics
from hlfeed.models import (
    BboUpdate, BookSnapshot, CandleBatch, DirectCandles, DirectTrades,
    KeepAlive, MidsUpdate, NotificationMessage, SubscriptionAck,
    SubscriptionRequest, Trade, TradeBatch, UnparsedMessage, UserEventMessage,
)
from hlfeed.policy import ReconnectPolicy, build_policy
from hlfeed.state import Session, SessionCounters
from hlfeed.transport import Frame, Opcode, RawConnection, Transport, UpgradedSession

if TYPE_CHECKING:
    from hlfeed.config import Config
    from hlfeed.event_bus import EventBus

logger = logging.getLogger(__name__)

FINAL_EVENT_TIMEOUT = 1.0  # 종료 후 Stopping 발행 최대 대기 (초)


async def _cancel_pending(*tasks: asyncio.Task) -> None:
    """끝나지 않은 태스크만 취소하고 종료까지 대기"""
    for task in tasks:
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    SUBSCRIBING = "subscribing"
    LISTENING = "listening"
    CLOSING = "closing"
    FAILED = "failed"


class ConnectionSession:
    """하이퍼리퀴드 피드 연결 세션

    전송 핸들은 이 클래스만 소유하며, 한 번에 하나의 세션만 진행.
    전송/프로토콜/헬스체크 실패 → 재연결 정책, 재연결 한도 초과 → run()에서 예외 전파.
    """

    def __init__(self, config: Config, transport: Transport, bus: EventBus,
                 tracker: IntegrityTracker | None = None,
                 policy: ReconnectPolicy | None = None,
                 classifier: MessageClassifier | None = None,
                 health_monitor: HealthMonitor | None = None,
                 metrics: FeedMetrics | None = None,
                 shutdown: asyncio.Event | None = None):
        self.config = config
        self.transport = transport
        self.bus = bus
        self.tracker = tracker or IntegrityTracker()
        self.policy = policy or build_policy(config)
        self.classifier = classifier or MessageClassifier()
        self.health_monitor = health_monitor or HealthMonitor(config.health_check_interval)
        self.metrics = metrics or FeedMetrics()
        self.counters = SessionCounters()
        self.subscription = SubscriptionRequest.from_config(config)
        self.state = SessionState.IDLE
        self.session: Session | None = None
        self._shutdown = shutdown or asyncio.Event()
        self._handle: RawConnection | UpgradedSession | None = None
        self._started_at = time.monotonic()

    # ── 외부 제어 ──

    def stop(self) -> None:
        """종료 신호 (재연결 정책 없이 정리 후 종료)"""
        self._shutdown.set()

    @property
    def stopping(self) -> bool:
        return self._shutdown.is_set()

    async def run(self) -> None:
        """종료 신호 또는 재연결 한도 초과까지 연결 루프 실행"""
        self._started_at = time.monotonic()
        await self._emit(Starting())
        loop_task = asyncio.create_task(self._connection_loop())
        stop_task = asyncio.create_task(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait({loop_task, stop_task},
                                         return_when=asyncio.FIRST_COMPLETED)
            if loop_task in done:
                loop_task.result()
            if self.stopping:
                self._transition(SessionState.CLOSING)
                logger.info("[종료] 종료 신호 수신, 세션 정리 중...")
        finally:
            await _cancel_pending(loop_task, stop_task)
            await self._teardown()
            self._transition(SessionState.IDLE)
            await self._emit_final(Stopping())

    async def _connection_loop(self) -> None:
        while not self.stopping:
            try:
                await self._run_session()
            except RECOVERABLE_ERRORS as e:
                await self._teardown()
                if self.stopping:
                    return
                await self._handle_failure(e)

    # ── 세션 1회 ──

    async def _run_session(self) -> None:
        session = Session()
        self.session = session

        self._transition(SessionState.CONNECTING)
        await self._emit(Connecting(url=self.config.url))
        conn = await self._connect()

        self._transition(SessionState.HANDSHAKING)
        self._handle = conn
        upgraded = await self.transport.upgrade(conn)
        self._handle = upgraded
        session.mark_connected()
        self.metrics.connected.set(1)
        logger.info(f"[연결] WebSocket 연결 성공 {self.config.url} (id={session.connection_id})")
        await self._emit(Connected(connection_id=session.connection_id))

        self._transition(SessionState.SUBSCRIBING)
        await self._subscribe(upgraded)

        self._transition(SessionState.LISTENING)
        self.counters.reset_reconnects()
        await self._listen(upgraded, session)

    async def _connect(self) -> RawConnection:
        timeout = self.config.connect_timeout
        try:
            return await asyncio.wait_for(self.transport.connect(self.config.url, timeout), timeout)
        except asyncio.TimeoutError:
            raise ConnectTimeoutError(f"connect timed out after {timeout}s")

    async def _subscribe(self, upgraded: UpgradedSession) -> None:
        message = self.subscription.to_json()
        await self.transport.send_text(upgraded, message)
        logger.info(f"[구독] 요청 전송: {message}")
        await self._emit(SubscriptionSent(message=message))

    async def _listen(self, upgraded: UpgradedSession, session: Session) -> None:
        """수신 루프와 헬스 감시를 경쟁시킴 - 먼저 끝나는 쪽(예외)이 세션 종료 사유"""
        receive_task = asyncio.create_task(self._receive_loop(upgraded, session))
        health_task = asyncio.create_task(self.health_monitor.watch(session))
        try:
            done, _ = await asyncio.wait({receive_task, health_task},
                                         return_when=asyncio.FIRST_COMPLETED)
        finally:
            await _cancel_pending(receive_task, health_task)
        for task in (receive_task, health_task):
            if task in done:
                task.result()

    async def _receive_loop(self, upgraded: UpgradedSession, session: Session) -> None:
        logger.info("[수신] 메시지 수신 루프 시작")
        while True:
            frame = await self.transport.receive_frame(upgraded)
            session.touch()
            await self._handle_frame(frame)

    async def _handle_frame(self, frame: Frame) -> None:
        if frame.opcode is Opcode.TEXT:
            text = frame.text
            self.counters.record_message()
            self.tracker.record_message()
            self.metrics.messages_received.inc()
            await self._emit(MessageReceived(raw_message=text))
            await self._dispatch(self.classifier.classify(text))
        elif frame.opcode is Opcode.BINARY:
            logger.warning(f"[수신] 바이너리 메시지 미지원 ({len(frame.payload)} bytes)")
        elif frame.opcode is Opcode.CLOSE:
            reason = frame.text
            logger.info(f"[연결] close 프레임 수신 (code={frame.close_code}, reason={reason!r})")
            await self._emit(Disconnected(reason=reason or "close frame"))
            raise ConnectionClosedError(frame.close_code, reason)
        else:
            logger.debug(f"[수신] {frame.opcode.value} 프레임")

    # ── 메시지 분기 ──

    async def _dispatch(self, message) -> None:
        if isinstance(message, SubscriptionAck):
            logger.info(f"[구독] 확인: {message.subscription_type} {message.coin}")
            await self._emit(SubscriptionConfirmed(
                subscription_type=message.subscription_type, coin=message.coin))
        elif isinstance(message, (TradeBatch, DirectTrades)):
            logger.debug(f"[체결] {len(message.trades)}건 처리")
            for trade in message.trades:
                await self._accept_trade(trade)
        elif isinstance(message, BookSnapshot):
            book = message.book
            logger.debug(f"[오더북] {book.coin} bids={len(book.bids)} asks={len(book.asks)}")
        elif isinstance(message, BboUpdate):
            logger.debug(f"[BBO] {message.bbo.coin}")
        elif isinstance(message, MidsUpdate):
            logger.debug(f"[중간가] {len(message.mids.mids)}개 심볼")
        elif isinstance(message, (CandleBatch, DirectCandles)):
            for candle in message.candles:
                logger.debug(
                    f"[캔들] {candle.symbol} O={candle.open} H={candle.high} "
                    f"L={candle.low} C={candle.close}"
                )
        elif isinstance(message, UserEventMessage):
            self._log_user_event(message)
        elif isinstance(message, NotificationMessage):
            logger.info(f"[알림] {message.notification}")
        elif isinstance(message, KeepAlive):
            logger.debug(f"[수신] {message.channel}")
        elif isinstance(message, UnparsedMessage):
            self.tracker.record_unparsed(message.reason)
            self.metrics.unparsed_messages.inc()
            logger.warning(f"[분류] 해석 불가 메시지: {message.reason} raw={preview(message.raw)}")

    async def _accept_trade(self, trade: Trade) -> None:
        """중복 검사 → 타임스탬프 검사(기록만) → 이벤트 발행"""
        if not self.tracker.record_trade(trade.coin, trade.tid):
            self.metrics.duplicate_trades.inc()
            return
        if not self.tracker.check_timestamp(trade.coin, trade.time):
            self.metrics.invalid_timestamps.inc()
        self.counters.record_trade()
        self.metrics.trades_received.inc()
        await self._emit(TradeReceived(trade=trade))

    @staticmethod
    def _log_user_event(message: UserEventMessage) -> None:
        event = message.event
        if event.kind == "fills":
            logger.info(f"[사용자] 체결 {len(event.fills)}건")
            for fill in event.fills:
                logger.debug(f"[사용자] {fill.side.value} {fill.size} @ {fill.price} {fill.coin}")
        elif event.kind == "funding":
            logger.info(f"[사용자] 펀딩 {event.funding.coin}: {event.funding.usdc}")
        elif event.kind == "liquidation":
            logger.warning(f"[사용자] 청산 lid={event.liquidation.lid}")
        else:
            logger.info(f"[사용자] 비사용자 취소 {len(event.cancels)}건")

    # ── 실패/재연결 ──

    async def _handle_failure(self, error: Exception) -> None:
        """실패 전이: 카운터 +1, 정책 조회 → 대기 후 재시도 또는 MaxReconnectsExceeded"""
        self._transition(SessionState.FAILED)
        now = time.time()
        if isinstance(error, HealthCheckError):
            logger.error(f"[헬스] 헬스체크 실패: {error}")
            await self._emit(HealthCheckFailed(reason=str(error)))
        else:
            logger.error(f"[에러] {type(error).__name__}: {error}")
            await self._emit(ConnectionFailed(reason=str(error)))

        attempt = self.counters.record_failure(now)
        self.tracker.record_reconnect(now, str(error))
        self.metrics.reconnects.inc()
        try:
            delay = self.policy.next_delay(attempt)
        except MaxReconnectsExceeded:
            logger.error(f"[재연결] 최대 재연결 횟수({self.policy.max_attempts}) 도달")
            raise

        logger.warning(f"[재연결] {delay}초 후 재연결 (시도 {attempt})")
        await self._emit(Reconnecting(attempt=attempt, delay=delay))
        if await self._wait_or_shutdown(delay):
            return
        self._transition(SessionState.IDLE)

    async def _wait_or_shutdown(self, delay: float) -> bool:
        """delay만큼 대기, 도중에 종료 신호가 오면 True"""
        if delay <= 0:
            await asyncio.sleep(0)
            return self.stopping
        try:
            await asyncio.wait_for(self._shutdown.wait(), delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _teardown(self) -> None:
        """전송 핸들 정리 (여러 번 호출해도 안전)"""
        handle, self._handle = self._handle, None
        if self.session is not None:
            self.session.connected = False
        self.metrics.connected.set(0)
        if handle is not None:
            await self.transport.close(handle)

    # ── 공통 ──

    def _transition(self, new_state: SessionState) -> None:
        if new_state is not self.state:
            logger.debug(f"[상태] {self.state.value} → {new_state.value}")
            self.state = new_state

    async def _emit(self, event: ClientEvent) -> None:
        await self.bus.publish(event)

    async def _emit_final(self, event: ClientEvent) -> None:
        """종료 이벤트는 소비자가 멈춰 있어도 제한 시간 안에 포기"""
        try:
            await asyncio.wait_for(self.bus.publish(event), FINAL_EVENT_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"[종료] 소비자 큐가 가득 차 {event.name} 전달 실패")

    def health_status(self) -> HealthStatus:
        """헬스 엔드포인트용 스냅샷"""
        counters = self.counters.snapshot()
        session = self.session
        connected = bool(session and session.connected)
        healthy = connected and session.silence() <= self.health_monitor.silence_limit
        return HealthStatus(
            is_healthy=healthy,
            connected=connected,
            last_message_at=session.last_message_at if session else None,
            total_messages=counters.total_messages,
            total_trades=counters.total_trades,
            reconnect_count=counters.reconnect_count,
            duplicate_trades=self.tracker.duplicate_trades,
            invalid_timestamps=self.tracker.invalid_timestamps,
            uptime_seconds=time.monotonic() - self._started_at,
        )
