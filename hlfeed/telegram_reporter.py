"""텔레그램 봇을 통한 연결 상태 알림 모듈 (이벤트 버스 소비자)"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

import aiohttp

from hlfeed.config import Config
from hlfeed.event_bus import Subscription
from hlfeed.events import (
    ClientEvent, Connected, ConnectionFailed, HealthCheckFailed, Reconnecting,
    Starting, Stopping,
)

logger = logging.getLogger(__name__)


class TelegramReporter:
    """끊김/재연결/종료 알림 (전송 실패는 로깅만, 피드 수신에 영향 없음)"""

    def __init__(self, config: Config, clock=time.monotonic):
        self.bot_token = config.telegram_bot_token
        self.chat_id = config.telegram_chat_id
        self.enabled = bool(self.bot_token and self.chat_id)
        self.config = config
        self.clock = clock
        self._disconnected_at: float | None = None
        self._last_attempt = 0

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    async def send_message(self, text: str) -> None:
        """텔레그램 메시지 전송 (실패 시 로깅만)"""
        if not self.enabled:
            return
        try:
            url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
            payload = {"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"}
            async with aiohttp.ClientSession() as session:
                async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        logger.warning("텔레그램 전송 실패 (status=%d): %s", resp.status, body)
        except Exception:
            logger.warning("텔레그램 메시지 전송 중 예외 발생", exc_info=True)

    async def run(self, subscription: Subscription) -> None:
        """버스가 닫힐 때까지 이벤트 소비"""
        async for event in subscription:
            await self.handle(event)

    async def handle(self, event: ClientEvent) -> None:
        if isinstance(event, Starting):
            await self.send_startup_report()
        elif isinstance(event, (ConnectionFailed, HealthCheckFailed)):
            # 연속 실패 중에는 첫 실패만 알림
            if self._disconnected_at is None:
                self._disconnected_at = self.clock()
                await self.send_disconnect_alert(event.reason)
        elif isinstance(event, Reconnecting):
            self._last_attempt = event.attempt
        elif isinstance(event, Connected):
            if self._disconnected_at is not None:
                downtime = self.clock() - self._disconnected_at
                self._disconnected_at = None
                await self.send_reconnect_alert(downtime)
        elif isinstance(event, Stopping):
            if self._disconnected_at is not None:
                await self.send_stopped_alert(self._last_attempt)

    async def send_startup_report(self) -> None:
        """시작 알림"""
        if not self.enabled:
            return
        max_text = self.config.max_reconnects or "무제한"
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            "🚀 <b>FEED ONLINE</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            "\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"📌 <b>구독</b>: <code>{self.config.subscription_type} {self.config.coin}</code>\n"
            f"🌐 <code>{self.config.url}</code>\n"
            f"🔄 재연결: {self.config.backoff} {self.config.reconnect_delay}s (최대 {max_text})\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)

    async def send_disconnect_alert(self, reason: str) -> None:
        """연결 끊김 알림"""
        if not self.enabled:
            return
        text = (
            "🔴🔴🔴🔴🔴🔴🔴🔴🔴🔴\n"
            "⚠️ <b>CONNECTION LOST</b>\n"
            "🔴🔴🔴🔴🔴🔴🔴🔴🔴🔴\n"
            "\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"📡 <b>사유</b>: {reason}\n"
            "\n"
            "🔄 자동 재연결 시도 중...\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)

    async def send_reconnect_alert(self, downtime_seconds: float) -> None:
        """재연결 성공 알림"""
        if not self.enabled:
            return
        if downtime_seconds < 5:
            severity = "🟢 경미"
        elif downtime_seconds < 30:
            severity = "🟡 보통"
        else:
            severity = "🔴 심각"

        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            "✅ <b>RECONNECTED</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            "\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"⏱ 다운타임: <b>{downtime_seconds:.1f}s</b>\n"
            f"📊 심각도: {severity}\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)

    async def send_stopped_alert(self, attempts: int) -> None:
        """재연결 포기 후 종료 알림"""
        if not self.enabled:
            return
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            "⛔ <b>FEED STOPPED</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"🔁 재연결 시도: <b>{attempts}</b>회\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)
