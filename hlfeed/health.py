"""헬스 모니터 - 무수신 감시 및 헬스 상태 JSON"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from hlfeed.errors import HealthCheckError
from hlfeed.state import Session

logger = logging.getLogger(__name__)

SILENCE_MULTIPLIER = 3  # check_interval * 3 동안 무수신이면 실패
DEADLINE_SLACK = 0.001  # 한도 "초과" 판정용 여유 (초)


class HealthMonitor:
    """주기적으로 세션의 마지막 수신 시각을 확인, 침묵이 길면 HealthCheckError"""

    def __init__(self, check_interval: float):
        if check_interval <= 0:
            raise ValueError("check_interval must be positive")
        self.check_interval = check_interval

    @property
    def silence_limit(self) -> float:
        return self.check_interval * SILENCE_MULTIPLIER

    def check(self, session: Session) -> None:
        silence = session.silence()
        if silence > self.silence_limit:
            raise HealthCheckError(
                f"no message for {silence:.1f}s (limit {self.silence_limit:.1f}s)"
            )

    async def watch(self, session: Session) -> None:
        """수신 루프와 경쟁하는 감시 루프 (실패 시에만 반환 - 예외로)

        최대 check_interval 간격으로 깨어나고, 무수신 한도에 닿는 시각에는 그때 바로 확인.
        """
        while True:
            remaining = self.silence_limit - session.silence()
            await asyncio.sleep(min(self.check_interval, max(remaining, 0.0)) + DEADLINE_SLACK)
            self.check(session)
            logger.debug(f"[헬스] 정상 (무수신 {session.silence():.1f}s)")


@dataclass
class HealthStatus:
    """헬스 리포트"""
    is_healthy: bool
    connected: bool
    last_message_at: float | None
    total_messages: int
    total_trades: int
    reconnect_count: int
    duplicate_trades: int
    invalid_timestamps: int
    uptime_seconds: float

    def to_json(self) -> dict:
        last = None
        if self.last_message_at is not None:
            last = datetime.fromtimestamp(self.last_message_at, tz=timezone.utc).isoformat()
        return {
            "status": "healthy" if self.is_healthy else "unhealthy",
            "connected": self.connected,
            "last_message_time": last,
            "total_messages": self.total_messages,
            "total_trades": self.total_trades,
            "reconnect_count": self.reconnect_count,
            "duplicate_trades": self.duplicate_trades,
            "invalid_timestamps": self.invalid_timestamps,
            "uptime_seconds": int(self.uptime_seconds),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
