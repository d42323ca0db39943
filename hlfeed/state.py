"""세션 상태 - 연결 시도별 Session과 프로세스 수명 동안 유지되는 SessionCounters"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Callable


@dataclass
class Session:
    """연결 시도 1회의 상태 (시도마다 새로 생성)"""
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    connection_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    connected: bool = False
    last_message_time: float = 0.0       # monotonic, 무수신 감시용
    last_message_at: float | None = None  # unix timestamp, 헬스 리포트용

    def __post_init__(self) -> None:
        # 첫 프레임 전까지는 세션 생성 시각을 기준으로 무수신 시간 계산
        self.last_message_time = self.clock()

    def mark_connected(self) -> None:
        self.connected = True
        self.last_message_time = self.clock()

    def touch(self) -> None:
        """수신 프레임마다 호출"""
        self.last_message_time = self.clock()
        self.last_message_at = time.time()

    def silence(self) -> float:
        """마지막 수신 이후 경과 시간 (초)"""
        return self.clock() - self.last_message_time


@dataclass
class SessionCounters:
    """재연결/수신 카운터 (재연결 후에도 유지)"""
    reconnect_count: int = 0
    last_disconnect_time: float | None = None
    total_messages: int = 0
    total_trades: int = 0

    def record_failure(self, timestamp: float) -> int:
        """실패 전이마다 재연결 카운트 +1, 증가된 값 반환"""
        self.reconnect_count += 1
        self.last_disconnect_time = timestamp
        return self.reconnect_count

    def reset_reconnects(self) -> None:
        """새 세션이 수신 단계에 도달하면 0으로 리셋"""
        self.reconnect_count = 0

    def record_message(self) -> None:
        self.total_messages += 1

    def record_trade(self) -> None:
        self.total_trades += 1

    def snapshot(self) -> "SessionCounters":
        """헬스 리포트용 복사본"""
        return replace(self)
