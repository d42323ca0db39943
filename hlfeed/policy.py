"""재연결 정책 - 대기 시간 계산 및 재시도 한도 판정"""

from __future__ import annotations

from typing import TYPE_CHECKING

from hlfeed.errors import MaxReconnectsExceeded

if TYPE_CHECKING:
    from hlfeed.config import Config


class ReconnectPolicy:
    """재연결 정책 기반 클래스

    max_attempts: 0이면 무제한
    base_delay: 기본 대기 시간 (초)
    """

    def __init__(self, max_attempts: int = 0, base_delay: float = 5.0):
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    def exhausted(self, attempts_made: int) -> bool:
        """이미 수행한 재연결 횟수가 한도에 도달했는지"""
        return self.max_attempts > 0 and attempts_made >= self.max_attempts

    def next_delay(self, attempt: int) -> float:
        """attempt번째(1부터) 재연결 전 대기 시간. 한도 초과 시 MaxReconnectsExceeded"""
        if self.exhausted(attempt - 1):
            raise MaxReconnectsExceeded(self.max_attempts)
        return self.compute_delay(attempt)

    def compute_delay(self, attempt: int) -> float:
        raise NotImplementedError


class FixedDelayPolicy(ReconnectPolicy):
    """고정 대기 (기본 정책)"""

    def compute_delay(self, attempt: int) -> float:
        return self.base_delay


class ExponentialBackoffPolicy(ReconnectPolicy):
    """지수 백오프: min(base * 2^(N-1), max_delay)"""

    def __init__(self, max_attempts: int = 0, base_delay: float = 1.0,
                 max_delay: float = 60.0):
        super().__init__(max_attempts, base_delay)
        self.max_delay = max_delay

    def compute_delay(self, attempt: int) -> float:
        # 2**큰수 오버플로 방지
        exponent = min(max(attempt - 1, 0), 32)
        return min(self.base_delay * (2 ** exponent), self.max_delay)


def build_policy(config: Config) -> ReconnectPolicy:
    """config.backoff에 따라 정책 생성"""
    if config.backoff == "exponential":
        return ExponentialBackoffPolicy(
            max_attempts=config.max_reconnects,
            base_delay=config.reconnect_delay,
            max_delay=config.max_reconnect_delay,
        )
    return FixedDelayPolicy(
        max_attempts=config.max_reconnects,
        base_delay=config.reconnect_delay,
    )
