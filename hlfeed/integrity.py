"""데이터 무결성 추적 모듈 - 중복 체결, 타임스탬프 이상, 재연결, 주기 통계"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

MIN_PLAUSIBLE_TIME_MS = 1_262_304_000_000   # 2010-01-01 UTC
MAX_FUTURE_SKEW_MS = 24 * 3600 * 1000       # 로컬 시계보다 1일 이상 앞서면 이상


class IntegrityTracker:
    """심볼별 중복 체결 감지 및 무결성 카운터 (프로세스 수명 동안 유지, 재연결 시 리셋 안 함)"""

    MAX_EVENT_BUFFER = 10000  # 중복/재연결 기록 최대 보관 수

    def __init__(self, log_dir: Path | str | None = None,
                 clock: Callable[[], float] = time.time):
        self.log_dir = Path(log_dir) if log_dir else None
        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self._last_trade_ids: dict[str, int] = {}
        self._duplicates: list[dict] = []
        self._reconnects: list[dict] = []
        self.duplicate_trades = 0
        self.invalid_timestamps = 0
        self.total_messages = 0
        self.unparsed_messages = 0

    def last_trade_id(self, symbol: str) -> int | None:
        return self._last_trade_ids.get(symbol)

    def record_trade(self, symbol: str, trade_id: int) -> bool:
        """직전 ID와 정확히 같을 때만 거부 (ID 순서 역전은 허용, 갭 검사 없음)"""
        if self._last_trade_ids.get(symbol) == trade_id:
            self.duplicate_trades += 1
            self._append_bounded(self._duplicates, {
                "timestamp": self.clock(),
                "symbol": symbol,
                "trade_id": trade_id,
            })
            logger.warning(f"[무결성] {symbol} 중복 체결 tid={trade_id}")
            return False
        self._last_trade_ids[symbol] = trade_id
        return True

    def check_timestamp(self, symbol: str, time_ms: int) -> bool:
        """타임스탬프 타당성 검사 (기록만 하고 거부하지 않음)"""
        now_ms = self.clock() * 1000
        if time_ms <= 0 or time_ms < MIN_PLAUSIBLE_TIME_MS or time_ms > now_ms + MAX_FUTURE_SKEW_MS:
            self.invalid_timestamps += 1
            logger.warning(f"[무결성] {symbol} 비정상 타임스탬프 time={time_ms}")
            return False
        return True

    def record_message(self) -> None:
        self.total_messages += 1

    def record_unparsed(self, reason: str) -> None:
        self.unparsed_messages += 1
        logger.debug(f"[무결성] 해석 실패 메시지 누적 {self.unparsed_messages}건: {reason}")

    def record_reconnect(self, timestamp: float, reason: str) -> None:
        """재연결 이벤트 기록"""
        self._append_bounded(self._reconnects, {
            "timestamp": timestamp,
            "reason": reason,
        })

    def _append_bounded(self, records: list[dict], record: dict) -> None:
        if len(records) >= self.MAX_EVENT_BUFFER:
            del records[: self.MAX_EVENT_BUFFER // 2]
        records.append(record)

    def get_periodic_stats(self) -> dict:
        """현재 누적 통계 반환"""
        now = datetime.now(timezone.utc)
        return {
            "timestamp": now.isoformat(),
            "total_messages": self.total_messages,
            "unparsed_messages": self.unparsed_messages,
            "duplicate_trades": self.duplicate_trades,
            "invalid_timestamps": self.invalid_timestamps,
            "duplicates": list(self._duplicates),
            "reconnect_count": len(self._reconnects),
            "reconnects": list(self._reconnects),
            "last_trade_ids": dict(self._last_trade_ids),
        }

    async def write_periodic_log(self) -> Path | None:
        """주기적 통계 JSON 로그 작성 (log_dir 미설정 시 건너뜀)"""
        if self.log_dir is None:
            return None
        stats = self.get_periodic_stats()
        now = datetime.now(timezone.utc)
        log_file = self.log_dir / f"stats_{now.strftime('%Y%m%d_%H')}.json"
        with open(log_file, "w") as f:
            json.dump(stats, f, indent=2, default=str)
        # 상세 기록만 비우고 누적 카운터와 심볼별 마지막 ID는 유지
        self._duplicates.clear()
        self._reconnects.clear()
        logger.info(f"[로그] {log_file}")
        return log_file
