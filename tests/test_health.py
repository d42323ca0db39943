"""HealthMonitor 테스트
Feature: hyperliquid-feed-client, Property 16: 무수신 3 × interval 초과 시 실패
"""

import asyncio
import time
from datetime import datetime

import pytest
from hypothesis import given, strategies as st, settings

from hlfeed.errors import HealthCheckError
from hlfeed.health import HealthMonitor, HealthStatus
from hlfeed.state import Session, SessionCounters


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ── Property 16: 무수신 한도 ──

class TestSilenceLimit:

    @given(
        interval=st.floats(min_value=0.01, max_value=600, allow_nan=False),
        ratio=st.floats(min_value=0, max_value=10, allow_nan=False),
    )
    @settings(max_examples=200)
    def test_fails_only_beyond_three_intervals(self, interval, ratio):
        clock = FakeClock()
        session = Session(clock=clock)
        session.touch()
        clock.now += interval * ratio
        monitor = HealthMonitor(interval)
        if session.silence() > interval * 3:
            with pytest.raises(HealthCheckError):
                monitor.check(session)
        else:
            monitor.check(session)

    def test_touch_resets_silence(self):
        clock = FakeClock()
        session = Session(clock=clock)
        monitor = HealthMonitor(10)
        clock.now += 29
        session.touch()
        clock.now += 29
        monitor.check(session)
        clock.now += 2
        with pytest.raises(HealthCheckError):
            monitor.check(session)

    def test_watch_raises_when_idle(self):
        """프레임이 없으면 watch()가 HealthCheckError로 종료"""
        async def scenario():
            session = Session()
            session.mark_connected()
            await asyncio.wait_for(HealthMonitor(0.02).watch(session), 2.0)

        with pytest.raises(HealthCheckError):
            asyncio.run(scenario())

    def test_watch_fires_at_silence_deadline(self):
        """틱 사이에 수신이 있어도 마지막 수신 + 3 × interval 시점에 실패 (다음 틱까지 밀리지 않음)"""
        async def scenario():
            session = Session()
            session.mark_connected()
            loop = asyncio.get_running_loop()
            loop.call_later(0.25, session.touch)
            start = time.monotonic()
            with pytest.raises(HealthCheckError):
                await asyncio.wait_for(HealthMonitor(0.5).watch(session), 5.0)
            return time.monotonic() - start

        elapsed = asyncio.run(scenario())
        assert 1.7 <= elapsed < 1.95

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            HealthMonitor(0)


# ── 단위 테스트 ──

class TestSessionState:

    def test_new_session_identity(self):
        a, b = Session(), Session()
        assert a.connection_id != b.connection_id
        assert a.connected is False
        assert a.last_message_at is None

    def test_counters(self):
        counters = SessionCounters()
        assert counters.record_failure(1.0) == 1
        assert counters.record_failure(2.0) == 2
        assert counters.last_disconnect_time == 2.0
        counters.reset_reconnects()
        assert counters.reconnect_count == 0
        snap = counters.snapshot()
        counters.record_message()
        assert snap.total_messages == 0
        assert counters.total_messages == 1


class TestHealthStatus:

    def _status(self, **overrides):
        values = dict(
            is_healthy=True, connected=True, last_message_at=1700000000.0,
            total_messages=10, total_trades=4, reconnect_count=1,
            duplicate_trades=2, invalid_timestamps=0, uptime_seconds=12.7,
        )
        values.update(overrides)
        return HealthStatus(**values)

    def test_json_document(self):
        doc = self._status().to_json()
        assert doc["status"] == "healthy"
        assert doc["connected"] is True
        assert doc["last_message_time"].startswith("2023-11-14T22:13:20")
        assert doc["uptime_seconds"] == 12
        assert doc["duplicate_trades"] == 2
        datetime.fromisoformat(doc["timestamp"])

    def test_unhealthy_without_messages(self):
        doc = self._status(is_healthy=False, last_message_at=None).to_json()
        assert doc["status"] == "unhealthy"
        assert doc["last_message_time"] is None
