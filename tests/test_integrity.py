"""IntegrityTracker 테스트
Feature: hyperliquid-feed-client
Property 9: 직전 ID 반복만 중복으로 거부
Property 10: 타임스탬프 검사는 기록만 함
"""

import asyncio
import json
import tempfile
from pathlib import Path

from hypothesis import given, strategies as st, settings, assume

from hlfeed.integrity import IntegrityTracker, MIN_PLAUSIBLE_TIME_MS

symbols = st.sampled_from(["BTC", "ETH", "SOL", "HYPE"])
trade_ids = st.integers(min_value=0, max_value=2**63 - 1)

FIXED_NOW = 1_700_000_000.0  # 2023-11-14


# ── Property 9: 중복 체결 ──

class TestDuplicateDetection:

    @given(symbol=symbols, tid=trade_ids)
    @settings(max_examples=100)
    def test_immediate_repeat_rejected(self, symbol, tid):
        tracker = IntegrityTracker()
        assert tracker.record_trade(symbol, tid) is True
        assert tracker.record_trade(symbol, tid) is False
        assert tracker.duplicate_trades == 1

    @given(symbol=symbols, a=trade_ids, b=trade_ids)
    @settings(max_examples=200)
    def test_distinct_ids_accepted_in_any_order(self, symbol, a, b):
        """ID 순서가 역전되어도 거부하지 않음"""
        assume(a != b)
        tracker = IntegrityTracker()
        assert tracker.record_trade(symbol, a) is True
        assert tracker.record_trade(symbol, b) is True
        assert tracker.duplicate_trades == 0
        assert tracker.last_trade_id(symbol) == b

    @given(tid=trade_ids)
    @settings(max_examples=50)
    def test_symbols_tracked_independently(self, tid):
        tracker = IntegrityTracker()
        assert tracker.record_trade("BTC", tid)
        assert tracker.record_trade("ETH", tid)
        assert tracker.duplicate_trades == 0

    def test_only_immediate_predecessor_compared(self):
        """5, 6, 5 순서는 모두 통과 (직전 ID만 비교)"""
        tracker = IntegrityTracker()
        assert [tracker.record_trade("BTC", t) for t in (5, 6, 5)] == [True, True, True]

    def test_rejected_id_keeps_last_seen(self):
        tracker = IntegrityTracker()
        tracker.record_trade("BTC", 10)
        tracker.record_trade("BTC", 10)
        assert tracker.last_trade_id("BTC") == 10
        assert tracker.last_trade_id("ETH") is None


# ── Property 10: 타임스탬프 ──

class TestTimestampCheck:

    @given(offset_ms=st.integers(min_value=0, max_value=10**10))
    @settings(max_examples=100)
    def test_plausible_timestamps_pass(self, offset_ms):
        tracker = IntegrityTracker(clock=lambda: FIXED_NOW)
        ts = int(FIXED_NOW * 1000) - offset_ms
        assume(ts >= MIN_PLAUSIBLE_TIME_MS)
        assert tracker.check_timestamp("BTC", ts) is True
        assert tracker.invalid_timestamps == 0

    @given(ts=st.integers(max_value=0))
    @settings(max_examples=50)
    def test_non_positive_flagged(self, ts):
        tracker = IntegrityTracker(clock=lambda: FIXED_NOW)
        assert tracker.check_timestamp("BTC", ts) is False
        assert tracker.invalid_timestamps == 1

    def test_far_future_flagged(self):
        tracker = IntegrityTracker(clock=lambda: FIXED_NOW)
        two_days_ahead = int(FIXED_NOW * 1000) + 2 * 86_400_000
        assert tracker.check_timestamp("BTC", two_days_ahead) is False

    def test_seconds_instead_of_millis_flagged(self):
        tracker = IntegrityTracker(clock=lambda: FIXED_NOW)
        assert tracker.check_timestamp("BTC", int(FIXED_NOW)) is False


# ── 단위 테스트 ──

class TestPeriodicLog:

    def test_stats_fields(self):
        tracker = IntegrityTracker(clock=lambda: FIXED_NOW)
        tracker.record_message()
        tracker.record_trade("BTC", 1)
        tracker.record_trade("BTC", 1)
        tracker.record_reconnect(FIXED_NOW, "timeout")
        tracker.record_unparsed("unrecognized shape")
        stats = tracker.get_periodic_stats()
        assert stats["total_messages"] == 1
        assert stats["duplicate_trades"] == 1
        assert stats["unparsed_messages"] == 1
        assert stats["reconnect_count"] == 1
        assert stats["duplicates"][0]["trade_id"] == 1
        assert stats["last_trade_ids"] == {"BTC": 1}

    def test_write_periodic_log(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            tracker = IntegrityTracker(tmpdir)
            tracker.record_trade("ETH", 3)
            tracker.record_trade("ETH", 3)
            path = asyncio.run(tracker.write_periodic_log())
            assert path is not None and path.parent == Path(tmpdir)
            data = json.loads(path.read_text())
            assert data["duplicate_trades"] == 1
            assert len(data["duplicates"]) == 1
            # 상세 기록은 비우고 누적 카운터는 유지
            assert tracker.get_periodic_stats()["duplicates"] == []
            assert tracker.duplicate_trades == 1

    def test_no_log_dir_skips_write(self):
        tracker = IntegrityTracker()
        assert asyncio.run(tracker.write_periodic_log()) is None

    def test_event_buffer_bounded(self):
        tracker = IntegrityTracker()
        tracker.MAX_EVENT_BUFFER = 10
        for i in range(25):
            tracker.record_reconnect(float(i), "x")
        assert len(tracker.get_periodic_stats()["reconnects"]) <= 10
