"""콘솔 출력 모듈 - 이벤트 버스 소비자, 체결을 table/json/csv/minimal 형식으로 출력"""

from __future__ import annotations

import json
import logging
import sys
from typing import TextIO

from hlfeed.event_bus import Subscription
from hlfeed.events import (
    ClientEvent, Connected, Connecting, ConnectionFailed, Disconnected,
    HealthCheckFailed, Reconnecting, Stopping, SubscriptionConfirmed, TradeReceived,
)
from hlfeed.models import Trade

logger = logging.getLogger(__name__)

TABLE_TOP = "┌─────────┬──────┬─────────────┬─────────────┬─────────────┬─────────────────────┐"
TABLE_SEP = "├─────────┼──────┼─────────────┼─────────────┼─────────────┼─────────────────────┤"
CSV_HEADER = "#,side,price,size,value,utc_time,unix_timestamp"


class EventConsole:
    """체결 이벤트를 표준 출력으로 내보내는 소비자"""

    def __init__(self, output_format: str = "table", verbose_trades: bool = False,
                 out: TextIO | None = None):
        self.output_format = output_format
        self.verbose_trades = verbose_trades
        self.out = out or sys.stdout
        self.trade_count = 0
        self._header_printed = False

    def _print(self, line: str) -> None:
        print(line, file=self.out, flush=True)

    async def run(self, subscription: Subscription) -> None:
        """버스가 닫힐 때까지 이벤트 소비"""
        async for event in subscription:
            self.handle(event)
        logger.debug(f"[콘솔] 종료 (체결 {self.trade_count}건 출력)")

    def handle(self, event: ClientEvent) -> None:
        if isinstance(event, TradeReceived):
            self.print_trade(event.trade)
        else:
            self.print_status(event)

    # ── 상태 ──

    def print_status(self, event: ClientEvent) -> None:
        """연결 상태 한 줄 출력 (json/csv는 데이터만 출력하므로 생략)"""
        if self.output_format in ("json", "csv"):
            return
        line = self._status_line(event)
        if line:
            self._print(line)

    @staticmethod
    def _status_line(event: ClientEvent) -> str | None:
        if isinstance(event, Connecting):
            return f"[*] CONNECTING {event.url}"
        if isinstance(event, Connected):
            return f"[+] CONNECTED {event.connection_id}"
        if isinstance(event, SubscriptionConfirmed):
            return f"[~] LISTENING {event.subscription_type} {event.coin}"
        if isinstance(event, (ConnectionFailed, HealthCheckFailed)):
            return f"[!] ERROR {event.reason}"
        if isinstance(event, Reconnecting):
            return f"[-] RECONNECTING attempt={event.attempt} in {event.delay:g}s"
        if isinstance(event, Disconnected):
            return f"[-] DISCONNECTED {event.reason}"
        if isinstance(event, Stopping):
            return "[-] STOPPED"
        return None

    # ── 체결 ──

    def print_trade(self, trade: Trade) -> None:
        if not self._header_printed:
            self._print_header()
            self._header_printed = True
        self.trade_count += 1
        self._print(self.format_trade(trade))
        if self.verbose_trades and self.output_format in ("table", "minimal"):
            users = self._users_line(trade)
            if users:
                self._print(users)

    def _print_header(self) -> None:
        if self.output_format == "table":
            self._print(TABLE_TOP)
            self._print(
                f"│ {'#':<7} │ {'SIDE':<4} │ {'PRICE':<11} │ {'SIZE':<11} "
                f"│ {'VALUE':<11} │ {'TIME':<19} │"
            )
            self._print(TABLE_SEP)
        elif self.output_format == "csv":
            self._print(CSV_HEADER)

    def format_trade(self, trade: Trade) -> str:
        """현재 형식으로 체결 1건을 한 줄 문자열로 변환"""
        side = "BUY" if trade.is_buy else "SELL"
        when = trade.datetime_utc
        if self.output_format == "csv":
            return (
                f"{self.trade_count},{side},{trade.price:.2f},{trade.size:.6f},"
                f"{trade.value:.2f},{when:%Y-%m-%d %H:%M:%S},{trade.time}"
            )
        if self.output_format == "json":
            return json.dumps({
                "#": self.trade_count,
                "coin": trade.coin,
                "side": side,
                "price": trade.price,
                "size": trade.size,
                "value": trade.value,
                "utc_time": f"{when:%Y-%m-%d %H:%M:%S}",
                "unix_timestamp": trade.time,
                "trade_id": trade.tid,
                "hash": trade.hash,
            })
        if self.output_format == "minimal":
            arrow = "↗" if trade.is_buy else "↘"
            return f"{when:%H:%M:%S} {arrow} {trade.price:<8.2f} {trade.size:<8.6f} {trade.coin}"
        return (
            f"│ {self.trade_count:<7} │ {side:<4} │ {trade.price:<11.2f} │ {trade.size:<11.6f} "
            f"│ {trade.value:<11.2f} │ {when:%H:%M:%S}{'':<11} │"
        )

    @staticmethod
    def _users_line(trade: Trade) -> str | None:
        if trade.buyer and trade.seller:
            return f"  users: buyer={trade.buyer} seller={trade.seller}"
        if trade.buyer:
            return f"  users: buyer={trade.buyer}"
        return None
