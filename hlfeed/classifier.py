"""메시지 분류 모듈 - 원본 텍스트를 정해진 순서의 경로로 해석하여 수신 메시지로 변환"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from hlfeed.models import (
    AllMids, Bbo, BboUpdate, Book, BookSnapshot, Candle, CandleBatch,
    DirectCandles, DirectTrades, InboundMessage, KeepAlive, MidsUpdate,
    NotificationMessage, SubscriptionAck, Trade, TradeBatch, UnparsedMessage,
    UserEvent, UserEventMessage,
)

logger = logging.getLogger(__name__)

# 개별 레코드 파싱 실패로 간주하는 예외
PARSE_ERRORS = (ValueError, KeyError, TypeError, AttributeError, IndexError, OverflowError)

RAW_PREVIEW_CHARS = 200


def _parse_subscription_ack(data: Any) -> SubscriptionAck:
    sub = data["subscription"]
    return SubscriptionAck(subscription_type=str(sub["type"]), coin=str(sub["coin"]))


def _parse_trades(data: Any) -> tuple[Trade, ...]:
    if not isinstance(data, list):
        raise TypeError("trade payload must be a list")
    return tuple(Trade.from_dict(t) for t in data)


def _parse_candles(data: Any) -> tuple[Candle, ...]:
    # candle 채널은 단일 객체 또는 배열
    if isinstance(data, dict):
        return (Candle.from_dict(data),)
    if not isinstance(data, list):
        raise TypeError("candle payload must be a list or object")
    return tuple(Candle.from_dict(c) for c in data)


def _parse_notification(data: Any) -> NotificationMessage:
    return NotificationMessage(notification=str(data["notification"]))


# 채널명 → 봉투 data 파서
ENVELOPE_PARSERS: dict[str, Callable[[Any], InboundMessage]] = {
    "subscriptionResponse": _parse_subscription_ack,
    "trades": lambda data: TradeBatch(_parse_trades(data)),
    "l2Book": lambda data: BookSnapshot(Book.from_dict(data)),
    "bbo": lambda data: BboUpdate(Bbo.from_dict(data)),
    "allMids": lambda data: MidsUpdate(AllMids.from_dict(data)),
    "candle": lambda data: CandleBatch(_parse_candles(data)),
    "user": lambda data: UserEventMessage(UserEvent.from_dict(data)),
    "userEvents": lambda data: UserEventMessage(UserEvent.from_dict(data)),
    "notification": _parse_notification,
}

KEEPALIVE_CHANNELS = {"pong", "ping"}


class MessageClassifier:
    """순서가 정해진 분류 파이프라인

    1. 봉투 {"channel", "data"} - 채널명으로 분기
    2. 봉투 없는 체결/캔들 배열
    3. channel 필드 힌트 (subscription / trade)
    4. 모두 실패 → UnparsedMessage (예외 없음)
    """

    def __init__(self):
        self._stages: list[tuple[str, Callable[[Any], InboundMessage | None]]] = [
            ("envelope", self._from_envelope),
            ("bare_array", self._from_bare_array),
            ("channel_hint", self._from_channel_hint),
        ]

    def classify(self, text: str) -> InboundMessage | UnparsedMessage:
        try:
            doc = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            return UnparsedMessage(raw=text, reason=f"invalid json: {e}")

        failures = []
        for name, stage in self._stages:
            try:
                message = stage(doc)
            except PARSE_ERRORS as e:
                failures.append(f"{name}: {e!r}")
                continue
            if message is not None:
                if failures:
                    logger.debug(f"[분류] {name} 경로로 복구 ({'; '.join(failures)})")
                return message

        reason = "; ".join(failures) if failures else "unrecognized shape"
        return UnparsedMessage(raw=text, reason=reason)

    # ── 1단계: 봉투 ──

    @staticmethod
    def _from_envelope(doc: Any) -> InboundMessage | None:
        if not isinstance(doc, dict) or not isinstance(doc.get("channel"), str):
            return None
        channel = doc["channel"]
        if channel in KEEPALIVE_CHANNELS:
            return KeepAlive(channel=channel)
        parser = ENVELOPE_PARSERS.get(channel)
        if parser is None or "data" not in doc:
            return None
        return parser(doc["data"])

    # ── 2단계: 봉투 없는 배열 ──

    @staticmethod
    def _from_bare_array(doc: Any) -> InboundMessage | None:
        if not isinstance(doc, list):
            return None
        try:
            return DirectTrades(_parse_trades(doc))
        except PARSE_ERRORS:
            pass
        return DirectCandles(_parse_candles(doc))

    # ── 3단계: channel 필드 힌트 ──

    @staticmethod
    def _from_channel_hint(doc: Any) -> InboundMessage | None:
        if not isinstance(doc, dict):
            return None
        channel = doc.get("channel")
        if not isinstance(channel, str):
            return None
        lowered = channel.lower()
        data = doc.get("data")

        if "subscription" in lowered:
            # 구독 대상이 없는 응답은 확인으로 보지 않음
            if not (isinstance(data, dict) and isinstance(data.get("subscription"), dict)):
                return None
            sub = data["subscription"]
            return SubscriptionAck(
                subscription_type=str(sub.get("type", "unknown")),
                coin=str(sub.get("coin", "unknown")),
            )

        if "trade" in lowered:
            items = data if isinstance(data, list) else [data]
            trades = []
            for item in items:
                try:
                    trades.append(Trade.from_dict(item))
                except PARSE_ERRORS:
                    continue
            if trades:
                return TradeBatch(tuple(trades))
        return None


def preview(raw: str) -> str:
    """로그용 원본 메시지 앞부분"""
    if len(raw) <= RAW_PREVIEW_CHARS:
        return raw
    return raw[:RAW_PREVIEW_CHARS] + "..."
