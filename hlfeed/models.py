"""데이터 모델 정의 - 하이퍼리퀴드 WebSocket 메시지 및 구독 요청"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


def _to_float(value) -> float:
    """숫자 문자열/숫자를 float로 변환 (bool은 거부)"""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError(f"not a number: {value!r}")
    return float(value)


def _to_int(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"not an integer: {value!r}")
    return value


def _non_negative(value) -> float:
    """유한한 0 이상 값만 허용"""
    number = _to_float(value)
    if not math.isfinite(number) or number < 0:
        raise ValueError(f"price/size must be finite and non-negative: {value!r}")
    return number


# ── 체결 관련 ──

class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, raw: str) -> "Side":
        """B/BUY/BID → BUY, A/S/SELL/ASK → SELL (대소문자 무시)"""
        if not isinstance(raw, str):
            raise ValueError(f"invalid side: {raw!r}")
        key = raw.strip().upper()
        if key in ("B", "BUY", "BID"):
            return cls.BUY
        if key in ("A", "S", "SELL", "ASK"):
            return cls.SELL
        raise ValueError(f"invalid side: {raw!r}")


@dataclass(frozen=True)
class Trade:
    """trades 채널 체결 레코드"""
    coin: str
    side: Side
    price: float                 # px
    size: float                  # sz
    time: int                    # 서버 체결 시각 (ms)
    tid: int                     # 체결 ID
    hash: str
    users: tuple[str, ...] = ()  # [buyer, seller]

    @classmethod
    def from_dict(cls, d: dict) -> "Trade":
        """서버 JSON 객체 → Trade. 형식이 맞지 않으면 ValueError/KeyError/TypeError"""
        users = d.get("users", [])
        if not isinstance(users, list) or len(users) > 2:
            raise ValueError(f"users must be a list of at most 2 entries: {users!r}")
        coin = d["coin"]
        if not isinstance(coin, str):
            raise ValueError(f"coin must be a string: {coin!r}")
        return cls(
            coin=coin,
            side=Side.parse(d["side"]),
            price=_non_negative(d["px"]),
            size=_non_negative(d["sz"]),
            time=_to_int(d["time"]),
            tid=_to_int(d["tid"]),
            hash=str(d.get("hash", "")),
            users=tuple(str(u) for u in users),
        )

    @property
    def value(self) -> float:
        """체결 금액 (price * size)"""
        return self.price * self.size

    @property
    def is_buy(self) -> bool:
        return self.side is Side.BUY

    @property
    def buyer(self) -> str | None:
        return self.users[0] if self.users else None

    @property
    def seller(self) -> str | None:
        return self.users[1] if len(self.users) == 2 else None

    @property
    def datetime_utc(self) -> datetime:
        return datetime.fromtimestamp(self.time / 1000.0, tz=timezone.utc)


# ── 오더북 관련 ──

@dataclass(frozen=True)
class Level:
    """호가 단위 (가격, 수량, 주문 수)"""
    price: float
    size: float
    orders: int

    @classmethod
    def from_dict(cls, d: dict) -> "Level":
        return cls(price=_non_negative(d["px"]), size=_non_negative(d["sz"]),
                   orders=_to_int(d["n"]))


@dataclass(frozen=True)
class Book:
    """l2Book 스냅샷"""
    coin: str
    bids: tuple[Level, ...]
    asks: tuple[Level, ...]
    time: int

    @classmethod
    def from_dict(cls, d: dict) -> "Book":
        bids, asks = d["levels"]
        return cls(
            coin=str(d["coin"]),
            bids=tuple(Level.from_dict(x) for x in bids),
            asks=tuple(Level.from_dict(x) for x in asks),
            time=_to_int(d["time"]),
        )


@dataclass(frozen=True)
class Bbo:
    """최우선 매수/매도 호가"""
    coin: str
    time: int
    bid: Level | None
    ask: Level | None

    @classmethod
    def from_dict(cls, d: dict) -> "Bbo":
        bid, ask = d["bbo"]
        return cls(
            coin=str(d["coin"]),
            time=_to_int(d["time"]),
            bid=Level.from_dict(bid) if bid else None,
            ask=Level.from_dict(ask) if ask else None,
        )


@dataclass(frozen=True)
class AllMids:
    """전체 심볼 중간가 (심볼 → 가격 문자열)"""
    mids: dict[str, str]

    @classmethod
    def from_dict(cls, d: dict) -> "AllMids":
        mids = d["mids"]
        if not isinstance(mids, dict):
            raise ValueError("mids must be an object")
        return cls(mids={str(k): str(v) for k, v in mids.items()})


# ── 캔들 관련 ──

@dataclass(frozen=True)
class Candle:
    """candle 채널 캔들"""
    symbol: str                  # s
    interval: str                # i
    open_time: int               # t (ms)
    close_time: int              # T (ms)
    open: float
    high: float
    low: float
    close: float
    volume: float
    trade_count: int             # n

    @classmethod
    def from_dict(cls, d: dict) -> "Candle":
        return cls(
            symbol=str(d["s"]),
            interval=str(d["i"]),
            open_time=_to_int(d["t"]),
            close_time=_to_int(d["T"]),
            open=_to_float(d["o"]),
            high=_to_float(d["h"]),
            low=_to_float(d["l"]),
            close=_to_float(d["c"]),
            volume=_to_float(d["v"]),
            trade_count=_to_int(d["n"]),
        )


# ── 사용자 이벤트 ──

@dataclass(frozen=True)
class Fill:
    coin: str
    price: float
    size: float
    side: Side
    time: int
    oid: int
    tid: int
    hash: str
    fee: str
    closed_pnl: str

    @classmethod
    def from_dict(cls, d: dict) -> "Fill":
        return cls(
            coin=str(d["coin"]),
            price=_non_negative(d["px"]),
            size=_non_negative(d["sz"]),
            side=Side.parse(d["side"]),
            time=_to_int(d["time"]),
            oid=_to_int(d["oid"]),
            tid=_to_int(d["tid"]),
            hash=str(d.get("hash", "")),
            fee=str(d.get("fee", "0")),
            closed_pnl=str(d.get("closedPnl", "0")),
        )


@dataclass(frozen=True)
class UserFunding:
    time: int
    coin: str
    usdc: str
    szi: str
    funding_rate: str


@dataclass(frozen=True)
class Liquidation:
    lid: int
    liquidator: str
    liquidated_user: str
    liquidated_ntl_pos: str
    liquidated_account_value: str


@dataclass(frozen=True)
class NonUserCancel:
    coin: str
    oid: int


@dataclass(frozen=True)
class UserEvent:
    """user 채널 이벤트 - kind에 따라 하나의 필드만 채워짐"""
    kind: str                    # fills / funding / liquidation / nonUserCancel
    fills: tuple[Fill, ...] = ()
    funding: UserFunding | None = None
    liquidation: Liquidation | None = None
    cancels: tuple[NonUserCancel, ...] = ()

    @classmethod
    def from_dict(cls, d: dict) -> "UserEvent":
        if "fills" in d:
            return cls(kind="fills", fills=tuple(Fill.from_dict(f) for f in d["fills"]))
        if "funding" in d:
            f = d["funding"]
            return cls(kind="funding", funding=UserFunding(
                time=_to_int(f["time"]), coin=str(f["coin"]), usdc=str(f["usdc"]),
                szi=str(f["szi"]), funding_rate=str(f["fundingRate"]),
            ))
        if "liquidation" in d:
            liq = d["liquidation"]
            return cls(kind="liquidation", liquidation=Liquidation(
                lid=_to_int(liq["lid"]),
                liquidator=str(liq["liquidator"]),
                liquidated_user=str(liq["liquidated_user"]),
                liquidated_ntl_pos=str(liq["liquidated_ntl_pos"]),
                liquidated_account_value=str(liq["liquidated_account_value"]),
            ))
        if "nonUserCancel" in d:
            return cls(kind="nonUserCancel", cancels=tuple(
                NonUserCancel(coin=str(c["coin"]), oid=_to_int(c["oid"]))
                for c in d["nonUserCancel"]
            ))
        raise ValueError(f"unknown user event keys: {sorted(d)}")


# ── 구독 요청 ──

@dataclass(frozen=True)
class SubscriptionRequest:
    """구독 요청 (세션마다 한 번 직렬화하여 전송)"""
    subscription_type: str
    coin: str
    interval: str | None = None  # candle 구독만 사용
    method: str = "subscribe"

    def to_json(self) -> str:
        subscription = {"type": self.subscription_type, "coin": self.coin}
        if self.interval:
            subscription["interval"] = self.interval
        return json.dumps({"method": self.method, "subscription": subscription},
                          separators=(",", ":"))

    @classmethod
    def trades(cls, coin: str) -> "SubscriptionRequest":
        return cls("trades", coin)

    @classmethod
    def l2_book(cls, coin: str) -> "SubscriptionRequest":
        return cls("l2Book", coin)

    @classmethod
    def bbo(cls, coin: str) -> "SubscriptionRequest":
        return cls("bbo", coin)

    @classmethod
    def all_mids(cls) -> "SubscriptionRequest":
        return cls("allMids", "*")

    @classmethod
    def candle(cls, coin: str, interval: str) -> "SubscriptionRequest":
        return cls("candle", coin, interval=interval)

    @classmethod
    def user_events(cls, user: str) -> "SubscriptionRequest":
        return cls("userEvents", user)

    @classmethod
    def user_fills(cls, user: str) -> "SubscriptionRequest":
        return cls("userFills", user)

    @classmethod
    def notification(cls) -> "SubscriptionRequest":
        return cls("notification", "*")

    @classmethod
    def from_config(cls, config) -> "SubscriptionRequest":
        """Config의 subscription_type/coin으로 요청 생성"""
        if config.subscription_type == "candle":
            return cls.candle(config.coin, config.candle_interval)
        if config.subscription_type in ("allMids", "notification"):
            return cls(config.subscription_type, "*")
        return cls(config.subscription_type, config.coin)


# ── 수신 메시지 (태그 유니온) ──

@dataclass(frozen=True)
class SubscriptionAck:
    subscription_type: str
    coin: str


@dataclass(frozen=True)
class TradeBatch:
    trades: tuple[Trade, ...]


@dataclass(frozen=True)
class BookSnapshot:
    book: Book


@dataclass(frozen=True)
class BboUpdate:
    bbo: Bbo


@dataclass(frozen=True)
class MidsUpdate:
    mids: AllMids


@dataclass(frozen=True)
class CandleBatch:
    candles: tuple[Candle, ...]


@dataclass(frozen=True)
class UserEventMessage:
    event: UserEvent


@dataclass(frozen=True)
class NotificationMessage:
    notification: str


@dataclass(frozen=True)
class DirectTrades:
    """봉투 없이 배열로 온 체결"""
    trades: tuple[Trade, ...]


@dataclass(frozen=True)
class DirectCandles:
    """봉투 없이 배열로 온 캔들"""
    candles: tuple[Candle, ...]


@dataclass(frozen=True)
class KeepAlive:
    channel: str


@dataclass(frozen=True)
class UnparsedMessage:
    """어떤 분류 경로에도 맞지 않은 메시지 (버리지 않고 보고)"""
    raw: str
    reason: str


InboundMessage = (
    SubscriptionAck | TradeBatch | BookSnapshot | BboUpdate | MidsUpdate
    | CandleBatch | UserEventMessage | NotificationMessage | DirectTrades
    | DirectCandles | KeepAlive
)
