"""클라이언트 이벤트 - 세션에서 소비자(화면/메트릭/알림)로 전달되는 알림"""

from __future__ import annotations

from dataclasses import dataclass

from hlfeed.models import Trade


class ClientEvent:
    """모든 이벤트의 기반 클래스"""

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class Starting(ClientEvent):
    pass


@dataclass(frozen=True)
class Connecting(ClientEvent):
    url: str


@dataclass(frozen=True)
class Connected(ClientEvent):
    connection_id: str


@dataclass(frozen=True)
class SubscriptionSent(ClientEvent):
    message: str


@dataclass(frozen=True)
class SubscriptionConfirmed(ClientEvent):
    subscription_type: str
    coin: str


@dataclass(frozen=True)
class MessageReceived(ClientEvent):
    raw_message: str


@dataclass(frozen=True)
class TradeReceived(ClientEvent):
    trade: Trade


@dataclass(frozen=True)
class ConnectionFailed(ClientEvent):
    reason: str


@dataclass(frozen=True)
class Reconnecting(ClientEvent):
    attempt: int
    delay: float                 # 초


@dataclass(frozen=True)
class HealthCheckFailed(ClientEvent):
    reason: str


@dataclass(frozen=True)
class Disconnected(ClientEvent):
    reason: str = ""


@dataclass(frozen=True)
class Stopping(ClientEvent):
    pass
