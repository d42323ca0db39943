"""공통 테스트 도구 - 스크립트 기반 전송 계층과 세션 실행 헬퍼"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field

import pytest

from hlfeed.config import Config
from hlfeed.errors import ConnectTimeoutError, FeedError
from hlfeed.event_bus import EventBus
from hlfeed.session import ConnectionSession
from hlfeed.transport import Frame, Opcode, RawConnection, Transport, UpgradedSession


def text_frame(payload) -> Frame:
    """dict/list는 JSON으로 직렬화한 TEXT 프레임"""
    if not isinstance(payload, str):
        payload = json.dumps(payload)
    return Frame(Opcode.TEXT, payload.encode("utf-8"))


def close_frame(code: int = 1000, reason: str = "") -> Frame:
    return Frame(Opcode.CLOSE, reason.encode("utf-8"), close_code=code)


def now_ms() -> int:
    return int(time.time() * 1000)


def trade_dict(tid: int, coin: str = "BTC", side: str = "B", px: str = "50000.0",
               sz: str = "0.1", ts: int | None = None) -> dict:
    return {
        "coin": coin, "side": side, "px": px, "sz": sz,
        "time": ts if ts is not None else now_ms(),
        "hash": f"0x{tid:064x}", "tid": tid,
        "users": ["0xbuyer", "0xseller"],
    }


def trades_envelope(*tids: int, coin: str = "BTC") -> dict:
    return {"channel": "trades", "data": [trade_dict(t, coin=coin) for t in tids]}


def ack_envelope(sub_type: str = "trades", coin: str = "BTC") -> dict:
    return {"channel": "subscriptionResponse",
            "data": {"method": "subscribe", "subscription": {"type": sub_type, "coin": coin}}}


@dataclass
class ScriptedSession:
    """연결 1회 분량의 동작

    connect_error/upgrade_error가 있으면 해당 단계에서 실패.
    frames 항목이 예외면 그 시점에 수신 실패, 모두 소진되면 end_error 또는 무한 대기.
    """
    connect_error: BaseException | None = None
    upgrade_error: BaseException | None = None
    frames: list = field(default_factory=list)
    end_error: BaseException | None = None


class ScriptedTransport(Transport):
    """메모리 내 전송 계층 - 연결 시도마다 스크립트를 하나씩 소비"""

    def __init__(self, scripts: list[ScriptedSession] | None = None):
        self.scripts = list(scripts or [])
        self.connect_calls = 0
        self.sent: list[str] = []
        self.closed: list = []
        self._current: ScriptedSession | None = None
        self._frames: list = []

    async def connect(self, url: str, timeout: float) -> RawConnection:
        self.connect_calls += 1
        script = self.scripts.pop(0) if self.scripts else ScriptedSession(
            connect_error=ConnectTimeoutError("scripted timeout"))
        self._current = script
        self._frames = list(script.frames)
        if script.connect_error is not None:
            raise script.connect_error
        return RawConnection(url=url, handle=object(), timeout=timeout)

    async def upgrade(self, conn: RawConnection) -> UpgradedSession:
        if self._current.upgrade_error is not None:
            raise self._current.upgrade_error
        return UpgradedSession(url=conn.url, handle=conn.handle)

    async def send_text(self, session: UpgradedSession, text: str) -> None:
        self.sent.append(text)

    async def receive_frame(self, session: UpgradedSession) -> Frame:
        if self._frames:
            item = self._frames.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        if self._current.end_error is not None:
            raise self._current.end_error
        await asyncio.Event().wait()

    async def close(self, handle) -> None:
        self.closed.append(handle)


async def drive(session: ConnectionSession, bus: EventBus, stop_when=None,
                timeout: float = 5.0):
    """세션을 실행하며 모든 이벤트 수집

    stop_when(event, events)가 True를 반환하면 session.stop() 호출.
    (수집된 이벤트 목록, run()에서 발생한 FeedError 또는 None) 반환
    """
    subscription = bus.subscribe()
    events = []

    async def consume():
        async for event in subscription:
            events.append(event)
            if stop_when is not None and stop_when(event, events):
                session.stop()

    consumer = asyncio.create_task(consume())
    error = None
    try:
        await asyncio.wait_for(session.run(), timeout)
    except FeedError as e:
        error = e
    finally:
        await bus.close()
        await consumer
    return events, error


def fast_config(**overrides) -> Config:
    """재연결 대기 없는 테스트용 설정"""
    values = {"reconnect_delay": 0.0, "health_check_interval": 5.0}
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def config():
    return fast_config()
