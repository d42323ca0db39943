"""이벤트 버스 모듈 - 세션(생산자)에서 소비자들로 가는 bounded 순서 보장 채널"""

from __future__ import annotations

import asyncio
import logging

from hlfeed.events import ClientEvent

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 4096  # 피크 버스트 수 초 분량

_CLOSED = object()


class Subscription:
    """소비자 1개의 수신 큐 (async for로 순회)"""

    def __init__(self, bus: EventBus, capacity: int):
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._released = asyncio.Event()
        self._unsubscribed = False
        self._done = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> ClientEvent | None:
        """다음 이벤트, 버스가 닫혔으면 None"""
        if self._done:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._done = True
            return None
        return item

    def unsubscribe(self) -> None:
        """구독 해제 - 남은 이벤트를 비우고 대기 중인 생산자를 풀어줌"""
        self._bus._remove(self)
        self._done = True
        self._unsubscribed = True
        self._released.set()
        self._discard()

    def _discard(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()

    async def _put(self, item) -> bool:
        """큐에 적재. 가득 차면 자리가 나거나 구독이 해제될 때까지 대기"""
        if self._released.is_set():
            return False
        try:
            self._queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            pass
        put_task = asyncio.ensure_future(self._queue.put(item))
        release_task = asyncio.ensure_future(self._released.wait())
        try:
            await asyncio.wait({put_task, release_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (put_task, release_task):
                if not task.done():
                    task.cancel()
        if self._unsubscribed:
            # 해제와 같은 순간에 들어간 항목 제거
            self._discard()
            return False
        return put_task.done() and not put_task.cancelled()

    def _close(self) -> int:
        """종료 표시 적재 (대기 없음), 공간 확보를 위해 버린 이벤트 수 반환"""
        dropped = 0
        if self._queue.full():
            self._queue.get_nowait()
            dropped = 1
        self._queue.put_nowait(_CLOSED)
        self._released.set()
        return dropped

    def __aiter__(self):
        return self

    async def __anext__(self) -> ClientEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """bounded 이벤트 채널

    - 소비자별 큐 용량 고정, 가득 차면 생산자가 대기 (버리지 않음)
    - 대기 중인 발행은 취소 또는 해당 소비자의 구독 해제로 풀림
    - 소비자별 전달 순서 = 발행 순서
    - 늦게 구독한 소비자에게 과거 이벤트 재전달 없음
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._subscribers: list[Subscription] = []
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        if self._closed:
            raise RuntimeError("event bus is closed")
        sub = Subscription(self, self.capacity)
        self._subscribers.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    async def publish(self, event: ClientEvent) -> bool:
        """모든 소비자 큐에 이벤트 전달. 소비자가 없으면 로깅 후 False"""
        if self._closed or not self._subscribers:
            self.dropped += 1
            if self.dropped == 1:
                logger.warning(f"[이벤트버스] 수신자 없음, {event.name} 폐기")
            else:
                logger.debug(f"[이벤트버스] 수신자 없음, {event.name} 폐기")
            return False
        delivered = False
        for sub in list(self._subscribers):
            if await sub._put(event):
                delivered = True
        return delivered

    async def close(self) -> None:
        """종료 표시 전달 - 소비자는 남은 이벤트를 받은 뒤 순회 종료 (대기 없음)

        큐가 가득 찬 소비자는 가장 오래된 이벤트 1건을 버리고 종료 표시를 받음.
        """
        if self._closed:
            return
        self._closed = True
        for sub in list(self._subscribers):
            if sub._close():
                self.dropped += 1
                logger.warning("[이벤트버스] 소비자 큐 가득 참, 가장 오래된 이벤트 폐기 후 종료")
        self._subscribers.clear()
