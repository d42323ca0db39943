"""전송 계층 모듈 - TCP 연결, WebSocket 업그레이드, 프레임 송수신"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidMessage

from hlfeed.errors import (
    ConnectTimeoutError, HandshakeError, ProtocolError, TransportError,
)

logger = logging.getLogger(__name__)


class Opcode(Enum):
    TEXT = "text"
    BINARY = "binary"
    PING = "ping"
    PONG = "pong"
    CLOSE = "close"


@dataclass(frozen=True)
class Frame:
    """수신 프레임 (opcode + payload bytes)"""
    opcode: Opcode
    payload: bytes = b""
    close_code: int | None = None

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


@dataclass
class RawConnection:
    """업그레이드 전 TCP 연결"""
    url: str
    handle: Any
    timeout: float


@dataclass
class UpgradedSession:
    """업그레이드 완료된 WebSocket 세션"""
    url: str
    handle: Any


class Transport:
    """세션 전송 인터페이스 (테스트에서는 스크립트 구현으로 대체)"""

    async def connect(self, url: str, timeout: float) -> RawConnection:
        raise NotImplementedError

    async def upgrade(self, conn: RawConnection) -> UpgradedSession:
        raise NotImplementedError

    async def send_text(self, session: UpgradedSession, text: str) -> None:
        raise NotImplementedError

    async def receive_frame(self, session: UpgradedSession) -> Frame:
        raise NotImplementedError

    async def close(self, handle: RawConnection | UpgradedSession) -> None:
        raise NotImplementedError


class WebSocketTransport(Transport):
    """websockets 라이브러리 기반 전송

    TCP 소켓은 직접 열고(connect), websockets.connect(sock=...)로 업그레이드.
    wss:// 인 경우 TLS는 업그레이드 단계에서 수행됨.
    ping/pong은 라이브러리가 자동 처리.
    """

    def __init__(self, ping_interval: float | None = 20, close_timeout: float = 10,
                 max_size: int | None = 2 ** 22):
        self.ping_interval = ping_interval
        self.close_timeout = close_timeout
        self.max_size = max_size

    @staticmethod
    def _host_port(url: str) -> tuple[str, int]:
        parts = urlsplit(url)
        if parts.scheme not in ("ws", "wss") or not parts.hostname:
            raise TransportError(f"invalid websocket url: {url}")
        port = parts.port or (443 if parts.scheme == "wss" else 80)
        return parts.hostname, port

    async def connect(self, url: str, timeout: float) -> RawConnection:
        host, port = self._host_port(url)
        try:
            sock = await asyncio.wait_for(self._open_socket(host, port), timeout)
        except asyncio.TimeoutError:
            raise ConnectTimeoutError(f"connect to {host}:{port} timed out after {timeout}s")
        except OSError as e:
            raise TransportError(f"connect to {host}:{port} failed: {e}") from e
        logger.debug(f"[전송] TCP 연결 완료 {host}:{port}")
        return RawConnection(url=url, handle=sock, timeout=timeout)

    @staticmethod
    async def _open_socket(host: str, port: int) -> socket.socket:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        last_error: OSError | None = None
        for family, type_, proto, _, addr in infos:
            sock = socket.socket(family, type_, proto)
            sock.setblocking(False)
            try:
                await loop.sock_connect(sock, addr)
                return sock
            except OSError as e:
                sock.close()
                last_error = e
            except BaseException:
                sock.close()
                raise
        raise last_error or OSError(f"no address for {host}:{port}")

    async def upgrade(self, conn: RawConnection) -> UpgradedSession:
        try:
            ws = await websockets.connect(
                conn.url,
                sock=conn.handle,
                open_timeout=conn.timeout,
                ping_interval=self.ping_interval,
                close_timeout=self.close_timeout,
                max_size=self.max_size,
            )
        except InvalidMessage as e:
            conn.handle.close()
            raise ProtocolError(f"malformed handshake response: {e}") from e
        except InvalidHandshake as e:
            conn.handle.close()
            raise HandshakeError(f"handshake failed: {e}") from e
        except (OSError, asyncio.TimeoutError) as e:
            conn.handle.close()
            raise HandshakeError(f"handshake failed: {e!r}") from e
        return UpgradedSession(url=conn.url, handle=ws)

    async def send_text(self, session: UpgradedSession, text: str) -> None:
        try:
            await session.handle.send(text)
        except (ConnectionClosed, OSError) as e:
            raise TransportError(f"send failed: {e}") from e

    async def receive_frame(self, session: UpgradedSession) -> Frame:
        try:
            message = await session.handle.recv()
        except ConnectionClosed as e:
            if e.rcvd is None:
                raise TransportError(f"connection lost: {e}") from e
            return Frame(Opcode.CLOSE, e.rcvd.reason.encode("utf-8"), close_code=e.rcvd.code)
        except OSError as e:
            raise TransportError(f"read failed: {e}") from e
        if isinstance(message, str):
            return Frame(Opcode.TEXT, message.encode("utf-8"))
        return Frame(Opcode.BINARY, bytes(message))

    async def close(self, handle: RawConnection | UpgradedSession) -> None:
        if isinstance(handle, UpgradedSession):
            try:
                await handle.handle.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"[전송] 종료 중 오류 무시: {e}")
        else:
            handle.handle.close()
