"""WebSocketTransport 테스트 - 예외 매핑 + 로컬 서버 왕복"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidMessage
from websockets.frames import Close

from hlfeed.errors import ConnectTimeoutError, HandshakeError, ProtocolError, TransportError
from hlfeed.transport import Frame, Opcode, RawConnection, UpgradedSession, WebSocketTransport

PROXY_VARS = ["http_proxy", "https_proxy", "all_proxy", "HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY"]


def _upgraded(ws) -> UpgradedSession:
    return UpgradedSession(url="wss://example.invalid/ws", handle=ws)


# ── 연결 ──

class TestConnect:

    def test_invalid_url(self):
        with pytest.raises(TransportError):
            asyncio.run(WebSocketTransport().connect("https://api.hyperliquid.xyz/ws", 1.0))

    def test_timeout(self):
        async def never(host, port):
            await asyncio.sleep(10)

        with patch.object(WebSocketTransport, "_open_socket", AsyncMock(side_effect=never)):
            with pytest.raises(ConnectTimeoutError):
                asyncio.run(WebSocketTransport().connect("wss://api.hyperliquid.xyz/ws", 0.05))

    def test_os_error(self):
        with patch.object(WebSocketTransport, "_open_socket",
                          AsyncMock(side_effect=ConnectionRefusedError("refused"))):
            with pytest.raises(TransportError) as exc:
                asyncio.run(WebSocketTransport().connect("ws://127.0.0.1:1/ws", 1.0))
        assert not isinstance(exc.value, ConnectTimeoutError)

    def test_default_ports(self):
        assert WebSocketTransport._host_port("wss://api.hyperliquid.xyz/ws") == ("api.hyperliquid.xyz", 443)
        assert WebSocketTransport._host_port("ws://localhost/ws") == ("localhost", 80)
        assert WebSocketTransport._host_port("ws://localhost:8080") == ("localhost", 8080)


# ── 업그레이드 ──

class TestUpgrade:

    @pytest.mark.parametrize("exc, expected", [
        (InvalidMessage("bad response"), ProtocolError),
        (InvalidHandshake("status 403"), HandshakeError),
        (OSError("tls failure"), HandshakeError),
        (asyncio.TimeoutError(), HandshakeError),
    ])
    def test_error_mapping(self, exc, expected):
        sock = MagicMock()
        conn = RawConnection(url="wss://example.invalid/ws", handle=sock, timeout=1.0)
        with patch("hlfeed.transport.websockets.connect", AsyncMock(side_effect=exc)):
            with pytest.raises(expected):
                asyncio.run(WebSocketTransport().upgrade(conn))
        sock.close.assert_called_once()

    def test_success(self):
        ws = MagicMock()
        conn = RawConnection(url="wss://example.invalid/ws", handle=MagicMock(), timeout=1.0)
        connect = AsyncMock(return_value=ws)
        with patch("hlfeed.transport.websockets.connect", connect):
            upgraded = asyncio.run(WebSocketTransport(ping_interval=None).upgrade(conn))
        assert upgraded.handle is ws
        assert connect.call_args.kwargs["sock"] is conn.handle
        assert connect.call_args.kwargs["ping_interval"] is None


# ── 프레임 수신 ──

class TestReceiveFrame:

    def test_text(self):
        ws = MagicMock()
        ws.recv = AsyncMock(return_value='{"channel":"pong"}')
        frame = asyncio.run(WebSocketTransport().receive_frame(_upgraded(ws)))
        assert frame.opcode is Opcode.TEXT
        assert frame.text == '{"channel":"pong"}'

    def test_binary(self):
        ws = MagicMock()
        ws.recv = AsyncMock(return_value=b"\x01\x02")
        frame = asyncio.run(WebSocketTransport().receive_frame(_upgraded(ws)))
        assert frame == Frame(Opcode.BINARY, b"\x01\x02")

    def test_close_frame(self):
        ws = MagicMock()
        ws.recv = AsyncMock(side_effect=ConnectionClosed(Close(1001, "going away"), None))
        frame = asyncio.run(WebSocketTransport().receive_frame(_upgraded(ws)))
        assert frame.opcode is Opcode.CLOSE
        assert frame.close_code == 1001
        assert frame.text == "going away"

    def test_abnormal_close_is_error(self):
        ws = MagicMock()
        ws.recv = AsyncMock(side_effect=ConnectionClosed(None, None))
        with pytest.raises(TransportError):
            asyncio.run(WebSocketTransport().receive_frame(_upgraded(ws)))

    def test_send_failure(self):
        ws = MagicMock()
        ws.send = AsyncMock(side_effect=ConnectionClosed(None, None))
        with pytest.raises(TransportError):
            asyncio.run(WebSocketTransport().send_text(_upgraded(ws), "{}"))

    def test_invalid_utf8_replaced(self):
        assert Frame(Opcode.TEXT, b"\xff").text == "�"


# ── 로컬 서버 왕복 ──

class TestLocalServer:

    def test_connect_upgrade_subscribe_close(self, monkeypatch):
        """실제 WebSocket 서버와 연결 → 구독 → 응답 → close 프레임"""
        for var in PROXY_VARS:
            monkeypatch.delenv(var, raising=False)
        received = []

        async def handler(ws):
            received.append(await ws.recv())
            await ws.send(json.dumps({"channel": "subscriptionResponse",
                                      "data": {"subscription": {"type": "trades", "coin": "BTC"}}}))
            await ws.close(1000, "bye")

        async def scenario():
            async with websockets.serve(handler, "127.0.0.1", 0) as server:
                port = server.sockets[0].getsockname()[1]
                transport = WebSocketTransport(ping_interval=None)
                raw = await transport.connect(f"ws://127.0.0.1:{port}/ws", 2.0)
                upgraded = await transport.upgrade(raw)
                await transport.send_text(upgraded, '{"method":"subscribe"}')
                first = await transport.receive_frame(upgraded)
                second = await transport.receive_frame(upgraded)
                await transport.close(upgraded)
                return first, second

        first, second = asyncio.run(scenario())
        assert received == ['{"method":"subscribe"}']
        assert first.opcode is Opcode.TEXT
        assert "subscriptionResponse" in first.text
        assert second.opcode is Opcode.CLOSE
        assert second.close_code == 1000
        assert second.text == "bye"
