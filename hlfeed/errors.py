"""예외 분류 - 전송/프로토콜/헬스체크 실패와 재연결 한도 초과"""

from __future__ import annotations


class FeedError(Exception):
    """피드 클라이언트 공통 예외"""


# ── 재연결 정책으로 넘어가는 실패 ──

class TransportError(FeedError):
    """연결, 읽기, 쓰기 등 전송 계층 실패"""


class ConnectTimeoutError(TransportError):
    """설정된 시간 안에 TCP 연결이 성립하지 않음"""


class HandshakeError(TransportError):
    """WebSocket 업그레이드(또는 TLS) 실패"""


class ConnectionClosedError(TransportError):
    """서버가 close 프레임을 보냄"""

    def __init__(self, code: int | None = None, reason: str = ""):
        self.code = code
        self.reason = reason
        super().__init__(f"connection closed (code={code}, reason={reason!r})")


class ProtocolError(FeedError):
    """핸드셰이크 응답이 형식에 맞지 않음"""


class HealthCheckError(FeedError):
    """무수신 시간이 허용 범위를 넘음"""


# ── 치명적 실패 ──

class MaxReconnectsExceeded(FeedError):
    """재연결 시도 한도 소진 - 프로세스 종료"""

    def __init__(self, max_attempts: int):
        self.max_attempts = max_attempts
        super().__init__(f"maximum reconnection attempts ({max_attempts}) exceeded")


RECOVERABLE_ERRORS = (TransportError, ProtocolError, HealthCheckError)
