"""시스템 설정 모듈 - config.yaml 로드 및 Config 데이터클래스"""

from dataclasses import dataclass, asdict, fields, replace
from pathlib import Path

import yaml

BACKOFF_MODES = ("fixed", "exponential")
OUTPUT_FORMATS = ("table", "json", "csv", "minimal")


@dataclass
class Config:
    """시스템 설정 (config.yaml에서 로드, CLI 인자로 덮어쓰기)"""
    url: str = "wss://api.hyperliquid.xyz/ws"
    coin: str = "BTC"
    subscription_type: str = "trades"
    candle_interval: str = "1m"
    connect_timeout: float = 30.0
    reconnect_delay: float = 5.0
    max_reconnects: int = 0            # 0 = 무제한
    backoff: str = "fixed"
    max_reconnect_delay: float = 60.0
    health_check_interval: float = 30.0
    event_bus_capacity: int = 4096
    log_dir: str = "./logs"
    log_level: str = "INFO"
    stats_interval: int = 3600
    metrics_enabled: bool = False
    metrics_port: int = 9090
    output_format: str = "table"
    verbose_trades: bool = False
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """YAML 파일에서 Config 객체 생성"""
        p = Path(path)
        if not p.exists():
            return cls()
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_yaml(self, path: str) -> None:
        """Config 객체를 YAML 파일로 저장"""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> dict:
        """Config를 딕셔너리로 변환"""
        return asdict(self)

    def with_overrides(self, **overrides) -> "Config":
        """None이 아닌 값만 덮어쓴 새 Config 반환 (CLI 인자용)"""
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **changes)

    def validate(self) -> None:
        """설정값 검증, 잘못된 값이면 ValueError"""
        if not self.url.startswith(("ws://", "wss://")):
            raise ValueError(f"url must be ws:// or wss://: {self.url}")
        if not self.coin:
            raise ValueError("coin must not be empty")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must not be negative")
        if self.max_reconnects < 0:
            raise ValueError("max_reconnects must not be negative")
        if self.backoff not in BACKOFF_MODES:
            raise ValueError(f"backoff must be one of {BACKOFF_MODES}")
        if self.health_check_interval <= 0:
            raise ValueError("health_check_interval must be positive")
        if self.event_bus_capacity <= 0:
            raise ValueError("event_bus_capacity must be positive")
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(f"output_format must be one of {OUTPUT_FORMATS}")
