"""传输目标配置。

主通道与辅助通道各自对应一个 TransportTarget。辅助通道未单独配置的
api_base / api_key / user 会沿用主通道的值，这样只需要换一个应用密钥
就能把辅助请求发到另一个应用上。
"""

from dataclasses import dataclass
from typing import Optional

from chat_stream_core.config.settings import settings


@dataclass
class TransportTarget:
    """一个后端应用的连接信息。"""

    name: str
    api_base: str
    api_key: Optional[str]
    user: str


def main_target(cfg=settings) -> TransportTarget:
    return TransportTarget(
        name="main",
        api_base=cfg.main_api_base.rstrip("/"),
        api_key=getattr(cfg, "main_api_key", None),
        user=getattr(cfg, "user", None) or "chat-stream-user",
    )


def auxiliary_target(cfg=settings, main: Optional[TransportTarget] = None) -> Optional[TransportTarget]:
    """返回辅助通道目标；未启用辅助通道时返回 None。"""

    base = getattr(cfg, "auxiliary_api_base", None)
    key = getattr(cfg, "auxiliary_api_key", None)
    if not (getattr(cfg, "auxiliary_enabled", False) or base or key):
        return None
    main = main or main_target(cfg)
    return TransportTarget(
        name="auxiliary",
        api_base=(base or main.api_base).rstrip("/"),
        api_key=key or main.api_key,
        user=getattr(cfg, "auxiliary_user", None) or main.user,
    )
