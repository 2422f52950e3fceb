"""传输集成层。

该包下的模块负责：
- 定义传输抽象接口 (base)。
- 维护主/辅助通道的连接目标 (registry)。
- 提供具体后端实现 (如 dify_client)。
"""

from typing import Optional, Tuple

from chat_stream_core.config.settings import settings
from chat_stream_core.providers.base import StreamResponse, StreamTransport
from chat_stream_core.providers.dify_client import DifyTransport
from chat_stream_core.providers.registry import auxiliary_target, main_target


def create_transports(cfg=settings) -> Tuple[StreamTransport, Optional[StreamTransport]]:
    """根据配置创建主通道与（可选的）辅助通道传输。"""

    main = main_target(cfg)
    aux = auxiliary_target(cfg, main)
    return DifyTransport(main, cfg), (DifyTransport(aux, cfg) if aux else None)


__all__ = ["DifyTransport", "StreamResponse", "StreamTransport", "create_transports"]
