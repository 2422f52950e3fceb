"""Chat Stream Core 顶层包。

该包提供双通道聊天客户端的流式请求编排引擎，
包括配置加载、领域模型、传输适配、SSE 帧解析、内容合并、
请求生命周期登记、通道编排与结果通知等能力。
"""

from chat_stream_core.api.service import ChatStreamService
from chat_stream_core.runtime.orchestrator import ChannelOrchestrator, OrchestratorConfig

__all__ = ["ChannelOrchestrator", "ChatStreamService", "OrchestratorConfig"]
