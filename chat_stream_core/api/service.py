"""对外 API 服务模块。

ChatStreamService 把传输、登记表、通知总线、历史记录和结果处理器组装在一起，
向上层（UI、业务规则）提供一组简单的方法。实例由调用方显式创建并持有，
通常一个会话视图对应一个实例，视图销毁时调用 teardown_all()。
"""

from typing import Any, Dict, List, Optional

from chat_stream_core.config.settings import settings
from chat_stream_core.domain.exceptions import BusinessError
from chat_stream_core.domain.models import (
    ChannelHandle,
    ConversationContext,
    ReconciledResult,
    ResultStatus,
    Role,
    Turn,
    TurnHandles,
)
from chat_stream_core.infrastructure.logging.logger import logger
from chat_stream_core.processors import ProcessorManager, ResultProcessor, default_processor_manager
from chat_stream_core.providers import create_transports
from chat_stream_core.runtime.bus import SubscriptionToken
from chat_stream_core.runtime.history import ResultHistory
from chat_stream_core.runtime.orchestrator import ChannelOrchestrator, HandleLike, OrchestratorConfig


class ChatStreamService:
    def __init__(self, orchestrator: ChannelOrchestrator, *, processors: Optional[ProcessorManager] = None):
        self.orchestrator = orchestrator
        if orchestrator.history is None:
            orchestrator.history = ResultHistory()
        self.processors = processors
        self._processor_token = orchestrator.bus.subscribe(processors) if processors is not None else None

    @classmethod
    def from_settings(cls, cfg=settings, *, with_default_processors: bool = True) -> "ChatStreamService":
        """根据配置创建服务（主通道必建，辅助通道视配置而定）。"""

        primary, auxiliary = create_transports(cfg)
        orchestrator = ChannelOrchestrator(
            primary,
            auxiliary,
            config=OrchestratorConfig.from_settings(cfg),
            history=ResultHistory(cfg.history_limit),
        )
        processors = default_processor_manager() if with_default_processors else None
        return cls(orchestrator, processors=processors)

    async def submit_turn(
        self,
        primary_content: str,
        *,
        auxiliary_content: Optional[str] = None,
        conversation_id: Optional[str] = None,
        inputs: Optional[Dict[str, Any]] = None,
        files: Optional[List[Dict[str, Any]]] = None,
        user: Optional[str] = None,
    ) -> TurnHandles:
        """提交一轮对话。

        Args:
            primary_content: 主通道查询内容
            auxiliary_content: 辅助通道查询内容（可选，不提供则由主内容生成）
            conversation_id: 主通道会话ID（可选）
            inputs: 应用输入变量（可选）
            files: 附件列表（可选）
            user: 终端用户标识（可选）

        Returns:
            主/辅助通道句柄

        Raises:
            ValidationError: 查询内容为空
        """
        turn = Turn(
            primary_content=primary_content,
            auxiliary_content=auxiliary_content,
            context=ConversationContext(
                conversation_id=conversation_id,
                inputs=dict(inputs or {}),
                files=list(files or []),
                user=user,
            ),
        )
        try:
            return await self.orchestrator.submit(turn)
        except BusinessError as e:
            logger.error(f"Submit failed: {e.message}", extra={"extra": {
                "conversation_id": conversation_id,
                "code": e.code,
            }})
            raise

    def cancel(self, handle: HandleLike) -> bool:
        return self.orchestrator.cancel(handle)

    def teardown_all(self) -> int:
        return self.orchestrator.teardown()

    def subscribe(self, handler) -> SubscriptionToken:
        return self.orchestrator.bus.subscribe(handler)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        return self.orchestrator.bus.unsubscribe(token)

    def get_active_count(self) -> int:
        return self.orchestrator.active_count

    def get_active_ids(self) -> List[str]:
        return self.orchestrator.active_ids()

    async def wait(self, handle: ChannelHandle) -> ReconciledResult:
        return await self.orchestrator.wait(handle)

    async def wait_turn(self, handles: TurnHandles):
        return await self.orchestrator.wait_turn(handles)

    async def run_auxiliary_batch(self, queries: List[str]) -> List[ReconciledResult]:
        return await self.orchestrator.run_auxiliary_batch(queries)

    def register_processor(self, processor: ResultProcessor) -> None:
        if self.processors is None:
            self.processors = ProcessorManager()
            self._processor_token = self.orchestrator.bus.subscribe(self.processors)
        self.processors.register(processor)

    def history(
        self,
        text: Optional[str] = None,
        *,
        status: Optional[ResultStatus] = None,
        role: Optional[Role] = None,
        limit: Optional[int] = None,
    ) -> List[ReconciledResult]:
        return self.orchestrator.history.query(text, status=status, role=role, limit=limit)

    def clear_history(self) -> None:
        self.orchestrator.history.clear()
