"""Dify chat-messages 流式传输适配器。

- URL: {api_base}/chat-messages
- 认证: Authorization: Bearer <api_key>
- 请求体: query/inputs/files/user/response_mode，可选 conversation_id

响应为 SSE 流，这里只负责建立连接并把响应交给上层；状态码判断与
帧解析由编排器完成。
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from chat_stream_core.config.settings import settings
from chat_stream_core.domain.exceptions import TransportError, ValidationError
from chat_stream_core.domain.models import StreamRequest
from chat_stream_core.infrastructure.logging.logger import logger
from chat_stream_core.providers.registry import TransportTarget


class DifyTransport:
    """基于 httpx.AsyncClient 的流式传输实现。"""

    name = "dify"

    def __init__(self, target: TransportTarget, cfg=settings):
        self.target = target
        self._settings = cfg

    @property
    def url(self) -> str:
        return f"{self.target.api_base}/chat-messages"

    @asynccontextmanager
    async def open_stream(self, request: StreamRequest) -> AsyncIterator[httpx.Response]:
        if not self.target.api_key:
            raise ValidationError(code="MISSING_API_KEY", message=f"{self.target.name} api key not set")
        # 读超时交给登记表的空闲计时器控制
        timeout = httpx.Timeout(self._settings.http_timeout, read=None)
        logger.info("Opening stream to %s", self.url, extra={"extra": {"target": self.target.name}})
        try:
            async with httpx.AsyncClient(timeout=timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    self.url,
                    json=request.to_payload(),
                    headers={
                        "Authorization": f"Bearer {self.target.api_key}",
                        "Content-Type": "application/json",
                    },
                ) as resp:
                    yield resp
        except httpx.RequestError as e:
            raise TransportError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
