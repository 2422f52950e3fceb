"""请求生命周期登记表。

每个在途请求以 request_id 为键登记一个取消句柄，并在登记时启动空闲计时器。
登记表是唯一允许调用取消句柄的组件：

- cancel: 最多生效一次，第二次返回 False。
- complete: 正常结束时移除登记，不触发取消。
- cancel_all: 批量取消（例如所属会话被销毁）。
- 计时器到期：移除登记并以 "timeout" 为原因触发取消。

计时器只在登记时启动，收到 ping 等帧不会重置。
"""

import asyncio
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from chat_stream_core.domain.exceptions import ValidationError
from chat_stream_core.infrastructure.logging.logger import logger

DEFAULT_IDLE_TIMEOUT = 30.0
CANCEL_REASON = "cancelled"
TIMEOUT_REASON = "timeout"


class CancelHandle(Protocol):
    def cancel(self, reason: str) -> None:
        ...


class AbortHandle:
    """绑定到通道任务的取消句柄，记录第一次取消的原因。"""

    def __init__(self) -> None:
        self.reason: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def requested(self) -> bool:
        return self.reason is not None

    def bind(self, task: asyncio.Task) -> None:
        self._task = task

    def cancel(self, reason: str = CANCEL_REASON) -> None:
        if self.reason is not None:
            return
        self.reason = reason
        if self._task is not None and not self._task.done():
            self._task.cancel()


@dataclass
class _Entry:
    handle: CancelHandle
    timer: Optional[asyncio.TimerHandle]
    registered_at: float


class RequestRegistry:
    """在途请求表。register 需要在事件循环内调用（计时器依赖 loop.call_later）。"""

    def __init__(self, idle_timeout: float = DEFAULT_IDLE_TIMEOUT):
        self.idle_timeout = idle_timeout
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    def new_request_id(self, role: str = "auxiliary") -> str:
        with self._lock:
            seq = next(self._counter)
        return f"{role}-request-{seq}-{int(time.time() * 1000)}"

    def register(self, request_id: str, handle: CancelHandle, timeout: Optional[float] = None) -> None:
        delay = self.idle_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        with self._lock:
            if request_id in self._entries:
                raise ValidationError(code="DUPLICATE_REQUEST", message=f"request {request_id!r} already registered")
            timer = loop.call_later(delay, self._expire, request_id) if delay and delay > 0 else None
            self._entries[request_id] = _Entry(handle=handle, timer=timer, registered_at=time.monotonic())
        logger.debug("Registered request %s (idle timeout %.1fs)", request_id, delay or 0)

    def cancel(self, request_id: str, reason: str = CANCEL_REASON) -> bool:
        """取消在途请求；找不到（已完成或已取消）时返回 False。"""

        entry = self._pop(request_id)
        if entry is None:
            return False
        entry.handle.cancel(reason)
        logger.info("Cancelled request %s", request_id, extra={"extra": {"request_id": request_id, "reason": reason}})
        return True

    def complete(self, request_id: str) -> bool:
        return self._pop(request_id) is not None

    def cancel_all(self, reason: str = CANCEL_REASON) -> int:
        with self._lock:
            entries = list(self._entries.items())
            self._entries.clear()
        for request_id, entry in entries:
            if entry.timer is not None:
                entry.timer.cancel()
            try:
                entry.handle.cancel(reason)
            except Exception:  # noqa: BLE001 - 单个句柄失败不能阻断批量取消
                logger.exception("Cancel handle failed for %s", request_id)
        if entries:
            logger.info("Cancelled %d active request(s)", len(entries))
        return len(entries)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries

    def _pop(self, request_id: str) -> Optional[_Entry]:
        with self._lock:
            entry = self._entries.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def _expire(self, request_id: str) -> None:
        entry = self._pop(request_id)
        if entry is None:
            return
        elapsed = time.monotonic() - entry.registered_at
        logger.warning(
            "Request %s timed out after %.1fs",
            request_id,
            elapsed,
            extra={"extra": {"request_id": request_id, "reason": TIMEOUT_REASON}},
        )
        entry.handle.cancel(TIMEOUT_REASON)
