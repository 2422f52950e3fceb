"""进程内的通道结果历史，只保存在内存中，不做持久化。"""

import threading
from collections import deque
from typing import Deque, List, Optional

from chat_stream_core.domain.models import ReconciledResult, ResultStatus, Role


class ResultHistory:
    def __init__(self, limit: int = 200):
        self._items: Deque[ReconciledResult] = deque(maxlen=limit)
        self._lock = threading.Lock()

    def append(self, result: ReconciledResult) -> None:
        with self._lock:
            self._items.append(result)

    def query(
        self,
        text: Optional[str] = None,
        *,
        status: Optional[ResultStatus] = None,
        role: Optional[Role] = None,
        limit: Optional[int] = None,
    ) -> List[ReconciledResult]:
        """按关键字（匹配 query 或 text）、状态、角色过滤，limit 取最近 N 条。"""

        with self._lock:
            items = list(self._items)
        if text:
            items = [r for r in items if text in r.query or text in r.text]
        if status:
            items = [r for r in items if r.status == status]
        if role:
            items = [r for r in items if r.role == role]
        if limit:
            items = items[-limit:]
        return items

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
