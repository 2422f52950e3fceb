"""辅助结果处理器。

ProcessorManager 本身是一个总线订阅方：每当辅助通道成功结束，
按注册顺序运行所有启用的处理器，并保存最近一次的处理结果。
"""

import inspect
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Union

from chat_stream_core.domain.models import ReconciledResult
from chat_stream_core.infrastructure.logging.logger import logger


@dataclass
class ProcessResult:
    processor: str
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class ResultProcessor(Protocol):
    name: str
    description: str
    enabled: bool

    def process(self, result: ReconciledResult) -> Union[ProcessResult, Awaitable[ProcessResult]]:
        ...


class ProcessorManager:
    def __init__(self) -> None:
        self._processors: Dict[str, ResultProcessor] = {}
        self._lock = threading.Lock()
        self.last_results: List[ProcessResult] = []

    def register(self, processor: ResultProcessor) -> None:
        """注册处理器；同名处理器会被替换（保持原有顺序）。"""

        with self._lock:
            self._processors[processor.name] = processor

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._processors.pop(name, None) is not None

    def processors(self) -> List[ResultProcessor]:
        with self._lock:
            return list(self._processors.values())

    async def process(self, result: ReconciledResult) -> List[ProcessResult]:
        results: List[ProcessResult] = []
        for processor in [p for p in self.processors() if p.enabled]:
            try:
                outcome = processor.process(result)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                outcome.processor = processor.name
                outcome.timestamp = time.time()
                results.append(outcome)
            except Exception as exc:  # noqa: BLE001 - 需要把异常转换为处理结果
                logger.warning("Processor %s failed: %s", processor.name, exc)
                results.append(ProcessResult(processor=processor.name, success=False, error=str(exc)))
        return results

    async def handle(self, result: ReconciledResult) -> None:
        if not result.ok:
            return
        self.last_results = await self.process(result)


class AddressRecognitionProcessor:
    """识别和提取消息中的地址信息。"""

    name = "addressRecognition"
    description = "识别和提取消息中的地址信息"

    # 先按标点和常见虚词/动词切分，地址只在片段内部匹配
    FRAGMENT_BREAK = re.compile(r"[^一-龥]+|[我你他她把到在去往寄送的是与给请帮]")
    PATTERNS = [
        re.compile(r"([北上广深][一-龥]*[市区县])"),
        re.compile(r"([一-龥]+省[一-龥]*[市区县])"),
        re.compile(r"([一-龥]+市[一-龥]*[区县])"),
        re.compile(r"([一-龥]+区[一-龥]*[街道路])"),
    ]

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def extract(self, text: str) -> List[str]:
        found: List[str] = []
        for fragment in self.FRAGMENT_BREAK.split(text):
            for pattern in self.PATTERNS:
                found.extend(pattern.findall(fragment))
        found = list(dict.fromkeys(found))
        # 只保留最完整的那一条，例如丢掉包含在“深圳市南山区科技园路”里的“深圳市南山区”
        return [a for a in found if not any(a != b and a in b for b in found)]

    def process(self, result: ReconciledResult) -> ProcessResult:
        unique = self.extract(result.text)
        return ProcessResult(
            processor=self.name,
            success=True,
            data={
                "has_address": bool(unique),
                "addresses": unique,
                "original_content": result.text,
            },
        )


def default_processor_manager() -> ProcessorManager:
    manager = ProcessorManager()
    manager.register(AddressRecognitionProcessor())
    return manager


__all__ = [
    "AddressRecognitionProcessor",
    "ProcessResult",
    "ProcessorManager",
    "ResultProcessor",
    "default_processor_manager",
]
