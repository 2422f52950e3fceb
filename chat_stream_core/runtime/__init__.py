"""Channel runtime: request registry, notification bus, orchestrator."""

from .bus import NotificationBus
from .history import ResultHistory
from .orchestrator import ChannelOrchestrator, OrchestratorConfig
from .registry import AbortHandle, RequestRegistry

__all__ = [
    "AbortHandle",
    "ChannelOrchestrator",
    "NotificationBus",
    "OrchestratorConfig",
    "RequestRegistry",
    "ResultHistory",
]
