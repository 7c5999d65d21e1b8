"""Multi-provider report streaming."""

from .orchestrator import StreamOrchestrator, StreamSession, StreamState
from .registry import ProviderRegistry
from .transport import EventStreamResponse, SseTransport


__all__ = [
    "EventStreamResponse",
    "ProviderRegistry",
    "SseTransport",
    "StreamOrchestrator",
    "StreamSession",
    "StreamState",
]
