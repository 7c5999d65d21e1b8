"""Test doubles and factories for the report streaming tests.

Provider output is scripted either at the pydantic-ai level (`ScriptedAdapter`,
backed by `FunctionModel`) or directly as `TextDelta`/`UsageReport` items
(`scripted_source`) when a test needs exact control over stream boundaries.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

from pydantic_ai.messages import ModelMessage
from pydantic_ai.models.function import AgentInfo, FunctionModel

from services.streaming.adapters import ProviderAdapter
from services.streaming.catalog import Provider
from services.streaming.credentials import StaticCredentialStore
from services.streaming.models import (
    ChatMessage,
    ChatRequest,
    ModeFlags,
    Role,
    TextDelta,
    UsageReport,
)
from services.streaming.orchestrator import StreamOrchestrator, StreamSession
from services.streaming.registry import ProviderRegistry


TEST_USER_ID = "user-123"
TEST_MODEL = "claude-3-5-sonnet-20241022"

HTML_REPORT_CHUNKS = [
    "<!DOCTYPE html>",
    "<html><body><h1>ACME Corp</h1>",
    "<p>Revenue grew 12% year over year.</p>",
    "</body></html>",
]

QUESTION_REPLY = (
    "Sure! Before I start, would you like me to focus on revenue or on profit?"
)


class ScriptedAdapter(ProviderAdapter):
    """Adapter whose model replays fixed text chunks through pydantic-ai.

    `error` is raised by the model after all chunks have been streamed.
    """

    provider = Provider.ANTHROPIC

    def __init__(
        self,
        chunks: Iterable[str],
        *,
        error: Exception | None = None,
        provider: Provider = Provider.ANTHROPIC,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.chunks = list(chunks)
        self.error = error
        self.provider = provider
        self.built_models: list[str] = []
        self.seen_messages: list[list[ModelMessage]] = []
        self.seen_info: list[AgentInfo] = []

    def build_model(self, model_name: str, api_key: str) -> FunctionModel:
        self.built_models.append(model_name)
        chunks = self.chunks
        error = self.error

        async def stream_function(
            messages: list[ModelMessage], info: AgentInfo
        ) -> AsyncIterator[str]:
            self.seen_messages.append(messages)
            self.seen_info.append(info)
            for chunk in chunks:
                yield chunk
            if error is not None:
                raise error

        return FunctionModel(stream_function=stream_function, model_name=model_name)


class ScriptedSource:
    """Callable stream source yielding prepared items, with close tracking.

    Items may be strings (turned into deltas), `UsageReport`s, exceptions
    (raised at that point) or `asyncio.Event`s (awaited at that point).
    """

    def __init__(self, items: Iterable[Any]) -> None:
        self.items = list(items)
        self.pulled = 0
        self.closed = False

    def __call__(self, request: ChatRequest) -> AsyncIterator[TextDelta | UsageReport]:
        return self._generate()

    async def _generate(self) -> AsyncIterator[TextDelta | UsageReport]:
        sequence = 0
        try:
            for item in self.items:
                if isinstance(item, asyncio.Event):
                    await item.wait()
                    continue
                if isinstance(item, BaseException):
                    raise item
                self.pulled += 1
                if isinstance(item, UsageReport):
                    yield item
                    continue
                sequence += 1
                yield TextDelta(text=item, sequence_number=sequence)
        finally:
            self.closed = True


class RecordingSend:
    """ASGI `send` that records messages and can simulate a dropped client."""

    def __init__(self, fail_on_body: int | None = None) -> None:
        self.messages: list[dict[str, Any]] = []
        self.fail_on_body = fail_on_body
        self._bodies = 0

    async def __call__(self, message: dict[str, Any]) -> None:
        if message["type"] == "http.response.body":
            self._bodies += 1
            if self.fail_on_body is not None and self._bodies >= self.fail_on_body:
                raise OSError("connection reset by peer")
        self.messages.append(message)

    @property
    def body(self) -> str:
        return b"".join(
            m.get("body", b"")
            for m in self.messages
            if m["type"] == "http.response.body"
        ).decode("utf-8")

    @property
    def ended(self) -> bool:
        return any(
            m["type"] == "http.response.body" and not m.get("more_body", False)
            for m in self.messages
        )

    def events(self) -> list[Any]:
        return parse_sse(self.body)


def parse_sse(body: str) -> list[Any]:
    """Decode `data:` blocks; `[DONE]` is returned as the plain string."""
    events: list[Any] = []
    for block in body.split("\n\n"):
        if not block.startswith("data: "):
            continue
        payload = block[len("data: ") :]
        events.append(payload if payload == "[DONE]" else json.loads(payload))
    return events


def content_of(events: list[Any]) -> list[str]:
    return [e["content"] for e in events if isinstance(e, dict) and "content" in e]


def is_terminal(event: Any) -> bool:
    return isinstance(event, dict) and (
        event.get("type") == "complete" or "error" in event
    )


def assert_well_formed(events: list[Any]) -> None:
    """Metadata first, exactly one terminal event, then `[DONE]` last."""
    assert events, "no events written"
    assert events[0]["type"] == "metadata"
    assert events[-1] == "[DONE]"
    assert events.count("[DONE]") == 1
    terminals = [i for i, e in enumerate(events) if is_terminal(e)]
    assert terminals == [len(events) - 2]


def make_request(
    *contents: str,
    model_id: str = TEST_MODEL,
    mode: ModeFlags | None = None,
    system_prompt: str | None = None,
) -> ChatRequest:
    """Build a ChatRequest from alternating user/assistant contents."""
    messages = tuple(
        ChatMessage(role=Role.USER if i % 2 == 0 else Role.ASSISTANT, content=c)
        for i, c in enumerate(contents or ("Analyze ACME Corp",))
    )
    return ChatRequest(
        messages=messages,
        model_id=model_id,
        correlation_id="test-correlation-id",
        system_prompt=system_prompt,
        mode=mode or ModeFlags(),
    )


def build_test_orchestrator(
    adapter: ProviderAdapter | None = None,
    *,
    credentials: dict[str, str] | None = None,
    **kwargs: Any,
) -> StreamOrchestrator:
    adapter = adapter or ScriptedAdapter(HTML_REPORT_CHUNKS)
    registry = ProviderRegistry(
        {adapter.provider: lambda: adapter}, default_model=TEST_MODEL
    )
    store = StaticCredentialStore(
        shared=credentials if credentials is not None else {"anthropic": "sk-test"}
    )
    return StreamOrchestrator(registry, credential_store=store, **kwargs)


def make_session(
    orchestrator: StreamOrchestrator,
    source: Callable[[ChatRequest], AsyncIterator[TextDelta | UsageReport]],
    request: ChatRequest | None = None,
) -> StreamSession:
    return StreamSession(
        orchestrator,
        request or make_request(),
        source,
        model=TEST_MODEL,
        provider="anthropic",
        user_id=TEST_USER_ID,
    )


class RecordingUsageSink:
    def __init__(self, error: Exception | None = None) -> None:
        self.records: list[tuple[str, str, str, UsageReport]] = []
        self.error = error

    async def record_usage(
        self, user_id: str, provider: str, model: str, usage: UsageReport
    ) -> None:
        if self.error is not None:
            raise self.error
        self.records.append((user_id, provider, model, usage))
