"""Streaming orchestration: one provider stream relayed as one SSE response.

A `StreamSession` owns a single invocation. It emits metadata, pulls deltas
from the provider, checks each delta against the compliance policy before it
is relayed, and swaps the provider output for a locally generated report when
the policy says the stream cannot recover. Exactly one terminal event
(`complete` or `error`) is written, followed by `[DONE]`.

State machine:

    INIT -> STREAMING -> COMPLETE
                      -> FALLBACK_ACTIVE -> COMPLETE
                      -> FAILED
    any live state    -> CANCELLED  (client went away)

Usage:
    session = await orchestrator.prepare(request, user_id)
    return EventStreamResponse(session.run)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, Callable
from dataclasses import replace
from datetime import UTC, datetime
from enum import Enum

from core.error_handler import StructuredLogger
from core.exceptions import (
    ConfigurationError,
    ProviderError,
    ReportStreamError,
    TransportClosedError,
)
from core.observability import get_tracer
from schemas.report_stream import (
    CompleteEvent,
    CompletionMetadata,
    ContentEvent,
    ErrorEvent,
    MetadataEvent,
    StreamEvent,
    TokenCounts,
)
from services.streaming.adapters import ProviderStream
from services.streaming.catalog import ModelSpec
from services.streaming.compliance import CompliancePolicy, LookaheadBuffer
from services.streaming.credentials import CredentialStore, UsageSink
from services.streaming.fallback import FallbackGenerator
from services.streaming.models import (
    AccumulatedOutput,
    ChatRequest,
    Checkpoint,
    ComplianceVerdict,
    TextDelta,
    UsageReport,
    VerdictReason,
    estimate_tokens,
    tokens_for_chars,
)
from services.streaming.prompts import build_system_prompt, rewrite_follow_up
from services.streaming.registry import ProviderRegistry
from services.streaming.transport import SseTransport


logger = StructuredLogger(__name__)
tracer = get_tracer(__name__)

INSTANT_MODEL_ID = "instant-engine-v1"
INSTANT_PROVIDER = "local"
INSTANT_CHUNK_CHARS = 1000

StreamSource = Callable[[ChatRequest], ProviderStream]


class StreamState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    FALLBACK_ACTIVE = "fallback_active"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in _FINAL_STATES


_FINAL_STATES = frozenset(
    {StreamState.COMPLETE, StreamState.FAILED, StreamState.CANCELLED}
)

_TRANSITIONS: dict[StreamState, frozenset[StreamState]] = {
    StreamState.INIT: frozenset(
        {StreamState.STREAMING, StreamState.FAILED, StreamState.CANCELLED}
    ),
    StreamState.STREAMING: frozenset(
        {
            StreamState.FALLBACK_ACTIVE,
            StreamState.COMPLETE,
            StreamState.FAILED,
            StreamState.CANCELLED,
        }
    ),
    StreamState.FALLBACK_ACTIVE: frozenset(
        {StreamState.COMPLETE, StreamState.FAILED, StreamState.CANCELLED}
    ),
    StreamState.COMPLETE: frozenset(),
    StreamState.FAILED: frozenset(),
    StreamState.CANCELLED: frozenset(),
}


_HIGH_DEMAND_STATUSES = frozenset({502, 503, 529})
_TIMEOUT_STATUSES = frozenset({408, 504})
_REJECTED_KEY_STATUSES = frozenset({401, 403})

_HIGH_DEMAND = (
    "The AI service is currently experiencing high demand. "
    "Please wait a moment and try again."
)
_RATE_LIMITED = "Too many requests to the AI provider. Please wait and try again."
_TIMED_OUT = "The AI provider took too long to respond. Please try again later."
_REJECTED_KEY = "The AI provider rejected the configured API key."
_UNREACHABLE = "Could not reach the AI provider. Please try again later."


def friendly_error_message(exc: BaseException) -> str:
    """Map a failure to a message that is safe to show the client.

    Provider error text can carry request ids, key fragments or model ids, so
    only the vendor HTTP status and the failing exception's class name are
    inspected.
    """
    if isinstance(exc, ConfigurationError):
        return exc.message

    status: int | None = None
    failure_type = exc.__class__.__name__
    if isinstance(exc, ProviderError):
        status = exc.status_code
        failure_type = exc.failure_type or failure_type

    if status is not None:
        if status in _HIGH_DEMAND_STATUSES:
            return _HIGH_DEMAND
        if status == 429:
            return _RATE_LIMITED
        if status in _TIMEOUT_STATUSES:
            return _TIMED_OUT
        if status in _REJECTED_KEY_STATUSES:
            return _REJECTED_KEY
        return "Stream failed"

    name = failure_type.lower()
    if "timeout" in name:
        return _TIMED_OUT
    if "ratelimit" in name:
        return _RATE_LIMITED
    if "authentication" in name or "permission" in name:
        return _REJECTED_KEY
    if "overloaded" in name:
        return _HIGH_DEMAND
    if "connect" in name:
        return _UNREACHABLE

    return "Stream failed"


class StreamSession:
    """A single prepared invocation; `run` may be called once."""

    def __init__(
        self,
        orchestrator: StreamOrchestrator,
        request: ChatRequest,
        source: StreamSource,
        *,
        model: str,
        provider: str,
        user_id: str,
        spec: ModelSpec | None = None,
    ) -> None:
        self.request = request
        self.model = model
        self.provider = provider
        self.user_id = user_id
        self.spec = spec
        self.state = StreamState.INIT
        self.output = AccumulatedOutput()
        self._orchestrator = orchestrator
        self._source = source
        self._stream: ProviderStream | None = None
        self._usage: UsageReport | None = None
        self._provider_chars = 0
        self._terminal_sent = False
        self._started = 0.0

    @property
    def terminal_sent(self) -> bool:
        return self._terminal_sent

    async def run(self, transport: SseTransport) -> None:
        """Write the whole event sequence for this session to `transport`."""
        if self.state is not StreamState.INIT:
            raise RuntimeError("stream session has already run")
        with tracer.start_as_current_span("report_stream") as span:
            span.set_attribute("stream.model", self.model)
            span.set_attribute("stream.provider", self.provider)
            try:
                await self._run(transport)
            finally:
                span.set_attribute("stream.state", self.state.value)
                span.set_attribute("stream.deltas", self.output.delta_count)
                span.set_attribute("stream.fallback", self.output.replaced)

    async def _run(self, transport: SseTransport) -> None:
        self._started = time.monotonic()
        try:
            await self._produce(transport)
        finally:
            await self._release(self._stream)
            self._record_usage()

    async def _produce(self, transport: SseTransport) -> None:
        try:
            await self._emit(
                transport,
                MetadataEvent(
                    model=self.model,
                    start_time=int(time.time() * 1000),
                    provider=self.provider,
                    correlation_id=self.request.correlation_id,
                ),
            )
            self._transition(StreamState.STREAMING)
            self._stream = self._source(self.request)
            await self._pump(self._stream, transport)
            await self._complete(transport)
        except TransportClosedError:
            self._cancel()
        except asyncio.CancelledError:
            self._cancel()
            raise
        except ReportStreamError as exc:
            logger.warning(
                "Report stream failed",
                model=self.model,
                provider=self.provider,
                error_code=exc.error_code,
                deltas=self.output.delta_count,
            )
            await self._fail(transport, exc)
        except Exception as exc:
            logger.exception(
                "Unexpected error in report stream",
                model=self.model,
                provider=self.provider,
            )
            await self._fail(transport, exc)

        await transport.close()
        if self._stream is not None and self.state is StreamState.COMPLETE:
            await self._drain(self._stream)

    async def _pump(self, stream: ProviderStream, transport: SseTransport) -> None:
        policy = self._orchestrator.policy
        async for item in stream:
            if isinstance(item, UsageReport):
                self._usage = item
                continue
            self._accept(item)
            verdict = policy.evaluate(self.output, self.request.mode)
            if not verdict.terminal:
                await self._relay(transport, item)
                continue
            if verdict.checkpoint is Checkpoint.EARLY:
                if await self._look_ahead(item, stream, transport):
                    return
                continue
            await self._cut_over(transport, verdict)
            return

    async def _look_ahead(
        self, held: TextDelta, stream: ProviderStream, transport: SseTransport
    ) -> bool:
        """Confirm an early verdict by reading ahead without relaying.

        Returns True when the stream was cut over, False when the held deltas
        turned out compliant and were released to the client.
        """
        policy = self._orchestrator.policy
        buffer = LookaheadBuffer(policy.rules.lookahead_limit)
        buffer.hold(held)
        while buffer.has_room:
            try:
                item = await anext(stream)
            except StopAsyncIteration:
                break
            if isinstance(item, UsageReport):
                self._usage = item
                continue
            buffer.push(item)
            self._accept(item)
            verdict = policy.evaluate(self.output, self.request.mode)
            if verdict.compliant:
                logger.info(
                    "Early warning cleared by lookahead",
                    model=self.model,
                    held=len(buffer),
                )
                for delta in buffer.drain():
                    await self._relay(transport, delta)
                return False
            if verdict.reason is VerdictReason.ASKED_QUESTION:
                await self._cut_over(transport, verdict)
                return True

        await self._cut_over(
            transport,
            ComplianceVerdict(
                compliant=False,
                reason=VerdictReason.MISSING_REQUIRED_ARTIFACT,
                checkpoint=Checkpoint.EARLY,
                terminal=True,
            ),
            prose=self.output.text,
        )
        return True

    def _accept(self, delta: TextDelta) -> None:
        self.output.append(delta)
        self._provider_chars += len(delta.text)

    async def _relay(self, transport: SseTransport, delta: TextDelta) -> None:
        await self._emit(transport, ContentEvent(content=delta.text))
        await transport.flush()

    async def _cut_over(
        self,
        transport: SseTransport,
        verdict: ComplianceVerdict,
        prose: str | None = None,
    ) -> None:
        self._transition(StreamState.FALLBACK_ACTIVE)
        logger.info(
            "Replacing provider output with fallback report",
            model=self.model,
            reason=verdict.reason.value,
            checkpoint=verdict.checkpoint.value,
            deltas=self.output.delta_count,
        )
        artifact = self._orchestrator.fallback.generate(self.request, prose=prose)
        self.output.replace(artifact)
        await self._emit(transport, ContentEvent(content=artifact))
        await transport.flush()

    async def _complete(self, transport: SseTransport) -> None:
        usage = self._usage or self._estimate_usage(self.output.estimated_output_tokens)
        metadata = CompletionMetadata(
            model=self.model,
            tokens=TokenCounts(input=usage.input_tokens, output=usage.output_tokens),
            duration=self._elapsed_ms(),
            timestamp=datetime.now(UTC).isoformat(),
            estimated=usage.estimated,
            cost=usage.cost_estimate,
        )
        await self._emit_terminal(transport, CompleteEvent(metadata=metadata))
        self._transition(StreamState.COMPLETE)
        logger.info(
            "Report stream complete",
            model=self.model,
            provider=self.provider,
            deltas=self.output.delta_count,
            fallback=self.output.replaced,
            duration_ms=metadata.duration,
        )

    async def _fail(self, transport: SseTransport, exc: BaseException) -> None:
        try:
            await self._emit_terminal(
                transport, ErrorEvent(error=friendly_error_message(exc))
            )
        except TransportClosedError:
            self._cancel()
            return
        if not self.state.is_final:
            self._transition(StreamState.FAILED)

    def _cancel(self) -> None:
        if not self.state.is_final:
            self._transition(StreamState.CANCELLED)
            logger.info(
                "Client disconnected; report stream stopped",
                model=self.model,
                deltas=self.output.delta_count,
            )

    async def _emit(self, transport: SseTransport, event: StreamEvent) -> None:
        await transport.send_event(event)

    async def _emit_terminal(
        self, transport: SseTransport, event: CompleteEvent | ErrorEvent
    ) -> None:
        """Write the single terminal event; later calls are ignored."""
        if self._terminal_sent:
            return
        self._terminal_sent = True
        await self._emit(transport, event)

    async def _drain(self, stream: ProviderStream) -> None:
        """Consume what the provider still has so its final usage is seen.

        Runs after `[DONE]` has been written, so the client is not waiting.
        """
        timeout = self._orchestrator.drain_timeout
        try:
            async with asyncio.timeout(timeout):
                async for item in stream:
                    if isinstance(item, UsageReport) and self._usage is None:
                        self._usage = item
        except TimeoutError:
            logger.warning(
                "Provider drain timed out", model=self.model, timeout_seconds=timeout
            )
        except Exception as exc:
            logger.warning(
                "Provider failed while draining",
                model=self.model,
                error_type=exc.__class__.__name__,
            )

    async def _release(self, stream: ProviderStream | None) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:
            logger.exception("Failed to close provider stream", model=self.model)

    def _record_usage(self) -> None:
        if self._usage is None and self._provider_chars == 0:
            return
        usage = self._usage or self._estimate_usage(
            tokens_for_chars(self._provider_chars)
        )
        self.output.final_usage = usage
        self._orchestrator.record_usage(self.user_id, self.provider, self.model, usage)

    def _estimate_usage(self, output_tokens: int) -> UsageReport:
        input_tokens = tokens_for_chars(self.request.prompt_chars())
        cost = (
            self.spec.estimate_cost(input_tokens, output_tokens) if self.spec else None
        )
        return UsageReport(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=cost,
            estimated=True,
        )

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def _transition(self, target: StreamState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"illegal stream transition {self.state.value} -> {target.value}"
            )
        self.state = target


class StreamOrchestrator:
    """Builds stream sessions and owns their shared collaborators.

    Args:
        registry: Resolves model ids to provider adapters.
        credential_store: Supplies each caller's provider keys.
        policy: Output rules checked on every delta.
        fallback: Generates substitute and instant reports.
        usage_sink: Receives one usage record per finished stream.
        directive: Overrides the artifact directive added to system prompts.
        follow_up_template: Overrides the approval wrapped around a user reply
            to an assistant question; `{content}` marks the reply.
        drain_timeout: Seconds allowed for reading a provider to its end
            after the client response has finished.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        credential_store: CredentialStore,
        policy: CompliancePolicy | None = None,
        fallback: FallbackGenerator | None = None,
        usage_sink: UsageSink | None = None,
        directive: str | None = None,
        follow_up_template: str | None = None,
        drain_timeout: float = 30.0,
    ) -> None:
        self.registry = registry
        self.credential_store = credential_store
        self.policy = policy or CompliancePolicy()
        self.fallback = fallback or FallbackGenerator()
        self.usage_sink = usage_sink
        self.directive = directive
        self.follow_up_template = follow_up_template
        self.drain_timeout = drain_timeout
        self._tasks: set[asyncio.Task[None]] = set()

    async def prepare(self, request: ChatRequest, user_id: str) -> StreamSession:
        """Resolve model and credential before any response is started.

        Raises:
            UnknownModelError: The model id matches no provider.
            MissingCredentialError: The caller has no key for the provider.
        """
        credentials = await self.credential_store.credentials_for(user_id)
        resolved = self.registry.resolve(request.model_id, credentials)
        bound = replace(
            request,
            model_id=resolved.spec.id,
            messages=rewrite_follow_up(
                request.messages, request.mode, self.follow_up_template
            ),
            system_prompt=build_system_prompt(
                request.system_prompt, request.mode, self.directive
            ),
        )
        return StreamSession(
            self,
            bound,
            resolved.stream,
            model=resolved.spec.id,
            provider=resolved.provider.value,
            user_id=user_id,
            spec=resolved.spec,
        )

    def prepare_instant(self, request: ChatRequest, user_id: str) -> StreamSession:
        """Session that streams a locally generated report; no provider call."""
        return StreamSession(
            self,
            replace(request, model_id=INSTANT_MODEL_ID),
            self._instant_source,
            model=INSTANT_MODEL_ID,
            provider=INSTANT_PROVIDER,
            user_id=user_id,
        )

    async def list_models(self, user_id: str) -> list[tuple[ModelSpec, bool]]:
        credentials = await self.credential_store.credentials_for(user_id)
        return self.registry.available_models(credentials)

    async def _instant_source(
        self, request: ChatRequest
    ) -> AsyncGenerator[TextDelta | UsageReport, None]:
        report = self.fallback.instant_report(request)
        for sequence, start in enumerate(
            range(0, len(report), INSTANT_CHUNK_CHARS), start=1
        ):
            yield TextDelta(
                text=report[start : start + INSTANT_CHUNK_CHARS],
                sequence_number=sequence,
            )
            await asyncio.sleep(0)
        yield UsageReport(
            input_tokens=tokens_for_chars(request.prompt_chars()),
            output_tokens=estimate_tokens(report),
            cost_estimate=0.0,
            estimated=True,
        )

    def record_usage(
        self, user_id: str, provider: str, model: str, usage: UsageReport
    ) -> None:
        """Hand usage to the sink without waiting for it."""
        if self.usage_sink is None:
            return
        task = asyncio.create_task(
            self._record(self.usage_sink, user_id, provider, model, usage)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _record(
        self,
        sink: UsageSink,
        user_id: str,
        provider: str,
        model: str,
        usage: UsageReport,
    ) -> None:
        try:
            await sink.record_usage(user_id, provider, model, usage)
        except Exception:
            logger.exception("Failed to record usage", provider=provider, model=model)

    async def aclose(self) -> None:
        """Wait for outstanding usage records."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
