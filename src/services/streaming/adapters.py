"""Provider adapters: one named variant per LLM vendor.

Every vendor is reached through pydantic-ai, so the variants only differ in how
the vendor model is built. The shared streaming path turns the vendor's
incremental output into `TextDelta`s and finishes with exactly one
`UsageReport`.

Usage:
    adapter = AnthropicAdapter(max_output_tokens=4096)
    async for item in adapter.stream_chat_completion(request, api_key):
        ...
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from typing import ClassVar

from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from core.exceptions import MissingCredentialError, ProviderError
from services.streaming.catalog import ModelSpec, Provider
from services.streaming.models import (
    ChatMessage,
    ChatRequest,
    Role,
    TextDelta,
    UsageReport,
    tokens_for_chars,
)


logger = logging.getLogger(__name__)

ProviderStream = AsyncIterator[TextDelta | UsageReport]


def to_message_history(
    messages: Sequence[ChatMessage],
) -> tuple[list[ModelMessage], str]:
    """Split chat turns into pydantic-ai history plus the prompt to send.

    The latest user message becomes the prompt; everything before it becomes
    history. Assistant turns after the latest user message are dropped.
    """
    last_user = max(i for i, m in enumerate(messages) if m.role is Role.USER)
    history: list[ModelMessage] = []
    for msg in messages[:last_user]:
        if msg.role is Role.USER:
            history.append(ModelRequest(parts=[UserPromptPart(content=msg.content)]))
        else:
            history.append(ModelResponse(parts=[TextPart(content=msg.content)]))
    return history, messages[last_user].content


def _get_tokens_from_usage(usage: object) -> tuple[int | None, int | None]:
    """Extract prompt and completion tokens from a pydantic-ai usage object."""
    prompt = getattr(usage, "input_tokens", None)
    if prompt is None:
        prompt = getattr(usage, "request_tokens", None)

    completion = getattr(usage, "output_tokens", None)
    if completion is None:
        completion = getattr(usage, "response_tokens", None)
    return (prompt, completion)


def _provider_error(provider: Provider, exc: Exception) -> ProviderError:
    """Wrap a vendor failure without carrying its (possibly secret) text."""
    failure_type = exc.__class__.__name__
    if isinstance(exc, ModelHTTPError):
        return ProviderError(
            provider.value,
            f"HTTP {exc.status_code} from {exc.model_name}",
            status_code=exc.status_code,
            failure_type=failure_type,
        )
    return ProviderError(provider.value, failure_type, failure_type=failure_type)


class ProviderAdapter(ABC):
    """Uniform streaming interface over a single vendor."""

    provider: ClassVar[Provider]

    def __init__(
        self, *, max_output_tokens: int = 4096, temperature: float = 0.7
    ) -> None:
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

    @abstractmethod
    def build_model(self, model_name: str, api_key: str) -> Model:
        """Create the vendor's pydantic-ai model. Must not touch the network."""

    def stream_chat_completion(
        self,
        request: ChatRequest,
        credential: str | None,
        *,
        spec: ModelSpec | None = None,
    ) -> ProviderStream:
        """Start a streamed completion.

        Credential problems raise `MissingCredentialError` here, before any
        network activity; the returned iterator yields `TextDelta`s followed by
        one `UsageReport`, and raises `ProviderError` on vendor failure.
        """
        if not credential or not credential.strip():
            raise MissingCredentialError(self.provider.value)
        model = self.build_model(request.model_id, credential.strip())
        logger.info(
            "Opening %s stream for model %s (messages=%d)",
            self.provider.value,
            request.model_id,
            len(request.messages),
        )
        return self._stream(model, request, spec)

    def _model_settings(self, spec: ModelSpec | None) -> ModelSettings:
        max_tokens = self.max_output_tokens
        if spec is not None:
            max_tokens = min(max_tokens, spec.max_tokens)
        return ModelSettings(max_tokens=max_tokens, temperature=self.temperature)

    async def _stream(
        self, model: Model, request: ChatRequest, spec: ModelSpec | None
    ) -> AsyncGenerator[TextDelta | UsageReport, None]:
        agent: Agent[None, str] = Agent(
            model, instructions=request.system_prompt, output_type=str
        )
        history, prompt = to_message_history(request.messages)
        sequence = 0
        output_chars = 0
        try:
            async with agent.run_stream(
                prompt,
                message_history=history or None,
                model_settings=self._model_settings(spec),
            ) as result:
                async for chunk in result.stream_text(delta=True, debounce_by=None):
                    if not chunk:
                        continue
                    sequence += 1
                    output_chars += len(chunk)
                    yield TextDelta(text=chunk, sequence_number=sequence)
                usage = result.usage()
        except Exception as exc:
            logger.warning(
                "%s stream failed after %d deltas: %s",
                self.provider.value,
                sequence,
                exc.__class__.__name__,
            )
            raise _provider_error(self.provider, exc) from exc

        yield self._usage_report(usage, request, output_chars, spec)

    def _usage_report(
        self,
        usage: object,
        request: ChatRequest,
        output_chars: int,
        spec: ModelSpec | None,
    ) -> UsageReport:
        """Normalize vendor usage, estimating any count the vendor omitted."""
        input_tokens, output_tokens = _get_tokens_from_usage(usage)
        estimated = False
        if not input_tokens:
            input_tokens = tokens_for_chars(request.prompt_chars())
            estimated = True
        if not output_tokens and output_chars:
            output_tokens = tokens_for_chars(output_chars)
            estimated = True
        output_tokens = output_tokens or 0
        cost = spec.estimate_cost(input_tokens, output_tokens) if spec else None
        return UsageReport(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=cost,
            estimated=estimated,
        )


class AnthropicAdapter(ProviderAdapter):
    provider = Provider.ANTHROPIC

    def build_model(self, model_name: str, api_key: str) -> Model:
        from pydantic_ai.models.anthropic import AnthropicModel
        from pydantic_ai.providers.anthropic import AnthropicProvider

        return AnthropicModel(model_name, provider=AnthropicProvider(api_key=api_key))


class OpenAIAdapter(ProviderAdapter):
    provider = Provider.OPENAI

    def build_model(self, model_name: str, api_key: str) -> Model:
        from pydantic_ai.models.openai import OpenAIChatModel
        from pydantic_ai.providers.openai import OpenAIProvider

        return OpenAIChatModel(model_name, provider=OpenAIProvider(api_key=api_key))


class GoogleAdapter(ProviderAdapter):
    """Gemini models; the API reports no usage on some versions, so counts may
    be estimated."""

    provider = Provider.GOOGLE

    def build_model(self, model_name: str, api_key: str) -> Model:
        from pydantic_ai.models.google import GoogleModel
        from pydantic_ai.providers.google import GoogleProvider

        return GoogleModel(model_name, provider=GoogleProvider(api_key=api_key))


class GroqAdapter(ProviderAdapter):
    provider = Provider.GROQ

    def build_model(self, model_name: str, api_key: str) -> Model:
        from pydantic_ai.models.groq import GroqModel
        from pydantic_ai.providers.groq import GroqProvider

        return GroqModel(model_name, provider=GroqProvider(api_key=api_key))


ADAPTER_TYPES: dict[Provider, type[ProviderAdapter]] = {
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.OPENAI: OpenAIAdapter,
    Provider.GOOGLE: GoogleAdapter,
    Provider.GROQ: GroqAdapter,
}
