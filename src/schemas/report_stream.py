"""Schemas for report streaming: the inbound request and the SSE wire events."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


DONE_SENTINEL = "[DONE]"


# -----------------------------------------------------------------------------
# Inbound request
# -----------------------------------------------------------------------------


class ChatMessageIn(BaseModel):
    """A single prior or current chat turn."""

    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=100_000)

    model_config = ConfigDict(extra="forbid")


class ModeFlagsIn(BaseModel):
    """Output policy requested by the client."""

    require_embedded_artifact: bool = Field(
        default=True, alias="requireEmbeddedArtifact"
    )
    require_no_questions: bool = Field(default=True, alias="requireNoQuestions")
    immediate_artifact: bool = Field(default=False, alias="immediateArtifact")

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ReportStreamRequest(BaseModel):
    """Request payload for streaming an HTML report from an LLM provider."""

    messages: list[ChatMessageIn] = Field(..., min_length=1, max_length=200)
    model: str | None = Field(
        default=None,
        description="Logical model id; omitted means the server default model.",
    )
    system_prompt: str | None = Field(
        default=None, alias="systemPrompt", max_length=20_000
    )
    mode: ModeFlagsIn = Field(default_factory=ModeFlagsIn)
    include_visuals: bool = Field(
        default=False,
        alias="includeVisuals",
        description="Shorthand for mode.immediateArtifact.",
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="after")
    def _require_user_message(self) -> ReportStreamRequest:
        if not any(m.role == "user" for m in self.messages):
            raise ValueError("messages must contain at least one user message")
        return self


# -----------------------------------------------------------------------------
# Outbound SSE events
# -----------------------------------------------------------------------------


class SseEvent(BaseModel):
    """Base for every event framed as one `data: <json>` block."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_sse(self) -> str:
        """Serialize event to SSE format."""
        return f"data: {self.to_json()}\n\n"


class MetadataEvent(SseEvent):
    type: Literal["metadata"] = "metadata"
    model: str
    start_time: int = Field(..., alias="startTime", description="Epoch millis")
    provider: str
    correlation_id: str | None = Field(default=None, alias="correlationId")


class ContentEvent(SseEvent):
    content: str


class TokenCounts(BaseModel):
    input: int
    output: int


class CompletionMetadata(BaseModel):
    model: str
    tokens: TokenCounts
    duration: int = Field(..., description="Milliseconds since the stream started")
    timestamp: str = Field(..., description="ISO-8601 completion time")
    estimated: bool = Field(
        default=False,
        description="True when token counts are estimates, not provider-reported",
    )
    cost: float | None = None


class CompleteEvent(SseEvent):
    type: Literal["complete"] = "complete"
    metadata: CompletionMetadata


class ErrorEvent(SseEvent):
    error: str


class DoneEvent(SseEvent):
    """Terminal sentinel; framed as a literal rather than JSON."""

    def to_json(self) -> str:
        return DONE_SENTINEL


StreamEvent = MetadataEvent | ContentEvent | CompleteEvent | ErrorEvent | DoneEvent


# -----------------------------------------------------------------------------
# Model catalog
# -----------------------------------------------------------------------------


class ModelInfo(BaseModel):
    """Catalog entry returned by the models listing endpoint."""

    id: str
    name: str
    provider: str
    context_window: int = Field(..., alias="contextWindow")
    max_tokens: int = Field(..., alias="maxTokens")
    input_cost_per_million: float = Field(..., alias="inputCostPerMillion")
    output_cost_per_million: float = Field(..., alias="outputCostPerMillion")
    available: bool

    model_config = ConfigDict(populate_by_name=True)
