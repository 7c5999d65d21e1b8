"""Report streaming endpoints (Server-Sent Events)."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter

from core.error_handler import get_correlation_id
from dependencies.auth import CurrentUserId
from dependencies.streaming import Orchestrator
from schemas.api import ApiResponse
from schemas.report_stream import ModelInfo, ReportStreamRequest
from services.streaming.models import ChatMessage, ChatRequest, ModeFlags, Role
from services.streaming.transport import EventStreamResponse


__all__ = ["list_models", "stream_instant_report", "stream_report"]


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])

_SSE_RESPONSES: dict[int | str, dict[str, Any]] = {
    200: {
        "content": {"text/event-stream": {}},
        "description": "One `data:` line per event, ending with `data: [DONE]`.",
    }
}


def to_chat_request(payload: ReportStreamRequest) -> ChatRequest:
    """Convert the validated payload into the orchestrator's request type.

    `includeVisuals` switches on immediate-artifact mode.
    """
    mode = ModeFlags(
        require_embedded_artifact=payload.mode.require_embedded_artifact,
        require_no_questions=payload.mode.require_no_questions,
        immediate_artifact=payload.mode.immediate_artifact or payload.include_visuals,
    )
    return ChatRequest(
        messages=tuple(
            ChatMessage(role=Role(m.role), content=m.content) for m in payload.messages
        ),
        model_id=(payload.model or "").strip(),
        correlation_id=get_correlation_id(),
        system_prompt=payload.system_prompt,
        mode=mode,
    )


@router.post(
    "/stream",
    summary="Stream an HTML report from an LLM provider",
    response_class=EventStreamResponse,
    responses=_SSE_RESPONSES,
)
async def stream_report(
    payload: ReportStreamRequest,
    orchestrator: Orchestrator,
    user_id: CurrentUserId,
) -> EventStreamResponse:
    """Stream a report as Server-Sent Events.

    Event JSON schema (sent in `data:` lines):
      {"type": "metadata", "model", "startTime", "provider"}  first, always
      {"content": "..."}                                       zero or more
      {"type": "complete", "metadata": {...}} or {"error": "..."}
      [DONE]                                                   last, always

    Unknown models (400) and missing provider keys (403) are rejected before
    the stream starts.
    """
    session = await orchestrator.prepare(to_chat_request(payload), user_id)
    logger.debug(
        "stream_report: model=%s provider=%s messages=%d",
        session.model,
        session.provider,
        len(payload.messages),
    )
    return EventStreamResponse(session.run)


@router.post(
    "/instant",
    summary="Stream a locally generated report without calling a provider",
    response_class=EventStreamResponse,
    responses=_SSE_RESPONSES,
)
async def stream_instant_report(
    payload: ReportStreamRequest,
    orchestrator: Orchestrator,
    user_id: CurrentUserId,
) -> EventStreamResponse:
    """Same event sequence as `/ai/stream`, produced by the instant engine."""
    session = orchestrator.prepare_instant(to_chat_request(payload), user_id)
    return EventStreamResponse(session.run)


@router.get("/models", response_model=ApiResponse[list[ModelInfo]])
async def list_models(
    orchestrator: Orchestrator,
    user_id: CurrentUserId,
) -> ApiResponse[list[ModelInfo]]:
    """List catalog models and whether the caller has a key for each."""
    entries = await orchestrator.list_models(user_id)
    models = [
        ModelInfo(
            id=spec.id,
            name=spec.name,
            provider=spec.provider.value,
            context_window=spec.context_window,
            max_tokens=spec.max_tokens,
            input_cost_per_million=spec.input_cost_per_million,
            output_cost_per_million=spec.output_cost_per_million,
            available=available,
        )
        for spec, available in entries
    ]
    return ApiResponse(
        success=True,
        data=models,
        message=f"{sum(1 for m in models if m.available)} of {len(models)} models available",
    )
