from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from core.config import Settings
from services.streaming.compliance import CompliancePolicy, RuleSet
from services.streaming.credentials import LoggingUsageSink, SettingsCredentialStore
from services.streaming.orchestrator import StreamOrchestrator
from services.streaming.registry import ProviderRegistry


def build_orchestrator(settings: Settings) -> StreamOrchestrator:
    """Wire the orchestrator and its collaborators from settings."""
    registry = ProviderRegistry.with_default_adapters(
        default_model=settings.DEFAULT_MODEL,
        max_output_tokens=settings.MAX_OUTPUT_TOKENS,
        temperature=settings.TEMPERATURE,
    )
    rules = RuleSet(
        artifact_checkpoint=settings.COMPLIANCE_ARTIFACT_CHECKPOINT,
        early_checkpoint=settings.COMPLIANCE_EARLY_CHECKPOINT,
        question_min_chars=settings.COMPLIANCE_QUESTION_MIN_CHARS,
        lookahead_limit=settings.COMPLIANCE_LOOKAHEAD_LIMIT,
    )
    return StreamOrchestrator(
        registry,
        credential_store=SettingsCredentialStore(settings),
        policy=CompliancePolicy(rules),
        usage_sink=LoggingUsageSink(),
        directive=settings.ARTIFACT_DIRECTIVE,
        follow_up_template=settings.FOLLOW_UP_APPROVAL,
        drain_timeout=settings.STREAM_DRAIN_TIMEOUT_SECONDS,
    )


def get_orchestrator(request: Request) -> StreamOrchestrator:
    """Return the process-wide orchestrator created at startup."""
    return request.app.state.orchestrator


Orchestrator = Annotated[StreamOrchestrator, Depends(get_orchestrator)]
