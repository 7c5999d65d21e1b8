"""Domain models for one streaming invocation.

* ChatRequest        - immutable request, built once per HTTP call.
* TextDelta          - one fragment of provider output.
* UsageReport        - token accounting, authoritative or estimated.
* AccumulatedOutput  - mutable aggregate owned by a single session.
* ComplianceVerdict  - ephemeral result of a policy evaluation.

The wire-facing events live in `schemas.report_stream`; these types never
leave the process.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum


# Rough chars-per-token ratio used wherever a provider gives no counts
CHARS_PER_TOKEN = 4


def tokens_for_chars(chars: int) -> int:
    """Estimate a token count from a character count."""
    return math.ceil(chars / CHARS_PER_TOKEN)


def estimate_tokens(text: str) -> int:
    return tokens_for_chars(len(text))


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: Role
    content: str


@dataclass(frozen=True, slots=True)
class ModeFlags:
    """Which output rules a stream must satisfy."""

    require_embedded_artifact: bool = True
    require_no_questions: bool = True
    immediate_artifact: bool = False


@dataclass(frozen=True, slots=True)
class ChatRequest:
    """Input to the orchestrator.

    Raises ValueError on construction when no message has the user role.
    """

    messages: tuple[ChatMessage, ...]
    model_id: str
    correlation_id: str
    system_prompt: str | None = None
    mode: ModeFlags = field(default_factory=ModeFlags)

    def __post_init__(self) -> None:
        if not any(m.role is Role.USER for m in self.messages):
            raise ValueError("ChatRequest requires at least one user message")

    @property
    def latest_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role is Role.USER:
                return message.content
        return ""  # pragma: no cover - guarded by __post_init__

    def prompt_chars(self) -> int:
        total = sum(len(m.content) for m in self.messages)
        return total + len(self.system_prompt or "")


@dataclass(frozen=True, slots=True)
class TextDelta:
    text: str
    sequence_number: int

    def __post_init__(self) -> None:
        if not self.text:
            raise ValueError("TextDelta text must be non-empty")


@dataclass(frozen=True, slots=True)
class UsageReport:
    input_tokens: int
    output_tokens: int
    cost_estimate: float | None = None
    estimated: bool = False


@dataclass(slots=True)
class AccumulatedOutput:
    """Output of one stream so far.

    `text` is the ordered concatenation of every delta appended; after a
    cutover it holds only the fallback artifact.
    """

    text: str = ""
    delta_count: int = 0
    first_delta: str | None = None
    replaced: bool = False
    _final_usage: UsageReport | None = None

    @property
    def estimated_output_tokens(self) -> int:
        return estimate_tokens(self.text)

    @property
    def final_usage(self) -> UsageReport | None:
        return self._final_usage

    @final_usage.setter
    def final_usage(self, usage: UsageReport) -> None:
        if self._final_usage is not None:
            raise RuntimeError("final usage has already been recorded")
        self._final_usage = usage

    def append(self, delta: TextDelta) -> None:
        if self.replaced:
            raise RuntimeError("cannot append provider output after cutover")
        if self.first_delta is None:
            self.first_delta = delta.text
        self.text += delta.text
        self.delta_count += 1

    def replace(self, text: str) -> None:
        self.text = text
        self.replaced = True


class VerdictReason(str, Enum):
    NONE = "none"
    ASKED_QUESTION = "asked_question"
    MISSING_REQUIRED_ARTIFACT = "missing_required_artifact"
    AWAITING_MORE_DATA = "awaiting_more_data"


class Checkpoint(str, Enum):
    EARLY = "early"
    MID = "mid"
    CONTINUOUS = "continuous"


@dataclass(frozen=True, slots=True)
class ComplianceVerdict:
    compliant: bool
    reason: VerdictReason
    checkpoint: Checkpoint
    # True when the firing rule has reached its cutover threshold
    terminal: bool = False


COMPLIANT = ComplianceVerdict(
    compliant=True, reason=VerdictReason.NONE, checkpoint=Checkpoint.CONTINUOUS
)
