"""Output policy for streamed reports.

A compliant stream produces an embedded HTML document and never stops to ask
the user something. `CompliancePolicy.evaluate` is pure: it looks only at the
accumulated output and the request's mode flags, so the orchestrator can call
it after every delta.

Rules:
    no-question      Interrogative or confirmation-seeking prose before the
                     document starts. Terminal on first match, once the text
                     is longer than `question_min_chars`.
    artifact         The document marker must appear within
                     `artifact_checkpoint` deltas.
    early exit       In immediate mode a first delta that does not start with
                     `<` shortens the artifact grace to `early_checkpoint`.
                     Those verdicts carry the EARLY checkpoint and are
                     confirmed through a bounded lookahead before cutover.
"""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass

from services.streaming.models import (
    COMPLIANT,
    AccumulatedOutput,
    Checkpoint,
    ComplianceVerdict,
    ModeFlags,
    TextDelta,
    VerdictReason,
)


ARTIFACT_MARKER = re.compile(r"<!DOCTYPE|<html", re.IGNORECASE)

QUESTION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\?",
        r"\bshould i\b",
        r"\bwould you like\b",
        r"\bmay i\b",
        r"\bcan i\b",
        r"\bshall i\b",
        r"\blet me\b",
        r"\bi will\b",
        r"\bi[’']ll\b",
        r"\bi need to\b",
        r"\ballow me\b",
    )
)


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Tunable thresholds; the defaults are starting points, not contracts."""

    artifact_checkpoint: int = 3
    early_checkpoint: int = 1
    question_min_chars: int = 30
    lookahead_limit: int = 10


def find_artifact_start(text: str) -> int | None:
    match = ARTIFACT_MARKER.search(text)
    return match.start() if match else None


def contains_artifact(text: str) -> bool:
    return find_artifact_start(text) is not None


def asks_question(text: str) -> bool:
    return any(p.search(text) for p in QUESTION_PATTERNS)


class CompliancePolicy:
    def __init__(self, rules: RuleSet | None = None) -> None:
        self.rules = rules or RuleSet()

    def evaluate(
        self, accumulated: AccumulatedOutput, mode: ModeFlags
    ) -> ComplianceVerdict:
        text = accumulated.text
        artifact_at = find_artifact_start(text)

        if mode.require_no_questions and len(text) > self.rules.question_min_chars:
            prose = text if artifact_at is None else text[:artifact_at]
            if asks_question(prose):
                return ComplianceVerdict(
                    compliant=False,
                    reason=VerdictReason.ASKED_QUESTION,
                    checkpoint=Checkpoint.CONTINUOUS,
                    terminal=True,
                )

        if not mode.require_embedded_artifact or artifact_at is not None:
            return COMPLIANT

        early = self.early_warning(accumulated, mode)
        grace = self.rules.early_checkpoint if early else self.rules.artifact_checkpoint
        checkpoint = Checkpoint.EARLY if early else Checkpoint.MID
        if accumulated.delta_count >= grace:
            return ComplianceVerdict(
                compliant=False,
                reason=VerdictReason.MISSING_REQUIRED_ARTIFACT,
                checkpoint=checkpoint,
                terminal=True,
            )
        if early or text.lstrip().startswith("<"):
            # Either flagged early or a document that has not finished its
            # opening marker yet
            return ComplianceVerdict(
                compliant=False,
                reason=VerdictReason.AWAITING_MORE_DATA,
                checkpoint=checkpoint,
            )
        return ComplianceVerdict(
            compliant=False,
            reason=VerdictReason.MISSING_REQUIRED_ARTIFACT,
            checkpoint=Checkpoint.CONTINUOUS,
        )

    def early_warning(self, accumulated: AccumulatedOutput, mode: ModeFlags) -> bool:
        """True when immediate mode saw a first delta that is not markup."""
        if not mode.immediate_artifact or accumulated.first_delta is None:
            return False
        return not accumulated.first_delta.lstrip().startswith("<")


class LookaheadBuffer:
    """Deltas held back from the client while a verdict is being confirmed.

    Holds at most `limit + 1` deltas: the one that raised the verdict plus
    up to `limit` extra pulled from the provider.
    """

    def __init__(self, limit: int) -> None:
        if limit < 0:
            raise ValueError("lookahead limit must be >= 0")
        self.limit = limit
        self._held: deque[TextDelta] = deque(maxlen=limit + 1)
        self._extra = 0

    def __len__(self) -> int:
        return len(self._held)

    @property
    def has_room(self) -> bool:
        return self._extra < self.limit

    def hold(self, delta: TextDelta) -> None:
        """Hold the delta that triggered the lookahead."""
        if self._held:
            raise RuntimeError("lookahead already started")
        self._held.append(delta)

    def push(self, delta: TextDelta) -> None:
        if not self.has_room:
            raise OverflowError("lookahead window exhausted")
        self._held.append(delta)
        self._extra += 1

    def drain(self) -> Iterator[TextDelta]:
        """Release held deltas in arrival order."""
        while self._held:
            yield self._held.popleft()

    def text(self) -> str:
        return "".join(d.text for d in self._held)
