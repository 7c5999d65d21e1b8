"""Prompt text for report generation.

The directive is configuration, not logic: `Settings.ARTIFACT_DIRECTIVE`
replaces it wholesale, and output is still checked by `CompliancePolicy`
whatever the prompt says. The same goes for the follow-up approval template
(`Settings.FOLLOW_UP_APPROVAL`).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from services.streaming.compliance import asks_question, find_artifact_start
from services.streaming.models import ChatMessage, ModeFlags, Role


DEFAULT_SYSTEM_PROMPT = """You are a financial research analyst who writes \
self-contained HTML reports. Use realistic, clearly illustrative figures, \
concise commentary, tables and simple inline-styled charts. Do not reference \
external scripts or stylesheets other than the Tailwind CDN."""

ARTIFACT_DIRECTIVE = """Respond with a complete HTML document and nothing else.
- The first characters of the response must be <!DOCTYPE html>.
- Do not ask questions, request confirmation, or describe what you are about
  to do. Make reasonable assumptions and state them inside the report.
- End the response with </html>."""

# `{content}` is replaced with the user's own reply.
FOLLOW_UP_APPROVAL = (
    "Yes, approved. {content}\n\n"
    "Generate the complete HTML report now without further questions or "
    "explanations. Start with <!DOCTYPE html>."
)


def build_system_prompt(
    system_prompt: str | None,
    mode: ModeFlags,
    directive: str | None = None,
) -> str:
    """Combine the caller's prompt with the directive its mode needs."""
    base = (system_prompt or "").strip() or DEFAULT_SYSTEM_PROMPT
    if not (mode.require_embedded_artifact or mode.require_no_questions):
        return base
    return f"{(directive or ARTIFACT_DIRECTIVE).strip()}\n\n{base}"


def _asked_user(message: ChatMessage) -> bool:
    """Whether an assistant turn put a question to the user.

    Questions inside a delivered report do not count.
    """
    end = find_artifact_start(message.content)
    return asks_question(message.content[:end])


def rewrite_follow_up(
    messages: Sequence[ChatMessage],
    mode: ModeFlags,
    template: str | None = None,
) -> tuple[ChatMessage, ...]:
    """Answer a previous assistant question on the user's behalf.

    When questions are forbidden and the turn before the latest user message
    was the assistant asking something, the user's reply is wrapped in an
    explicit approval so the provider goes straight to the report.
    """
    messages = tuple(messages)
    if not mode.require_no_questions or len(messages) < 2:
        return messages
    previous, latest = messages[-2], messages[-1]
    if previous.role is not Role.ASSISTANT or latest.role is not Role.USER:
        return messages
    if not _asked_user(previous):
        return messages
    approval = (template or FOLLOW_UP_APPROVAL).replace(
        "{content}", latest.content.strip()
    )
    return (*messages[:-1], replace(latest, content=approval))
