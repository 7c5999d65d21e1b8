"""Static catalog of supported models, provider families and pricing.

Prices are USD per 1M tokens. Unlisted models that still match a provider
family prefix are priced with that family's default entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Provider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    GROQ = "groq"


@dataclass(frozen=True, slots=True)
class ModelSpec:
    id: str
    name: str
    provider: Provider
    context_window: int
    max_tokens: int
    input_cost_per_million: float
    output_cost_per_million: float
    aliases: tuple[str, ...] = ()

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        cost = (
            input_tokens * self.input_cost_per_million
            + output_tokens * self.output_cost_per_million
        ) / 1_000_000
        return round(cost, 6)


MODEL_CATALOG: tuple[ModelSpec, ...] = (
    # Anthropic
    ModelSpec(
        "claude-3-5-sonnet-20241022",
        "Claude 3.5 Sonnet",
        Provider.ANTHROPIC,
        200_000,
        8192,
        3.00,
        15.00,
        aliases=("claude-3-sonnet", "claude-3-5-sonnet"),
    ),
    ModelSpec(
        "claude-3-5-sonnet-20240620",
        "Claude 3.5 Sonnet (June)",
        Provider.ANTHROPIC,
        200_000,
        8192,
        3.00,
        15.00,
    ),
    ModelSpec(
        "claude-3-opus-20240229",
        "Claude 3 Opus",
        Provider.ANTHROPIC,
        200_000,
        4096,
        15.00,
        75.00,
        aliases=("claude-3-opus",),
    ),
    ModelSpec(
        "claude-3-sonnet-20240229",
        "Claude 3 Sonnet",
        Provider.ANTHROPIC,
        200_000,
        4096,
        3.00,
        15.00,
    ),
    ModelSpec(
        "claude-3-haiku-20240307",
        "Claude 3 Haiku",
        Provider.ANTHROPIC,
        200_000,
        4096,
        0.25,
        1.25,
        aliases=("claude-3-haiku",),
    ),
    # OpenAI
    ModelSpec(
        "gpt-4-turbo-preview",
        "GPT-4 Turbo",
        Provider.OPENAI,
        128_000,
        4096,
        10.00,
        30.00,
        aliases=("gpt-4-turbo",),
    ),
    ModelSpec("gpt-4", "GPT-4", Provider.OPENAI, 8192, 4096, 30.00, 60.00),
    ModelSpec("gpt-4-32k", "GPT-4 32K", Provider.OPENAI, 32_768, 4096, 60.00, 120.00),
    ModelSpec(
        "gpt-3.5-turbo", "GPT-3.5 Turbo", Provider.OPENAI, 16_385, 4096, 0.50, 1.50
    ),
    # Google
    ModelSpec(
        "gemini-1.5-pro",
        "Gemini 1.5 Pro",
        Provider.GOOGLE,
        2_000_000,
        8192,
        1.25,
        5.00,
    ),
    ModelSpec(
        "gemini-1.5-flash",
        "Gemini 1.5 Flash",
        Provider.GOOGLE,
        1_000_000,
        8192,
        0.075,
        0.30,
    ),
    ModelSpec("gemini-pro", "Gemini Pro", Provider.GOOGLE, 32_760, 2048, 0.25, 0.50),
    # Groq
    ModelSpec(
        "llama-3.3-70b-versatile",
        "Llama 3.3 70B Versatile",
        Provider.GROQ,
        128_000,
        32_768,
        0.59,
        0.79,
    ),
    ModelSpec(
        "llama-3.1-70b-versatile",
        "Llama 3.1 70B Versatile",
        Provider.GROQ,
        128_000,
        8000,
        0.59,
        0.79,
    ),
    ModelSpec(
        "llama-3.1-8b-instant",
        "Llama 3.1 8B Instant",
        Provider.GROQ,
        128_000,
        8000,
        0.05,
        0.08,
    ),
    ModelSpec(
        "mixtral-8x7b-32768",
        "Mixtral 8x7B",
        Provider.GROQ,
        32_768,
        32_768,
        0.24,
        0.24,
    ),
    ModelSpec("gemma2-9b-it", "Gemma 2 9B", Provider.GROQ, 8192, 8192, 0.20, 0.20),
)

# Family prefixes for ids not listed in the catalog, checked in order
PROVIDER_PREFIXES: tuple[tuple[str, Provider], ...] = (
    ("claude-", Provider.ANTHROPIC),
    ("gpt-", Provider.OPENAI),
    ("chatgpt-", Provider.OPENAI),
    ("o1", Provider.OPENAI),
    ("o3", Provider.OPENAI),
    ("gemini-", Provider.GOOGLE),
    ("llama", Provider.GROQ),
    ("mixtral-", Provider.GROQ),
    ("gemma", Provider.GROQ),
)

# Pricing used for prefix-matched ids
FAMILY_DEFAULTS: dict[Provider, str] = {
    Provider.ANTHROPIC: "claude-3-5-sonnet-20241022",
    Provider.OPENAI: "gpt-4-turbo-preview",
    Provider.GOOGLE: "gemini-1.5-pro",
    Provider.GROQ: "llama-3.3-70b-versatile",
}

_BY_ID: dict[str, ModelSpec] = {spec.id: spec for spec in MODEL_CATALOG}
_BY_ALIAS: dict[str, ModelSpec] = {
    alias: spec for spec in MODEL_CATALOG for alias in spec.aliases
}


def find_model(model_id: str) -> ModelSpec | None:
    """Exact id or alias lookup; returns None for unlisted ids."""
    return _BY_ID.get(model_id) or _BY_ALIAS.get(model_id)


def provider_for_prefix(model_id: str) -> Provider | None:
    lowered = model_id.lower()
    for prefix, provider in PROVIDER_PREFIXES:
        if lowered.startswith(prefix):
            return provider
    return None


def spec_for_unlisted(model_id: str, provider: Provider) -> ModelSpec:
    """Build a spec for a prefix-matched id using its family's limits and prices."""
    template = _BY_ID[FAMILY_DEFAULTS[provider]]
    return ModelSpec(
        id=model_id,
        name=model_id,
        provider=provider,
        context_window=template.context_window,
        max_tokens=template.max_tokens,
        input_cost_per_million=template.input_cost_per_million,
        output_cost_per_million=template.output_cost_per_million,
    )
