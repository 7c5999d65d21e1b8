"""Model id to provider adapter resolution.

The registry owns one adapter per provider for its whole lifetime; callers
get a `ResolvedModel` that binds the adapter to the caller's credential.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from core.exceptions import MissingCredentialError, UnknownModelError
from services.streaming.adapters import ADAPTER_TYPES, ProviderAdapter, ProviderStream
from services.streaming.catalog import (
    MODEL_CATALOG,
    ModelSpec,
    Provider,
    find_model,
    provider_for_prefix,
    spec_for_unlisted,
)
from services.streaming.models import ChatRequest


logger = logging.getLogger(__name__)

AdapterFactory = Callable[[], ProviderAdapter]


@dataclass(frozen=True, slots=True)
class ResolvedModel:
    """A model bound to its adapter and the caller's credential."""

    spec: ModelSpec
    adapter: ProviderAdapter
    credential: str

    @property
    def provider(self) -> Provider:
        return self.spec.provider

    def stream(self, request: ChatRequest) -> ProviderStream:
        return self.adapter.stream_chat_completion(
            request, self.credential, spec=self.spec
        )


class ProviderRegistry:
    """Maps logical model ids to adapters.

    Args:
        factories: Adapter constructor per provider. Each is called once.
        default_model: Used when a request names no model at all.
    """

    def __init__(
        self,
        factories: Mapping[Provider, AdapterFactory],
        *,
        default_model: str,
    ) -> None:
        self._factories = dict(factories)
        self._adapters: dict[Provider, ProviderAdapter] = {}
        self.default_model = default_model

    @classmethod
    def with_default_adapters(
        cls,
        *,
        default_model: str,
        max_output_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> ProviderRegistry:
        factories: dict[Provider, AdapterFactory] = {
            provider: (
                lambda adapter_type=adapter_type: adapter_type(
                    max_output_tokens=max_output_tokens, temperature=temperature
                )
            )
            for provider, adapter_type in ADAPTER_TYPES.items()
        }
        return cls(factories, default_model=default_model)

    def lookup(self, model_id: str | None) -> ModelSpec:
        """Find the catalog spec for an id without checking credentials.

        An empty or missing id means the default model; an id that matches
        neither the catalog nor a provider prefix raises UnknownModelError.
        """
        requested = (model_id or "").strip() or self.default_model
        spec = find_model(requested)
        if spec is not None:
            return spec
        provider = provider_for_prefix(requested)
        if provider is None or provider not in self._factories:
            raise UnknownModelError(requested)
        return spec_for_unlisted(requested, provider)

    def adapter_for(self, provider: Provider) -> ProviderAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            factory = self._factories.get(provider)
            if factory is None:
                raise UnknownModelError(provider.value)
            adapter = factory()
            self._adapters[provider] = adapter
        return adapter

    def resolve(
        self, model_id: str | None, credentials: Mapping[str, str]
    ) -> ResolvedModel:
        spec = self.lookup(model_id)
        credential = (credentials.get(spec.provider.value) or "").strip()
        if not credential:
            raise MissingCredentialError(spec.provider.value)
        logger.debug("Resolved model %s to provider %s", spec.id, spec.provider.value)
        return ResolvedModel(
            spec=spec,
            adapter=self.adapter_for(spec.provider),
            credential=credential,
        )

    def available_models(
        self, credentials: Mapping[str, str]
    ) -> list[tuple[ModelSpec, bool]]:
        """Every catalog model with whether the caller can use it."""
        return [
            (
                spec,
                spec.provider in self._factories
                and bool((credentials.get(spec.provider.value) or "").strip()),
            )
            for spec in MODEL_CATALOG
        ]
