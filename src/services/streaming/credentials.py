"""Collaborator interfaces for per-user credentials and usage accounting.

Both are consumed through protocols so the key vault and the usage ledger can
live anywhere; the defaults here read server-wide keys from settings and write
usage to the structured log.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from core.config import Settings
from core.error_handler import StructuredLogger
from services.streaming.models import UsageReport


usage_logger = StructuredLogger(__name__)


class CredentialStore(Protocol):
    """Read-only lookup of provider secrets for a caller."""

    async def credentials_for(self, user_id: str) -> Mapping[str, str]:
        """Return `{provider: secret}` for every provider the caller can use."""
        ...


class UsageSink(Protocol):
    """Destination for usage records; calls are fire-and-forget."""

    async def record_usage(
        self, user_id: str, provider: str, model: str, usage: UsageReport
    ) -> None: ...


class SettingsCredentialStore:
    """Serves the server-wide provider keys from settings to every caller."""

    def __init__(self, settings: Settings) -> None:
        self._keys = settings.provider_api_keys()

    async def credentials_for(self, user_id: str) -> Mapping[str, str]:
        return dict(self._keys)


class StaticCredentialStore:
    """Fixed per-user keys, with an optional shared set for everyone else."""

    def __init__(
        self,
        per_user: Mapping[str, Mapping[str, str]] | None = None,
        shared: Mapping[str, str] | None = None,
    ) -> None:
        self._per_user = {uid: dict(keys) for uid, keys in (per_user or {}).items()}
        self._shared = dict(shared or {})

    async def credentials_for(self, user_id: str) -> Mapping[str, str]:
        merged = dict(self._shared)
        merged.update(self._per_user.get(user_id, {}))
        return merged


class LoggingUsageSink:
    async def record_usage(
        self, user_id: str, provider: str, model: str, usage: UsageReport
    ) -> None:
        usage_logger.info(
            "Usage recorded",
            user_id=user_id,
            provider=provider,
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost_estimate=usage.cost_estimate,
            estimated=usage.estimated,
        )
