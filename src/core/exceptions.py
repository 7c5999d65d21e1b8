"""Error taxonomy for the streaming core.

Only `ConfigurationError` and `ProviderError` ever become visible failures;
compliance problems are recovered locally through fallback substitution and a
client disconnect (`TransportClosedError`) is treated as cancellation.
"""


class ReportStreamError(Exception):
    """Base class for streaming-core errors."""

    error_code: str = "report_stream_error"


class ConfigurationError(ReportStreamError):
    """Plumbing failure detected before any stream output (never retried).

    Carries the HTTP status the boundary should answer with.
    """

    error_code = "configuration_error"
    status_code: int = 400

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class UnknownModelError(ConfigurationError):
    """Exception raised when a model identifier matches no known provider."""

    error_code = "unknown_model"
    status_code = 400

    def __init__(self, model_id: str):
        super().__init__(f"Unknown model: {model_id}")
        self.model_id = model_id


class MissingCredentialError(ConfigurationError):
    """Exception raised when the caller has no credential for a provider."""

    error_code = "missing_credential"
    status_code = 403

    def __init__(self, provider: str):
        super().__init__(f"No API key configured for provider '{provider}'")
        self.provider = provider


class ProviderError(ReportStreamError):
    """Network, auth or vendor failure while streaming from a provider.

    `status_code` is the vendor HTTP status when the vendor answered at all;
    `failure_type` names the underlying exception class.
    """

    error_code = "provider_error"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        failure_type: str | None = None,
    ):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code
        self.failure_type = failure_type


class TransportClosedError(ReportStreamError):
    """Exception raised when the client side of a stream has gone away."""

    error_code = "transport_closed"
