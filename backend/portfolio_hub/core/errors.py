"""Error taxonomy shared by the vault, providers, and aggregator."""

from __future__ import annotations

from typing import Any


class AggregatorError(RuntimeError):
    """Base class for every error raised by the aggregation engine."""

    code = "aggregator_error"

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.provider:
            payload["provider"] = self.provider
        return payload


class ValidationError(AggregatorError):
    """Raised when required caller input is missing or malformed."""

    code = "validation_error"


class IntegrityError(AggregatorError):
    """Raised when a vault envelope fails authentication (tampered or wrong key)."""

    code = "integrity_error"


class InvalidCredentials(AggregatorError):
    """Raised when a provider rejects the supplied credentials."""

    code = "invalid_credentials"


class SecondFactorRequired(AggregatorError):
    """Raised when a login needs a one-time password before it can complete."""

    code = "second_factor_required"

    def __init__(self, message: str = "Second factor required", *, provider: str | None = None) -> None:
        super().__init__(message, provider=provider)


class SessionExpired(AggregatorError):
    """Raised when a session-based provider no longer accepts the stored session."""

    code = "session_expired"

    def __init__(self, message: str = "Session expired, please log in again", *, provider: str | None = None) -> None:
        super().__init__(message, provider=provider)


class ProviderUnavailable(AggregatorError):
    """Raised when a provider cannot be used right now (maintenance, anti-automation)."""

    code = "provider_unavailable"

    def __init__(self, reason: str, *, message: str | None = None, provider: str | None = None) -> None:
        super().__init__(message or f"Provider unavailable: {reason}", provider=provider)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class Unreachable(AggregatorError):
    """Raised on transport failures or when a provider exceeds the time budget."""

    code = "unreachable"


class RateLimited(AggregatorError):
    """Raised when a provider throttles the caller."""

    code = "rate_limited"

    def __init__(self, retry_after: float | None = None, *, provider: str | None = None) -> None:
        message = "Rate limited by provider"
        if retry_after is not None:
            message = f"{message}, retry after {retry_after:g}s"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["retry_after"] = self.retry_after
        return payload


class ProviderError(AggregatorError):
    """Raised for non-2xx provider responses and provider-level error codes."""

    code = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        provider_code: Any = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.http_status = http_status
        self.provider_message = message
        self.provider_code = provider_code

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["http_status"] = self.http_status
        payload["provider_code"] = self.provider_code
        return payload


class PartialFailure(AggregatorError):
    """Raised when some sub-resources of a provider failed and others loaded.

    ``items`` holds what was fetched; ``failures`` the errors of the rest.
    The aggregator keeps the items and reports each failure.
    """

    code = "partial_failure"

    def __init__(self, items: list[Any], failures: list[AggregatorError], *, provider: str | None = None) -> None:
        super().__init__(f"{len(failures)} sub-resource(s) unavailable", provider=provider)
        self.items = items
        self.failures = failures


__all__ = [
    "AggregatorError",
    "IntegrityError",
    "InvalidCredentials",
    "PartialFailure",
    "ProviderError",
    "ProviderUnavailable",
    "RateLimited",
    "SecondFactorRequired",
    "SessionExpired",
    "Unreachable",
    "ValidationError",
]
