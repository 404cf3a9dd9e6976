"""Error taxonomy shared by the core and the adapters.

Rules:
- `ConfigurationError` is the only error that is fatal to the process, and only
  at startup.
- Everything raised by a provider client is a `ProviderError`; the subclass
  decides whether `RetryPolicy` retries it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.domain.models import ConsensusResult


class DyndnsError(Exception):
    """Base class for every error raised by dyndns-sync."""


class ConfigurationError(DyndnsError):
    """Invalid or incomplete configuration detected before the loop starts."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        self.provider = provider
        prefix = f"[{provider}] " if provider else ""
        super().__init__(f"{prefix}{message}")


class ConsensusFailure(DyndnsError):
    """Not enough discovery sources agreed for any requested family."""

    def __init__(self, result: "ConsensusResult", message: str | None = None) -> None:
        self.result = result
        ok = sum(1 for sample in result.samples if sample.ok)
        super().__init__(
            message
            or f"consensus not reached: {ok}/{len(result.samples)} usable samples, "
            f"need {result.threshold} in agreement"
        )


class OperationCancelled(DyndnsError):
    """Shutdown was observed at a suspension point; the operation had no effect."""


class SourceBudgetExhausted(DyndnsError):
    """A discovery source used up its hourly request budget."""

    def __init__(self, source: str, capacity: int) -> None:
        self.source = source
        self.capacity = capacity
        super().__init__(f"{source}: request budget of {capacity} per hour used up")


class ProviderError(DyndnsError):
    """A provider call failed and must not be retried automatically."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class TransientProviderError(ProviderError):
    """Network failure, timeout or 5xx response; safe to retry."""


class RateLimitExceeded(TransientProviderError):
    """The provider answered 429; retried with a longer backoff floor."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, provider=provider, status_code=429)


class AuthenticationError(ProviderError):
    """Credentials were rejected (401/403). Never retried."""


class RetryExhausted(ProviderError):
    """Every attempt allowed by the retry policy failed transiently."""

    def __init__(self, *, provider: str, attempts: int, last_error: TransientProviderError) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"gave up after {attempts} attempt(s): {last_error}",
            provider=provider,
            status_code=last_error.status_code,
        )
