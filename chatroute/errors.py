"""
Error types shared between chatroute and the provider adapters that call it.

Provider adapters raise these (or anything carrying ``status`` /
``status_code`` and a message); :func:`chatroute.fallback.classify_error`
maps them onto the fallback taxonomy.  Security violations are never
recovered by fallback and must reach the caller's own error handling.
"""

from typing import Optional


class ProviderError(Exception):
    """An upstream completion call failed.

    Attributes:
        provider: Provider name, when known.
        status: HTTP status returned by the provider, when known.
    """

    def __init__(self, message: str, provider: Optional[str] = None,
                 status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status = status


class ProviderTimeoutError(ProviderError):
    """The provider did not answer before the caller's deadline."""


class ProviderRateLimitError(ProviderError):
    """The provider rejected the call for rate limiting."""

    def __init__(self, message: str = "rate limit exceeded", provider: Optional[str] = None,
                 status: Optional[int] = 429):
        super().__init__(message, provider=provider, status=status)


class SecurityViolationError(Exception):
    """Base class for errors that must never be masked by a fallback."""


class JailbreakError(SecurityViolationError):
    """The request attempted to subvert the assistant's instructions."""


class SystemPromptExposureError(SecurityViolationError):
    """The response would expose the system prompt."""


class ModelRevealError(SecurityViolationError):
    """The response would reveal the underlying model or vendor."""


SECURITY_ERROR_NAMES = frozenset({
    "JailbreakError",
    "SystemPromptExposureError",
    "ModelRevealError",
})
