from __future__ import annotations


class LXTError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(LXTError, ValueError):
    """Missing or invalid settings (provider credentials, bounds)."""


class UserInputError(LXTError, ValueError):
    """Request rejected before any provider call."""


class ValidationError(LXTError):
    """Shape mismatch caught by the verdict sanitizer. Never leaves it."""


class ProviderError(LXTError):
    retryable = False

    def __init__(self, message: str, *, provider: str = "", retryable: bool | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        if retryable is not None:
            self.retryable = bool(retryable)


class ProviderTimeoutError(ProviderError):
    retryable = True


class ProviderResponseError(ProviderError):
    """Provider answered, but not with something usable."""
