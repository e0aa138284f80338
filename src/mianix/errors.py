"""
Error taxonomy for Mianix.

Defines a consistent hierarchy of exceptions used throughout the codebase
to provide clear error semantics to the chat flow and the CLI.
"""

from __future__ import annotations


class MianixError(Exception):
    """Base exception for all Mianix errors.

    All custom exceptions in Mianix inherit from this class
    to enable catch-all error handling when needed.
    """

    pass


class ConfigurationError(MianixError):
    """Invalid or missing configuration.

    Raised when no LLM provider is configured, or when settings are
    invalid. The message is meant to be shown to the user as is.
    """

    pass


class ProviderError(MianixError):
    """The LLM provider answered with a non-2xx status.

    Attributes:
        message: Human-readable error description
        status_code: HTTP status returned by the provider
        body: Response body, kept as diagnostic text
        provider_id: Optional id of the provider that failed
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        body: str = "",
        provider_id: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.provider_id = provider_id

    def __str__(self) -> str:
        parts = [self.args[0], f"status={self.status_code}"]
        if self.provider_id:
            parts.append(f"provider={self.provider_id}")
        if self.body:
            parts.append(self.body[:500])
        return ": ".join(parts)


class AuthError(ProviderError):
    """Provider rejected the credentials (401/403).

    Usually a wrong or expired API key, or a wrong auth header kind.
    """

    pass


class NotFoundError(ProviderError):
    """Provider endpoint not found (404).

    Usually a wrong base URL or an unknown model.
    """

    pass


class NetworkError(MianixError):
    """Connection to the provider failed before any response arrived."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class ProtocolError(MianixError):
    """Malformed top-level response (missing body, unexpected JSON shape)."""

    pass


class StreamCancelledError(MianixError):
    """An in-flight completion stream was aborted by the caller."""

    pass


class StorageError(MianixError):
    """Vault read or write failed.

    Attributes:
        message: Human-readable error description
        path: Vault-relative path involved in the failure
        original_error: Optional original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.path = path
        self.original_error = original_error

    def __str__(self) -> str:
        if self.path:
            return f"{self.args[0]}: path={self.path}"
        return str(self.args[0])


class PartialDataWarning(Warning):
    """A single stream frame could not be parsed and was skipped.

    Only used as a log category; never raised.
    """


def error_for_status(
    status_code: int, body: str = "", provider_id: str | None = None
) -> ProviderError:
    """Map an HTTP status code to the matching provider error."""
    if status_code in (401, 403):
        return AuthError(
            "Provider rejected the API key; check the key and auth header type",
            status_code,
            body,
            provider_id,
        )
    if status_code == 404:
        return NotFoundError(
            "Provider endpoint not found; check the base URL and model name",
            status_code,
            body,
            provider_id,
        )
    return ProviderError("LLM API error", status_code, body, provider_id)


# Error handling guidelines:
#
# 1. Ranking and provider resolution never raise for missing data:
#    - search() -> empty list
#    - resolve_provider() -> NOT_CONFIGURED
#
# 2. Background memory extraction:
#    - Log with logger.exception() and return an empty result
#    - Never propagate into the chat turn
#
# 3. Stream frames:
#    - A frame that fails to parse is skipped and logged at DEBUG
#    - The stream itself only fails on HTTP status or transport errors
#
# 4. Re-raising:
#    - Use "raise NetworkError(...) from e" to preserve cause chain
