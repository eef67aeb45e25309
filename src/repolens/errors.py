"""Exception taxonomy shared across repolens.

Errors are raised where they arise and only turned into tagged results
(``Explanation`` / ``DiagramResult``) at the pipeline boundary:

- ``ConfigurationError``: bad input (missing API key, unknown provider).
  Surfaced immediately, never retried.
- ``FetchError``: the repository content client failed.
- ``InferenceError`` and subclasses: the inference endpoint failed.  The
  ``kind`` attribute tells the retry primitive how to react.
- ``StorageQuotaError``: a storage write would exceed its quota.  Always
  swallowed by the response cache.
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Why an inference call produced no usable result."""
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    REQUEST = "request"
    SAFETY = "safety"
    MAX_TOKENS = "max_tokens"
    EMPTY = "empty"
    INVALID_JSON = "invalid_json"
    SCHEMA = "schema"
    UNKNOWN = "unknown"


class FetchErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"


class RepoLensError(Exception):
    """Base class for every error raised by repolens."""


class ConfigurationError(RepoLensError):
    """Invalid or missing configuration (API key, provider name, ...)."""


class StorageQuotaError(RepoLensError):
    """A key-value storage write would exceed the configured capacity."""


class FetchError(RepoLensError):
    """The content-hosting client could not return the requested data."""

    def __init__(self, message: str, kind: FetchErrorKind = FetchErrorKind.NETWORK):
        super().__init__(message)
        self.kind = kind


# ---------------------------------------------------------------------------
# Inference errors
# ---------------------------------------------------------------------------

class InferenceError(RepoLensError):
    """Base class for failures of a single inference attempt."""

    kind: FailureKind = FailureKind.UNKNOWN

    def __init__(self, message: str, *, kind: FailureKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class RateLimitError(InferenceError):
    """HTTP 429 / quota exhausted.  ``retry_after`` is in seconds."""

    kind = FailureKind.RATE_LIMIT

    def __init__(self, message: str = "Rate limit exceeded", *, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransientError(InferenceError):
    """5xx responses, timeouts and connection failures."""

    kind = FailureKind.TRANSIENT


class RequestError(InferenceError):
    """Non-retryable 4xx response (unknown model, bad request, auth)."""

    kind = FailureKind.REQUEST

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


class ContentError(InferenceError):
    """The endpoint answered but the payload is unusable."""

    def __init__(self, message: str, kind: FailureKind = FailureKind.EMPTY):
        super().__init__(message, kind=kind)


class RetryExhaustedError(InferenceError):
    """Every candidate model and attempt failed."""

    def __init__(self, last_error: Exception | None, attempts: int):
        kind = last_error.kind if isinstance(last_error, InferenceError) else FailureKind.UNKNOWN
        super().__init__(
            f"Inference failed after {attempts} attempts: {last_error}",
            kind=kind,
        )
        self.last_error = last_error
        self.attempts = attempts
