"""Error taxonomy shared by every pipeline stage.

PipelineCancelled   user abort; propagates, never reported as a failure
RetryableError      transient (timeout, rate limit, 5xx, malformed output)
FatalError          auth, quota, region; no retry, carries an actionable message
"""

import asyncio
from typing import Optional

FATAL_MESSAGES = {
    "invalid_api_key": "The API key was rejected. Check OPENAI_API_KEY and try again.",
    "permission_denied": "The API key lacks permission for this model.",
    "quota_exceeded": "The account quota or billing limit has been reached.",
    "unsupported_region": "The inference service is not available in this region.",
    "unknown": "The inference service rejected the request.",
}


class PipelineError(Exception):
    """Base class for classified pipeline errors."""


class PipelineCancelled(PipelineError):
    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class RetryableError(PipelineError):
    """A transient failure that may succeed on another attempt."""


class MalformedOutputError(RetryableError):
    """Structured output could not be parsed into the requested schema.

    usage carries the billed tokens of the rejected response, when known.
    """

    def __init__(self, message: str = "malformed output", usage=None):
        super().__init__(message)
        self.usage = usage


class FatalError(PipelineError):
    def __init__(self, code: str = "unknown", detail: Optional[str] = None):
        self.code = code if code in FATAL_MESSAGES else "unknown"
        self.detail = detail
        super().__init__(detail or FATAL_MESSAGES[self.code])

    @property
    def user_message(self) -> str:
        return FATAL_MESSAGES[self.code]


TRANSIENT_MARKERS = (
    "timeout", "timed out", "429", "rate limit", "resource has been exhausted",
    "500", "502", "503", "504", "overloaded", "unavailable", "connection reset",
    "connection error", "econnreset",
)


def classify_error(exc: BaseException) -> PipelineError:
    """Map an arbitrary exception onto the taxonomy.

    Already-classified errors pass through unchanged; unknown exceptions are
    classified by message and default to fatal.
    """
    if isinstance(exc, PipelineError):
        return exc
    if isinstance(exc, asyncio.CancelledError):
        return PipelineCancelled("task cancelled")
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return RetryableError(str(exc) or type(exc).__name__)
    message = str(exc).lower()
    if any(marker in message for marker in TRANSIENT_MARKERS):
        return RetryableError(str(exc))
    return FatalError("unknown", str(exc))


def is_retryable(exc: BaseException) -> bool:
    return isinstance(classify_error(exc), RetryableError)


def actionable_message(exc: BaseException) -> str:
    """A message suitable for the progress sink."""
    if isinstance(exc, FatalError):
        return exc.user_message if exc.detail is None else f"{exc.user_message} ({exc.detail})"
    return str(exc) or type(exc).__name__
