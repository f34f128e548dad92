"""Map OpenAI SDK exceptions onto the pipeline error taxonomy."""

import openai

from chunkscribe.domain.errors import FatalError, PipelineError, RetryableError, classify_error

_REGION_MARKERS = ("country", "region", "territory")


def classify_openai_error(exc: Exception) -> PipelineError:
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return RetryableError(message or "connection error")
    if isinstance(exc, openai.AuthenticationError):
        return FatalError("invalid_api_key", message)
    if isinstance(exc, openai.PermissionDeniedError):
        if any(marker in lowered for marker in _REGION_MARKERS):
            return FatalError("unsupported_region", message)
        return FatalError("permission_denied", message)
    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota" or "quota" in lowered:
            return FatalError("quota_exceeded", message)
        return RetryableError(message)
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500 or exc.status_code in (408, 409):
            return RetryableError(message)
        if exc.status_code == 402:
            return FatalError("quota_exceeded", message)
        return FatalError("unknown", message)
    return classify_error(exc)
