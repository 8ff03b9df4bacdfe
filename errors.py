"""
Error taxonomy for the chat proxy.

Each exception carries the status code and the message the caller is allowed
to see. Server-side detail (upstream status, upstream payload, configuration
problems) goes in `detail` and is only ever logged.
"""
from typing import Any, Dict, List, Optional

from fastapi.responses import JSONResponse

GENERIC_ERROR_MESSAGE = "An error occurred while processing your request. Please try again."
CONFIGURATION_ERROR_MESSAGE = "Server configuration error. Please contact support."
UPSTREAM_RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please wait a moment."
UPSTREAM_FALLBACK_MESSAGE = "Failed to get response from AI model"
DEFAULT_RETRY_AFTER_SECONDS = 60


class ProxyError(Exception):
    """Base class for every failure the proxy reports to a caller."""

    status_code: int = 500
    default_message: str = GENERIC_ERROR_MESSAGE

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail
        self.extra = extra or {}
        super().__init__(detail or self.message)

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}

    def to_response(self) -> JSONResponse:
        return JSONResponse(content=self.to_payload(), status_code=self.status_code)


class ChatValidationError(ProxyError):
    """Malformed chat request (missing messages, bad role, unreadable body)."""

    status_code = 400
    default_message = "Invalid request"


class UnknownModelError(ChatValidationError):
    """The requested model key is not in the registry."""

    def __init__(self, model_key: Any, available_models: List[str]):
        super().__init__(
            "Invalid model selected",
            detail=f"Unknown model key: {model_key!r}",
            extra={"availableModels": list(available_models)},
        )


class PayloadTooLargeError(ChatValidationError):
    status_code = 413
    default_message = "Request body too large"


class ConfigurationError(ProxyError):
    """The service is missing something it needs, e.g. the upstream credential."""

    default_message = CONFIGURATION_ERROR_MESSAGE


class UpstreamAuthError(ProxyError):
    """The provider rejected our credential. Reported to callers as a configuration error."""

    default_message = CONFIGURATION_ERROR_MESSAGE

    def __init__(self, upstream_status: int, detail: Optional[str] = None):
        super().__init__(detail=detail or f"Upstream rejected credential (status {upstream_status})")


class UpstreamRateLimited(ProxyError):
    status_code = 429
    default_message = UPSTREAM_RATE_LIMIT_MESSAGE

    def __init__(self, detail: Optional[str] = None, retry_after: int = DEFAULT_RETRY_AFTER_SECONDS):
        super().__init__(detail=detail, extra={"retryAfter": retry_after})


class UpstreamOtherError(ProxyError):
    """Any other non-success provider response; the provider status is passed through."""

    default_message = UPSTREAM_FALLBACK_MESSAGE

    def __init__(self, upstream_status: int, message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message, status_code=upstream_status, detail=detail)


class UpstreamUnavailable(ProxyError):
    """Network or transport failure talking to the provider."""

    default_message = GENERIC_ERROR_MESSAGE
