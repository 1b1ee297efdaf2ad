from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Why an orchestration attempt produced no assistant reply."""
    AUTH_ERROR = "auth_error"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    ASSISTANT_CONFIG_ERROR = "assistant_config_error"
    PROVIDER_FAILED = "provider_failed"
    EXTRACTION_FAILED = "extraction_failed"
    UNKNOWN = "unknown"


class DenialReason(str, Enum):
    NO_SUBSCRIPTION = "no_subscription"
    EXPIRED = "expired"
    MEMBERSHIP_INACTIVE = "membership_inactive"


class GatewayError(Exception):
    """
    Base class for errors returned to API callers as structured JSON.
    Rendered by the exception handlers registered in app.main.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, detail: str, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra = {k: v for k, v in extra.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "error_code": self.error_code, **self.extra}


class Unauthorized(GatewayError):
    status_code = 401
    error_code = "unauthorized"


class Forbidden(GatewayError):
    status_code = 403
    error_code = "forbidden"

    def __init__(self, detail: str, reason: DenialReason | str | None = None, **extra: Any):
        super().__init__(detail, **extra)
        if reason is not None:
            self.error_code = reason.value if isinstance(reason, DenialReason) else reason


class NotFound(GatewayError):
    status_code = 404
    error_code = "not_found"

    def __init__(self, entity: str, detail: Optional[str] = None):
        super().__init__(detail or f"{entity.capitalize()} not found", entity=entity)
        self.entity = entity


class BadRequest(GatewayError):
    status_code = 400
    error_code = "bad_request"


class EntitlementLookupError(GatewayError):
    """The store could not be queried; never confused with a legitimate denial."""
    status_code = 500
    error_code = "subscription_check_failed"

    def __init__(self, detail: str = "Could not verify subscription"):
        super().__init__(detail)


class OrchestrationError(Exception):
    """
    A thread/run attempt that ended without an extractable reply.

    Never shown verbatim to end users: callers log it and answer with a
    fallback assistant message instead.
    """

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        code: Optional[str] = None,
        run_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.category = category
        self.message = message
        self.code = code
        self.run_id = run_id
        self.__cause__ = cause

    @property
    def diagnostic_category(self) -> str:
        """Provider error code when one was reported, otherwise our own category."""
        return self.code or self.category.value


class ProviderUnavailable(GatewayError):
    """A direct provider call (file upload or download) failed; chat turns never raise this."""
    status_code = 502
    error_code = "provider_unavailable"
