from typing import Any, Optional


class QueueError(Exception):
    """Base exception for render queue errors."""
    pass


class JobNotFoundError(QueueError):
    def __init__(self, job_id):
        super().__init__(f"Job {job_id} not found")


class InvalidJobStateError(QueueError):
    def __init__(self, current_status, target_status):
        super().__init__(f"Cannot transition from {current_status} to {target_status}")


# --- Admission (client errors, never retried) ---

class AdmissionRejected(QueueError):
    """
    A request refused before a job exists.
    `code` is the machine-readable reason returned to clients.
    """
    status_code: int = 400
    code: str = "REJECTED"

    def __init__(self, message: str, code: Optional[str] = None, extra: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.extra}


class InvalidPayloadError(AdmissionRejected):
    status_code = 400
    code = "INVALID_PAYLOAD"


class AuthenticationError(AdmissionRejected):
    status_code = 401
    code = "AUTH_FAILED"


class AuthorizationError(AdmissionRejected):
    status_code = 403
    code = "UNAUTHORIZED"


class FeatureNotAvailableError(AuthorizationError):
    code = "FEATURE_NOT_AVAILABLE"


class QuotaExhaustedError(AdmissionRejected):
    status_code = 429
    code = "LIMIT_REACHED"


# --- Render side ---

class RenderError(QueueError):
    """Hard pipeline failure (frame faults are not raised, they degrade)."""
    pass


class StorageError(RenderError):
    pass


class PackagingError(RenderError):
    pass


class TerminalRenderError(RenderError):
    """Both the full and the fallback render raised."""
    pass


# --- Store / guard ---

class RateLimitedError(QueueError):
    status_code = 429

    def __init__(self, message: str = "rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after
