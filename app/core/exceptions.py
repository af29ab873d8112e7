"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.

חלוקה גסה:
- שגיאות אימות webhook (401/403/400) — נדחות מיד ולא נכנסות ל-retry ledger.
- שגיאות עיבוד (טוקן, תמלול, שירות חיצוני) — מתפשטות מה-processor
  ונרשמות ל-ledger ע"י ה-endpoint או ה-cron.
- שגיאות ledger — מעבר מצב לא חוקי או רשומה שלא קיימת.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    RATE_LIMITED = "ERR_1006"

    # Webhook authentication errors (2xxx)
    INVALID_SIGNATURE = "ERR_2001"
    INVALID_CLIENT_STATE = "ERR_2002"
    INVALID_PUBSUB_TOKEN = "ERR_2003"
    INVALID_EVENT_PAYLOAD = "ERR_2004"

    # Event processing errors (3xxx)
    TOKEN_UNAVAILABLE = "ERR_3001"
    TRANSCRIPT_UNAVAILABLE = "ERR_3002"
    UNSUPPORTED_PLATFORM = "ERR_3003"
    DRAFT_GENERATION_FAILED = "ERR_3004"

    # Retry ledger errors (4xxx)
    RETRY_ENTRY_NOT_FOUND = "ERR_4001"
    INVALID_RETRY_TRANSITION = "ERR_4002"
    DEAD_LETTER_NOT_FOUND = "ERR_4003"
    DEAD_LETTER_ALREADY_RESOLVED = "ERR_4004"

    # External service errors (5xxx)
    ZOOM_ERROR = "ERR_5001"
    GRAPH_ERROR = "ERR_5002"
    MEET_ERROR = "ERR_5003"
    ANTHROPIC_ERROR = "ERR_5004"
    SLACK_ERROR = "ERR_5005"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5006"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5007"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


# ---------------------------------------------------------------------------
# Webhook authentication
# ---------------------------------------------------------------------------

class WebhookAuthenticationError(AppException):
    """בקשת webhook ללא אימות תקין (חתימה/טוקן חסרים או שגויים) — 401"""

    def __init__(
        self,
        platform: str,
        message: str,
        error_code: ErrorCode = ErrorCode.INVALID_SIGNATURE,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=401,
            details={"platform": platform}
        )


class WebhookForbiddenError(AppException):
    """בקשת webhook מאומתת אך לא מורשית (clientState / audience שגויים) — 403"""

    def __init__(
        self,
        platform: str,
        message: str,
        error_code: ErrorCode = ErrorCode.FORBIDDEN,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=403,
            details={"platform": platform}
        )


class InvalidEventPayloadError(AppException):
    """גוף webhook שלא ניתן לפענח או חסר שדות חובה"""

    def __init__(self, platform: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_EVENT_PAYLOAD,
            status_code=400,
            details=details
        )
        self.details["platform"] = platform


# ---------------------------------------------------------------------------
# Event processing
# ---------------------------------------------------------------------------

class EventProcessingError(AppException):
    """Base exception for failures inside a platform event processor"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        platform: str,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=502,
            details=details
        )
        self.details["platform"] = platform


class TokenUnavailableError(EventProcessingError):
    """Raised when no valid OAuth token can be obtained for a platform"""

    def __init__(self, platform: str, reason: str | None = None):
        super().__init__(
            message="No valid token",
            error_code=ErrorCode.TOKEN_UNAVAILABLE,
            platform=platform,
            details={"reason": reason} if reason else None
        )


class TranscriptUnavailableError(EventProcessingError):
    """Raised when a transcript download returns no usable content"""

    def __init__(self, platform: str, meeting_ref: str):
        super().__init__(
            message=f"Transcript content is empty for {meeting_ref}",
            error_code=ErrorCode.TRANSCRIPT_UNAVAILABLE,
            platform=platform,
            details={"meeting_ref": meeting_ref}
        )


class UnsupportedPlatformError(AppException):
    """Raised when a ledger entry names a platform with no registered processor"""

    def __init__(self, platform: str):
        super().__init__(
            message=f"No processor registered for platform '{platform}'",
            error_code=ErrorCode.UNSUPPORTED_PLATFORM,
            status_code=400,
            details={"platform": platform}
        )


# ---------------------------------------------------------------------------
# Retry ledger
# ---------------------------------------------------------------------------

class RetryEntryNotFoundError(NotFoundException):
    """Raised when a webhook failure entry does not exist"""

    def __init__(self, failure_id: int):
        super().__init__(
            resource="WebhookFailure",
            identifier=failure_id,
            error_code=ErrorCode.RETRY_ENTRY_NOT_FOUND
        )


class DeadLetterNotFoundError(NotFoundException):
    """Raised when a dead letter entry does not exist"""

    def __init__(self, dead_letter_id: int):
        super().__init__(
            resource="DeadLetter",
            identifier=dead_letter_id,
            error_code=ErrorCode.DEAD_LETTER_NOT_FOUND
        )


class DeadLetterAlreadyResolvedError(AppException):
    """Raised when retrying a dead letter that was already resolved"""

    def __init__(self, dead_letter_id: int):
        super().__init__(
            message=f"Dead letter {dead_letter_id} is already resolved",
            error_code=ErrorCode.DEAD_LETTER_ALREADY_RESOLVED,
            status_code=409,
            details={"dead_letter_id": dead_letter_id}
        )


class InvalidRetryTransitionError(AppException):
    """Raised when a ledger entry is moved along an illegal transition"""

    def __init__(self, failure_id: int, current_status: str, target_status: str):
        super().__init__(
            message=f"Invalid transition from '{current_status}' to '{target_status}'",
            error_code=ErrorCode.INVALID_RETRY_TRANSITION,
            status_code=409,
            details={
                "failure_id": failure_id,
                "current_status": current_status,
                "target_status": target_status,
            }
        )


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------

class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "ExternalServiceException":
        """
        יצירת שגיאה מתוך HTTP response בצורה עקבית.

        Args:
            operation: שם הפעולה (לדוגמה: download_transcript, list_transcripts)
            response: אובייקט response (למשל httpx.Response)
            message: הודעת שגיאה מותאמת (אם לא סופק - נבנית אוטומטית)
            max_response_chars: אורך מקסימלי לשמירת response_text (מניעת לוגים גדולים)
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ZoomAPIError(ExternalServiceException):
    """Raised when the Zoom API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="zoom",
            message=f"Zoom API error: {message}",
            error_code=ErrorCode.ZOOM_ERROR,
            details=details
        )


class GraphAPIError(ExternalServiceException):
    """Raised when Microsoft Graph fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="microsoft_graph",
            message=f"Graph API error: {message}",
            error_code=ErrorCode.GRAPH_ERROR,
            details=details
        )


class MeetAPIError(ExternalServiceException):
    """Raised when the Google Meet REST API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="google_meet",
            message=f"Meet API error: {message}",
            error_code=ErrorCode.MEET_ERROR,
            details=details
        )


class DraftGenerationError(ExternalServiceException):
    """Raised when the Anthropic API fails to produce a draft"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="anthropic",
            message=f"Draft generation failed: {message}",
            error_code=ErrorCode.ANTHROPIC_ERROR,
            details=details
        )


class SlackAlertError(ExternalServiceException):
    """Raised when posting a Slack alert fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="slack",
            message=f"Slack webhook error: {message}",
            error_code=ErrorCode.SLACK_ERROR,
            details=details
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )
