"""
Error taxonomy and the result type returned by business services.

Services return a ServiceResult for business-rule outcomes. Routes turn a
failed result into an AppError, which the app renders as the standard error
envelope. Unexpected failures are raised as ordinary exceptions.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ErrorCode(str, enum.Enum):
    """Stable, machine-readable error codes returned to clients."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    SESSION_REQUIRED = "SESSION_REQUIRED"
    INVALID_SESSION = "INVALID_SESSION"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    CSRF_TOKEN_INVALID = "CSRF_TOKEN_INVALID"
    RATE_LIMITED = "RATE_LIMITED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_TOKEN = "INVALID_TOKEN"
    NOT_FOUND = "NOT_FOUND"
    REGISTRATION_CLOSED = "REGISTRATION_CLOSED"
    DUPLICATE_REGISTRATION = "DUPLICATE_REGISTRATION"
    GAME_FULL = "GAME_FULL"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    CANCELLATION_NOT_ALLOWED = "CANCELLATION_NOT_ALLOWED"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    INVALID_GAME_STATE = "INVALID_GAME_STATE"
    WEBHOOK_VERIFICATION_FAILED = "WEBHOOK_VERIFICATION_FAILED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    SERVER_ERROR = "SERVER_ERROR"


ERROR_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.SESSION_REQUIRED: 401,
    ErrorCode.INVALID_SESSION: 401,
    ErrorCode.INSUFFICIENT_PERMISSIONS: 403,
    ErrorCode.CSRF_TOKEN_INVALID: 403,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.INVALID_TOKEN: 404,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.REGISTRATION_CLOSED: 400,
    ErrorCode.DUPLICATE_REGISTRATION: 409,
    ErrorCode.GAME_FULL: 409,
    ErrorCode.ALREADY_CANCELLED: 409,
    ErrorCode.CANCELLATION_NOT_ALLOWED: 403,
    ErrorCode.INVALID_STATUS_TRANSITION: 400,
    ErrorCode.INVALID_GAME_STATE: 400,
    ErrorCode.WEBHOOK_VERIFICATION_FAILED: 403,
    ErrorCode.INVALID_SIGNATURE: 401,
    ErrorCode.SERVER_ERROR: 500,
}

DEFAULT_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_ERROR: "Datos de entrada inválidos",
    ErrorCode.INVALID_CREDENTIALS: "Usuario o contraseña incorrectos",
    ErrorCode.SESSION_REQUIRED: "Sesión requerida",
    ErrorCode.INVALID_SESSION: "Sesión inválida o expirada",
    ErrorCode.INSUFFICIENT_PERMISSIONS: "Permisos insuficientes",
    ErrorCode.CSRF_TOKEN_INVALID: "Token CSRF inválido o faltante",
    ErrorCode.RATE_LIMITED: "Demasiados intentos de inicio de sesión. Inténtalo de nuevo más tarde.",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Demasiadas solicitudes. Inténtalo de nuevo más tarde.",
    ErrorCode.INVALID_TOKEN: "Enlace inválido o expirado",
    ErrorCode.NOT_FOUND: "Recurso no encontrado",
    ErrorCode.SERVER_ERROR: "Error interno del servidor",
}


class AppError(Exception):
    """Base application error carrying an HTTP status and a stable code."""

    status_code = 500
    default_code = ErrorCode.SERVER_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.code = code or self.default_code
        self.message = message or DEFAULT_MESSAGES.get(self.code, DEFAULT_MESSAGES[ErrorCode.SERVER_ERROR])
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": False,
            "error": self.message,
            "message": self.message,
            "code": self.code.value,
        }
        body.update(self.extra)
        return body


class ValidationError(AppError):
    status_code = 400
    default_code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        if field:
            self.extra.setdefault("field", field)


class AuthenticationError(AppError):
    status_code = 401
    default_code = ErrorCode.INVALID_SESSION


class AuthorizationError(AppError):
    status_code = 403
    default_code = ErrorCode.INSUFFICIENT_PERMISSIONS


class NotFoundError(AppError):
    status_code = 404
    default_code = ErrorCode.NOT_FOUND


class ConflictError(AppError):
    status_code = 409
    default_code = ErrorCode.DUPLICATE_REGISTRATION


class RateLimitError(AppError):
    status_code = 429
    default_code = ErrorCode.RATE_LIMITED

    def __init__(self, retry_after: int, message: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = max(int(retry_after), 1)
        self.extra.setdefault("retry_after", self.retry_after)


class ServerError(AppError):
    status_code = 500
    default_code = ErrorCode.SERVER_ERROR


class HashingError(Exception):
    """Raised when a password cannot be hashed."""


_ERROR_CLASSES = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
}


@dataclass
class ServiceResult:
    """Tagged outcome of a business operation."""

    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[ErrorCode] = None

    @classmethod
    def ok(cls, message: str, **data) -> "ServiceResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error_code: ErrorCode, message: Optional[str] = None) -> "ServiceResult":
        return cls(
            success=False,
            message=message or DEFAULT_MESSAGES.get(error_code, error_code.value),
            error_code=error_code,
        )

    @property
    def status_code(self) -> int:
        if self.success:
            return 200
        return ERROR_STATUS.get(self.error_code, 500)


def raise_for_result(result: ServiceResult) -> ServiceResult:
    """
    Raise the AppError matching a failed result; return successful results unchanged.

    Args:
        result: Outcome returned by a service function

    Returns:
        The same result when it succeeded

    Raises:
        AppError: Subclass chosen from the error code's HTTP status
    """
    if result.success:
        return result
    status_code = result.status_code
    error_class = _ERROR_CLASSES.get(status_code, ServerError)
    raise error_class(result.message, code=result.error_code, status_code=status_code)
