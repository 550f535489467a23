"""
Pre-Registration Errors

Typed failures raised by the pre-registration services. Every error carries
an ``error_code`` and an HTTP ``status_code`` so routers can render it
without knowing the concrete class.
"""

from datetime import datetime

from iep_api.core.exceptions import ServiceError


class PreRegistrationError(ServiceError):
    """Base exception for pre-registration errors."""


# ============================================
# Validation
# ============================================


class ValidationError(PreRegistrationError):
    """Malformed input: DNI, student code, CSV row or request parameter."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(message=message, error_code=error_code, status_code=400)


class InvalidDniFormatError(ValidationError):
    """Raised when a DNI is not exactly 8 ASCII digits."""

    def __init__(self, dni: str | None = None):
        super().__init__(
            message="El DNI debe tener exactamente 8 dígitos.",
            error_code="INVALID_DNI_FORMAT",
        )
        self.dni = dni


class InvalidCodeFormatError(ValidationError):
    """Raised when a student code is not 11 characters starting with "20"."""

    def __init__(self):
        super().__init__(
            message="El código de estudiante no tiene un formato válido.",
            error_code="INVALID_CODE_FORMAT",
        )


class CodeDniMismatchError(ValidationError):
    """Raised when the DNI embedded in the code differs from the DNI given."""

    def __init__(self):
        super().__init__(
            message="El código de estudiante no corresponde al DNI ingresado.",
            error_code="CODE_DNI_MISMATCH",
        )


class CodeMismatchError(ValidationError):
    """Raised when a verification code does not match the active one."""

    def __init__(self):
        super().__init__(
            message="El código de verificación es incorrecto.",
            error_code="VERIFICATION_CODE_MISMATCH",
        )


class TamperedCodeError(PreRegistrationError):
    """Raised when the check character of a student code is wrong."""

    def __init__(self):
        super().__init__(
            message="El código de estudiante no es válido.",
            error_code="TAMPERED_CODE",
            status_code=400,
        )


# ============================================
# Duplicates
# ============================================


class DuplicateError(PreRegistrationError):
    """Base for uniqueness violations."""

    def __init__(self, message: str, error_code: str = "DUPLICATE"):
        super().__init__(message=message, error_code=error_code, status_code=409)


class DuplicateDniError(DuplicateError):
    """Raised when a pre-registration already exists for the DNI."""

    def __init__(self, dni: str):
        super().__init__(
            message=f"Ya existe un pre-registro con el DNI {dni}.",
            error_code="DUPLICATE_DNI",
        )
        self.dni = dni


# ============================================
# Expiration
# ============================================


class ExpirationError(PreRegistrationError):
    """Base for time-window failures."""


class RegistrationExpiredError(ExpirationError):
    """Raised when a pre-registration is past its ``fecha_vencimiento``."""

    def __init__(self, fecha_vencimiento: datetime):
        super().__init__(
            message=(
                f"El plazo de registro venció el {fecha_vencimiento:%d/%m/%Y}. "
                "Comunícate con la administración."
            ),
            error_code="REGISTRATION_EXPIRED",
            status_code=410,
        )
        self.fecha_vencimiento = fecha_vencimiento


class VerificationCodeExpiredError(ExpirationError):
    """Raised when the verification code is past its expiry."""

    def __init__(self):
        super().__init__(
            message="El código de verificación expiró. Solicita uno nuevo.",
            error_code="VERIFICATION_CODE_EXPIRED",
            status_code=400,
        )


# ============================================
# Throttling, lookup, state
# ============================================


class RateLimitError(PreRegistrationError):
    """Raised when a resend is requested too soon."""

    def __init__(self, retry_after_seconds: int, message: str | None = None):
        super().__init__(
            message=message
            or f"Debes esperar {retry_after_seconds} segundos antes de solicitar otro código.",
            error_code="RATE_LIMITED",
            status_code=429,
        )
        self.retry_after_seconds = retry_after_seconds


class RecordNotFoundError(PreRegistrationError):
    """Raised when no pre-registration (or no active code) exists."""

    def __init__(self, message: str = "No se encontró el pre-registro."):
        super().__init__(message=message, error_code="NOT_FOUND", status_code=404)


class TransitionError(PreRegistrationError):
    """Raised for an illegal status change."""

    def __init__(self, message: str, error_code: str = "INVALID_TRANSITION", status_code: int = 409):
        super().__init__(message=message, error_code=error_code, status_code=status_code)


class RecordUnavailableError(TransitionError):
    """Raised when a record is cancelled, suspended or already activated."""

    def __init__(self, estado: str):
        super().__init__(
            message=f"El pre-registro no está disponible (estado: {estado}).",
            error_code="RECORD_UNAVAILABLE",
            status_code=403,
        )
        self.estado = estado


class ActivationFailedError(PreRegistrationError):
    """Raised when the atomic activation could not be completed."""

    def __init__(self, message: str = "No se pudo completar el registro. Intenta nuevamente."):
        super().__init__(message=message, error_code="ACTIVATION_FAILED", status_code=500)
