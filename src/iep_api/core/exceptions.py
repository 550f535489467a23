"""
Service Exceptions

Base error shape shared by every service module, plus the collaborator
failures (database, email, Redis) that services surface unchanged.
"""


class ServiceError(Exception):
    """Base exception carrying an error code and an HTTP status."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(ServiceError):
    """Raised when the record store fails or times out."""

    def __init__(
        self,
        message: str = "El servicio de registros no está disponible. Intenta nuevamente más tarde.",
    ):
        super().__init__(message=message, error_code="PERSISTENCE_ERROR", status_code=503)


class EmailDeliveryError(ServiceError):
    """Raised when the email provider rejects or fails to send a message."""

    def __init__(self, message: str = "No se pudo enviar el correo. Intenta nuevamente."):
        super().__init__(message=message, error_code="EMAIL_DELIVERY_ERROR", status_code=502)


class ServiceUnavailableError(ServiceError):
    """Raised when a required dependency (Redis) is not available."""

    def __init__(
        self,
        message: str = "Servicio no disponible temporalmente. Intenta nuevamente más tarde.",
    ):
        super().__init__(message=message, error_code="SERVICE_UNAVAILABLE", status_code=503)
