"""
Pre-Registration Router

Public endpoints used by students to complete a pre-registration. No
authentication: the student code and DNI identify the record, and the
emailed verification code proves control of the address.

Endpoints:
- POST /pre-registrations/validate - Check a student code
- POST /pre-registrations/complete - Stage profile and email a code
- POST /pre-registrations/verify-email - Confirm the code and activate
- POST /pre-registrations/resend-code - Request a new code

Security:
- Per-IP rate limits on every endpoint (code guessing)
- Per-record resend cooldown and daily cap
- Contact data in responses is masked
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from iep_api.core.exceptions import ServiceError
from iep_api.core.rate_limit import rate_limit

from .codes import format_display
from .completion import CompletionProfile, RegistrationCompleter
from .dependencies import get_completer, get_validation_service
from .errors import RateLimitError
from .helpers import mask_email
from .schemas import (
    CompleteRegistrationRequest,
    ResendCodeRequest,
    ValidateCodeRequest,
    ValidateCodeResponse,
    VerificationSentResponse,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from .validation import ValidationService

logger = logging.getLogger(__name__)

router = APIRouter()

# (requests, window seconds) per client IP
RATE_LIMIT_VALIDATE = (10, 60)
RATE_LIMIT_COMPLETE = (5, 60)
RATE_LIMIT_VERIFY = (10, 60)
RATE_LIMIT_RESEND = (5, 60)


def handle_service_error(e: ServiceError) -> None:
    """Convert service errors to HTTPExceptions."""
    headers = None
    if isinstance(e, RateLimitError):
        headers = {"Retry-After": str(e.retry_after_seconds)}
    raise HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
        headers=headers,
    )


def internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "Ocurrió un error inesperado.",
        },
    )


@router.post(
    "/validate",
    response_model=ValidateCodeResponse,
    summary="Validate Student Code",
    description="""
Check a student code against a DNI before completing registration.

Accepts the code with or without dashes (`20-45678912-X` or `2045678912X`).
Returns the student's name and masked contact hints. Nothing is modified.
""",
    responses={
        400: {"description": "Malformed or tampered code, or code/DNI mismatch"},
        403: {"description": "Record is already active, suspended or cancelled"},
        404: {"description": "No pre-registration for this DNI"},
        410: {"description": "Registration deadline has passed"},
        429: {"description": "Too many requests"},
    },
    dependencies=[Depends(rate_limit("validate", *RATE_LIMIT_VALIDATE))],
)
async def validate_code(
    data: ValidateCodeRequest,
    validation: ValidationService = Depends(get_validation_service),
) -> ValidateCodeResponse:
    try:
        result = await validation.validate(data.codigo_estudiante, data.dni)
        record = result.record
        return ValidateCodeResponse(
            valid=result.valid,
            nombre=record.nombre,
            apellido=record.apellido,
            codigo_estudiante=format_display(record.codigo_estudiante),
            estado=result.effective_status,
            fecha_vencimiento=record.fecha_vencimiento,
            email_hint=result.email_hint,
            phone_hint=result.phone_hint,
        )
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error validating student code: {e}")
        raise internal_error() from e


@router.post(
    "/complete",
    response_model=VerificationSentResponse,
    summary="Start Registration Completion",
    description="""
Submit the student's email, password and optional personal data.

The code and DNI are validated again, the profile is stored as pending and a
6-digit verification code is emailed. The code expires in 15 minutes.
""",
    responses={
        400: {"description": "Invalid code, DNI or password"},
        403: {"description": "Record is not available"},
        404: {"description": "No pre-registration for this DNI"},
        410: {"description": "Registration deadline has passed"},
        502: {"description": "Verification email could not be sent"},
    },
    dependencies=[Depends(rate_limit("complete", *RATE_LIMIT_COMPLETE))],
)
async def complete_registration(
    data: CompleteRegistrationRequest,
    completer: RegistrationCompleter = Depends(get_completer),
) -> VerificationSentResponse:
    profile = CompletionProfile(
        email=data.email,
        password=data.password,
        telefono=data.telefono,
        fecha_nacimiento=data.fecha_nacimiento,
        sexo=data.sexo,
        nacionalidad=data.nacionalidad,
        direccion=data.direccion,
        nombre_apoderado=data.nombre_apoderado,
        telefono_apoderado=data.telefono_apoderado,
    )
    try:
        issued = await completer.start(data.dni, data.codigo_estudiante, profile)
        return VerificationSentResponse(
            message="Enviamos un código de verificación a tu correo.",
            email_hint=mask_email(issued.email),
            expires_at=issued.expires_at,
        )
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error starting registration completion: {e}")
        raise internal_error() from e


@router.post(
    "/verify-email",
    response_model=VerifyEmailResponse,
    summary="Verify Email and Activate Account",
    description="""
Confirm the 6-digit code sent by email. On success the student's account is
created and the pre-registration becomes `activo`. Codes are single use.
""",
    responses={
        400: {"description": "Wrong or expired code"},
        404: {"description": "No active code for this DNI"},
        409: {"description": "Record is no longer pending, or account exists"},
        500: {"description": "Activation failed"},
    },
    dependencies=[Depends(rate_limit("verify", *RATE_LIMIT_VERIFY))],
)
async def verify_email(
    data: VerifyEmailRequest,
    completer: RegistrationCompleter = Depends(get_completer),
) -> VerifyEmailResponse:
    try:
        record = await completer.confirm(data.dni, data.codigo)
        return VerifyEmailResponse(
            message="Tu registro se completó correctamente.",
            codigo_estudiante=format_display(record.codigo_estudiante),
            fecha_completado=record.fecha_completado,
        )
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error verifying email: {e}")
        raise internal_error() from e


@router.post(
    "/resend-code",
    response_model=VerificationSentResponse,
    summary="Resend Verification Code",
    description="""
Send a new verification code, replacing the previous one.

Limited to one request per minute per record and a daily maximum. When
limited, the response carries a `Retry-After` header.
""",
    responses={
        403: {"description": "Record is not pending"},
        404: {"description": "No pre-registration for this DNI"},
        429: {"description": "Cooldown active or daily limit reached"},
        503: {"description": "Rate limiting service unavailable"},
    },
    dependencies=[Depends(rate_limit("resend", *RATE_LIMIT_RESEND))],
)
async def resend_code(
    data: ResendCodeRequest,
    completer: RegistrationCompleter = Depends(get_completer),
) -> VerificationSentResponse:
    try:
        issued = await completer.resend(data.dni)
        return VerificationSentResponse(
            message="Enviamos un nuevo código de verificación a tu correo.",
            email_hint=mask_email(issued.email),
            expires_at=issued.expires_at,
        )
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error resending verification code: {e}")
        raise internal_error() from e
