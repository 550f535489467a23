"""
Registration Completion

Two-phase self-service completion of a pre-registration:

1. ``start``: re-validate the student code, stage the profile (email,
   phone, optional personal data and the password hash) and email a
   verification code.
2. ``confirm``: consume the verification code, then atomically create the
   user account and flip the record to ``activo``.

The plaintext password only lives for the duration of ``start``; the
staged profile holds its bcrypt hash. A second ``confirm`` after
activation fails because the code was consumed.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import date

from iep_api.core.clock import Clock, utc_now
from iep_api.core.email import EmailSender, build_registration_completed_email
from iep_api.core.security import hash_password

from . import codes
from .errors import (
    ActivationFailedError,
    InvalidDniFormatError,
    PreRegistrationError,
    RecordNotFoundError,
    RegistrationExpiredError,
    ValidationError,
)
from .lifecycle import derive_effective_status
from .models import EffectiveStatus
from .store import ActivationProfile, PreRegistrationRecord, RecordStore
from .validation import ValidationService
from .verification import IssueResult, VerificationCodeService

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
PASSWORD_HASH_KEY = "password_hash"


@dataclass
class CompletionProfile:
    """Data the student supplies when completing registration."""

    email: str
    password: str
    telefono: str | None = None
    fecha_nacimiento: date | None = None
    sexo: str | None = None
    nacionalidad: str | None = None
    direccion: str | None = None
    nombre_apoderado: str | None = None
    telefono_apoderado: str | None = None

    def extra_fields(self) -> dict[str, str]:
        """Optional personal data, JSON-ready, without empty values."""
        data = asdict(self)
        for key in ("email", "password", "telefono"):
            data.pop(key)
        if self.fecha_nacimiento is not None:
            data["fecha_nacimiento"] = self.fecha_nacimiento.isoformat()
        return {key: value for key, value in data.items() if value not in (None, "")}


class RegistrationCompleter:
    """Orchestrates validation, email verification and activation."""

    def __init__(
        self,
        store: RecordStore,
        validation: ValidationService,
        verification: VerificationCodeService,
        email_sender: EmailSender | None = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.validation = validation
        self.verification = verification
        self.email_sender = email_sender
        self.clock = clock

    async def start(
        self,
        dni: str,
        codigo_estudiante: str,
        profile: CompletionProfile,
    ) -> IssueResult:
        """
        Stage the student's profile and send a verification code.

        Raises:
            Any ValidationService error for the code/DNI pair
            ValidationError: Password too short
            EmailDeliveryError: The code could not be emailed
        """
        result = await self.validation.validate(codigo_estudiante, dni)
        record = result.record

        if len(profile.password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres.",
                error_code="WEAK_PASSWORD",
            )

        # bcrypt is CPU bound
        password_hash = await asyncio.to_thread(hash_password, profile.password)

        staged = profile.extra_fields()
        staged[PASSWORD_HASH_KEY] = password_hash

        await self.store.stage_profile(
            record.id,
            email=profile.email.strip().lower(),
            telefono=profile.telefono,
            perfil_pendiente=staged,
        )
        logger.info(f"Profile staged for pre-registration {record.id}")

        return await self.verification.issue(record.id)

    async def _get_by_dni(self, dni: str) -> PreRegistrationRecord:
        dni = (dni or "").strip()
        if not codes.is_valid_dni(dni):
            raise InvalidDniFormatError(dni)
        record = await self.store.find_by_dni(dni)
        if record is None:
            raise RecordNotFoundError()
        return record

    async def resend(self, dni: str) -> IssueResult:
        """Resend the verification code for the record with this DNI."""
        record = await self._get_by_dni(dni)
        return await self.verification.resend(record.id)

    async def confirm(self, dni: str, verification_code: str) -> PreRegistrationRecord:
        """
        Verify the emailed code and activate the account.

        Returns:
            The activated record

        Raises:
            RecordNotFoundError: Unknown DNI, or no active code (already used)
            RegistrationExpiredError: Deadline passed before confirmation
            VerificationCodeExpiredError / CodeMismatchError: Bad code
            TransitionError: Record stopped being pendiente (lost race,
                suspension or cancellation)
            DuplicateError: Email or DNI already has an account
            ActivationFailedError: Activation could not be completed
        """
        now = self.clock()
        record = await self._get_by_dni(dni)

        effective = derive_effective_status(
            record.estado_registro, record.fecha_vencimiento, now
        )
        if effective == EffectiveStatus.EXPIRADO:
            raise RegistrationExpiredError(record.fecha_vencimiento)

        await self.verification.verify(record.id, verification_code, now=now)

        staged = record.perfil_pendiente or {}
        if not record.email or PASSWORD_HASH_KEY not in staged:
            logger.error(f"Pre-registration {record.id} has no staged profile to activate")
            raise ActivationFailedError()

        profile = ActivationProfile(
            email=record.email,
            password_hash=staged[PASSWORD_HASH_KEY],
            first_name=record.nombre,
            last_name=record.apellido,
            dni=record.dni,
            phone=record.telefono,
        )

        try:
            activated = await self.store.finalize_activation(record.id, profile, now)
        except PreRegistrationError:
            raise
        except Exception as e:
            logger.exception(f"Activation failed for pre-registration {record.id}: {e}")
            raise ActivationFailedError() from e

        logger.info(f"Pre-registration {record.id} activated, user {activated.usuario_id}")
        await self._send_welcome(activated)
        return activated

    async def _send_welcome(self, record: PreRegistrationRecord) -> None:
        if self.email_sender is None or not record.email:
            return
        try:
            await self.email_sender.send(
                build_registration_completed_email(
                    record.email,
                    record.nombre_completo,
                    codes.format_display(record.codigo_estudiante),
                )
            )
        except Exception as e:
            logger.error(f"Failed to send welcome email for {record.id}: {e}", exc_info=True)
