"""
Student Code Validation

Checks a (student code, DNI) pair: format, embedded DNI, check character,
stored record and effective status. Read-only; nothing is written.
"""

import logging
from dataclasses import dataclass

from iep_api.core.clock import Clock, utc_now
from iep_api.core.config import settings

from . import codes
from .errors import (
    CodeDniMismatchError,
    InvalidCodeFormatError,
    InvalidDniFormatError,
    RecordNotFoundError,
    RecordUnavailableError,
    RegistrationExpiredError,
    TamperedCodeError,
)
from .helpers import mask_email, mask_phone
from .lifecycle import derive_effective_status
from .models import EffectiveStatus
from .store import PreRegistrationRecord, RecordStore

logger = logging.getLogger(__name__)

# Effective statuses under which a student may complete registration
OPEN_STATUSES = {EffectiveStatus.PENDIENTE, EffectiveStatus.POR_VENCER}


@dataclass
class ValidationResult:
    valid: bool
    record: PreRegistrationRecord
    effective_status: EffectiveStatus
    reason: str | None = None
    email_hint: str | None = None
    phone_hint: str | None = None


class ValidationService:
    """Validate student codes against the record store."""

    def __init__(
        self,
        store: RecordStore,
        clock: Clock = utc_now,
        expiring_soon_days: int | None = None,
    ):
        self.store = store
        self.clock = clock
        self.expiring_soon_days = (
            expiring_soon_days if expiring_soon_days is not None else settings.expiring_soon_days
        )

    async def validate(self, codigo_estudiante: str, dni: str) -> ValidationResult:
        """
        Validate a student code for a DNI.

        Returns:
            ValidationResult with masked contact hints on success

        Raises:
            InvalidDniFormatError: DNI is not 8 digits
            InvalidCodeFormatError: Wrong length or prefix
            CodeDniMismatchError: Code embeds a different DNI
            TamperedCodeError: Check character does not match
            RecordNotFoundError: No record for the DNI
            RecordUnavailableError: Record is activo, suspendido or cancelado
            RegistrationExpiredError: Deadline has passed
        """
        now = self.clock()
        dni = (dni or "").strip()
        if not codes.is_valid_dni(dni):
            raise InvalidDniFormatError(dni)

        code = codes.normalize(codigo_estudiante or "")
        if len(code) != codes.CODE_LENGTH or not code.startswith(codes.CODE_PREFIX):
            raise InvalidCodeFormatError()

        if codes.extract_dni(code) != dni:
            logger.warning(f"Student code does not embed DNI {dni}")
            raise CodeDniMismatchError()

        if code[-1] != codes.recompute_check(dni):
            logger.warning(f"Tampered student code presented for DNI {dni}")
            raise TamperedCodeError()

        record = await self.store.find_by_dni(dni)
        if record is None:
            raise RecordNotFoundError()

        effective = derive_effective_status(
            record.estado_registro, record.fecha_vencimiento, now, self.expiring_soon_days
        )
        if effective == EffectiveStatus.EXPIRADO:
            logger.info(f"Expired pre-registration presented: {record.id}")
            raise RegistrationExpiredError(record.fecha_vencimiento)
        if effective not in OPEN_STATUSES:
            raise RecordUnavailableError(effective.value)

        return ValidationResult(
            valid=True,
            record=record,
            effective_status=effective,
            email_hint=mask_email(record.email),
            phone_hint=mask_phone(record.telefono),
        )
