"""
Email Verification Codes

Issues and consumes 6-digit one-time codes and throttles resends.

- One active code per record: issuing overwrites any previous code.
- Codes expire after ``verification_code_ttl_minutes`` (15).
- Consumption is a compare-and-swap on the stored code, so a code can be
  used once even under concurrent requests.
- Resends: a per-record cooldown (``resend_cooldown_seconds``) enforced by
  a conditional write in the store, plus a rolling 24 h cap counted in
  Redis (``resend_daily_limit``, 0 disables). The cap fails closed when
  Redis is unavailable.

Codes are never logged.
"""

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from redis.asyncio import Redis

from iep_api.core.clock import Clock, utc_now
from iep_api.core.config import settings
from iep_api.core.email import EmailSender, build_verification_code_email
from iep_api.core.exceptions import EmailDeliveryError, PersistenceError, ServiceUnavailableError

from .errors import (
    CodeMismatchError,
    RateLimitError,
    RecordNotFoundError,
    RecordUnavailableError,
    RegistrationExpiredError,
    TransitionError,
    VerificationCodeExpiredError,
)
from .lifecycle import derive_effective_status
from .models import EffectiveStatus, RegistrationStatus
from .store import PreRegistrationRecord, RecordStore

logger = logging.getLogger(__name__)

CODE_DIGITS = 6
DAILY_WINDOW_SECONDS = 24 * 60 * 60


def generate_verification_code() -> str:
    """Random 6-digit numeric code from a CSPRNG."""
    return f"{secrets.randbelow(10**CODE_DIGITS):0{CODE_DIGITS}d}"


def _daily_key(record_id: str) -> str:
    return f"resend_code:daily:{record_id}"


@dataclass
class IssueResult:
    record_id: str
    email: str
    expires_at: datetime


class VerificationCodeService:
    """Issue, verify and resend email verification codes."""

    def __init__(
        self,
        store: RecordStore,
        email_sender: EmailSender,
        redis: Redis | None = None,
        clock: Clock = utc_now,
        code_ttl_minutes: int | None = None,
        resend_cooldown_seconds: int | None = None,
        resend_daily_limit: int | None = None,
    ):
        self.store = store
        self.email_sender = email_sender
        self.redis = redis
        self.clock = clock
        self.code_ttl = timedelta(
            minutes=code_ttl_minutes
            if code_ttl_minutes is not None
            else settings.verification_code_ttl_minutes
        )
        self.resend_cooldown = timedelta(
            seconds=resend_cooldown_seconds
            if resend_cooldown_seconds is not None
            else settings.resend_cooldown_seconds
        )
        self.resend_daily_limit = (
            resend_daily_limit if resend_daily_limit is not None else settings.resend_daily_limit
        )

    async def _get(self, record_id: str) -> PreRegistrationRecord:
        record = await self.store.find_by_id(record_id)
        if record is None:
            raise RecordNotFoundError()
        return record

    async def issue(self, record_id: str) -> IssueResult:
        """
        Generate a code, store it and email it to the record's address.

        Any previous code is overwritten. If the email cannot be sent the
        new code is cleared again and the delivery error propagates.

        Raises:
            RecordNotFoundError: Unknown record
            TransitionError: No email has been staged for the record
            EmailDeliveryError: The email provider failed
        """
        return await self._issue(await self._get(record_id), self.clock())

    async def _issue(self, record: PreRegistrationRecord, now: datetime) -> IssueResult:
        record_id = record.id
        if not record.email:
            raise TransitionError("Primero debes registrar un correo electrónico.")

        code = generate_verification_code()
        expires_at = now + self.code_ttl
        await self.store.update_verification(
            record_id,
            {"codigo_verificacion": code, "codigo_verificacion_expira": expires_at},
        )

        message = build_verification_code_email(
            to_email=record.email,
            student_name=record.nombre_completo,
            code=code,
            ttl_minutes=int(self.code_ttl.total_seconds() // 60),
        )
        try:
            await self.email_sender.send(message)
        except EmailDeliveryError:
            logger.error(f"Verification email failed for pre-registration {record_id}, clearing code")
            try:
                await self.store.update_verification(
                    record_id,
                    {"codigo_verificacion": None, "codigo_verificacion_expira": None},
                    expected_code=code,
                )
            except PersistenceError as e:
                logger.error(f"Could not clear undelivered code for {record_id}: {e}")
            raise

        logger.info(f"Verification code issued for pre-registration {record_id}")
        return IssueResult(record_id=record_id, email=record.email, expires_at=expires_at)

    async def verify(self, record_id: str, code: str, *, now: datetime | None = None) -> bool:
        """
        Consume the active code.

        Does not change ``estado_registro``; the caller finalizes.
        Pass ``now`` when verification is part of a larger operation that
        already read the clock.

        Raises:
            RecordNotFoundError: Unknown record, or no active code
            VerificationCodeExpiredError: The code is past its expiry
            CodeMismatchError: Wrong code, or it was consumed concurrently
        """
        now = now or self.clock()
        record = await self._get(record_id)

        if record.codigo_verificacion is None or record.codigo_verificacion_expira is None:
            raise RecordNotFoundError("No hay un código de verificación activo.")

        if now > record.codigo_verificacion_expira:
            logger.info(f"Expired verification code for pre-registration {record_id}")
            raise VerificationCodeExpiredError()

        if not secrets.compare_digest((code or "").strip(), record.codigo_verificacion):
            logger.warning(f"Verification code mismatch for pre-registration {record_id}")
            raise CodeMismatchError()

        consumed = await self.store.update_verification(
            record_id,
            {"codigo_verificacion": None, "codigo_verificacion_expira": None},
            expected_code=record.codigo_verificacion,
        )
        if not consumed:
            logger.warning(f"Verification code for {record_id} already consumed")
            raise CodeMismatchError()

        logger.info(f"Verification code consumed for pre-registration {record_id}")
        return True

    async def _check_daily_cap(self, record_id: str) -> None:
        if self.resend_daily_limit <= 0:
            return

        if self.redis is None:
            logger.error("Redis unavailable - resend daily cap cannot be enforced")
            raise ServiceUnavailableError()

        key = _daily_key(record_id)
        try:
            count = await self.redis.incr(key)
            if count == 1:
                await self.redis.expire(key, DAILY_WINDOW_SECONDS)
            if count <= self.resend_daily_limit:
                return
            ttl = await self.redis.ttl(key)
        except Exception as e:
            logger.error(f"Redis error while counting resends for {record_id}: {e}")
            raise ServiceUnavailableError() from e

        retry_after = ttl if ttl and ttl > 0 else DAILY_WINDOW_SECONDS
        logger.warning(f"Daily resend cap reached for pre-registration {record_id}")
        raise RateLimitError(
            retry_after,
            message="Alcanzaste el máximo de reenvíos por hoy. Intenta más tarde.",
        )

    async def resend(self, record_id: str) -> IssueResult:
        """
        Re-issue the code, respecting the cooldown and the daily cap.

        Raises:
            RateLimitError: Within the cooldown, or daily cap reached
            RecordUnavailableError: Record is not pendiente
            RegistrationExpiredError: Registration deadline has passed
            TransitionError: No verification in progress (profile not staged,
                or no code issued)
            ServiceUnavailableError: Daily cap configured but Redis is down
        """
        now = self.clock()
        record = await self._get(record_id)

        if record.estado_registro != RegistrationStatus.PENDIENTE:
            raise RecordUnavailableError(record.estado_registro.value)

        # Checked before any bookkeeping is written or the daily cap is used
        if derive_effective_status(record.estado_registro, record.fecha_vencimiento, now) == (
            EffectiveStatus.EXPIRADO
        ):
            raise RegistrationExpiredError(record.fecha_vencimiento)
        if not record.email or record.codigo_verificacion is None:
            logger.warning(f"Resend requested without a verification in progress: {record_id}")
            raise TransitionError("No hay una verificación de correo en curso para este registro.")

        if record.ultimo_reenvio is not None:
            elapsed = now - record.ultimo_reenvio
            if elapsed < self.resend_cooldown:
                retry_after = math.ceil((self.resend_cooldown - elapsed).total_seconds())
                logger.warning(f"Resend cooldown active for pre-registration {record_id}")
                raise RateLimitError(retry_after)

        await self._check_daily_cap(record_id)

        claimed = await self.store.update_verification(
            record_id,
            {"ultimo_reenvio": now, "intentos_reenvio": record.intentos_reenvio + 1},
            resend_before=now - self.resend_cooldown,
        )
        if not claimed:
            logger.warning(f"Concurrent resend rejected for pre-registration {record_id}")
            raise RateLimitError(math.ceil(self.resend_cooldown.total_seconds()))

        return await self._issue(record, now)
