"""
Pre-Registration Lifecycle

Derives the display status of a record from its stored status and the
current time, and performs the explicit admin transitions (suspend, cancel,
restore, reactivate).

Stored states: pendiente, activo, suspendido, cancelado. ``expirado`` and
``por_vencer`` are derived from ``fecha_vencimiento`` and only ever layered
on ``pendiente``; they are never persisted.
"""

import logging
from datetime import datetime, timedelta

from iep_api.core.clock import Clock, utc_now
from iep_api.core.config import settings
from iep_api.core.email import EmailSender, build_status_change_email

from .errors import RecordNotFoundError, TransitionError, ValidationError
from .models import EffectiveStatus, RegistrationStatus
from .store import PreRegistrationRecord, RecordQuery, RecordStore

logger = logging.getLogger(__name__)

MIN_EXTENSION_DAYS = 1
MAX_EXTENSION_DAYS = 365

# pendiente -> activo is not listed: only registration completion performs it
VALID_STATUS_TRANSITIONS: dict[RegistrationStatus, set[RegistrationStatus]] = {
    RegistrationStatus.PENDIENTE: {
        RegistrationStatus.SUSPENDIDO,
        RegistrationStatus.CANCELADO,
    },
    RegistrationStatus.ACTIVO: {
        RegistrationStatus.SUSPENDIDO,
        RegistrationStatus.CANCELADO,
    },
    RegistrationStatus.SUSPENDIDO: {
        RegistrationStatus.PENDIENTE,  # restore, never completed
        RegistrationStatus.ACTIVO,  # restore, completed before suspension
        RegistrationStatus.CANCELADO,
    },
    # Terminal
    RegistrationStatus.CANCELADO: set(),
}

STATUS_LABELS: dict[str, str] = {
    "pendiente": "Pendiente",
    "por_vencer": "Por vencer",
    "expirado": "Expirado",
    "activo": "Activo",
    "suspendido": "Suspendido",
    "cancelado": "Cancelado",
}


def derive_effective_status(
    estado: RegistrationStatus,
    fecha_vencimiento: datetime,
    now: datetime,
    expiring_soon_days: int = 7,
) -> EffectiveStatus:
    """
    Compute the display status of a record.

    On ``pendiente`` only: ``expirado`` if now is past the deadline,
    ``por_vencer`` if the deadline is in the future but within
    ``expiring_soon_days``. Other stored states are returned unchanged.
    """
    if estado != RegistrationStatus.PENDIENTE:
        return EffectiveStatus(estado.value)

    if now > fecha_vencimiento:
        return EffectiveStatus.EXPIRADO

    remaining = fecha_vencimiento - now
    if timedelta(0) < remaining <= timedelta(days=expiring_soon_days):
        return EffectiveStatus.POR_VENCER

    return EffectiveStatus.PENDIENTE


def query_for_status(
    status: EffectiveStatus | None,
    now: datetime,
    expiring_soon_days: int = 7,
    search: str | None = None,
) -> RecordQuery:
    """
    Translate an effective-status filter into a store query.

    The three pendiente-derived filters partition stored ``pendiente``
    records by deadline, matching ``derive_effective_status``.
    """
    soon = now + timedelta(days=expiring_soon_days)

    if status is None:
        return RecordQuery(search=search)
    if status == EffectiveStatus.EXPIRADO:
        return RecordQuery(
            estado=RegistrationStatus.PENDIENTE, search=search, vence_antes_de=now
        )
    if status == EffectiveStatus.POR_VENCER:
        return RecordQuery(
            estado=RegistrationStatus.PENDIENTE,
            search=search,
            vence_despues_de=now,
            vence_hasta=soon,
        )
    if status == EffectiveStatus.PENDIENTE:
        return RecordQuery(
            estado=RegistrationStatus.PENDIENTE, search=search, vence_despues_de=soon
        )
    return RecordQuery(estado=RegistrationStatus(status.value), search=search)


class AdminLifecycleManager:
    """Explicit admin transitions over pre-registration records."""

    def __init__(
        self,
        store: RecordStore,
        clock: Clock = utc_now,
        email_sender: EmailSender | None = None,
        expiring_soon_days: int | None = None,
    ):
        self.store = store
        self.clock = clock
        self.email_sender = email_sender
        self.expiring_soon_days = (
            expiring_soon_days if expiring_soon_days is not None else settings.expiring_soon_days
        )

    def effective_status(self, record: PreRegistrationRecord, now: datetime) -> EffectiveStatus:
        return derive_effective_status(
            record.estado_registro, record.fecha_vencimiento, now, self.expiring_soon_days
        )

    async def _get(self, record_id: str) -> PreRegistrationRecord:
        record = await self.store.find_by_id(record_id)
        if record is None:
            logger.warning(f"Pre-registration not found: {record_id}")
            raise RecordNotFoundError()
        return record

    @staticmethod
    def _check_transition(record: PreRegistrationRecord, target: RegistrationStatus) -> None:
        current = record.estado_registro
        allowed = VALID_STATUS_TRANSITIONS.get(current, set())

        if target not in allowed:
            raise TransitionError(
                f"No se puede cambiar el estado de '{current.value}' a '{target.value}'."
            )

        # Restoring a suspension returns the record to where it was
        if current == RegistrationStatus.SUSPENDIDO and target != RegistrationStatus.CANCELADO:
            previous = (
                RegistrationStatus.ACTIVO
                if record.fecha_completado is not None
                else RegistrationStatus.PENDIENTE
            )
            if target != previous:
                raise TransitionError(
                    f"Un registro suspendido solo puede restaurarse a '{previous.value}'."
                )

    async def change_status(
        self,
        record_id: str,
        target: RegistrationStatus,
        admin_id: str | None = None,
    ) -> PreRegistrationRecord:
        """
        Move a record to ``target`` if the transition table allows it.

        Raises:
            RecordNotFoundError: Unknown record
            TransitionError: Illegal transition, or the record changed
                concurrently
        """
        record = await self._get(record_id)
        self._check_transition(record, target)

        updated = await self.store.update_status(
            record_id, target, expected=record.estado_registro
        )
        if updated is None:
            logger.warning(f"Concurrent status change on pre-registration {record_id}")
            raise TransitionError("El registro fue modificado por otra operación. Intenta nuevamente.")

        logger.info(
            f"Pre-registration {record_id} status: {record.estado_registro.value} -> "
            f"{target.value} (admin={admin_id})"
        )
        await self._notify(updated, STATUS_LABELS[target.value])
        return updated

    async def suspend(self, record_id: str, admin_id: str | None = None) -> PreRegistrationRecord:
        return await self.change_status(record_id, RegistrationStatus.SUSPENDIDO, admin_id)

    async def cancel(self, record_id: str, admin_id: str | None = None) -> PreRegistrationRecord:
        return await self.change_status(record_id, RegistrationStatus.CANCELADO, admin_id)

    async def restore(self, record_id: str, admin_id: str | None = None) -> PreRegistrationRecord:
        """Lift a suspension, returning to activo if completed, else pendiente."""
        record = await self._get(record_id)
        if record.estado_registro != RegistrationStatus.SUSPENDIDO:
            raise TransitionError("Solo se pueden restaurar registros suspendidos.")

        target = (
            RegistrationStatus.ACTIVO
            if record.fecha_completado is not None
            else RegistrationStatus.PENDIENTE
        )
        return await self.change_status(record_id, target, admin_id)

    async def reactivate(
        self,
        record_id: str,
        dias_extension: int = 30,
        admin_id: str | None = None,
    ) -> PreRegistrationRecord:
        """
        Give an expired record a new deadline.

        Only allowed when the effective status is ``expirado``. Sets
        ``fecha_vencimiento = now + dias_extension`` and records the admin
        in ``creado_por``.

        Raises:
            ValidationError: dias_extension outside 1..365
            TransitionError: Record is not expired
        """
        if (
            isinstance(dias_extension, bool)
            or not isinstance(dias_extension, int)
            or not MIN_EXTENSION_DAYS <= dias_extension <= MAX_EXTENSION_DAYS
        ):
            raise ValidationError(
                f"Los días de extensión deben estar entre {MIN_EXTENSION_DAYS} y {MAX_EXTENSION_DAYS}.",
                error_code="INVALID_EXTENSION",
            )

        now = self.clock()
        record = await self._get(record_id)

        effective = self.effective_status(record, now)
        if effective != EffectiveStatus.EXPIRADO:
            logger.warning(
                f"Cannot reactivate pre-registration {record_id}: status={effective.value}"
            )
            raise TransitionError(
                f"Solo se pueden reactivar registros expirados (estado actual: {effective.value})."
            )

        new_deadline = now + timedelta(days=dias_extension)
        extra = {"creado_por": admin_id} if admin_id else {}
        updated = await self.store.update_status(
            record_id,
            RegistrationStatus.PENDIENTE,
            new_deadline,
            expected=RegistrationStatus.PENDIENTE,
            **extra,
        )
        if updated is None:
            raise TransitionError("El registro fue modificado por otra operación. Intenta nuevamente.")

        logger.info(
            f"Pre-registration {record_id} reactivated until {new_deadline.isoformat()} "
            f"(+{dias_extension} days, admin={admin_id})"
        )
        await self._notify(updated, STATUS_LABELS["pendiente"], new_deadline)
        return updated

    async def _notify(
        self,
        record: PreRegistrationRecord,
        status_label: str,
        fecha_vencimiento: datetime | None = None,
    ) -> None:
        if self.email_sender is None or not record.email:
            return
        try:
            await self.email_sender.send(
                build_status_change_email(
                    record.email, record.nombre_completo, status_label, fecha_vencimiento
                )
            )
        except Exception as e:
            # Status change is already persisted; the notice is best effort
            logger.error(f"Failed to send status change email for {record.id}: {e}", exc_info=True)
