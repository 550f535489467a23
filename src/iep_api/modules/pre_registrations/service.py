"""
Pre-Registration Admin Service

Single-record creation, paginated listing and dashboard statistics for
administrators. Bulk creation lives in ``importer``; status changes in
``lifecycle``.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from iep_api.core.clock import Clock, utc_now
from iep_api.core.config import settings

from . import codes
from .errors import InvalidDniFormatError, ValidationError
from .lifecycle import derive_effective_status, query_for_status
from .models import EffectiveStatus, RegistrationStatus
from .store import NewRecord, PreRegistrationRecord, RecordQuery, RecordStore

logger = logging.getLogger(__name__)

RECENT_DAYS = 30
MAX_PAGE_SIZE = 100


@dataclass
class ListedRecord:
    record: PreRegistrationRecord
    effective_status: EffectiveStatus


@dataclass
class RecordListing:
    items: list[ListedRecord]
    total: int
    skip: int
    limit: int


@dataclass
class PreRegistrationStats:
    total: int
    pendientes: int
    activos: int
    suspendidos: int
    cancelados: int
    expirados: int
    por_vencer: int
    recientes: int


class PreRegistrationService:
    """Admin operations over pre-registration records."""

    def __init__(
        self,
        store: RecordStore,
        clock: Clock = utc_now,
        registration_window_days: int | None = None,
        expiring_soon_days: int | None = None,
    ):
        self.store = store
        self.clock = clock
        self.registration_window = timedelta(
            days=registration_window_days
            if registration_window_days is not None
            else settings.registration_window_days
        )
        self.expiring_soon_days = (
            expiring_soon_days if expiring_soon_days is not None else settings.expiring_soon_days
        )

    async def create_pre_registration(
        self,
        nombre: str,
        apellido: str,
        dni: str,
        admin_id: str | None = None,
    ) -> PreRegistrationRecord:
        """
        Pre-register a single student.

        Raises:
            ValidationError: Empty name or surname
            InvalidDniFormatError: DNI is not 8 digits
            DuplicateDniError: A record already exists for the DNI
        """
        nombre = (nombre or "").strip()
        apellido = (apellido or "").strip()
        dni = (dni or "").strip()

        if not nombre or not apellido:
            raise ValidationError("Nombre y apellido son obligatorios.")
        if not codes.is_valid_dni(dni):
            raise InvalidDniFormatError(dni)

        now = self.clock()
        record = await self.store.create(
            NewRecord(
                nombre=nombre,
                apellido=apellido,
                dni=dni,
                codigo_estudiante=codes.generate(dni),
                fecha_creacion=now,
                fecha_vencimiento=now + self.registration_window,
                creado_por=admin_id,
            )
        )
        logger.info(f"Admin {admin_id} pre-registered DNI {dni} as {record.codigo_estudiante}")
        return record

    async def list_pre_registrations(
        self,
        estado: EffectiveStatus | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> RecordListing:
        """
        List records newest first, filtered by effective status and search.

        ``estado`` matches the display status, so ``pendiente`` excludes
        records that are ``por_vencer`` or ``expirado``.
        """
        skip = max(skip, 0)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        now = self.clock()

        query = query_for_status(estado, now, self.expiring_soon_days, search=search or None)
        page = await self.store.list_records(query, skip=skip, limit=limit)

        items = [
            ListedRecord(
                record=record,
                effective_status=derive_effective_status(
                    record.estado_registro,
                    record.fecha_vencimiento,
                    now,
                    self.expiring_soon_days,
                ),
            )
            for record in page.items
        ]
        return RecordListing(items=items, total=page.total, skip=skip, limit=limit)

    async def get_stats(self) -> PreRegistrationStats:
        """Totals per stored state plus expired, expiring-soon and recent counts."""
        now = self.clock()
        by_status = await self.store.count_by_status()

        expirados = await self.store.count_records(
            query_for_status(EffectiveStatus.EXPIRADO, now, self.expiring_soon_days)
        )
        por_vencer = await self.store.count_records(
            query_for_status(EffectiveStatus.POR_VENCER, now, self.expiring_soon_days)
        )
        recientes = await self.store.count_records(
            RecordQuery(creado_desde=now - timedelta(days=RECENT_DAYS))
        )

        return PreRegistrationStats(
            total=sum(by_status.values()),
            pendientes=by_status.get(RegistrationStatus.PENDIENTE, 0),
            activos=by_status.get(RegistrationStatus.ACTIVO, 0),
            suspendidos=by_status.get(RegistrationStatus.SUSPENDIDO, 0),
            cancelados=by_status.get(RegistrationStatus.CANCELADO, 0),
            expirados=expirados,
            por_vencer=por_vencer,
            recientes=recientes,
        )
