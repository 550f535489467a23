"""
Pre-Registration Repository

SQLAlchemy (async) implementation of ``RecordStore``.

- Conditional writes are single ``UPDATE ... WHERE`` statements; the
  affected row count decides whether the caller won.
- Activation flips the status and inserts the user in one transaction.
- Database failures surface as ``PersistenceError``; unique violations on
  insert as ``DuplicateDniError``.
"""

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from iep_api.core.exceptions import PersistenceError
from iep_api.modules.users.models import UserRole
from iep_api.modules.users.repository import UserRepository

from .errors import DuplicateDniError, DuplicateError, TransitionError
from .models import PreRegisteredStudent, RegistrationStatus
from .store import (
    ActivationProfile,
    NewRecord,
    PreRegistrationRecord,
    RecordPage,
    RecordQuery,
)

logger = logging.getLogger(__name__)

VERIFICATION_FIELDS = frozenset(
    {
        "codigo_verificacion",
        "codigo_verificacion_expira",
        "ultimo_reenvio",
        "intentos_reenvio",
    }
)
STATUS_EXTRA_FIELDS = frozenset({"creado_por"})


def to_record(row: PreRegisteredStudent) -> PreRegistrationRecord:
    """Convert an ORM row into a detached snapshot."""
    return PreRegistrationRecord(
        id=str(row.id),
        nombre=row.nombre,
        apellido=row.apellido,
        dni=row.dni,
        codigo_estudiante=row.codigo_estudiante,
        estado_registro=row.estado_registro,
        fecha_creacion=row.fecha_creacion,
        fecha_vencimiento=row.fecha_vencimiento,
        fecha_completado=row.fecha_completado,
        email=row.email,
        telefono=row.telefono,
        perfil_pendiente=dict(row.perfil_pendiente) if row.perfil_pendiente else None,
        codigo_verificacion=row.codigo_verificacion,
        codigo_verificacion_expira=row.codigo_verificacion_expira,
        ultimo_reenvio=row.ultimo_reenvio,
        intentos_reenvio=row.intentos_reenvio or 0,
        creado_por=str(row.creado_por) if row.creado_por else None,
        usuario_id=str(row.usuario_id) if row.usuario_id else None,
    )


def _conditions(query: RecordQuery) -> list:
    model = PreRegisteredStudent
    conditions = []

    if query.estado is not None:
        conditions.append(model.estado_registro == query.estado)
    if query.vence_despues_de is not None:
        conditions.append(model.fecha_vencimiento > query.vence_despues_de)
    if query.vence_antes_de is not None:
        conditions.append(model.fecha_vencimiento < query.vence_antes_de)
    if query.vence_hasta is not None:
        conditions.append(model.fecha_vencimiento <= query.vence_hasta)
    if query.creado_desde is not None:
        conditions.append(model.fecha_creacion >= query.creado_desde)
    if query.search:
        term = f"%{query.search.strip()}%"
        conditions.append(
            or_(
                model.nombre.ilike(term),
                model.apellido.ilike(term),
                model.dni.ilike(term),
                model.codigo_estudiante.ilike(term),
            )
        )

    return conditions


class SqlAlchemyRecordStore:
    """``RecordStore`` backed by the ``pre_registrations`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fail(self, action: str, error: SQLAlchemyError) -> PersistenceError:
        await self.db.rollback()
        logger.error(f"Database error while {action}: {error}")
        return PersistenceError()

    async def _get_row(self, record_id: str) -> PreRegisteredStudent | None:
        return await self.db.get(PreRegisteredStudent, record_id, populate_existing=True)

    # ============================================
    # Lookups
    # ============================================

    async def _find_one(self, *conditions) -> PreRegistrationRecord | None:
        try:
            result = await self.db.execute(select(PreRegisteredStudent).where(*conditions))
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._fail("looking up pre-registration", e) from e
        return to_record(row) if row else None

    async def find_by_dni(self, dni: str) -> PreRegistrationRecord | None:
        return await self._find_one(PreRegisteredStudent.dni == dni)

    async def find_by_code(self, codigo_estudiante: str) -> PreRegistrationRecord | None:
        return await self._find_one(PreRegisteredStudent.codigo_estudiante == codigo_estudiante)

    async def find_by_id(self, record_id: str) -> PreRegistrationRecord | None:
        try:
            uuid.UUID(str(record_id))
        except ValueError:
            # Not a key the UUID column can hold
            return None
        try:
            row = await self._get_row(record_id)
        except SQLAlchemyError as e:
            raise await self._fail("loading pre-registration", e) from e
        return to_record(row) if row else None

    # ============================================
    # Writes
    # ============================================

    async def create(self, record: NewRecord) -> PreRegistrationRecord:
        row = PreRegisteredStudent(
            nombre=record.nombre,
            apellido=record.apellido,
            dni=record.dni,
            codigo_estudiante=record.codigo_estudiante,
            estado_registro=RegistrationStatus.PENDIENTE,
            fecha_creacion=record.fecha_creacion,
            fecha_vencimiento=record.fecha_vencimiento,
            intentos_reenvio=0,
            creado_por=record.creado_por,
        )
        self.db.add(row)
        try:
            await self.db.commit()
            await self.db.refresh(row)
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Duplicate pre-registration rejected for DNI {record.dni}")
            raise DuplicateDniError(record.dni) from e
        except SQLAlchemyError as e:
            raise await self._fail("creating pre-registration", e) from e

        logger.info(f"Created pre-registration {row.id} for DNI {row.dni}")
        return to_record(row)

    async def _conditional_update(self, record_id: str, values: dict[str, Any], *conditions) -> bool:
        stmt = (
            update(PreRegisteredStudent)
            .where(PreRegisteredStudent.id == record_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("updating pre-registration", e) from e
        return result.rowcount == 1

    async def update_status(
        self,
        record_id: str,
        estado: RegistrationStatus,
        fecha_vencimiento: datetime | None = None,
        *,
        expected: RegistrationStatus | None = None,
        **extra: Any,
    ) -> PreRegistrationRecord | None:
        unknown = set(extra) - STATUS_EXTRA_FIELDS
        if unknown:
            raise ValueError(f"Unsupported status fields: {sorted(unknown)}")

        values: dict[str, Any] = {"estado_registro": estado, **extra}
        if fecha_vencimiento is not None:
            values["fecha_vencimiento"] = fecha_vencimiento

        conditions = []
        if expected is not None:
            conditions.append(PreRegisteredStudent.estado_registro == expected)

        if not await self._conditional_update(record_id, values, *conditions):
            return None
        return await self.find_by_id(record_id)

    async def update_verification(
        self,
        record_id: str,
        fields: dict[str, Any],
        *,
        expected_code: str | None = None,
        resend_before: datetime | None = None,
    ) -> bool:
        unknown = set(fields) - VERIFICATION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported verification fields: {sorted(unknown)}")

        model = PreRegisteredStudent
        conditions = []
        if expected_code is not None:
            conditions.append(model.codigo_verificacion == expected_code)
        if resend_before is not None:
            conditions.append(
                or_(model.ultimo_reenvio.is_(None), model.ultimo_reenvio <= resend_before)
            )

        return await self._conditional_update(record_id, fields, *conditions)

    async def stage_profile(
        self,
        record_id: str,
        *,
        email: str,
        telefono: str | None,
        perfil_pendiente: dict[str, Any],
    ) -> None:
        await self._conditional_update(
            record_id,
            {"email": email, "telefono": telefono, "perfil_pendiente": perfil_pendiente},
        )

    async def finalize_activation(
        self,
        record_id: str,
        profile: ActivationProfile,
        now: datetime,
    ) -> PreRegistrationRecord:
        model = PreRegisteredStudent
        try:
            # Row lock from here until commit: concurrent activations queue
            # behind it and then fail the status condition
            result = await self.db.execute(
                update(model)
                .where(model.id == record_id, model.estado_registro == RegistrationStatus.PENDIENTE)
                .values(estado_registro=RegistrationStatus.ACTIVO, fecha_completado=now)
                .returning(model.perfil_pendiente)
                .execution_options(synchronize_session=False)
            )
            claimed = result.one_or_none()
            if claimed is None:
                await self.db.rollback()
                raise TransitionError("El registro ya no está pendiente de activación.")

            user = await UserRepository.create(
                self.db,
                email=profile.email,
                password_hash=profile.password_hash,
                first_name=profile.first_name,
                last_name=profile.last_name,
                role=UserRole.STUDENT,
                phone=profile.phone,
                dni=profile.dni,
                is_active=True,
                is_verified=True,
            )

            # Keep the personal data, drop the credential
            remaining = {k: v for k, v in (claimed[0] or {}).items() if k != "password_hash"}
            await self.db.execute(
                update(model)
                .where(model.id == record_id)
                .values(usuario_id=user.id, perfil_pendiente=remaining or None)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Activation of {record_id} rejected: account already exists")
            raise DuplicateError(
                "Ya existe una cuenta con este correo electrónico o DNI.",
                error_code="DUPLICATE_ACCOUNT",
            ) from e
        except SQLAlchemyError as e:
            raise await self._fail("activating pre-registration", e) from e

        activated = await self.find_by_id(record_id)
        if activated is None:
            raise PersistenceError()
        return activated

    # ============================================
    # Listing
    # ============================================

    async def list_records(self, query: RecordQuery, skip: int = 0, limit: int = 20) -> RecordPage:
        conditions = _conditions(query)
        stmt = (
            select(PreRegisteredStudent)
            .where(*conditions)
            .order_by(PreRegisteredStudent.fecha_creacion.desc())
            .offset(skip)
            .limit(limit)
        )
        try:
            total = await self.count_records(query)
            result = await self.db.execute(stmt)
            rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise await self._fail("listing pre-registrations", e) from e

        return RecordPage(items=[to_record(row) for row in rows], total=total)

    async def count_records(self, query: RecordQuery) -> int:
        stmt = select(func.count()).select_from(PreRegisteredStudent).where(*_conditions(query))
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("counting pre-registrations", e) from e
        return result.scalar_one()

    async def count_by_status(self) -> dict[RegistrationStatus, int]:
        stmt = select(PreRegisteredStudent.estado_registro, func.count()).group_by(
            PreRegisteredStudent.estado_registro
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("counting pre-registrations by status", e) from e

        counts = {status: 0 for status in RegistrationStatus}
        for estado, count in result.all():
            counts[RegistrationStatus(estado)] = count
        return counts
