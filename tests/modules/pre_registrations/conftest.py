"""
Fixtures for pre-registration tests.

``InMemoryRecordStore`` implements the record store contract, including the
compare-and-swap writes. Every method yields to the event loop first so
concurrent calls gathered in a test interleave like real database calls.
"""

import asyncio
import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from iep_api.modules.pre_registrations import codes
from iep_api.modules.pre_registrations.errors import (
    DuplicateDniError,
    DuplicateError,
    TransitionError,
)
from iep_api.modules.pre_registrations.models import RegistrationStatus
from iep_api.modules.pre_registrations.store import (
    ActivationProfile,
    NewRecord,
    PreRegistrationRecord,
    RecordPage,
    RecordQuery,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _matches(record: PreRegistrationRecord, query: RecordQuery) -> bool:
    if query.estado is not None and record.estado_registro != query.estado:
        return False
    if query.vence_despues_de is not None and not record.fecha_vencimiento > query.vence_despues_de:
        return False
    if query.vence_antes_de is not None and not record.fecha_vencimiento < query.vence_antes_de:
        return False
    if query.vence_hasta is not None and not record.fecha_vencimiento <= query.vence_hasta:
        return False
    if query.creado_desde is not None and not record.fecha_creacion >= query.creado_desde:
        return False
    if query.search:
        term = query.search.strip().lower()
        haystack = (record.nombre, record.apellido, record.dni, record.codigo_estudiante)
        if not any(term in value.lower() for value in haystack):
            return False
    return True


class InMemoryRecordStore:
    """Dict-backed record store."""

    def __init__(self):
        self.records: dict[str, PreRegistrationRecord] = {}
        self.users: dict[str, ActivationProfile] = {}
        self.fail_with: Exception | None = None
        self.fail_finalize_with: Exception | None = None

    async def _enter(self) -> None:
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with

    def add(self, record: PreRegistrationRecord) -> PreRegistrationRecord:
        self.records[record.id] = record
        return record

    def get(self, record_id: str) -> PreRegistrationRecord:
        return self.records[record_id]

    async def find_by_dni(self, dni: str) -> PreRegistrationRecord | None:
        await self._enter()
        for record in self.records.values():
            if record.dni == dni:
                return replace(record)
        return None

    async def find_by_code(self, codigo_estudiante: str) -> PreRegistrationRecord | None:
        await self._enter()
        for record in self.records.values():
            if record.codigo_estudiante == codigo_estudiante:
                return replace(record)
        return None

    async def find_by_id(self, record_id: str) -> PreRegistrationRecord | None:
        await self._enter()
        record = self.records.get(record_id)
        return replace(record) if record else None

    async def create(self, record: NewRecord) -> PreRegistrationRecord:
        await self._enter()
        if any(
            r.dni == record.dni or r.codigo_estudiante == record.codigo_estudiante
            for r in self.records.values()
        ):
            raise DuplicateDniError(record.dni)
        created = PreRegistrationRecord(
            id=str(uuid.uuid4()),
            nombre=record.nombre,
            apellido=record.apellido,
            dni=record.dni,
            codigo_estudiante=record.codigo_estudiante,
            estado_registro=RegistrationStatus.PENDIENTE,
            fecha_creacion=record.fecha_creacion,
            fecha_vencimiento=record.fecha_vencimiento,
            creado_por=record.creado_por,
        )
        self.records[created.id] = created
        return replace(created)

    async def update_status(
        self,
        record_id: str,
        estado: RegistrationStatus,
        fecha_vencimiento: datetime | None = None,
        *,
        expected: RegistrationStatus | None = None,
        **extra: Any,
    ) -> PreRegistrationRecord | None:
        await self._enter()
        record = self.records.get(record_id)
        if record is None or (expected is not None and record.estado_registro != expected):
            return None
        record.estado_registro = estado
        if fecha_vencimiento is not None:
            record.fecha_vencimiento = fecha_vencimiento
        for key, value in extra.items():
            setattr(record, key, value)
        return replace(record)

    async def update_verification(
        self,
        record_id: str,
        fields: dict[str, Any],
        *,
        expected_code: str | None = None,
        resend_before: datetime | None = None,
    ) -> bool:
        await self._enter()
        record = self.records.get(record_id)
        if record is None:
            return False
        if expected_code is not None and record.codigo_verificacion != expected_code:
            return False
        if (
            resend_before is not None
            and record.ultimo_reenvio is not None
            and record.ultimo_reenvio > resend_before
        ):
            return False
        for key, value in fields.items():
            setattr(record, key, value)
        return True

    async def stage_profile(
        self,
        record_id: str,
        *,
        email: str,
        telefono: str | None,
        perfil_pendiente: dict[str, Any],
    ) -> None:
        await self._enter()
        record = self.records[record_id]
        record.email = email
        record.telefono = telefono
        record.perfil_pendiente = dict(perfil_pendiente)

    async def finalize_activation(
        self,
        record_id: str,
        profile: ActivationProfile,
        now: datetime,
    ) -> PreRegistrationRecord:
        await self._enter()
        if self.fail_finalize_with is not None:
            raise self.fail_finalize_with
        record = self.records[record_id]
        if record.estado_registro != RegistrationStatus.PENDIENTE:
            raise TransitionError("El registro ya no está pendiente de activación.")
        if any(u.email == profile.email or u.dni == profile.dni for u in self.users.values()):
            raise DuplicateError("Ya existe una cuenta.", error_code="DUPLICATE_ACCOUNT")

        user_id = str(uuid.uuid4())
        self.users[user_id] = profile
        record.estado_registro = RegistrationStatus.ACTIVO
        record.fecha_completado = now
        record.usuario_id = user_id
        remaining = {
            k: v for k, v in (record.perfil_pendiente or {}).items() if k != "password_hash"
        }
        record.perfil_pendiente = remaining or None
        return replace(record)

    async def list_records(self, query: RecordQuery, skip: int = 0, limit: int = 20) -> RecordPage:
        await self._enter()
        matching = sorted(
            (r for r in self.records.values() if _matches(r, query)),
            key=lambda r: r.fecha_creacion,
            reverse=True,
        )
        return RecordPage(
            items=[replace(r) for r in matching[skip : skip + limit]], total=len(matching)
        )

    async def count_records(self, query: RecordQuery) -> int:
        await self._enter()
        return sum(1 for r in self.records.values() if _matches(r, query))

    async def count_by_status(self) -> dict[RegistrationStatus, int]:
        await self._enter()
        counts = {status: 0 for status in RegistrationStatus}
        for record in self.records.values():
            counts[record.estado_registro] += 1
        return counts


def build_record(
    dni: str = "45678912",
    nombre: str = "Juan",
    apellido: str = "Perez",
    created: datetime = NOW,
    window_days: int = 30,
    **overrides,
) -> PreRegistrationRecord:
    """Build a pendiente record created at ``created``."""
    values = dict(
        id=str(uuid.uuid4()),
        nombre=nombre,
        apellido=apellido,
        dni=dni,
        codigo_estudiante=codes.generate(dni),
        estado_registro=RegistrationStatus.PENDIENTE,
        fecha_creacion=created,
        fecha_vencimiento=created + timedelta(days=window_days),
    )
    values.update(overrides)
    return PreRegistrationRecord(**values)


@pytest.fixture
def clock():
    """Clock frozen at NOW."""
    return FrozenClock()


@pytest.fixture
def store():
    """Empty in-memory record store."""
    return InMemoryRecordStore()


@pytest.fixture
def record(store):
    """A fresh pendiente record for DNI 45678912."""
    return store.add(build_record())


@pytest.fixture
def staged_record(store):
    """A pendiente record whose student already supplied an email."""
    return store.add(
        build_record(
            email="juan.perez@gmail.com",
            telefono="987654789",
            perfil_pendiente={"password_hash": "$2b$10$hash", "sexo": "M"},
        )
    )


@pytest.fixture
def awaiting_record(store):
    """A staged record with a verification code already sent."""
    return store.add(
        build_record(
            email="juan.perez@gmail.com",
            telefono="987654789",
            perfil_pendiente={"password_hash": "$2b$10$hash", "sexo": "M"},
            codigo_verificacion="482913",
            codigo_verificacion_expira=NOW + timedelta(minutes=15),
        )
    )


@pytest.fixture
def email_sender():
    """Mock email sender that accepts every message."""
    sender = MagicMock()
    sender.send = AsyncMock(return_value=None)
    return sender


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis = AsyncMock()
    redis.incr = AsyncMock(return_value=1)
    redis.expire = AsyncMock()
    redis.ttl = AsyncMock(return_value=3600)
    return redis


@pytest.fixture
def now():
    """The instant the frozen clock starts at."""
    return NOW


@pytest.fixture
def make_record():
    """Factory for records; see ``build_record``."""
    return build_record
