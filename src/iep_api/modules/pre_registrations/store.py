"""
Record Store Contract

Services never touch the ORM directly; they depend on ``RecordStore`` and
exchange plain dataclasses with it. ``SqlAlchemyRecordStore`` in
``repository`` is the production implementation.

Conditional writes (``expected``, ``expected_code``, ``resend_before`` and
``finalize_activation``) are compare-and-swap operations: the condition and
the write happen in one statement, and the return value says whether the
write won.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from .models import RegistrationStatus


@dataclass
class PreRegistrationRecord:
    """Snapshot of a pre-registration row."""

    id: str
    nombre: str
    apellido: str
    dni: str
    codigo_estudiante: str
    estado_registro: RegistrationStatus
    fecha_creacion: datetime
    fecha_vencimiento: datetime
    fecha_completado: datetime | None = None
    email: str | None = None
    telefono: str | None = None
    perfil_pendiente: dict[str, Any] | None = None
    codigo_verificacion: str | None = None
    codigo_verificacion_expira: datetime | None = None
    ultimo_reenvio: datetime | None = None
    intentos_reenvio: int = 0
    creado_por: str | None = None
    usuario_id: str | None = None

    @property
    def nombre_completo(self) -> str:
        return f"{self.nombre} {self.apellido}"


@dataclass(frozen=True)
class NewRecord:
    """Values for a record about to be created."""

    nombre: str
    apellido: str
    dni: str
    codigo_estudiante: str
    fecha_creacion: datetime
    fecha_vencimiento: datetime
    creado_por: str | None = None


@dataclass(frozen=True)
class ActivationProfile:
    """Everything needed to create the student's user account."""

    email: str
    password_hash: str
    first_name: str
    last_name: str
    dni: str
    phone: str | None = None


@dataclass(frozen=True)
class RecordQuery:
    """
    Listing filter. All conditions are combined with AND.

    ``vence_despues_de`` and ``vence_antes_de`` are exclusive bounds on
    ``fecha_vencimiento``; ``vence_hasta`` is inclusive.
    """

    estado: RegistrationStatus | None = None
    search: str | None = None
    vence_despues_de: datetime | None = None
    vence_antes_de: datetime | None = None
    vence_hasta: datetime | None = None
    creado_desde: datetime | None = None


@dataclass
class RecordPage:
    items: list[PreRegistrationRecord] = field(default_factory=list)
    total: int = 0


class RecordStore(Protocol):
    """Persistence operations required by the pre-registration services."""

    async def find_by_dni(self, dni: str) -> PreRegistrationRecord | None: ...

    async def find_by_code(self, codigo_estudiante: str) -> PreRegistrationRecord | None: ...

    async def find_by_id(self, record_id: str) -> PreRegistrationRecord | None: ...

    async def create(self, record: NewRecord) -> PreRegistrationRecord:
        """Insert a record. Raises DuplicateDniError if the DNI or code exists."""
        ...

    async def update_status(
        self,
        record_id: str,
        estado: RegistrationStatus,
        fecha_vencimiento: datetime | None = None,
        *,
        expected: RegistrationStatus | None = None,
        **extra: Any,
    ) -> PreRegistrationRecord | None:
        """
        Set the stored status (and optionally the deadline).

        With ``expected`` the write only happens if the current status
        matches. Returns the updated record, or None if nothing was written.
        """
        ...

    async def update_verification(
        self,
        record_id: str,
        fields: dict[str, Any],
        *,
        expected_code: str | None = None,
        resend_before: datetime | None = None,
    ) -> bool:
        """
        Write verification bookkeeping columns.

        ``expected_code`` guards on the stored code; ``resend_before`` only
        writes if ``ultimo_reenvio`` is null or not later than the given
        instant. Returns True if the row was written.
        """
        ...

    async def stage_profile(
        self,
        record_id: str,
        *,
        email: str,
        telefono: str | None,
        perfil_pendiente: dict[str, Any],
    ) -> None: ...

    async def finalize_activation(
        self,
        record_id: str,
        profile: ActivationProfile,
        now: datetime,
    ) -> PreRegistrationRecord:
        """
        Atomically create the user and flip ``pendiente`` -> ``activo``.

        Raises:
            TransitionError: The record was no longer pendiente
            DuplicateError: The email or DNI already has an account
        """
        ...

    async def list_records(self, query: RecordQuery, skip: int = 0, limit: int = 20) -> RecordPage:
        """Page of records ordered by ``fecha_creacion`` descending."""
        ...

    async def count_records(self, query: RecordQuery) -> int: ...

    async def count_by_status(self) -> dict[RegistrationStatus, int]: ...
