"""
Pre-Registration Models

The ``pre_registrations`` table and its status vocabulary.
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import ENUM, JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from iep_api.modules.shared import BaseModel


class RegistrationStatus(str, enum.Enum):
    """Persisted registration state."""

    PENDIENTE = "pendiente"
    ACTIVO = "activo"
    SUSPENDIDO = "suspendido"
    CANCELADO = "cancelado"


class EffectiveStatus(str, enum.Enum):
    """Display state: the persisted states plus the two derived from time."""

    PENDIENTE = "pendiente"
    POR_VENCER = "por_vencer"
    EXPIRADO = "expirado"
    ACTIVO = "activo"
    SUSPENDIDO = "suspendido"
    CANCELADO = "cancelado"


class PreRegisteredStudent(BaseModel):
    """
    A student pre-registered by an administrator.

    ``codigo_estudiante`` is derived from ``dni`` and both are unique. Rows
    are never deleted; cancellation is a status.
    """

    __tablename__ = "pre_registrations"

    nombre: Mapped[str] = mapped_column(String(100), nullable=False)
    apellido: Mapped[str] = mapped_column(String(100), nullable=False)
    dni: Mapped[str] = mapped_column(String(8), unique=True, nullable=False)
    codigo_estudiante: Mapped[str] = mapped_column(String(11), unique=True, nullable=False)

    estado_registro: Mapped[RegistrationStatus] = mapped_column(
        ENUM(
            RegistrationStatus,
            name="registration_status",
            create_type=True,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=RegistrationStatus.PENDIENTE,
    )

    fecha_creacion: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    fecha_vencimiento: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    fecha_completado: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Supplied by the student during completion
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    telefono: Mapped[str | None] = mapped_column(String(20), nullable=True)
    perfil_pendiente: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # One active verification code at most
    codigo_verificacion: Mapped[str | None] = mapped_column(String(6), nullable=True)
    codigo_verificacion_expira: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ultimo_reenvio: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    intentos_reenvio: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    creado_por: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    usuario_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_pre_registrations_estado_vencimiento", "estado_registro", "fecha_vencimiento"),
        Index("ix_pre_registrations_fecha_creacion", "fecha_creacion"),
    )

    def __repr__(self) -> str:
        return (
            f"<PreRegisteredStudent(id={self.id}, dni={self.dni}, "
            f"estado={self.estado_registro.value})>"
        )
