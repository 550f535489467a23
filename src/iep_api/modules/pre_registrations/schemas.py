"""
Pre-Registration Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .codes import format_display
from .models import EffectiveStatus, RegistrationStatus

DNI_PATTERN = r"^[0-9]{8}$"


# ============================================
# Public (student) endpoints
# ============================================


class ValidateCodeRequest(BaseModel):
    """Request body for POST /pre-registrations/validate."""

    codigo_estudiante: str = Field(..., min_length=11, max_length=20, examples=["20-45678912-X"])
    dni: str = Field(..., pattern=DNI_PATTERN, examples=["45678912"])


class ValidateCodeResponse(BaseModel):
    valid: bool
    nombre: str
    apellido: str
    codigo_estudiante: str
    estado: EffectiveStatus
    fecha_vencimiento: datetime
    email_hint: str | None = None
    phone_hint: str | None = None


class CompleteRegistrationRequest(BaseModel):
    """Request body for POST /pre-registrations/complete."""

    codigo_estudiante: str = Field(..., min_length=11, max_length=20)
    dni: str = Field(..., pattern=DNI_PATTERN)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    telefono: str | None = Field(None, max_length=20)
    fecha_nacimiento: date | None = None
    sexo: str | None = Field(None, max_length=20)
    nacionalidad: str | None = Field(None, max_length=60)
    direccion: str | None = Field(None, max_length=255)
    nombre_apoderado: str | None = Field(None, max_length=200)
    telefono_apoderado: str | None = Field(None, max_length=20)


class VerificationSentResponse(BaseModel):
    success: bool = True
    message: str
    email_hint: str | None = None
    expires_at: datetime


class VerifyEmailRequest(BaseModel):
    """Request body for POST /pre-registrations/verify-email."""

    dni: str = Field(..., pattern=DNI_PATTERN)
    codigo: str = Field(..., pattern=r"^[0-9]{6}$")


class VerifyEmailResponse(BaseModel):
    success: bool = True
    message: str
    codigo_estudiante: str
    fecha_completado: datetime | None = None


class ResendCodeRequest(BaseModel):
    """Request body for POST /pre-registrations/resend-code."""

    dni: str = Field(..., pattern=DNI_PATTERN)


# ============================================
# Admin endpoints
# ============================================


class PreRegistrationCreate(BaseModel):
    """Request body for POST /pre-registrations/admin."""

    nombre: str = Field(..., min_length=1, max_length=100)
    apellido: str = Field(..., min_length=1, max_length=100)
    dni: str = Field(..., pattern=DNI_PATTERN)

    @field_validator("nombre", "apellido")
    @classmethod
    def strip_names(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class PreRegistrationResponse(BaseModel):
    """A pre-registration as shown to administrators."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    nombre: str
    apellido: str
    dni: str
    codigo_estudiante: str
    codigo_display: str
    estado_registro: RegistrationStatus
    estado: EffectiveStatus
    fecha_creacion: datetime
    fecha_vencimiento: datetime
    fecha_completado: datetime | None = None
    email: str | None = None
    telefono: str | None = None
    intentos_reenvio: int = 0

    @classmethod
    def from_record(cls, record: Any, estado: EffectiveStatus) -> "PreRegistrationResponse":
        return cls(
            id=record.id,
            nombre=record.nombre,
            apellido=record.apellido,
            dni=record.dni,
            codigo_estudiante=record.codigo_estudiante,
            codigo_display=format_display(record.codigo_estudiante),
            estado_registro=record.estado_registro,
            estado=estado,
            fecha_creacion=record.fecha_creacion,
            fecha_vencimiento=record.fecha_vencimiento,
            fecha_completado=record.fecha_completado,
            email=record.email,
            telefono=record.telefono,
            intentos_reenvio=record.intentos_reenvio,
        )


class PreRegistrationListResponse(BaseModel):
    items: list[PreRegistrationResponse]
    total: int
    skip: int
    limit: int


class PreRegistrationStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    pendientes: int
    activos: int
    suspendidos: int
    cancelados: int
    expirados: int
    por_vencer: int
    recientes: int


class ImportErrorItem(BaseModel):
    linea: int
    error: str
    datos: dict[str, Any]


class ExistingDniItem(BaseModel):
    dni: str
    nombre: str
    apellido: str


class ImportReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    procesados: int
    creados: int
    errores: list[ImportErrorItem]
    dnis_duplicados: list[str]
    dnis_existentes: list[ExistingDniItem]
    fecha_vencimiento: datetime | None = None


class StatusChangeRequest(BaseModel):
    """Request body for PATCH /pre-registrations/admin/{id}/status."""

    estado: RegistrationStatus


class ReactivateRequest(BaseModel):
    """Request body for PATCH /pre-registrations/admin/{id}/reactivate."""

    dias_extension: int = Field(30, ge=1, le=365)
