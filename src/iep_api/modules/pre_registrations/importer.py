"""
CSV Bulk Import

Creates pre-registrations from ``nombre,apellido,dni`` rows. Rows are
processed one at a time and independently: a bad row is reported and the
import continues. The result is an ``ImportReport`` accumulated row by row.
"""

import csv
import io
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from iep_api.core.clock import Clock, utc_now
from iep_api.core.config import settings
from iep_api.core.exceptions import PersistenceError

from . import codes
from .errors import DuplicateDniError, ValidationError
from .store import NewRecord, RecordStore

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("nombre", "apellido", "dni")
# Line 1 is the header
FIRST_DATA_LINE = 2


@dataclass
class ImportReport:
    procesados: int = 0
    creados: int = 0
    errores: list[dict[str, Any]] = field(default_factory=list)
    dnis_duplicados: list[str] = field(default_factory=list)
    dnis_existentes: list[dict[str, str]] = field(default_factory=list)
    fecha_vencimiento: datetime | None = None


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _row_error(nombre: str, apellido: str, dni: str) -> str | None:
    if not nombre:
        return "El nombre es obligatorio"
    if not apellido:
        return "El apellido es obligatorio"
    if not codes.is_valid_dni(dni):
        return "El DNI debe tener exactamente 8 dígitos"
    return None


def parse_csv(content: bytes | str) -> list[dict[str, str]]:
    """
    Parse CSV content into row dicts keyed by lower-cased header.

    Raises:
        ValidationError: Not UTF-8, or a required column is missing
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ValidationError(
                "El archivo debe estar codificado en UTF-8.", error_code="INVALID_CSV"
            ) from e
    else:
        content = content.lstrip("\ufeff")

    reader = csv.DictReader(io.StringIO(content))
    header = [(name or "").strip().lower() for name in (reader.fieldnames or [])]
    missing = [column for column in REQUIRED_COLUMNS if column not in header]
    if missing:
        raise ValidationError(
            f"Faltan columnas en el CSV: {', '.join(missing)}. "
            f"Encabezado esperado: {','.join(REQUIRED_COLUMNS)}",
            error_code="INVALID_CSV",
        )
    reader.fieldnames = header

    return [
        {column: _clean(row.get(column)) for column in REQUIRED_COLUMNS}
        for row in reader
        if any(_clean(value) for key, value in row.items() if key is not None)
    ]


class BulkImporter:
    """Create pre-registrations in bulk, reconciling duplicates."""

    def __init__(
        self,
        store: RecordStore,
        clock: Clock = utc_now,
        registration_window_days: int | None = None,
    ):
        self.store = store
        self.clock = clock
        self.registration_window = timedelta(
            days=registration_window_days
            if registration_window_days is not None
            else settings.registration_window_days
        )

    async def import_csv(self, content: bytes | str, admin_id: str | None = None) -> ImportReport:
        """Parse a CSV upload and import its rows."""
        return await self.import_rows(parse_csv(content), admin_id=admin_id)

    async def import_rows(
        self,
        rows: Iterable[Mapping[str, Any]],
        admin_id: str | None = None,
    ) -> ImportReport:
        """
        Import rows of ``{nombre, apellido, dni}``.

        Every row of the batch gets the same creation date and deadline.
        """
        now = self.clock()
        fecha_vencimiento = now + self.registration_window
        report = ImportReport(fecha_vencimiento=fecha_vencimiento)
        seen: set[str] = set()

        for linea, row in enumerate(rows, start=FIRST_DATA_LINE):
            report.procesados += 1
            nombre = _clean(row.get("nombre"))
            apellido = _clean(row.get("apellido"))
            dni = _clean(row.get("dni"))

            error = _row_error(nombre, apellido, dni)
            if error:
                report.errores.append({"linea": linea, "error": error, "datos": dict(row)})
                continue

            if dni in seen:
                if dni not in report.dnis_duplicados:
                    report.dnis_duplicados.append(dni)
                continue
            seen.add(dni)

            existing_entry = {"dni": dni, "nombre": nombre, "apellido": apellido}
            try:
                if await self.store.find_by_dni(dni) is not None:
                    report.dnis_existentes.append(existing_entry)
                    continue

                await self.store.create(
                    NewRecord(
                        nombre=nombre,
                        apellido=apellido,
                        dni=dni,
                        codigo_estudiante=codes.generate(dni),
                        fecha_creacion=now,
                        fecha_vencimiento=fecha_vencimiento,
                        creado_por=admin_id,
                    )
                )
            except DuplicateDniError:
                # Created concurrently since the lookup
                report.dnis_existentes.append(existing_entry)
                continue
            except PersistenceError as e:
                logger.error(f"Import row {linea} failed to persist: {e}")
                report.errores.append({"linea": linea, "error": e.message, "datos": dict(row)})
                continue

            report.creados += 1

        logger.info(
            f"Bulk import finished: procesados={report.procesados}, creados={report.creados}, "
            f"errores={len(report.errores)}, duplicados={len(report.dnis_duplicados)}, "
            f"existentes={len(report.dnis_existentes)} (admin={admin_id})"
        )
        return report
