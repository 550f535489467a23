"""
Pre-Registration Admin Router

Admin endpoints for managing pre-registrations. All endpoints require a
bearer token with the ``admin`` role.

Endpoints:
- POST /pre-registrations/admin - Pre-register one student
- GET /pre-registrations/admin - List with filters and pagination
- GET /pre-registrations/admin/stats - Dashboard statistics
- POST /pre-registrations/admin/import-csv - Bulk import from CSV
- PATCH /pre-registrations/admin/{id}/status - Suspend, cancel or restore
- PATCH /pre-registrations/admin/{id}/reactivate - Extend an expired record
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from iep_api.core.auth import AdminUser, get_current_admin_user
from iep_api.core.exceptions import ServiceError
from iep_api.core.rate_limit import RateLimitExceeded, check_rate_limit

from .dependencies import get_admin_service, get_importer, get_lifecycle_manager
from .importer import BulkImporter
from .lifecycle import AdminLifecycleManager
from .models import EffectiveStatus
from .router import handle_service_error, internal_error
from .schemas import (
    ImportReportResponse,
    PreRegistrationCreate,
    PreRegistrationListResponse,
    PreRegistrationResponse,
    PreRegistrationStatsResponse,
    ReactivateRequest,
    StatusChangeRequest,
)
from .service import PreRegistrationService

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_CSV_BYTES = 1024 * 1024

# Rate limits for admin write endpoints
RATE_LIMIT_CREATE = (60, 60)
RATE_LIMIT_IMPORT = (5, 60)
RATE_LIMIT_STATUS = (30, 60)


async def _check_admin_rate_limit(
    admin: AdminUser,
    action: str,
    limit: int,
    window_seconds: int,
) -> None:
    """
    Check rate limit for an admin action.

    Raises:
        RateLimitExceeded: If rate limit is exceeded
    """
    key = f"admin:{action}:{admin.id}"
    if not await check_rate_limit(key, limit, window_seconds):
        logger.warning(
            f"Rate limit exceeded for admin {admin.id} on action '{action}': "
            f"{limit}/{window_seconds}s"
        )
        raise RateLimitExceeded(limit, window_seconds)


@router.post(
    "",
    response_model=PreRegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pre-register Student",
    responses={
        400: {"description": "Invalid DNI or names"},
        409: {"description": "DNI already pre-registered"},
    },
)
async def create_pre_registration(
    data: PreRegistrationCreate,
    admin: AdminUser = Depends(get_current_admin_user),
    service: PreRegistrationService = Depends(get_admin_service),
) -> PreRegistrationResponse:
    await _check_admin_rate_limit(admin, "create", *RATE_LIMIT_CREATE)
    try:
        record = await service.create_pre_registration(
            data.nombre, data.apellido, data.dni, admin_id=admin.id
        )
        return PreRegistrationResponse.from_record(record, EffectiveStatus.PENDIENTE)
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error creating pre-registration: {e}")
        raise internal_error() from e


@router.get(
    "",
    response_model=PreRegistrationListResponse,
    summary="List Pre-registrations",
    description="""
List pre-registrations newest first.

`estado` filters by display status, including the derived `expirado` and
`por_vencer`. `search` matches name, surname, DNI and student code.
""",
)
async def list_pre_registrations(
    estado: EffectiveStatus | None = Query(None, description="Filter by display status"),
    search: str | None = Query(None, min_length=1, max_length=100),
    skip: int = Query(0, ge=0, description="Records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum records to return"),
    admin: AdminUser = Depends(get_current_admin_user),
    service: PreRegistrationService = Depends(get_admin_service),
) -> PreRegistrationListResponse:
    try:
        listing = await service.list_pre_registrations(
            estado=estado, search=search, skip=skip, limit=limit
        )
        logger.info(
            f"Admin {admin.id} listed pre-registrations: "
            f"total={listing.total}, returned={len(listing.items)}"
        )
        return PreRegistrationListResponse(
            items=[
                PreRegistrationResponse.from_record(item.record, item.effective_status)
                for item in listing.items
            ],
            total=listing.total,
            skip=listing.skip,
            limit=listing.limit,
        )
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error listing pre-registrations: {e}")
        raise internal_error() from e


@router.get(
    "/stats",
    response_model=PreRegistrationStatsResponse,
    summary="Pre-registration Statistics",
)
async def get_stats(
    admin: AdminUser = Depends(get_current_admin_user),
    service: PreRegistrationService = Depends(get_admin_service),
) -> PreRegistrationStatsResponse:
    try:
        stats = await service.get_stats()
        return PreRegistrationStatsResponse.model_validate(stats)
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error getting pre-registration stats: {e}")
        raise internal_error() from e


@router.post(
    "/import-csv",
    response_model=ImportReportResponse,
    summary="Bulk Import from CSV",
    description="""
Upload a UTF-8 CSV with header `nombre,apellido,dni`.

Rows are processed independently. The report lists invalid rows, DNIs
repeated within the file and DNIs that already exist.
""",
    responses={
        400: {"description": "File is not valid CSV or lacks required columns"},
        413: {"description": "File too large"},
    },
)
async def import_csv(
    csv: UploadFile = File(..., description="CSV file"),
    admin: AdminUser = Depends(get_current_admin_user),
    importer: BulkImporter = Depends(get_importer),
) -> ImportReportResponse:
    await _check_admin_rate_limit(admin, "import", *RATE_LIMIT_IMPORT)

    content = await csv.read(MAX_CSV_BYTES + 1)
    if len(content) > MAX_CSV_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "error": "FILE_TOO_LARGE",
                "message": "El archivo supera el tamaño máximo de 1 MB.",
            },
        )

    try:
        report = await importer.import_csv(content, admin_id=admin.id)
        return ImportReportResponse.model_validate(report)
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error importing CSV: {e}")
        raise internal_error() from e


@router.patch(
    "/{record_id}/status",
    response_model=PreRegistrationResponse,
    summary="Change Pre-registration Status",
    description="""
Suspend, cancel or restore a pre-registration.

Allowed: pendiente ↔ suspendido, activo ↔ suspendido, any non-cancelled
state → cancelado. `cancelado` is final. Activation is only possible by the
student completing registration.
""",
    responses={
        404: {"description": "Pre-registration not found"},
        409: {"description": "Transition not allowed"},
    },
)
async def change_status(
    record_id: UUID,
    data: StatusChangeRequest,
    admin: AdminUser = Depends(get_current_admin_user),
    lifecycle: AdminLifecycleManager = Depends(get_lifecycle_manager),
) -> PreRegistrationResponse:
    await _check_admin_rate_limit(admin, "status", *RATE_LIMIT_STATUS)
    try:
        record = await lifecycle.change_status(str(record_id), data.estado, admin_id=admin.id)
        now = lifecycle.clock()
        return PreRegistrationResponse.from_record(record, lifecycle.effective_status(record, now))
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error changing pre-registration status: {e}")
        raise internal_error() from e


@router.patch(
    "/{record_id}/reactivate",
    response_model=PreRegistrationResponse,
    summary="Reactivate Expired Pre-registration",
    responses={
        400: {"description": "Extension outside 1-365 days"},
        404: {"description": "Pre-registration not found"},
        409: {"description": "Pre-registration is not expired"},
    },
)
async def reactivate(
    record_id: UUID,
    data: ReactivateRequest,
    admin: AdminUser = Depends(get_current_admin_user),
    lifecycle: AdminLifecycleManager = Depends(get_lifecycle_manager),
) -> PreRegistrationResponse:
    await _check_admin_rate_limit(admin, "status", *RATE_LIMIT_STATUS)
    try:
        record = await lifecycle.reactivate(
            str(record_id), dias_extension=data.dias_extension, admin_id=admin.id
        )
        now = lifecycle.clock()
        return PreRegistrationResponse.from_record(record, lifecycle.effective_status(record, now))
    except ServiceError as e:
        handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error reactivating pre-registration: {e}")
        raise internal_error() from e
