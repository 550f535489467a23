"""
Pre-Registration Dependencies

FastAPI wiring for the pre-registration services. Tests override
``get_record_store``, ``get_clock``, ``get_email_sender`` and ``get_redis``.
"""

from fastapi import Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from iep_api.core.clock import Clock, utc_now
from iep_api.core.database import get_db
from iep_api.core.email import EmailSender, get_email_sender
from iep_api.core.redis import get_redis

from .completion import RegistrationCompleter
from .importer import BulkImporter
from .lifecycle import AdminLifecycleManager
from .repository import SqlAlchemyRecordStore
from .service import PreRegistrationService
from .store import RecordStore
from .validation import ValidationService
from .verification import VerificationCodeService


def get_record_store(db: AsyncSession = Depends(get_db)) -> RecordStore:
    return SqlAlchemyRecordStore(db)


def get_clock() -> Clock:
    return utc_now


def get_validation_service(
    store: RecordStore = Depends(get_record_store),
    clock: Clock = Depends(get_clock),
) -> ValidationService:
    return ValidationService(store, clock=clock)


def get_verification_service(
    store: RecordStore = Depends(get_record_store),
    email_sender: EmailSender = Depends(get_email_sender),
    redis: Redis | None = Depends(get_redis),
    clock: Clock = Depends(get_clock),
) -> VerificationCodeService:
    return VerificationCodeService(store, email_sender, redis=redis, clock=clock)


def get_completer(
    store: RecordStore = Depends(get_record_store),
    validation: ValidationService = Depends(get_validation_service),
    verification: VerificationCodeService = Depends(get_verification_service),
    email_sender: EmailSender = Depends(get_email_sender),
    clock: Clock = Depends(get_clock),
) -> RegistrationCompleter:
    return RegistrationCompleter(
        store, validation, verification, email_sender=email_sender, clock=clock
    )


def get_lifecycle_manager(
    store: RecordStore = Depends(get_record_store),
    email_sender: EmailSender = Depends(get_email_sender),
    clock: Clock = Depends(get_clock),
) -> AdminLifecycleManager:
    return AdminLifecycleManager(store, clock=clock, email_sender=email_sender)


def get_importer(
    store: RecordStore = Depends(get_record_store),
    clock: Clock = Depends(get_clock),
) -> BulkImporter:
    return BulkImporter(store, clock=clock)


def get_admin_service(
    store: RecordStore = Depends(get_record_store),
    clock: Clock = Depends(get_clock),
) -> PreRegistrationService:
    return PreRegistrationService(store, clock=clock)
