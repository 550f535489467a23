"""
Pre-Registrations Module

Admin pre-registration of students and their self-service completion:
student codes, validation, email verification, activation, bulk import and
admin lifecycle.
"""

from .admin_router import router as admin_router
from .models import EffectiveStatus, PreRegisteredStudent, RegistrationStatus
from .router import router

__all__ = [
    "EffectiveStatus",
    "PreRegisteredStudent",
    "RegistrationStatus",
    "admin_router",
    "router",
]
