"""
Core module - Configuration, database, security, email and throttling.
"""

from iep_api.core.config import get_settings, settings

__all__ = [
    "settings",
    "get_settings",
]
