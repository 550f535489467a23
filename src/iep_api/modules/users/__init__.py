"""Users module - platform identities created at registration completion."""

from .models import User, UserRole

__all__ = ["User", "UserRole"]
