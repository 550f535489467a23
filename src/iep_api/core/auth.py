"""
Admin Authorization

FastAPI dependency protecting the admin pre-registration endpoints. Tokens
are issued elsewhere in the platform; this module only validates them and
checks the ``admin`` role.
"""

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from iep_api.core.security import decode_token

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for authentication",
)


@dataclass
class AdminUser:
    """
    Authenticated administrator, populated from JWT claims.

    Attributes:
        id: User id ("sub" claim)
        email: User's email address
        role: Must be "admin" for pre-registration management
        name: Display name (optional)
    """

    id: str
    email: str
    role: str
    name: str | None = None

    def __str__(self) -> str:
        return f"AdminUser(id={self.id}, email={self.email}, role={self.role})"


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def user_from_token(token: str) -> AdminUser:
    """
    Decode a bearer token into an ``AdminUser``.

    Raises:
        HTTPException 401: If the token is invalid, expired, not an access
            token, or lacks a subject
    """
    payload = decode_token(token)

    if payload is None:
        logger.warning("Invalid or expired JWT token")
        raise _unauthorized("INVALID_TOKEN", "Token de autenticación inválido o expirado.")

    if payload.get("type", "access") != "access":
        logger.warning(f"Invalid token type: {payload.get('type')}")
        raise _unauthorized("INVALID_TOKEN_TYPE", "Este endpoint requiere un token de acceso.")

    subject = payload.get("sub")
    if not subject:
        logger.warning("Token without 'sub' claim")
        raise _unauthorized("INVALID_TOKEN_CLAIMS", "El token contiene datos inválidos o incompletos.")

    return AdminUser(
        id=str(subject),
        email=payload.get("email", ""),
        role=payload.get("role", ""),
        name=payload.get("name"),
    )


async def get_current_admin_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AdminUser:
    """
    Validate the bearer token and require the admin role.

    Raises:
        HTTPException 401: Missing, invalid or expired token
        HTTPException 403: Authenticated user is not an admin
    """
    user = user_from_token(credentials.credentials)

    if user.role != ADMIN_ROLE:
        logger.warning(
            f"Access denied: User {user.id} ({user.email}) has role '{user.role}', "
            f"but '{ADMIN_ROLE}' is required"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ADMIN_ACCESS_REQUIRED",
                "message": "Se requiere acceso de administrador para este endpoint.",
            },
        )

    logger.debug(f"Authenticated admin: {user.id} ({user.email})")
    return user


__all__ = [
    "ADMIN_ROLE",
    "AdminUser",
    "get_current_admin_user",
    "user_from_token",
]
