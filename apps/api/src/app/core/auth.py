"""
Authentication and Authorization Module

FastAPI dependencies that turn a Bearer token into an authenticated officer.
Officer accounts and token issuance live in the external authentication
service; the permit core trusts the identity carried by a valid token as-is.

SECURITY NOTE:
- Development test tokens are ONLY accepted when PYTHON_ENV=development
- Staging and production environments never accept test tokens
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.security import decode_token

logger = logging.getLogger(__name__)

security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token issued by the authentication service",
)


class OfficerRole(str, Enum):
    """Staff roles recognised by the permit core."""

    OFFICER = "officer"
    SUPERVISOR = "supervisor"
    DIRECTOR = "director"
    ADMIN = "admin"


# Roles allowed to run compliance sweeps on demand
SUPERVISOR_ROLES = {OfficerRole.SUPERVISOR, OfficerRole.DIRECTOR, OfficerRole.ADMIN}


@dataclass
class OfficerUser:
    """
    An authenticated staff member, populated from JWT claims.

    Attributes:
        id: Officer's unique identifier
        email: Officer's e-mail address
        role: Staff role
        name: Display name (optional)
    """

    id: UUID
    email: str
    role: OfficerRole
    name: str | None = None

    def __str__(self) -> str:
        return f"OfficerUser(id={self.id}, role={self.role.value})"


def _is_dev_mode_safe() -> bool:
    """Development auth is enabled only when every environment signal agrees."""
    env_var = os.getenv("PYTHON_ENV", "").lower()

    is_safe = (
        settings.is_development
        and not settings.is_production
        and env_var not in {"production", "staging"}
    )

    if is_safe:
        logger.warning(
            "SECURITY: Development auth mode is ENABLED. This MUST NOT be used in production!"
        )

    return is_safe


_DEVELOPMENT_MODE = _is_dev_mode_safe()

_DEV_OFFICER = OfficerUser(
    id=UUID("00000000-0000-0000-0000-000000000001"),
    email="officer@evisit.dev",
    role=OfficerRole.SUPERVISOR,
    name="Development Officer",
)


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _validate_jwt_token(token: str) -> OfficerUser:
    """
    Validate a JWT and build the officer it identifies.

    Raises:
        HTTPException 401: If the token is invalid, expired, or has bad claims
    """
    if _DEVELOPMENT_MODE and token in {"dev-token", "test-token"}:
        logger.debug("Development mode: using test officer")
        return _DEV_OFFICER

    payload = decode_token(token)

    if payload is None:
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired authentication token.")

    if payload.get("type", "access") != "access":
        logger.warning(f"Invalid token type: {payload.get('type')}")
        raise _unauthorized("INVALID_TOKEN_TYPE", "This endpoint requires an access token.")

    try:
        return OfficerUser(
            id=UUID(payload["sub"]),
            email=payload.get("email", ""),
            role=OfficerRole(payload.get("role", "")),
            name=payload.get("name"),
        )
    except (ValueError, KeyError) as e:
        logger.warning(f"Invalid token claims: {e}")
        raise _unauthorized(
            "INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims."
        ) from e


async def get_current_officer(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> OfficerUser:
    """
    FastAPI dependency returning the authenticated officer.

    Any staff role is accepted. Used by manual checkpoint entry and the
    review transitions.
    """
    officer = await _validate_jwt_token(credentials.credentials)
    logger.debug(f"Authenticated officer: {officer.id} ({officer.role.value})")
    return officer


async def get_current_supervisor(
    officer: OfficerUser = Depends(get_current_officer),
) -> OfficerUser:
    """
    FastAPI dependency requiring a supervisor-level role.

    Raises:
        HTTPException 403: If the officer's role is not supervisor or above
    """
    if officer.role not in SUPERVISOR_ROLES:
        logger.warning(f"Access denied: officer {officer.id} has role '{officer.role.value}'")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "SUPERVISOR_ACCESS_REQUIRED",
                "message": "Supervisor access is required for this endpoint.",
            },
        )
    return officer


__all__ = [
    "OfficerRole",
    "OfficerUser",
    "get_current_officer",
    "get_current_supervisor",
]
