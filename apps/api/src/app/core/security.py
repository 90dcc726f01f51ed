"""
Security Utilities

Decoding of officer access tokens. Tokens are issued by the external
authentication service; this API only validates them and trusts the
identity they carry.
"""

import logging
from typing import Any

import jwt

from app.core.config import settings

logger = logging.getLogger(__name__)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a JWT.

    Verifies the signature, the algorithm, and the expiry claim.

    Args:
        token: Encoded JWT string

    Returns:
        The token claims, or None if the token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected invalid access token: {e}")
        return None
