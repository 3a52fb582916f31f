"""Authentication dependencies for key requests."""

import logging
from typing import Optional

from fastapi import Header

from config import settings
from services.errors import AuthFailure
from services.identity_token import Identity, verify_identity_token


logger = logging.getLogger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from a ``Bearer <token>`` header value, or None."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


async def get_verified_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    """Resolve the caller's identity from the Authorization header."""
    if not authorization:
        raise AuthFailure(
            "Authorization header missing",
            status_code=403,
            public_message="Authorization header missing",
        )

    token = extract_bearer_token(authorization)
    if not token:
        raise AuthFailure(
            "Token missing from authorization header",
            status_code=403,
            public_message="Token missing from authorization header",
        )

    identity = verify_identity_token(token, settings.JWT_SECRET_CLOUD, settings.JWT_ALGORITHM)
    logger.info("Authenticated user %s", identity.user_id)
    return identity
