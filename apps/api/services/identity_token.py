"""Identity token verification for callers requesting a provider key."""

from dataclasses import dataclass
import logging

from jose import ExpiredSignatureError, JWTError, jwt

from services.errors import AuthFailure, ConfigurationError


logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("HS256",)


@dataclass(frozen=True)
class Identity:
    user_id: str
    display_name: str = ""
    contact: str = ""


def verify_identity_token(token: str, secret: str, algorithm: str = "HS256") -> Identity:
    """Verify an HMAC-signed identity token and return the caller's identity.

    Only the ``uid``, ``username`` and ``email`` claims are read; any other
    claim in the token is ignored.
    """
    if not token or not token.strip():
        raise AuthFailure("Token is empty")

    if not secret or not secret.strip():
        raise ConfigurationError("JWT_SECRET_CLOUD is not configured")
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ConfigurationError(f"Unsupported JWT_ALGORITHM {algorithm!r}")

    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise AuthFailure("Malformed token header") from exc

    signing_method = header.get("alg")
    if signing_method != algorithm:
        raise AuthFailure(f"Unexpected signing method: {signing_method}")

    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except ExpiredSignatureError as exc:
        raise AuthFailure("Token is expired") from exc
    except JWTError as exc:
        raise AuthFailure(f"Token validation failed: {exc}") from exc

    user_id = str(claims.get("uid") or "").strip()
    if not user_id:
        raise AuthFailure("UserID is empty in the token")

    identity = Identity(
        user_id=user_id,
        display_name=str(claims.get("username") or "").strip(),
        contact=str(claims.get("email") or "").strip(),
    )
    logger.debug("Verified identity token for user %s", identity.user_id)
    return identity
