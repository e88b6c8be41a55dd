"""Caller identity tokens.

Tokens are minted by the central authentication service; this service
only verifies them. ``create_access_token`` exists for tooling and tests.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from clinical_access.core.config import settings

ACTOR_PATIENT = "patient"
ACTOR_PROFESSIONAL = "professional"
ACTOR_CLINIC = "clinic"


def create_access_token(
    subject: str,
    actor_type: str,
    expires_delta: timedelta | None = None,
    additional_claims: dict | None = None,
) -> str:
    """Create a signed JWT for a caller.

    Args:
        subject: Patient CI, professional id or clinic id
        actor_type: One of patient, professional, clinic
        expires_delta: Optional custom lifetime (default one hour)
        additional_claims: Optional extra claims

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(hours=1)

    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": subject,
        "actor_type": actor_type,
        "exp": now + expires_delta,
        "iat": now,
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a JWT.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
