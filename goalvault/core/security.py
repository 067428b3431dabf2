# goalvault/core/security.py
import logging

import jwt

from .config import settings
from .errors import ServerConfigurationError, Unauthorized

logger = logging.getLogger(__name__)


def verify_access_token(token: str) -> str:
    """
    Verify an identity-provider access token and return its subject.

    The token must be signed with the configured P-256 key and carry the
    expected issuer and audience (the app id). The subject is the key that
    owns goals.
    """
    if not settings.auth_configured:
        logger.error("PRIVY_APP_ID or PRIVY_PUBLIC_VERIFICATION_KEY is not set")
        raise ServerConfigurationError()

    try:
        payload = jwt.decode(
            token,
            settings.PRIVY_PUBLIC_VERIFICATION_KEY,
            algorithms=[settings.PRIVY_ALGORITHM],
            issuer=settings.PRIVY_ISSUER,
            audience=settings.PRIVY_APP_ID,
            options={"require": ["sub", "iss", "aud"]},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized(details="Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token verification error: {e}")
        raise Unauthorized(details=str(e))
    except (jwt.InvalidKeyError, ValueError) as e:
        # Malformed PEM surfaces here, not as a token problem
        logger.error(f"Could not load verification key: {e}")
        raise ServerConfigurationError(details="Invalid verification key")

    subject = payload.get("sub")
    if not subject:
        raise Unauthorized(details="Invalid token payload or missing sub claim.")
    return subject
