# goalvault/api/deps.py
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from goalvault.core.errors import Unauthorized
from goalvault.core.security import verify_access_token

# auto_error=False so a missing header is reported in our own error format
optional_security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> str:
    """
    Resolve the caller's identity from the ``Authorization: Bearer`` header.

    Returns the token subject, which is the owning-user key of goals.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthorized(error="Missing or invalid Authorization header")
    return verify_access_token(credentials.credentials)
