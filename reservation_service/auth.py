from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader
from jose import jwt, JWTError

from .config import settings

ADMIN_ROLE = "admin"

# auto_error=False so a missing header is a 401, like a bad token
api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


def decode_admin_token(token: str | None) -> str:
    """
    Decodes the JWT from an 'Authorization: Bearer ...' header value and
    returns the admin's subject. Raises 401 for a missing or invalid token
    and 403 for a valid token without the admin role.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception
    try:
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            raise credentials_exception
        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except (JWTError, ValueError, AttributeError):
        raise credentials_exception

    subject = payload.get("sub")
    if subject is None:
        raise credentials_exception
    if payload.get("role") != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return str(subject)


async def get_current_admin(
        token: Annotated[str | None, Depends(api_key_header)]
) -> str:
    """
    Dependency for admin-only routes. With ADMIN_AUTH_ENABLED off every
    caller is treated as the admin.
    """
    if not settings.ADMIN_AUTH_ENABLED:
        return "anonymous"
    return decode_admin_token(token)
