import time
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import ValidationError

from libs.common.config import get_settings
from libs.auth.models import SERVICE_ROLE, AuthUser

security = HTTPBearer()


def service_role_jwt(calling_service: str) -> str:
    """Short-lived token for service-to-service calls."""
    settings = get_settings()
    now = int(time.time())
    payload = {
        "sub": f"service:{calling_service}",
        "role": SERVICE_ROLE,
        "iat": now,
        "exp": now + 60,
    }
    return jwt.encode(payload, settings.AUTH_JWT_SECRET, algorithm="HS256")


async def get_current_user(
    token: Annotated[HTTPAuthorizationCredentials, Depends(security)]
) -> AuthUser:
    """
    Validate the bearer JWT and return the authenticated user.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token.credentials,
            get_settings().AUTH_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
        return AuthUser(**payload)
    except (JWTError, ValidationError):
        raise credentials_exception

